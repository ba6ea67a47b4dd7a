from __future__ import annotations

import logging
from urllib.parse import SplitResult, parse_qsl, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)


TRACKING_PARAMS = {
    "fbclid",
    "gclid",
    "mc_cid",
    "mc_eid",
}

TRACKING_PREFIXES: tuple[str, ...] = ("utm_",)

_DEFAULT_PORTS = {"http": 80, "https": 443}


def is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PREFIXES)


def _normalize_netloc(scheme: str, parts: SplitResult) -> str:
    hostname = (parts.hostname or "").lower()
    if ":" in hostname:
        hostname = f"[{hostname}]"

    port = parts.port  # raises ValueError on garbage ports
    netloc = hostname
    if port is not None and _DEFAULT_PORTS.get(scheme) != port:
        netloc = f"{hostname}:{port}"

    if parts.username is not None:
        userinfo = parts.username
        if parts.password is not None:
            userinfo = f"{userinfo}:{parts.password}"
        netloc = f"{userinfo}@{netloc}"
    return netloc


def canonical_url(url: str | None) -> str | None:
    """Return the deduplication key for a bookmark URL.

    - Lowercase scheme & host, drop default ports
    - Strip fragment
    - Remove tracking params (``utm_*``, ``fbclid``, ``gclid``, ``mc_cid``, ``mc_eid``)
      and sort the rest
    - Collapse trailing slash (the bare root keeps ``/``)

    Only ``http`` and ``https`` URLs have a key. Other schemes (``javascript:``,
    ``data:``, ``ftp:``, ...) and input that cannot be parsed return ``None``, so such
    bookmarks are never deduplicated.
    """
    if not url or not isinstance(url, str):
        return None
    raw = url.strip()
    if not raw:
        return None

    try:
        parts = urlsplit(raw)
        scheme = parts.scheme.lower()
        if scheme not in _DEFAULT_PORTS or not parts.hostname:
            return None
        netloc = _normalize_netloc(scheme, parts)

        path = parts.path or "/"
        if path != "/":
            path = path.rstrip("/") or "/"

        query_pairs = [
            (k, v)
            for k, v in parse_qsl(parts.query, keep_blank_values=True)
            if not is_tracking_param(k)
        ]
        query_pairs.sort(key=lambda x: (x[0], x[1]))
        query = urlencode(query_pairs)

        return urlunsplit((scheme, netloc, path, query, ""))
    except ValueError as exc:
        logger.debug("canonical_url_failed", extra={"url": raw[:100], "error": str(exc)})
        return None
