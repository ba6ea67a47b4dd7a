"""In-memory event bus carrying catalog events to the sync engines.

Handlers are awaited inline by ``publish``, so a subscriber observes the
publisher's state (for example an active reentrancy guard) at the moment
the mutation happened.
"""

import logging
from collections import defaultdict
from collections.abc import Awaitable, Callable
from typing import TypeVar

from bookmark_sync.domain.events.catalog_events import DomainEvent

logger = logging.getLogger(__name__)

TEvent = TypeVar("TEvent", bound=DomainEvent)

EventHandler = Callable[[TEvent], Awaitable[None]]


class EventBus:
    """Observer-style dispatcher keyed by event class.

    A handler subscribed to a base class (e.g. ``BookmarkEvent``) receives
    every subclass instance too.

    Example:
        ```python
        bus = EventBus()

        async def on_created(event: BookmarkCreated) -> None:
            print(event.bookmark.url)

        bus.subscribe(BookmarkCreated, on_created)
        await bus.publish(BookmarkCreated(occurred_at=utc_now(), bookmark=bookmark))
        ```

    """

    def __init__(self) -> None:
        self._handlers: dict[type, list[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: type[TEvent], handler: EventHandler[TEvent]) -> None:
        self._handlers[event_type].append(handler)
        logger.debug(
            "event_handler_subscribed",
            extra={
                "event_type": event_type.__name__,
                "handler": getattr(handler, "__name__", repr(handler)),
                "total_handlers": len(self._handlers[event_type]),
            },
        )

    def unsubscribe(self, event_type: type[TEvent], handler: EventHandler[TEvent]) -> None:
        handlers = self._handlers.get(event_type)
        if not handlers or handler not in handlers:
            logger.warning(
                "event_handler_not_found",
                extra={
                    "event_type": event_type.__name__,
                    "handler": getattr(handler, "__name__", repr(handler)),
                },
            )
            return
        handlers.remove(handler)

    def _handlers_for(self, event_type: type) -> list[EventHandler]:
        matched: list[EventHandler] = []
        for klass in event_type.__mro__:
            matched.extend(self._handlers.get(klass, ()))
        return matched

    async def publish(self, event: DomainEvent) -> None:
        """Publish an event to every matching handler.

        A failing handler is logged and does not stop the others.
        """
        event_type = type(event)
        handlers = self._handlers_for(event_type)

        if not handlers:
            logger.debug(
                "event_published_no_handlers",
                extra={"event_type": event_type.__name__, "event_id": event.aggregate_id},
            )
            return

        for handler in handlers:
            try:
                await handler(event)
            except Exception as exc:
                logger.exception(
                    "event_handler_failed",
                    extra={
                        "event_type": event_type.__name__,
                        "handler": getattr(handler, "__name__", repr(handler)),
                        "error": str(exc),
                    },
                )

    def get_handler_count(self, event_type: type[TEvent]) -> int:
        return len(self._handlers_for(event_type))
