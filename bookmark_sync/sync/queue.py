"""Bounded-lifetime retry queue shared by the inbound and outbound engines.

Tasks run one at a time in FIFO order on a single drain task. A failed
task is classified by :func:`is_retryable`: permanent failures are
dropped, transient ones sleep ``min(max_delay, base_delay * 2**attempt)``
and go back to the tail. A task older than ``max_age_ms`` when it is
dequeued is abandoned.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from bookmark_sync.core.logging_utils import correlation_scope, generate_correlation_id
from bookmark_sync.core.time_utils import now_ms
from bookmark_sync.domain.exceptions import NotFoundError, is_retryable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

DEFAULT_MAX_TASK_AGE_MS = 5 * 60 * 1000
DEFAULT_RETRY_BASE_DELAY_MS = 200
DEFAULT_RETRY_MAX_DELAY_MS = 5000


def retry_delay_ms(attempt: int, base_delay_ms: int, max_delay_ms: int) -> int:
    return min(max_delay_ms, base_delay_ms * (2**attempt))


@dataclass
class QueuedTask:
    run: Callable[[], Awaitable[None]]
    task_kind: str
    key: str | None
    created_at: int
    attempt: int = 0
    correlation_id: str = field(default_factory=generate_correlation_id)


class RetryQueue:
    """Sequential task queue with retry, backoff and task expiry.

    ``batch_size`` groups tasks into batches separated by ``batch_delay_ms``
    (the outbound engine uses this to pace native writes).

    ``clock`` returns epoch milliseconds and ``sleep`` takes seconds; both are
    injectable so that tests can drive time.
    """

    def __init__(
        self,
        name: str,
        *,
        max_age_ms: int = DEFAULT_MAX_TASK_AGE_MS,
        base_delay_ms: int = DEFAULT_RETRY_BASE_DELAY_MS,
        max_delay_ms: int = DEFAULT_RETRY_MAX_DELAY_MS,
        retry_enabled: bool = True,
        batch_size: int | None = None,
        batch_delay_ms: int = 0,
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.name = name
        self._max_age_ms = max_age_ms
        self._base_delay_ms = base_delay_ms
        self._max_delay_ms = max_delay_ms
        self._retry_enabled = retry_enabled
        self._batch_size = batch_size
        self._batch_delay_ms = batch_delay_ms
        self._clock = clock
        self._sleep = sleep
        self._tasks: deque[QueuedTask] = deque()
        self._processing = False
        self._drain_task: asyncio.Task[None] | None = None
        self._idle = asyncio.Event()
        self._idle.set()

    def __len__(self) -> int:
        return len(self._tasks)

    @property
    def processing(self) -> bool:
        return self._processing

    def enqueue(
        self,
        run: Callable[[], Awaitable[None]],
        *,
        task_kind: str,
        key: str | None = None,
    ) -> QueuedTask:
        """Append a task and start draining if no drain is running."""
        task = QueuedTask(run=run, task_kind=task_kind, key=key, created_at=self._clock())
        self._tasks.append(task)
        self._idle.clear()
        logger.debug(
            "sync_task_enqueued",
            extra={
                "queue": self.name,
                "task_kind": task_kind,
                "key": key,
                "pending": len(self._tasks),
                "correlation_id": task.correlation_id,
            },
        )
        if not self._processing:
            self._processing = True
            self._drain_task = asyncio.get_running_loop().create_task(
                self._drain(), name=f"{self.name}-sync-queue"
            )
        return task

    async def wait_idle(self) -> None:
        """Wait until every queued task has completed, failed or expired."""
        await self._idle.wait()

    async def stop(self) -> None:
        """Cancel the drain task and discard pending tasks."""
        dropped = len(self._tasks)
        self._tasks.clear()
        task = self._drain_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.debug("sync_queue_drain_cancelled", extra={"queue": self.name})
        self._drain_task = None
        self._processing = False
        self._idle.set()
        if dropped:
            logger.info("sync_queue_stopped", extra={"queue": self.name, "dropped": dropped})

    async def _drain(self) -> None:
        in_batch = 0
        try:
            while self._tasks:
                task = self._tasks.popleft()
                age_ms = self._clock() - task.created_at
                if age_ms > self._max_age_ms:
                    logger.warning(
                        "sync_task_abandoned",
                        extra={
                            "queue": self.name,
                            "task_kind": task.task_kind,
                            "key": task.key,
                            "attempt": task.attempt,
                            "age_ms": age_ms,
                            "correlation_id": task.correlation_id,
                        },
                    )
                    continue

                await self._run_task(task)

                if self._batch_size:
                    in_batch += 1
                    if in_batch >= self._batch_size and self._tasks:
                        in_batch = 0
                        await self._sleep(self._batch_delay_ms / 1000)
        finally:
            self._processing = False
            self._drain_task = None
            self._idle.set()

    async def _run_task(self, task: QueuedTask) -> None:
        try:
            with correlation_scope(task.correlation_id):
                await task.run()
        except NotFoundError as exc:
            logger.debug(
                "sync_task_target_missing",
                extra={
                    "queue": self.name,
                    "task_kind": task.task_kind,
                    "key": task.key,
                    "error": exc.message,
                    "correlation_id": task.correlation_id,
                },
            )
        except Exception as exc:
            if not is_retryable(exc):
                logger.error(
                    "sync_task_dropped",
                    extra={
                        "queue": self.name,
                        "task_kind": task.task_kind,
                        "key": task.key,
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "correlation_id": task.correlation_id,
                    },
                )
                return
            if not self._retry_enabled:
                logger.exception(
                    "sync_task_failed",
                    extra={
                        "queue": self.name,
                        "task_kind": task.task_kind,
                        "key": task.key,
                        "correlation_id": task.correlation_id,
                    },
                )
                return

            task.attempt += 1
            delay_ms = retry_delay_ms(task.attempt, self._base_delay_ms, self._max_delay_ms)
            logger.warning(
                "sync_task_retry_scheduled",
                extra={
                    "queue": self.name,
                    "task_kind": task.task_kind,
                    "key": task.key,
                    "attempt": task.attempt,
                    "delay_ms": delay_ms,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                    "correlation_id": task.correlation_id,
                },
            )
            await self._sleep(delay_ms / 1000)
            self._tasks.append(task)
