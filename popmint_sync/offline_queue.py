from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[Any]]


@dataclass(frozen=True)
class UnsavedChange:
    """A write that exhausted its retries and can be replayed later."""

    project_id: str
    kind: str
    object_id: str
    error: str
    replay: Operation


class OfflineQueue:
    """Serial FIFO of pending write operations.

    A failed operation goes back to the head of the queue and draining stops
    until the next ``add``. Ordering wins over throughput: a head that keeps
    failing holds back everything queued behind it.
    """

    def __init__(self) -> None:
        self._queue: deque[Operation] = deque()
        self._processing = False
        self._task: asyncio.Task[None] | None = None

    def add(self, operation: Operation) -> None:
        self._queue.append(operation)
        if self._processing:
            return
        self._processing = True
        self._task = asyncio.get_running_loop().create_task(self._process())

    async def _process(self) -> None:
        try:
            while self._queue:
                operation = self._queue.popleft()
                try:
                    await operation()
                except Exception:  # noqa: BLE001
                    logger.exception("Offline queue operation failed", extra={"queued": len(self._queue) + 1})
                    self._queue.appendleft(operation)
                    break
        finally:
            self._processing = False

    async def join(self) -> None:
        task = self._task
        if task is not None:
            await task

    def clear(self) -> None:
        self._queue.clear()

    @property
    def is_processing(self) -> bool:
        return self._processing

    def __len__(self) -> int:
        return len(self._queue)
