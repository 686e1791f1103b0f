from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from popmint_sync.enums import WriterStateEnum

logger = logging.getLogger(__name__)


class DebouncedWriter:
    """Coalesces bursts of mutations into a single write.

    States: ``idle`` -> ``scheduled`` (timer armed, deadline set) -> ``writing``
    (write task running) -> ``idle``. A touch while scheduled re-arms the
    timer; a touch while writing marks the writer dirty and re-arms once the
    write finishes, so two writes never overlap.
    """

    def __init__(self, write: Callable[[], Awaitable[None]], delay: float, *, name: str = "writer") -> None:
        self._write = write
        self.delay = delay
        self.name = name
        self.state = WriterStateEnum.idle
        self.deadline: float | None = None
        self._handle: asyncio.TimerHandle | None = None
        self._task: asyncio.Task[None] | None = None
        self._dirty = False

    def touch(self) -> None:
        if self.state == WriterStateEnum.writing:
            self._dirty = True
            return
        self._schedule()

    def cancel(self) -> None:
        """Disarm a pending timer. A write already running is left to finish."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.deadline = None
        self._dirty = False
        if self.state == WriterStateEnum.scheduled:
            self.state = WriterStateEnum.idle

    async def flush(self) -> None:
        while True:
            if self.state == WriterStateEnum.writing and self._task is not None:
                await self._task
                continue
            if self.state == WriterStateEnum.scheduled:
                self._disarm()
                self._start_write()
                continue
            return

    def _schedule(self) -> None:
        loop = asyncio.get_running_loop()
        self._disarm()
        self.deadline = loop.time() + self.delay
        self._handle = loop.call_at(self.deadline, self._fire)
        self.state = WriterStateEnum.scheduled

    def _disarm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self.deadline = None

    def _fire(self) -> None:
        self._handle = None
        self.deadline = None
        self._start_write()

    def _start_write(self) -> None:
        self.state = WriterStateEnum.writing
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        try:
            await self._write()
        except Exception:  # noqa: BLE001
            logger.exception("Debounced write failed", extra={"writer": self.name})
        finally:
            self._task = None
            if self._dirty:
                self._dirty = False
                self._schedule()
            else:
                self.state = WriterStateEnum.idle
