from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Iterable

from popmint_sync.api_client import ApiClient
from popmint_sync.config import settings
from popmint_sync.errors import ApiCallError
from popmint_sync.remote import chat_path, load_chat_messages, save_chat_message
from popmint_sync.schemas import ChatMessage

logger = logging.getLogger(__name__)

CacheListener = Callable[[list[ChatMessage]], None]


@dataclass
class _CacheEntry:
    project_id: str
    data: list[ChatMessage] | None = None
    error: ApiCallError | None = None
    fetched_at: float | None = None
    inflight: asyncio.Task[list[ChatMessage]] | None = None
    listeners: list[CacheListener] = field(default_factory=list)


class ChatCache:
    """Read-through cache of chat messages, keyed by the project's chat URL.

    Fetches for the same key are deduplicated inside ``dedupe_interval``;
    concurrent callers share one in-flight request. While nothing has loaded
    yet, readers get an empty list.
    """

    def __init__(
        self,
        api: ApiClient,
        *,
        dedupe_interval: float | None = None,
        revalidate_on_focus: bool | None = None,
        revalidate_on_reconnect: bool | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.api = api
        self.dedupe_interval = (
            settings.POPMINT_CHAT_DEDUPE_INTERVAL_SECONDS if dedupe_interval is None else dedupe_interval
        )
        self.revalidate_on_focus = (
            settings.POPMINT_CHAT_REVALIDATE_ON_FOCUS if revalidate_on_focus is None else revalidate_on_focus
        )
        self.revalidate_on_reconnect = (
            settings.POPMINT_CHAT_REVALIDATE_ON_RECONNECT
            if revalidate_on_reconnect is None
            else revalidate_on_reconnect
        )
        self._clock = clock
        self._entries: dict[str, _CacheEntry] = {}
        self._background: set[asyncio.Task[None]] = set()

    @staticmethod
    def key(project_id: str) -> str:
        return chat_path(project_id)

    def messages(self, project_id: str) -> list[ChatMessage]:
        return list(self.get_cached(project_id) or [])

    def get_cached(self, project_id: str) -> list[ChatMessage] | None:
        entry = self._entries.get(self.key(project_id))
        if entry is None or entry.data is None:
            return None
        return list(entry.data)

    def is_loading(self, project_id: str) -> bool:
        entry = self._entries.get(self.key(project_id))
        return bool(entry and entry.inflight is not None and entry.data is None)

    def error(self, project_id: str) -> ApiCallError | None:
        entry = self._entries.get(self.key(project_id))
        return entry.error if entry else None

    def subscribe(self, project_id: str, listener: CacheListener) -> Callable[[], None]:
        entry = self._entry(project_id)
        entry.listeners.append(listener)

        def unsubscribe() -> None:
            if listener in entry.listeners:
                entry.listeners.remove(listener)

        return unsubscribe

    def mutate(self, project_id: str, data: Iterable[ChatMessage] | None, *, fetched: bool = False) -> None:
        entry = self._entry(project_id)
        entry.data = None if data is None else list(data)
        if fetched:
            entry.fetched_at = self._clock()
            entry.error = None
        self._notify(entry)

    def clear(self, project_id: str) -> None:
        entry = self._entries.get(self.key(project_id))
        if entry is None:
            return
        entry.data = None
        entry.fetched_at = None
        entry.error = None
        self._notify(entry)

    def invalidate(self, project_id: str) -> None:
        """Mark the key stale and refetch in the background if anyone is listening."""
        entry = self._entry(project_id)
        entry.fetched_at = None
        if entry.listeners:
            self._spawn_revalidate(project_id)

    async def revalidate(self, project_id: str, *, force: bool = False) -> list[ChatMessage]:
        entry = self._entry(project_id)
        if entry.inflight is not None:
            if not force:
                return list(await asyncio.shield(entry.inflight))
            try:
                await asyncio.shield(entry.inflight)
            except ApiCallError:
                pass
        elif (
            not force
            and entry.data is not None
            and entry.fetched_at is not None
            and self._clock() - entry.fetched_at < self.dedupe_interval
        ):
            return list(entry.data)

        task = asyncio.get_running_loop().create_task(self._fetch(project_id))
        entry.inflight = task
        try:
            return list(await asyncio.shield(task))
        finally:
            if entry.inflight is task:
                entry.inflight = None

    async def preload(self, project_id: str) -> bool:
        try:
            await self.revalidate(project_id)
        except ApiCallError as exc:
            logger.warning("Chat preload failed", extra={"project_id": project_id, "error": str(exc)})
            return False
        return True

    async def on_focus(self) -> None:
        if self.revalidate_on_focus:
            await self._revalidate_subscribed("focus")

    async def on_reconnect(self) -> None:
        if self.revalidate_on_reconnect:
            await self._revalidate_subscribed("reconnect")

    async def optimistic_append(
        self,
        project_id: str,
        message: ChatMessage,
        *,
        revalidate: bool = True,
    ) -> ChatMessage:
        snapshot = self.get_cached(project_id)
        self.mutate(project_id, (snapshot or []) + [message])
        try:
            saved = await save_chat_message(self.api, project_id, message)
        except ApiCallError:
            logger.warning("Optimistic chat append failed; rolling back", extra={"project_id": project_id})
            await self._rollback(project_id, snapshot)
            raise
        if revalidate:
            await self.revalidate(project_id, force=True)
        return saved

    async def batch_save(self, project_id: str, messages: Iterable[ChatMessage]) -> list[ChatMessage]:
        saved = await asyncio.gather(*(save_chat_message(self.api, project_id, message) for message in messages))
        await self.revalidate(project_id, force=True)
        return list(saved)

    async def _rollback(self, project_id: str, snapshot: list[ChatMessage] | None) -> None:
        try:
            await self.revalidate(project_id, force=True)
        except ApiCallError:
            logger.warning("Chat rollback refetch failed; restoring snapshot", extra={"project_id": project_id})
            self.mutate(project_id, snapshot)

    async def _fetch(self, project_id: str) -> list[ChatMessage]:
        entry = self._entry(project_id)
        try:
            messages = await load_chat_messages(self.api, project_id)
        except ApiCallError as exc:
            entry.error = exc
            raise
        entry.data = messages
        entry.error = None
        entry.fetched_at = self._clock()
        self._notify(entry)
        return messages

    async def _revalidate_subscribed(self, reason: str) -> None:
        project_ids = [entry.project_id for entry in self._entries.values() if entry.listeners]
        for project_id in project_ids:
            try:
                await self.revalidate(project_id)
            except ApiCallError as exc:
                logger.warning(
                    "Chat revalidation failed",
                    extra={"project_id": project_id, "reason": reason, "error": str(exc)},
                )

    def _spawn_revalidate(self, project_id: str) -> None:
        async def run() -> None:
            try:
                await self.revalidate(project_id, force=True)
            except ApiCallError as exc:
                logger.warning(
                    "Background chat revalidation failed",
                    extra={"project_id": project_id, "error": str(exc)},
                )

        task = asyncio.get_running_loop().create_task(run())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_background(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background))

    def _entry(self, project_id: str) -> _CacheEntry:
        key = self.key(project_id)
        entry = self._entries.get(key)
        if entry is None:
            entry = self._entries[key] = _CacheEntry(project_id=project_id)
        return entry

    @staticmethod
    def _notify(entry: _CacheEntry) -> None:
        data = list(entry.data or [])
        for listener in list(entry.listeners):
            listener(data)
