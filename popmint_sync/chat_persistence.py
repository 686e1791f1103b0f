from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from popmint_sync.api_client import ApiClient
from popmint_sync.chat_cache import ChatCache
from popmint_sync.config import settings
from popmint_sync.enums import MessageStatusEnum, MessageTypeEnum
from popmint_sync.errors import ApiCallError
from popmint_sync.middleware import PersistenceMiddleware
from popmint_sync.offline_queue import UnsavedChange
from popmint_sync.remote import save_chat_message
from popmint_sync.schemas import ChatMessage
from popmint_sync.stores import ChatState, ChatStore

logger = logging.getLogger(__name__)


@dataclass
class ChatPersistenceConfig:
    project_id: str
    enabled: bool = True
    debounce_delay: float = field(default_factory=lambda: settings.POPMINT_CHAT_DEBOUNCE_SECONDS)


def should_persist_message(message: ChatMessage) -> bool:
    """Only user-visible conversation is stored.

    Plain text always qualifies; agent output only once it has completed.
    Progress, status bubbles and ad-generation cards stay local.
    """
    if message.is_temporary or not message.content.strip():
        return False
    if message.type == MessageTypeEnum.text:
        return True
    if message.type == MessageTypeEnum.agent_output:
        return message.status == MessageStatusEnum.completed
    return False


def analyze_message_persistability(messages: Iterable[ChatMessage]) -> dict[str, Any]:
    total: Counter[str] = Counter()
    persistable: Counter[str] = Counter()
    for message in messages:
        message_type = message.type.value
        total[message_type] += 1
        if should_persist_message(message):
            persistable[message_type] += 1
    return {
        "total": sum(total.values()),
        "persistable": sum(persistable.values()),
        "skipped": sum(total.values()) - sum(persistable.values()),
        "by_type": {
            message_type: {"total": count, "persistable": persistable[message_type]}
            for message_type, count in sorted(total.items())
        },
    }


class ChatPersistenceMiddleware(PersistenceMiddleware[ChatStore]):
    """Posts new persistable chat messages after a quiet period.

    Chat rows are append-only on the server, so each message id is sent at
    most once. Ids present when the middleware starts (hydrated history) count
    as already saved.
    """

    name = "chat"

    def __init__(
        self,
        store: ChatStore,
        api: ApiClient,
        config: ChatPersistenceConfig,
        *,
        cache: ChatCache | None = None,
        unsaved: list[UnsavedChange] | None = None,
        active_project: Callable[[], str] | None = None,
    ) -> None:
        super().__init__(store, api, config, unsaved=unsaved, active_project=active_project)
        self.cache = cache
        self._known_ids: set[str] = set()
        self._pending: dict[str, ChatMessage] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _select(self, state: ChatState) -> tuple[ChatMessage, ...]:
        return state.messages

    def _reset_baseline(self) -> None:
        self._known_ids = {message.id for message in self.store.messages}

    def _discard_pending(self) -> int:
        dropped = len(self._pending)
        self._pending.clear()
        return dropped

    def _on_change(self, current: tuple[ChatMessage, ...], previous: tuple[ChatMessage, ...]) -> None:
        present = {message.id for message in current}
        for message_id in [message_id for message_id in self._pending if message_id not in present]:
            del self._pending[message_id]

        queued = False
        for message in current:
            if message.id in self._known_ids:
                continue
            if not should_persist_message(message):
                self._pending.pop(message.id, None)
                continue
            if self._pending.get(message.id) != message:
                self._pending[message.id] = message
                queued = True
        if queued:
            logger.debug(
                "Chat write scheduled",
                extra={"project_id": self.project_id, "pending": len(self._pending)},
            )
            self._writer.touch()

    async def _flush(self) -> None:
        project_id = self.project_id
        batch = list(self._pending.values())
        self._pending.clear()
        if not batch:
            return

        saved_count = 0
        for message in batch:
            self._known_ids.add(message.id)
            try:
                saved = await save_chat_message(self.api, project_id, message)
            except ApiCallError as exc:
                self._record_failure(
                    project_id=project_id,
                    kind="chat.create",
                    object_id=message.id,
                    exc=exc,
                    replay=lambda message=message: self._replay(project_id, message),
                )
                continue
            if self._accept(project_id, message, saved):
                saved_count += 1

        if saved_count:
            logger.info("Chat messages saved", extra={"project_id": project_id, "count": saved_count})
            if self.cache is not None and self._is_active(project_id):
                self.cache.invalidate(project_id)

    async def _replay(self, project_id: str, message: ChatMessage) -> None:
        if self._is_active(project_id):
            latest = next((item for item in self.store.messages if item.id == message.id), None)
            if latest is None or not should_persist_message(latest):
                logger.info(
                    "Skipping replay for message removed since",
                    extra={"project_id": project_id, "message_id": message.id},
                )
                return
            message = latest
        saved = await save_chat_message(self.api, project_id, message)
        if self._accept(project_id, message, saved) and self.cache is not None:
            self.cache.invalidate(project_id)

    def _accept(self, project_id: str, message: ChatMessage, saved: ChatMessage) -> bool:
        if not self._is_active(project_id):
            logger.warning(
                "Dropping chat save response for inactive project",
                extra={"project_id": project_id, "active_project_id": self.project_id, "message_id": message.id},
            )
            return False
        self.server_ids[message.id] = saved.id
        self._known_ids.add(saved.id)
        return True
