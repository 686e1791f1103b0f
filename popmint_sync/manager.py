"""Coordinates hydration and write-through for one playground project."""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

import httpx

from popmint_sync.api_client import ApiClient, RetryOptions, SleepFn
from popmint_sync.canvas_persistence import CanvasPersistenceConfig, CanvasPersistenceMiddleware
from popmint_sync.chat_cache import ChatCache
from popmint_sync.chat_persistence import (
    ChatPersistenceConfig,
    ChatPersistenceMiddleware,
    analyze_message_persistability,
)
from popmint_sync.config import settings
from popmint_sync.enums import ManagerStateEnum
from popmint_sync.errors import ApiCallError, PersistenceConfigError
from popmint_sync.offline_queue import OfflineQueue, UnsavedChange
from popmint_sync.projects import ProjectsApi
from popmint_sync.remote import canvas_path, chat_path, load_canvas_objects, load_chat_messages
from popmint_sync.stores import CanvasStore, ChatStore, ProjectStore

logger = logging.getLogger(__name__)


@dataclass
class PersistenceManagerConfig:
    project_id: str
    enabled: bool = True
    chat_debounce_delay: float = field(default_factory=lambda: settings.POPMINT_CHAT_DEBOUNCE_SECONDS)
    canvas_debounce_delay: float = field(default_factory=lambda: settings.POPMINT_CANVAS_DEBOUNCE_SECONDS)


class PersistenceManager:
    """Hydrates the chat and canvas stores, then turns on write-through.

    ``initialize`` is all-or-nothing: both collections must load before either
    store is touched or any middleware starts listening.
    """

    def __init__(
        self,
        config: PersistenceManagerConfig,
        *,
        api: ApiClient,
        chat_store: ChatStore,
        canvas_store: CanvasStore,
        project_store: ProjectStore | None = None,
        cache: ChatCache | None = None,
        queue: OfflineQueue | None = None,
    ) -> None:
        if not config.project_id:
            raise PersistenceConfigError("project_id is required")
        self.config = config
        self.api = api
        self.chat_store = chat_store
        self.canvas_store = canvas_store
        self.project_store = project_store
        self.cache = cache
        self.queue = queue if queue is not None else OfflineQueue()
        self.state = ManagerStateEnum.uninitialized
        self._hydrated = False
        self.unsaved: list[UnsavedChange] = []
        self.chat: ChatPersistenceMiddleware
        self.canvas: CanvasPersistenceMiddleware
        self._setup_middleware()

    @property
    def is_initialized(self) -> bool:
        return self.state == ManagerStateEnum.initialized

    def _setup_middleware(self) -> None:
        self.chat = ChatPersistenceMiddleware(
            self.chat_store,
            self.api,
            ChatPersistenceConfig(
                project_id=self.config.project_id,
                enabled=self.config.enabled,
                debounce_delay=self.config.chat_debounce_delay,
            ),
            cache=self.cache,
            unsaved=self.unsaved,
            active_project=self._active_project_id,
        )
        self.canvas = CanvasPersistenceMiddleware(
            self.canvas_store,
            self.api,
            CanvasPersistenceConfig(
                project_id=self.config.project_id,
                enabled=self.config.enabled,
                debounce_delay=self.config.canvas_debounce_delay,
            ),
            unsaved=self.unsaved,
            active_project=self._active_project_id,
        )

    def _active_project_id(self) -> str:
        return self.config.project_id

    async def initialize(self) -> bool:
        if self.is_initialized:
            return True
        if not self.config.enabled:
            logger.info("Persistence disabled; skipping initialize", extra={"project_id": self.config.project_id})
            return False

        project_id = self.config.project_id
        logger.info("Initializing persistence", extra={"project_id": project_id})
        if self.project_store is not None:
            self.project_store.set_current_project(project_id)

        results = await asyncio.gather(
            load_chat_messages(self.api, project_id),
            load_canvas_objects(self.api, project_id),
            return_exceptions=True,
        )
        if project_id != self.config.project_id:
            logger.warning(
                "Project changed during initialize; discarding hydration",
                extra={"project_id": project_id, "active_project_id": self.config.project_id},
            )
            return False

        failed = False
        for collection, result in zip(("chat", "canvas"), results):
            if isinstance(result, ApiCallError):
                logger.error(
                    "Hydration failed",
                    extra={"project_id": project_id, "collection": collection, "error": str(result)},
                )
                failed = True
            elif isinstance(result, BaseException):
                raise result
        if failed:
            return False

        messages, objects = results
        self.chat_store.set_messages(messages)
        self.canvas_store.set_objects(objects)
        if self.cache is not None:
            self.cache.mutate(project_id, messages, fetched=True)

        self.chat.initialize()
        self.canvas.initialize()
        self._hydrated = True
        self.state = ManagerStateEnum.initialized
        logger.info(
            "Persistence initialized",
            extra={"project_id": project_id, "messages": len(messages), "objects": len(objects)},
        )
        return True

    async def update_config(
        self,
        *,
        project_id: str | None = None,
        enabled: bool | None = None,
        chat_debounce_delay: float | None = None,
        canvas_debounce_delay: float | None = None,
    ) -> bool:
        """Apply new settings; a different project id re-hydrates from scratch."""
        if chat_debounce_delay is not None:
            self.config.chat_debounce_delay = chat_debounce_delay
        if canvas_debounce_delay is not None:
            self.config.canvas_debounce_delay = canvas_debounce_delay
        if enabled is not None:
            self.config.enabled = enabled

        if project_id is not None and project_id != self.config.project_id:
            logger.info(
                "Switching persistence project",
                extra={"from_project_id": self.config.project_id, "to_project_id": project_id},
            )
            self._teardown()
            self._hydrated = False
            self.config.project_id = project_id
            self._setup_middleware()
            if self.config.enabled:
                return await self.initialize()
            return False

        self.chat.update_config(debounce_delay=chat_debounce_delay)
        self.canvas.update_config(debounce_delay=canvas_debounce_delay)
        if enabled is True:
            return await self.enable()
        if enabled is False:
            self.disable()
        return self.is_initialized

    async def enable(self) -> bool:
        """Resume write-through, hydrating first if this project never loaded."""
        self.config.enabled = True
        if not self._hydrated:
            return await self.initialize()
        self.chat.enable()
        self.canvas.enable()
        self.state = ManagerStateEnum.initialized
        logger.info("Persistence enabled", extra={"project_id": self.config.project_id})
        return True

    def disable(self) -> None:
        self.config.enabled = False
        self._teardown()
        logger.info("Persistence disabled", extra={"project_id": self.config.project_id})

    def _teardown(self) -> None:
        self.chat.disable()
        self.canvas.disable()
        self.state = ManagerStateEnum.uninitialized

    async def flush(self) -> None:
        await asyncio.gather(self.chat.flush(), self.canvas.flush())

    def unsaved_changes(self) -> list[UnsavedChange]:
        return list(self.unsaved)

    def retry_unsaved(self) -> int:
        """Hand every unsaved change to the offline queue, oldest first."""
        changes = list(self.unsaved)
        self.unsaved.clear()
        for change in changes:
            self.queue.add(change.replay)
        if changes:
            logger.info("Replaying unsaved changes", extra={"count": len(changes)})
        return len(changes)

    def get_status(self) -> dict[str, Any]:
        return {
            "is_initialized": self.is_initialized,
            "enabled": self.config.enabled,
            "project_id": self.config.project_id,
            "unsaved": len(self.unsaved_changes()) + len(self.queue),
        }

    async def debug_persistence_health(self) -> dict[str, Any]:
        project_id = self.config.project_id
        report: dict[str, Any] = {
            "status": self.get_status(),
            "chat": {
                "message_count": len(self.chat_store.messages),
                "pending": self.chat.pending_count,
                "writer": self.chat.writer_state.value,
                "persistability": analyze_message_persistability(self.chat_store.messages),
            },
            "canvas": {
                "object_count": len(self.canvas_store.objects),
                "by_type": dict(Counter(obj.type.value for obj in self.canvas_store.objects)),
                "pending": self.canvas.pending_count,
                "writer": self.canvas.writer_state.value,
            },
            "endpoints": {},
        }
        for name, path in (("chat", chat_path(project_id)), ("canvas", canvas_path(project_id))):
            try:
                await self.api.api_call(path, retry=self.api.without_retries())
            except ApiCallError as exc:
                report["endpoints"][name] = {"ok": False, "status_code": exc.status_code, "error": str(exc)}
            else:
                report["endpoints"][name] = {"ok": True}
        logger.info("Persistence health check", extra={"project_id": project_id, "report": report})
        return report


@dataclass
class PersistenceContext:
    """Everything one project session needs, built together and closed together."""

    api: ApiClient
    chat_store: ChatStore
    canvas_store: CanvasStore
    project_store: ProjectStore
    cache: ChatCache
    queue: OfflineQueue
    manager: PersistenceManager

    @classmethod
    def create(
        cls,
        project_id: str,
        *,
        enabled: bool = True,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        retry: RetryOptions | None = None,
        sleep: SleepFn = asyncio.sleep,
        chat_debounce_delay: float | None = None,
        canvas_debounce_delay: float | None = None,
        user_id: str | None = None,
    ) -> "PersistenceContext":
        api = ApiClient(base_url=base_url, retry=retry, transport=transport, sleep=sleep)
        chat_store = ChatStore()
        canvas_store = CanvasStore()
        project_store = ProjectStore(ProjectsApi(api, user_id=user_id))
        cache = ChatCache(api)
        queue = OfflineQueue()
        config = PersistenceManagerConfig(project_id=project_id, enabled=enabled)
        if chat_debounce_delay is not None:
            config.chat_debounce_delay = chat_debounce_delay
        if canvas_debounce_delay is not None:
            config.canvas_debounce_delay = canvas_debounce_delay
        manager = PersistenceManager(
            config,
            api=api,
            chat_store=chat_store,
            canvas_store=canvas_store,
            project_store=project_store,
            cache=cache,
            queue=queue,
        )
        return cls(
            api=api,
            chat_store=chat_store,
            canvas_store=canvas_store,
            project_store=project_store,
            cache=cache,
            queue=queue,
            manager=manager,
        )

    async def __aenter__(self) -> "PersistenceContext":
        await self.manager.initialize()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.manager.flush()
        self.manager.disable()
        await self.cache.wait_background()
