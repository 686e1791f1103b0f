"""Write-through plumbing shared by the chat and canvas middlewares."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Generic, TypeVar

from popmint_sync.api_client import ApiClient
from popmint_sync.debounce import DebouncedWriter
from popmint_sync.enums import WriterStateEnum
from popmint_sync.errors import ApiCallError
from popmint_sync.offline_queue import UnsavedChange
from popmint_sync.stores import Store

logger = logging.getLogger(__name__)

StoreT = TypeVar("StoreT", bound=Store[Any])


class PersistenceMiddleware(Generic[StoreT]):
    """Subscribes to a store and pushes its mutations to the backend.

    Subclasses provide ``_select`` (the watched slice), ``_on_change`` (turns a
    slice change into pending writes), ``_reset_baseline``, ``_discard_pending``
    and ``_flush`` (the write itself). Every write captures the project id at
    flush time; a response for a project that is no longer active is dropped.
    """

    name = "store"

    def __init__(
        self,
        store: StoreT,
        api: ApiClient,
        config: Any,
        *,
        unsaved: list[UnsavedChange] | None = None,
        active_project: Callable[[], str] | None = None,
    ) -> None:
        self.store = store
        self.api = api
        self.config = config
        self.unsaved: list[UnsavedChange] = [] if unsaved is None else unsaved
        self._active_project = active_project
        self.server_ids: dict[str, str] = {}
        self._writer = DebouncedWriter(self._flush, config.debounce_delay, name=self.name)
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def project_id(self) -> str:
        return self.config.project_id

    @property
    def is_enabled(self) -> bool:
        return self._unsubscribe is not None

    @property
    def writer_state(self) -> WriterStateEnum:
        return self._writer.state

    def initialize(self) -> None:
        """Snapshot the store as the server baseline and start listening."""
        if not self.config.enabled or self._unsubscribe is not None:
            return
        self._reset_baseline()
        self._unsubscribe = self.store.subscribe(self._on_change, self._select)
        logger.info(
            "Persistence middleware enabled",
            extra={"middleware": self.name, "project_id": self.project_id},
        )

    def enable(self) -> None:
        self.config.enabled = True
        self.initialize()

    def disable(self) -> None:
        """Stop scheduling writes. A write already on the wire runs to completion."""
        self.config.enabled = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._writer.cancel()
        dropped = self._discard_pending()
        if dropped:
            logger.warning(
                "Discarding pending writes on disable",
                extra={"middleware": self.name, "project_id": self.project_id, "pending": dropped},
            )

    def update_config(
        self,
        *,
        project_id: str | None = None,
        enabled: bool | None = None,
        debounce_delay: float | None = None,
    ) -> None:
        if debounce_delay is not None:
            self.config.debounce_delay = debounce_delay
            self._writer.delay = debounce_delay
        if project_id is not None and project_id != self.config.project_id:
            self._writer.cancel()
            dropped = self._discard_pending()
            logger.info(
                "Persistence middleware switched project",
                extra={
                    "middleware": self.name,
                    "from_project_id": self.config.project_id,
                    "to_project_id": project_id,
                    "dropped": dropped,
                },
            )
            self.config.project_id = project_id
            self._forget_server_ids()
            self._reset_baseline()
        if enabled is not None and enabled != self.config.enabled:
            if enabled:
                self.enable()
            else:
                self.disable()

    async def flush(self) -> None:
        await self._writer.flush()

    def take_unsaved(self) -> list[UnsavedChange]:
        changes = list(self.unsaved)
        self.unsaved.clear()
        return changes

    def _forget_server_ids(self) -> None:
        """Local-to-server id mappings belong to one project."""
        self.server_ids.clear()

    def _is_active(self, project_id: str) -> bool:
        if self._active_project is not None and self._active_project() != project_id:
            return False
        return self.config.project_id == project_id

    def _record_failure(
        self,
        *,
        project_id: str,
        kind: str,
        object_id: str,
        exc: ApiCallError,
        replay: Callable[[], Awaitable[Any]],
    ) -> None:
        context = {
            "middleware": self.name,
            "project_id": project_id,
            "kind": kind,
            "object_id": object_id,
            "status_code": exc.status_code,
        }
        if not exc.is_retryable:
            logger.error("Dropping write after terminal failure", extra={**context, "error": str(exc)})
            return
        logger.warning("Write failed after retries; kept as unsaved", extra={**context, "error": str(exc)})
        self.unsaved.append(
            UnsavedChange(project_id=project_id, kind=kind, object_id=object_id, error=str(exc), replay=replay)
        )

    def _select(self, state: Any) -> Any:
        raise NotImplementedError

    def _on_change(self, current: Any, previous: Any) -> None:
        raise NotImplementedError

    def _reset_baseline(self) -> None:
        raise NotImplementedError

    def _discard_pending(self) -> int:
        raise NotImplementedError

    async def _flush(self) -> None:
        raise NotImplementedError
