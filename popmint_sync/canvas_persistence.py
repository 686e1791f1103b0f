from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable

from popmint_sync.api_client import ApiClient
from popmint_sync.config import settings
from popmint_sync.enums import CanvasOpKindEnum
from popmint_sync.errors import ApiCallError
from popmint_sync.middleware import PersistenceMiddleware
from popmint_sync.offline_queue import UnsavedChange
from popmint_sync.remote import create_canvas_object, delete_canvas_object, update_canvas_object
from popmint_sync.schemas import CanvasObject, is_local_id
from popmint_sync.stores import CanvasState, CanvasStore

logger = logging.getLogger(__name__)


@dataclass
class CanvasPersistenceConfig:
    project_id: str
    enabled: bool = True
    debounce_delay: float = field(default_factory=lambda: settings.POPMINT_CANVAS_DEBOUNCE_SECONDS)


@dataclass(frozen=True)
class CanvasOp:
    kind: CanvasOpKindEnum
    object_id: str
    obj: CanvasObject


class CanvasPersistenceMiddleware(PersistenceMiddleware[CanvasStore]):
    """Mirrors canvas object adds, edits and deletes to the backend.

    The middleware diffs the store against the last state it saw and keeps at
    most one pending operation per object:

    - create + update -> create with the latest fields
    - create + delete -> nothing
    - update + delete -> delete
    - delete + re-add (undo) -> update, or a fresh create once the DELETE went out

    Objects created locally keep their ``local-`` id in the store; the id the
    server assigns is tracked in ``server_ids`` and used for later PATCH and
    DELETE calls.
    """

    name = "canvas"

    def __init__(
        self,
        store: CanvasStore,
        api: ApiClient,
        config: CanvasPersistenceConfig,
        *,
        unsaved: list[UnsavedChange] | None = None,
        active_project: Callable[[], str] | None = None,
    ) -> None:
        super().__init__(store, api, config, unsaved=unsaved, active_project=active_project)
        self._baseline: dict[str, CanvasObject] = {}
        self._pending: dict[str, CanvasOp] = {}
        self._deleted: set[str] = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def pending_ops(self) -> list[CanvasOp]:
        return list(self._pending.values())

    def _select(self, state: CanvasState) -> tuple[CanvasObject, ...]:
        return state.objects

    def _reset_baseline(self) -> None:
        self._baseline = {obj.id: obj for obj in self.store.objects}

    def _discard_pending(self) -> int:
        dropped = len(self._pending)
        self._pending.clear()
        return dropped

    def _forget_server_ids(self) -> None:
        super()._forget_server_ids()
        self._deleted.clear()

    def _on_change(self, current: tuple[CanvasObject, ...], previous: tuple[CanvasObject, ...]) -> None:
        latest = {obj.id: obj for obj in current}
        changed = False
        for object_id, obj in latest.items():
            before = self._baseline.get(object_id)
            if before is None:
                self._queue_create(obj)
                changed = True
            elif before != obj:
                self._queue_update(obj)
                changed = True
        for object_id, obj in self._baseline.items():
            if object_id not in latest:
                self._queue_delete(obj)
                changed = True
        self._baseline = latest
        if changed:
            logger.debug(
                "Canvas write scheduled",
                extra={"project_id": self.project_id, "pending": len(self._pending)},
            )
            self._writer.touch()

    def _queue_create(self, obj: CanvasObject) -> None:
        existing = self._pending.get(obj.id)
        if existing is not None and existing.kind == CanvasOpKindEnum.delete:
            # Re-added before the delete went out (undo); the row still exists.
            self._pending[obj.id] = CanvasOp(CanvasOpKindEnum.update, obj.id, obj)
        elif is_local_id(obj.id) or obj.id in self._deleted:
            # Never saved, or its row is already gone (undo after a flushed delete).
            self._pending[obj.id] = CanvasOp(CanvasOpKindEnum.create, obj.id, obj)
        else:
            self._pending[obj.id] = CanvasOp(CanvasOpKindEnum.update, obj.id, obj)

    def _queue_update(self, obj: CanvasObject) -> None:
        existing = self._pending.get(obj.id)
        if existing is not None and existing.kind == CanvasOpKindEnum.create:
            self._pending[obj.id] = replace(existing, obj=obj)
        else:
            self._pending[obj.id] = CanvasOp(CanvasOpKindEnum.update, obj.id, obj)

    def _queue_delete(self, obj: CanvasObject) -> None:
        existing = self._pending.get(obj.id)
        if existing is not None and existing.kind == CanvasOpKindEnum.create:
            del self._pending[obj.id]
        else:
            self._pending[obj.id] = CanvasOp(CanvasOpKindEnum.delete, obj.id, obj)

    async def _flush(self) -> None:
        project_id = self.project_id
        ops = list(self._pending.values())
        self._pending.clear()
        for op in ops:
            try:
                await self._apply(project_id, op)
            except ApiCallError as exc:
                self._record_failure(
                    project_id=project_id,
                    kind=f"canvas.{op.kind.value}",
                    object_id=op.object_id,
                    exc=exc,
                    replay=lambda op=op: self._replay(project_id, op),
                )

    async def _apply(self, project_id: str, op: CanvasOp) -> None:
        if op.kind == CanvasOpKindEnum.create:
            saved = await create_canvas_object(self.api, project_id, op.obj)
            if not self._is_active(project_id):
                logger.warning(
                    "Dropping canvas create response for inactive project",
                    extra={"project_id": project_id, "active_project_id": self.project_id, "object_id": op.object_id},
                )
                return
            self.server_ids[op.object_id] = saved.id
            self._deleted.discard(op.object_id)
            return

        server_id = self._server_id(op.object_id)
        if server_id is None:
            logger.debug(
                "Skipping canvas write for object never saved",
                extra={"project_id": project_id, "object_id": op.object_id, "kind": op.kind.value},
            )
            return
        if op.kind == CanvasOpKindEnum.update:
            await update_canvas_object(self.api, project_id, server_id, op.obj)
        else:
            await delete_canvas_object(self.api, project_id, server_id)
            if self._is_active(project_id):
                self.server_ids.pop(op.object_id, None)
                self._deleted.add(op.object_id)

    async def _replay(self, project_id: str, op: CanvasOp) -> None:
        if self._is_active(project_id) and op.kind != CanvasOpKindEnum.delete:
            latest = self.store.get_object(op.object_id)
            if latest is None:
                logger.info(
                    "Skipping replay for object deleted since",
                    extra={"project_id": project_id, "object_id": op.object_id},
                )
                return
            op = replace(op, obj=latest)
        await self._apply(project_id, op)

    def _server_id(self, object_id: str) -> str | None:
        if object_id in self.server_ids:
            return self.server_ids[object_id]
        if is_local_id(object_id) or object_id in self._deleted:
            return None
        return object_id
