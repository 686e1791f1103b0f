"""In-memory observable stores backing the playground UI.

Each store holds an immutable state snapshot. Mutations swap the snapshot and
notify subscribers with ``(current, previous)`` for the slice they selected,
only when that slice changed.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Generic, Iterable, TypeVar

from popmint_sync.config import settings
from popmint_sync.enums import CanvasObjectTypeEnum, MessageRoleEnum, MessageTypeEnum
from popmint_sync.errors import ApiCallError
from popmint_sync.projects import ProjectsApi
from popmint_sync.schemas import CanvasObject, ChatMessage, Project, ProjectCreate, ProjectUpdate

logger = logging.getLogger(__name__)

S = TypeVar("S")
Listener = Callable[[Any, Any], None]
Selector = Callable[[Any], Any]

_MAX_IMAGE_WIDTH = 400


def _identity(state: Any) -> Any:
    return state


class Store(Generic[S]):
    def __init__(self, state: S) -> None:
        self._state = state
        self._listeners: list[tuple[Selector, Listener]] = []

    @property
    def state(self) -> S:
        return self._state

    def subscribe(self, listener: Listener, selector: Selector | None = None) -> Callable[[], None]:
        entry = (selector or _identity, listener)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _set(self, **changes: Any) -> None:
        previous = self._state
        self._state = replace(previous, **changes)
        for selector, listener in list(self._listeners):
            current_slice = selector(self._state)
            previous_slice = selector(previous)
            if current_slice is previous_slice or current_slice == previous_slice:
                continue
            listener(current_slice, previous_slice)


@dataclass(frozen=True)
class ChatState:
    messages: tuple[ChatMessage, ...] = ()
    agent_status: str = "idle"


class ChatStore(Store[ChatState]):
    def __init__(self) -> None:
        super().__init__(ChatState())

    @property
    def messages(self) -> tuple[ChatMessage, ...]:
        return self.state.messages

    def add_message(
        self,
        *,
        role: MessageRoleEnum | str,
        content: str = "",
        type: MessageTypeEnum | str = MessageTypeEnum.text,  # noqa: A002
        **fields: Any,
    ) -> ChatMessage:
        message = ChatMessage(role=role, content=content, type=type, **fields)
        self._set(messages=self.state.messages + (message,))
        return message

    def update_message(self, message_id: str, **updates: Any) -> ChatMessage | None:
        updated: ChatMessage | None = None
        messages: list[ChatMessage] = []
        for message in self.state.messages:
            if message.id == message_id:
                updated = ChatMessage.model_validate({**message.model_dump(), **updates})
                messages.append(updated)
            else:
                messages.append(message)
        if updated is None:
            logger.warning("Cannot update unknown chat message", extra={"message_id": message_id})
            return None
        self._set(messages=tuple(messages))
        return updated

    def set_messages(self, messages: Iterable[ChatMessage]) -> None:
        self._set(messages=tuple(messages))

    def set_agent_status(self, status: str) -> None:
        self._set(agent_status=status)


@dataclass(frozen=True)
class CanvasState:
    objects: tuple[CanvasObject, ...] = ()
    history: tuple[tuple[CanvasObject, ...], ...] = ((),)
    history_step: int = 0
    selected_object_ids: tuple[str, ...] = ()
    zoom_level: float = 1.0


class CanvasStore(Store[CanvasState]):
    def __init__(self) -> None:
        super().__init__(CanvasState())

    @property
    def objects(self) -> tuple[CanvasObject, ...]:
        return self.state.objects

    def get_object(self, object_id: str) -> CanvasObject | None:
        for obj in self.state.objects:
            if obj.id == object_id:
                return obj
        return None

    def add_object(self, *, type: CanvasObjectTypeEnum | str, x: float, y: float, **fields: Any) -> CanvasObject:  # noqa: A002
        obj = CanvasObject(type=type, x=x, y=y, **fields)
        self._commit(self.state.objects + (obj,))
        return obj

    def add_image(
        self,
        src: str,
        x: float = 20,
        y: float = 20,
        *,
        width: float | None = None,
        height: float | None = None,
    ) -> CanvasObject:
        if width and height and width > _MAX_IMAGE_WIDTH:
            scale = _MAX_IMAGE_WIDTH / width
            width, height = width * scale, height * scale
        return self.add_object(type=CanvasObjectTypeEnum.image, x=x, y=y, width=width, height=height, src=src)

    def add_text(self, text: str, x: float = 100, y: float = 100) -> CanvasObject:
        return self.add_object(
            type=CanvasObjectTypeEnum.text,
            x=x,
            y=y,
            props={"text": text, "fontSize": 16, "fontFamily": "Arial", "fill": "#000000"},
        )

    def update_object(self, object_id: str, **updates: Any) -> CanvasObject | None:
        updated: CanvasObject | None = None
        objects: list[CanvasObject] = []
        for obj in self.state.objects:
            if obj.id == object_id:
                updated = CanvasObject.model_validate({**obj.model_dump(), **updates})
                objects.append(updated)
            else:
                objects.append(obj)
        if updated is None:
            logger.warning("Cannot update unknown canvas object", extra={"object_id": object_id})
            return None
        self._commit(tuple(objects))
        return updated

    def delete_object(self, ids: str | Iterable[str]) -> None:
        doomed = {ids} if isinstance(ids, str) else set(ids)
        objects = tuple(obj for obj in self.state.objects if obj.id not in doomed)
        selected = tuple(obj_id for obj_id in self.state.selected_object_ids if obj_id not in doomed)
        self._commit(objects, selected_object_ids=selected)

    def set_objects(self, objects: Iterable[CanvasObject]) -> None:
        loaded = tuple(objects)
        self._set(objects=loaded, history=(loaded,), history_step=0, selected_object_ids=())

    def select_object(self, ids: Iterable[str] | None) -> None:
        self._set(selected_object_ids=tuple(ids or ()))

    def select_all_objects(self) -> None:
        self._set(
            selected_object_ids=tuple(
                obj.id for obj in self.state.objects if obj.type == CanvasObjectTypeEnum.image
            )
        )

    def clear_selection(self) -> None:
        self._set(selected_object_ids=())

    def toggle_object_selection(self, object_id: str) -> None:
        selected = self.state.selected_object_ids
        if object_id in selected:
            self._set(selected_object_ids=tuple(obj_id for obj_id in selected if obj_id != object_id))
        else:
            self._set(selected_object_ids=selected + (object_id,))

    def is_object_selected(self, object_id: str) -> bool:
        return object_id in self.state.selected_object_ids

    def set_zoom_level(self, level: float) -> None:
        self._set(zoom_level=level)

    def undo(self) -> None:
        step = self.state.history_step
        if step <= 0:
            return
        self._set(objects=self.state.history[step - 1], history_step=step - 1, selected_object_ids=())

    def redo(self) -> None:
        step = self.state.history_step
        if step >= len(self.state.history) - 1:
            return
        self._set(objects=self.state.history[step + 1], history_step=step + 1, selected_object_ids=())

    def _commit(self, objects: tuple[CanvasObject, ...], **changes: Any) -> None:
        step = self.state.history_step
        history = self.state.history[: step + 1] + (objects,)
        self._set(objects=objects, history=history, history_step=step + 1, **changes)


@dataclass(frozen=True)
class ProjectState:
    projects: tuple[Project, ...] = ()
    current_project_id: str | None = None
    is_loading: bool = False
    error: str | None = None
    last_fetched: float | None = field(default=None)


class ProjectStore(Store[ProjectState]):
    """Project list plus the active project id.

    Network failures land in ``state.error`` instead of raising, so callers can
    render them next to the list.
    """

    def __init__(
        self,
        projects_api: ProjectsApi | None = None,
        *,
        cache_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(ProjectState())
        self.projects_api = projects_api
        self.cache_seconds = settings.POPMINT_PROJECTS_CACHE_SECONDS if cache_seconds is None else cache_seconds
        self._clock = clock

    @property
    def current_project_id(self) -> str | None:
        return self.state.current_project_id

    def set_current_project(self, project_id: str | None) -> None:
        self._set(current_project_id=project_id)

    def get_project(self, project_id: str) -> Project | None:
        for project in self.state.projects:
            if project.id == project_id:
                return project
        return None

    def clear_error(self) -> None:
        self._set(error=None)

    async def fetch_projects(self, *, force: bool = False) -> None:
        last_fetched = self.state.last_fetched
        if (
            not force
            and last_fetched is not None
            and self.state.projects
            and self._clock() - last_fetched < self.cache_seconds
        ):
            logger.debug("Using cached projects", extra={"count": len(self.state.projects)})
            return

        self._set(is_loading=True, error=None)
        try:
            projects = await self._require_api().list_projects()
        except ApiCallError as exc:
            logger.warning("Failed to fetch projects", extra={"error": str(exc)})
            self._set(is_loading=False, error=str(exc) or "Failed to fetch projects")
            return
        self._set(projects=tuple(projects), is_loading=False, last_fetched=self._clock())

    async def create_project(self, payload: ProjectCreate) -> Project | None:
        self._set(is_loading=True, error=None)
        try:
            project = await self._require_api().create_project(payload)
        except ApiCallError as exc:
            logger.warning("Failed to create project", extra={"error": str(exc)})
            self._set(is_loading=False, error=str(exc) or "Failed to create project")
            return None
        self._set(
            projects=(project,) + self.state.projects,
            is_loading=False,
            last_fetched=self._clock(),
        )
        return project

    async def update_project(self, project_id: str, payload: ProjectUpdate) -> Project | None:
        self._set(is_loading=True, error=None)
        try:
            project = await self._require_api().update_project(project_id, payload)
        except ApiCallError as exc:
            logger.warning("Failed to update project", extra={"project_id": project_id, "error": str(exc)})
            self._set(is_loading=False, error=str(exc) or "Failed to update project")
            return None
        self._set(
            projects=tuple(project if existing.id == project_id else existing for existing in self.state.projects),
            is_loading=False,
            last_fetched=self._clock(),
        )
        return project

    async def delete_project(self, project_id: str) -> bool:
        self._set(is_loading=True, error=None)
        try:
            await self._require_api().delete_project(project_id)
        except ApiCallError as exc:
            logger.warning("Failed to delete project", extra={"project_id": project_id, "error": str(exc)})
            self._set(is_loading=False, error=str(exc) or "Failed to delete project")
            return False
        changes: dict[str, Any] = {
            "projects": tuple(project for project in self.state.projects if project.id != project_id),
            "is_loading": False,
        }
        if self.state.current_project_id == project_id:
            changes["current_project_id"] = None
        self._set(**changes)
        return True

    def _require_api(self) -> ProjectsApi:
        if self.projects_api is None:
            raise RuntimeError("ProjectStore has no ProjectsApi configured")
        return self.projects_api
