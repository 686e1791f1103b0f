from __future__ import annotations

import asyncio

from popmint_sync.enums import CanvasObjectTypeEnum, MessageStatusEnum
from popmint_sync.projects import ProjectsApi
from popmint_sync.schemas import ProjectCreate, ProjectUpdate
from popmint_sync.stores import CanvasStore, ChatStore, ProjectStore


def test_selector_listeners_fire_only_when_slice_changes():
    store = ChatStore()
    message_changes: list[tuple[int, int]] = []
    status_changes: list[tuple[str, str]] = []
    store.subscribe(
        lambda current, previous: message_changes.append((len(current), len(previous))),
        lambda state: state.messages,
    )
    unsubscribe = store.subscribe(
        lambda current, previous: status_changes.append((current, previous)),
        lambda state: state.agent_status,
    )

    store.add_message(role="user", content="hello")
    store.set_agent_status("running")
    store.set_agent_status("running")
    unsubscribe()
    store.set_agent_status("idle")

    assert message_changes == [(1, 0)]
    assert status_changes == [("running", "idle")]


def test_update_message_revalidates_fields():
    store = ChatStore()
    message = store.add_message(role="assistant", type="agent_output", content="draft")

    updated = store.update_message(message.id, content="final", status="completed")

    assert updated is not None
    assert updated.status == MessageStatusEnum.completed
    assert store.messages[0].content == "final"
    assert store.update_message("missing", content="x") is None


def test_add_image_scales_to_max_width():
    store = CanvasStore()

    obj = store.add_image("https://cdn.example/big.png", width=1600, height=900)

    assert obj.type == CanvasObjectTypeEnum.image
    assert obj.width == 400
    assert obj.height == 225
    assert (obj.x, obj.y) == (20, 20)


def test_add_text_uses_default_style():
    obj = CanvasStore().add_text("Buy now")

    assert obj.props == {"text": "Buy now", "fontSize": 16, "fontFamily": "Arial", "fill": "#000000"}


def test_undo_redo_walks_history():
    store = CanvasStore()
    first = store.add_text("one")
    store.update_object(first.id, x=300)

    store.undo()
    assert store.get_object(first.id).x == 100
    store.undo()
    assert store.objects == ()
    store.undo()
    assert store.objects == ()
    store.redo()
    store.redo()
    assert store.get_object(first.id).x == 300
    store.redo()
    assert store.state.history_step == 2


def test_new_edit_after_undo_discards_redo_branch():
    store = CanvasStore()
    store.add_text("one")
    store.undo()
    second = store.add_text("two")
    store.redo()

    assert [obj.id for obj in store.objects] == [second.id]
    assert len(store.state.history) == 2


def test_selection_helpers():
    store = CanvasStore()
    image = store.add_image("https://cdn.example/a.png")
    text = store.add_text("caption")

    store.select_all_objects()
    assert store.state.selected_object_ids == (image.id,)
    store.toggle_object_selection(text.id)
    assert store.is_object_selected(text.id)
    store.toggle_object_selection(image.id)
    assert store.state.selected_object_ids == (text.id,)
    store.delete_object(text.id)
    assert store.state.selected_object_ids == ()
    store.select_object([image.id])
    store.clear_selection()
    assert store.state.selected_object_ids == ()
    store.set_zoom_level(1.5)
    assert store.state.zoom_level == 1.5


def test_project_store_fetch_uses_freshness_window(backend, api, clock):
    backend.seed_project("Spring launch")

    async def scenario() -> ProjectStore:
        store = ProjectStore(ProjectsApi(api), clock=clock)
        await store.fetch_projects()
        await store.fetch_projects()
        clock.advance(61)
        await store.fetch_projects()
        await store.fetch_projects(force=True)
        return store

    store = asyncio.run(scenario())

    assert [project.name for project in store.state.projects] == ["Spring launch"]
    assert backend.count("GET", "/api/projects") == 3
    assert store.state.is_loading is False


def test_project_store_crud_round(backend, api, clock):
    async def scenario() -> tuple[ProjectStore, str]:
        store = ProjectStore(ProjectsApi(api), clock=clock)
        created = await store.create_project(ProjectCreate(name="Holiday"))
        assert created is not None
        assert created.user_id == "default-user"
        store.set_current_project(created.id)
        renamed = await store.update_project(created.id, ProjectUpdate(name="Holiday 2024"))
        assert renamed is not None and renamed.name == "Holiday 2024"
        assert store.get_project(created.id).name == "Holiday 2024"
        assert await store.delete_project(created.id) is True
        return store, created.id

    store, project_id = asyncio.run(scenario())

    assert store.state.projects == ()
    assert store.current_project_id is None
    assert backend.sent("PATCH", f"/api/projects/{project_id}") == [{"name": "Holiday 2024"}]
    assert backend.sent("POST", "/api/projects")[0]["user_id"] == "default-user"


def test_project_store_records_errors_instead_of_raising(backend, api, clock):
    backend.fail("POST", "/api/projects", 400)
    backend.fail("DELETE", "/api/projects/gone", 404)

    async def scenario() -> tuple[ProjectStore, object, bool]:
        store = ProjectStore(ProjectsApi(api), clock=clock)
        created = await store.create_project(ProjectCreate(name="Broken"))
        first_error = store.state.error
        deleted = await store.delete_project("gone")
        assert first_error is not None and "400" in first_error
        return store, created, deleted

    store, created, deleted = asyncio.run(scenario())

    assert created is None
    assert deleted is False
    assert "404" in store.state.error
    store.clear_error()
    assert store.state.error is None
