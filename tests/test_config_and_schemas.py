from __future__ import annotations

from datetime import datetime

import pytest
from pydantic import ValidationError

from popmint_sync.config import Settings
from popmint_sync.enums import MessageTypeEnum
from popmint_sync.schemas import (
    CanvasObject,
    CanvasObjectRow,
    CanvasObjectWrite,
    ChatMessage,
    ChatMessageCreate,
    ChatMessageRow,
    is_local_id,
)


def test_settings_defaults():
    settings = Settings(POPMINT_API_BASE_URL="http://localhost:3000/")

    assert settings.POPMINT_API_BASE_URL == "http://localhost:3000"
    assert settings.POPMINT_CHAT_DEBOUNCE_SECONDS == 0.5
    assert settings.POPMINT_CANVAS_DEBOUNCE_SECONDS == 0.1
    assert settings.POPMINT_CHAT_DEDUPE_INTERVAL_SECONDS == 2.0
    assert settings.POPMINT_PROJECTS_CACHE_SECONDS == 60


@pytest.mark.parametrize(
    "overrides",
    [
        {"POPMINT_API_BASE_URL": "   "},
        {"POPMINT_API_BASE_URL": "ftp://example.test"},
        {"POPMINT_CHAT_DEBOUNCE_SECONDS": 0},
        {"POPMINT_CANVAS_DEBOUNCE_SECONDS": -0.1},
        {"POPMINT_REQUEST_TIMEOUT_SECONDS": 0},
        {"POPMINT_RETRY_MAX_RETRIES": -1},
        {"POPMINT_RETRY_DELAY_SECONDS": -1},
    ],
)
def test_settings_reject_invalid_values(overrides):
    with pytest.raises(ValidationError):
        Settings(**overrides)


def test_new_messages_get_local_ids():
    message = ChatMessage(role="user", content="hello")

    assert is_local_id(message.id)
    assert message.type == MessageTypeEnum.text
    assert message.image_urls == []
    assert message.timestamp.tzinfo is not None


def test_chat_row_maps_to_message():
    row = ChatMessageRow.model_validate(
        {
            "id": "7b0c",
            "role": "assistant",
            "content": "done",
            "message_type": "agent_output",
            "image_urls": None,
            "created_at": "2024-03-01T10:00:00Z",
            "project_id": "ignored",
        }
    )

    message = row.to_message()

    assert message.id == "7b0c"
    assert message.type == MessageTypeEnum.agent_output
    assert message.image_urls == []
    assert message.timestamp == datetime.fromisoformat("2024-03-01T10:00:00+00:00")


def test_chat_create_payload_uses_wire_names():
    message = ChatMessage(role="user", content="hello", image_urls=["https://cdn.example/a.png"])

    assert ChatMessageCreate.from_message(message).model_dump(mode="json") == {
        "role": "user",
        "content": "hello",
        "image_urls": ["https://cdn.example/a.png"],
        "message_type": "text",
    }


def test_canvas_row_defaults_rotation_and_props():
    obj = CanvasObjectRow.model_validate(
        {"id": "o1", "type": "shape", "x": 1, "y": 2, "rotation": None, "props": None}
    ).to_object()

    assert obj.rotation == 0
    assert obj.props == {}


def test_canvas_write_drops_empty_props():
    obj = CanvasObject(type="text", x=0, y=0, props={"text": "Hi", "stroke": None, "fontSize": 18})

    payload = CanvasObjectWrite.from_object(obj).model_dump(mode="json")

    assert payload["props"] == {"text": "Hi", "fontSize": 18}
    assert payload["type"] == "text"
    assert "id" not in payload
