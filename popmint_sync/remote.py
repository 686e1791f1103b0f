"""REST calls for a project's chat messages and canvas objects.

Everything here goes through ``ApiClient.api_call`` and converts between the
backend's snake_case rows and the local models.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from popmint_sync.api_client import ApiClient
from popmint_sync.errors import ApiCallError
from popmint_sync.schemas import (
    CanvasObject,
    CanvasObjectRow,
    CanvasObjectsEnvelope,
    CanvasObjectWrite,
    ChatMessage,
    ChatMessageCreate,
    ChatMessageRow,
    ChatMessagesEnvelope,
)

logger = logging.getLogger(__name__)


def chat_path(project_id: str) -> str:
    return f"/api/projects/{project_id}/chat"


def canvas_path(project_id: str) -> str:
    return f"/api/projects/{project_id}/canvas"


def canvas_object_path(project_id: str, object_id: str) -> str:
    return f"/api/projects/{project_id}/canvas/objects/{object_id}"


def parse_chat_rows(rows: list[dict[str, Any]]) -> list[ChatMessage]:
    messages: list[ChatMessage] = []
    for row in rows:
        try:
            messages.append(ChatMessageRow.model_validate(row).to_message())
        except ValidationError as exc:
            logger.warning(
                "Skipping invalid chat message row",
                extra={"row_id": row.get("id") if isinstance(row, dict) else None, "error": str(exc)},
            )
    return messages


def parse_canvas_rows(rows: list[dict[str, Any]]) -> list[CanvasObject]:
    objects: list[CanvasObject] = []
    for row in rows:
        try:
            objects.append(CanvasObjectRow.model_validate(row).to_object())
        except ValidationError as exc:
            logger.warning(
                "Skipping invalid canvas object row",
                extra={"row_id": row.get("id") if isinstance(row, dict) else None, "error": str(exc)},
            )
    return objects


async def load_chat_messages(api: ApiClient, project_id: str) -> list[ChatMessage]:
    path = chat_path(project_id)
    body = await api.api_call(path)
    try:
        envelope = ChatMessagesEnvelope.model_validate(body)
    except ValidationError as exc:
        raise ApiCallError(message=f"Chat payload validation failed: {exc}", method="GET", path=path) from exc
    messages = parse_chat_rows(envelope.messages)
    logger.info("Loaded chat messages", extra={"project_id": project_id, "count": len(messages)})
    return messages


async def load_canvas_objects(api: ApiClient, project_id: str) -> list[CanvasObject]:
    path = canvas_path(project_id)
    body = await api.api_call(path)
    try:
        envelope = CanvasObjectsEnvelope.model_validate(body)
    except ValidationError as exc:
        raise ApiCallError(message=f"Canvas payload validation failed: {exc}", method="GET", path=path) from exc
    objects = [
        obj if obj.project_id else obj.model_copy(update={"project_id": project_id})
        for obj in parse_canvas_rows(envelope.objects)
    ]
    logger.info("Loaded canvas objects", extra={"project_id": project_id, "count": len(objects)})
    return objects


async def save_chat_message(api: ApiClient, project_id: str, message: ChatMessage) -> ChatMessage:
    path = chat_path(project_id)
    body = await api.api_call(
        path,
        method="POST",
        json=ChatMessageCreate.from_message(message).model_dump(mode="json"),
    )
    try:
        return ChatMessageRow.model_validate(body.get("message")).to_message()
    except ValidationError as exc:
        raise ApiCallError(message=f"Chat save response invalid: {exc}", method="POST", path=path) from exc


async def create_canvas_object(api: ApiClient, project_id: str, obj: CanvasObject) -> CanvasObject:
    path = canvas_path(project_id)
    body = await api.api_call(
        path,
        method="POST",
        json=CanvasObjectWrite.from_object(obj).model_dump(mode="json"),
    )
    try:
        return CanvasObjectRow.model_validate(body.get("object")).to_object()
    except ValidationError as exc:
        raise ApiCallError(message=f"Canvas create response invalid: {exc}", method="POST", path=path) from exc


async def update_canvas_object(api: ApiClient, project_id: str, server_id: str, obj: CanvasObject) -> None:
    await api.api_call(
        canvas_object_path(project_id, server_id),
        method="PATCH",
        json=CanvasObjectWrite.from_object(obj).model_dump(mode="json"),
    )


async def delete_canvas_object(api: ApiClient, project_id: str, server_id: str) -> None:
    await api.api_call(canvas_object_path(project_id, server_id), method="DELETE")
