from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from popmint_sync.enums import (
    AdGenerationStageEnum,
    CanvasObjectTypeEnum,
    MessageRoleEnum,
    MessageStatusEnum,
    MessageTypeEnum,
)

LOCAL_ID_PREFIX = "local-"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_local_id() -> str:
    return f"{LOCAL_ID_PREFIX}{uuid4()}"


def is_local_id(value: str) -> bool:
    return value.startswith(LOCAL_ID_PREFIX)


class AdGenerationData(BaseModel):
    """Progress of an in-flight ad generation job, embedded in a chat message.

    Never sent to the server; it is rebuilt from the job stream or dropped when
    the session ends.
    """

    model_config = ConfigDict(frozen=True)

    job_id: str = Field(min_length=1)
    stage: AdGenerationStageEnum
    progress: int = Field(default=0, ge=0, le=100)
    message: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)


class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_local_id, min_length=1)
    role: MessageRoleEnum
    type: MessageTypeEnum = MessageTypeEnum.text
    content: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    ad_data: AdGenerationData | None = None
    image_urls: list[str] = Field(default_factory=list)
    status: MessageStatusEnum | None = None
    is_temporary: bool = False


class CanvasObject(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_local_id, min_length=1)
    project_id: str | None = None
    type: CanvasObjectTypeEnum
    x: float
    y: float
    width: float | None = None
    height: float | None = None
    rotation: float = 0
    src: str | None = None
    props: dict[str, Any] = Field(default_factory=dict)


class Project(BaseModel):
    id: str
    name: str
    description: str = ""
    thumbnail_url: str | None = None
    user_id: str
    session_id: str | None = None
    created_at: datetime
    updated_at: datetime


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1)
    description: str = ""
    thumbnail_url: str | None = None
    user_id: str | None = None
    session_id: str | None = None


class ProjectUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    thumbnail_url: str | None = None
    session_id: str | None = None


# Wire shapes returned by the backend. Rows stay snake_case and are mapped
# onto the local models by the hydration layer.


class ChatMessageRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    role: MessageRoleEnum
    content: str
    message_type: MessageTypeEnum | None = None
    image_urls: list[str] | None = None
    created_at: datetime

    def to_message(self) -> ChatMessage:
        return ChatMessage(
            id=self.id,
            role=self.role,
            type=self.message_type or MessageTypeEnum.text,
            content=self.content,
            timestamp=self.created_at,
            image_urls=list(self.image_urls or []),
        )


class CanvasObjectRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    project_id: str | None = None
    type: CanvasObjectTypeEnum
    x: float
    y: float
    width: float | None = None
    height: float | None = None
    rotation: float | None = None
    src: str | None = None
    props: dict[str, Any] | None = None
    updated_at: datetime | None = None

    def to_object(self) -> CanvasObject:
        return CanvasObject(
            id=self.id,
            project_id=self.project_id,
            type=self.type,
            x=self.x,
            y=self.y,
            width=self.width,
            height=self.height,
            rotation=self.rotation or 0,
            src=self.src,
            props=dict(self.props or {}),
        )


class ChatMessageCreate(BaseModel):
    role: MessageRoleEnum
    content: str
    image_urls: list[str] = Field(default_factory=list)
    message_type: MessageTypeEnum = MessageTypeEnum.text

    @classmethod
    def from_message(cls, message: ChatMessage) -> "ChatMessageCreate":
        return cls(
            role=message.role,
            content=message.content,
            image_urls=list(message.image_urls),
            message_type=message.type,
        )


class CanvasObjectWrite(BaseModel):
    type: CanvasObjectTypeEnum
    x: float
    y: float
    width: float | None = None
    height: float | None = None
    rotation: float = 0
    src: str | None = None
    props: dict[str, Any] = Field(default_factory=dict)

    @field_validator("props")
    @classmethod
    def drop_empty_props(cls, value: dict[str, Any]) -> dict[str, Any]:
        return {key: item for key, item in value.items() if item is not None}

    @classmethod
    def from_object(cls, obj: CanvasObject) -> "CanvasObjectWrite":
        return cls(
            type=obj.type,
            x=obj.x,
            y=obj.y,
            width=obj.width,
            height=obj.height,
            rotation=obj.rotation,
            src=obj.src,
            props=dict(obj.props),
        )


class ChatMessagesEnvelope(BaseModel):
    messages: list[dict[str, Any]] = Field(default_factory=list)


class CanvasObjectsEnvelope(BaseModel):
    objects: list[dict[str, Any]] = Field(default_factory=list)
