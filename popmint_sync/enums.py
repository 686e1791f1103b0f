from enum import Enum


class MessageRoleEnum(str, Enum):
    user = "user"
    assistant = "assistant"


class MessageTypeEnum(str, Enum):
    text = "text"
    ad_generation = "ad_generation"
    agent_progress = "agent_progress"
    agent_output = "agent_output"
    agent_bubble = "agent_bubble"
    temporary_status = "temporary_status"
    ad_step_complete = "ad_step_complete"
    error = "error"


class MessageStatusEnum(str, Enum):
    completed = "completed"
    error = "error"


class AdGenerationStageEnum(str, Enum):
    plan = "plan"
    page_scrape_started = "page_scrape_started"
    page_scrape_done = "page_scrape_done"
    image_extraction_started = "image_extraction_started"
    image_extraction_done = "image_extraction_done"
    research_started = "research_started"
    research_done = "research_done"
    concepts_started = "concepts_started"
    concepts_done = "concepts_done"
    ideas_started = "ideas_started"
    ideas_done = "ideas_done"
    images_started = "images_started"
    image_generation_progress = "image_generation_progress"
    images_done = "images_done"
    done = "done"
    error = "error"


class CanvasObjectTypeEnum(str, Enum):
    image = "image"
    text = "text"
    shape = "shape"


class CanvasOpKindEnum(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"


class WriterStateEnum(str, Enum):
    idle = "idle"
    scheduled = "scheduled"
    writing = "writing"


class ManagerStateEnum(str, Enum):
    uninitialized = "uninitialized"
    initialized = "initialized"
