from .api_client import ApiClient, RetryOptions, with_retry
from .canvas_persistence import CanvasPersistenceConfig, CanvasPersistenceMiddleware
from .chat_cache import ChatCache
from .chat_persistence import (
    ChatPersistenceConfig,
    ChatPersistenceMiddleware,
    analyze_message_persistability,
    should_persist_message,
)
from .errors import ApiCallError, PersistenceConfigError, is_retryable_status_code
from .hydration import hydrate_canvas_store, hydrate_chat_store
from .manager import PersistenceContext, PersistenceManager, PersistenceManagerConfig
from .offline_queue import OfflineQueue, UnsavedChange
from .remote import load_canvas_objects, load_chat_messages
from .stores import CanvasStore, ChatStore, ProjectStore

__all__ = [
    "ApiCallError",
    "ApiClient",
    "CanvasPersistenceConfig",
    "CanvasPersistenceMiddleware",
    "CanvasStore",
    "ChatCache",
    "ChatPersistenceConfig",
    "ChatPersistenceMiddleware",
    "ChatStore",
    "OfflineQueue",
    "PersistenceConfigError",
    "PersistenceContext",
    "PersistenceManager",
    "PersistenceManagerConfig",
    "ProjectStore",
    "RetryOptions",
    "UnsavedChange",
    "analyze_message_persistability",
    "hydrate_canvas_store",
    "hydrate_chat_store",
    "is_retryable_status_code",
    "load_canvas_objects",
    "load_chat_messages",
    "should_persist_message",
    "with_retry",
]
