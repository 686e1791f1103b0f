"""Standalone per-collection hydration.

Each helper loads one collection and replaces a store's contents on success.
`PersistenceManager.initialize` loads both collections itself so it can apply
them all-or-nothing.
"""

from __future__ import annotations

import logging

from popmint_sync.api_client import ApiClient
from popmint_sync.errors import ApiCallError
from popmint_sync.remote import load_canvas_objects, load_chat_messages
from popmint_sync.stores import CanvasStore, ChatStore

logger = logging.getLogger(__name__)


async def hydrate_chat_store(store: ChatStore, api: ApiClient, project_id: str) -> bool:
    """Replace the chat store's messages with the server's, oldest first."""
    try:
        messages = await load_chat_messages(api, project_id)
    except ApiCallError:
        logger.exception("Failed to hydrate chat store", extra={"project_id": project_id})
        return False
    store.set_messages(messages)
    return True


async def hydrate_canvas_store(store: CanvasStore, api: ApiClient, project_id: str) -> bool:
    """Replace the canvas store's objects with the server's, in update order."""
    try:
        objects = await load_canvas_objects(api, project_id)
    except ApiCallError:
        logger.exception("Failed to hydrate canvas store", extra={"project_id": project_id})
        return False
    store.set_objects(objects)
    return True
