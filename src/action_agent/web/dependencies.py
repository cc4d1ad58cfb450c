"""FastAPI dependency injection helpers.

Extracts shared dependencies from app.state for use in route handlers.
All dependencies are initialized during the FastAPI lifespan and stored
on app.state.

Usage:
    from action_agent.web.dependencies import get_store

    @router.get("/users/{user_id}/memories")
    async def list_memories(user_id: str, store: DatabaseStore = Depends(get_store)):
        return await store.list_memories(user_id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import HTTPException, Request

if TYPE_CHECKING:
    from action_agent.db.store import DatabaseStore
    from action_agent.engine.ingest import IngestService


def get_store(request: Request) -> DatabaseStore:
    """Get the shared DatabaseStore from app state."""
    store = request.app.state.store
    if store is None:
        raise HTTPException(status_code=503, detail="Database not available (config error)")
    return store


def get_ingest_service(request: Request) -> IngestService:
    """Get the IngestService from app state."""
    service = request.app.state.ingest_service
    if service is None:
        raise HTTPException(status_code=503, detail="Extraction not available (config error)")
    return service
