"""HTTP API routes for the action agent.

All endpoints live on api_router (prefix /api) and use FastAPI dependency
injection to access shared state. Domain exceptions are mapped to HTTP
status codes by register_exception_handlers().
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any, Literal

import anthropic
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from action_agent.core.errors import (
    ActionValidationError,
    InviteCodeError,
    MemoryConflictError,
    UnsupportedChannelError,
    UserNotFoundError,
)
from action_agent.core.logging import get_logger
from action_agent.db.store import DatabaseStore, MemoryStatus, MemoryType
from action_agent.engine.ingest import IngestService
from action_agent.web.app import APP_VERSION
from action_agent.web.dependencies import get_ingest_service, get_store

logger = get_logger(__name__)

api_router = APIRouter(prefix="/api")


# ---------------------------------------------------------------------------
# Pydantic models for API input validation
# ---------------------------------------------------------------------------


class ExtractRequest(BaseModel):
    """Request body for extracting an action from one raw message."""

    user_id: str
    channel: str
    input: Any
    ref_id: str | None = None
    save: bool = True


class MemoryStatusRequest(BaseModel):
    """Request body for updating a memory's status."""

    status: MemoryStatus


class RedeemInviteRequest(BaseModel):
    """Request body for redeeming an invite code."""

    code: str = Field(min_length=1)
    user_id: str | None = None


class RegisterDeviceRequest(BaseModel):
    """Request body for registering or refreshing a push token."""

    device_id: str = Field(min_length=1)
    token: str = Field(min_length=1)
    platform: Literal["ios", "android", "web", "desktop"]
    device_name: str | None = None
    metadata: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain exceptions to HTTP responses."""

    @app.exception_handler(UnsupportedChannelError)
    async def _unsupported_channel(request: Request, exc: UnsupportedChannelError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(UserNotFoundError)
    async def _user_not_found(request: Request, exc: UserNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ActionValidationError)
    async def _invalid_action(request: Request, exc: ActionValidationError):
        return JSONResponse(
            status_code=502,
            content={"detail": str(exc), "errors": exc.errors},
        )

    @app.exception_handler(InviteCodeError)
    async def _invite_code(request: Request, exc: InviteCodeError):
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc), "reason": exc.reason},
        )

    @app.exception_handler(MemoryConflictError)
    async def _memory_conflict(request: Request, exc: MemoryConflictError):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(anthropic.APIError)
    async def _model_error(request: Request, exc: anthropic.APIError):
        return JSONResponse(
            status_code=502,
            content={"detail": f"Model API error: {type(exc).__name__}"},
        )


# ---------------------------------------------------------------------------
# API endpoints
# ---------------------------------------------------------------------------


@api_router.get("/health")
async def health_check(request: Request):
    """Health check endpoint for Docker and monitoring."""
    config_loaded = request.app.state.config is not None
    database_ready = request.app.state.store is not None

    return {
        "status": "healthy" if config_loaded and database_ready else "degraded",
        "config_loaded": config_loaded,
        "database_ready": database_ready,
        "version": APP_VERSION,
    }


@api_router.post("/actions/extract")
async def extract_action(
    body: ExtractRequest,
    service: IngestService = Depends(get_ingest_service),
):
    """Extract one action from a raw message, storing it unless save=false.

    Returns the action in its stored (camelCase) shape, or action=null with
    estimate 0 when the message has nothing to extract.
    """
    try:
        result = await service.ingest(
            user_id=body.user_id,
            channel=body.channel,
            raw_input=body.input,
            ref_id=body.ref_id,
            save=body.save,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None

    return {
        "status": result.status,
        "run_id": result.run_id,
        "channel": str(result.channel),
        "ref_id": result.ref_id,
        "estimate": result.estimate,
        "action": result.action.to_content() if result.action else None,
        "memory_id": result.memory_id,
    }


@api_router.get("/users/{user_id}/memories")
async def list_memories(
    user_id: str,
    status: MemoryStatus | None = None,
    type: MemoryType | None = None,  # noqa: A002
    limit: int = 50,
    store: DatabaseStore = Depends(get_store),
):
    """List a user's memories, highest priority first."""
    if not 1 <= limit <= 500:
        raise HTTPException(status_code=422, detail="limit must be between 1 and 500")

    memories = await store.list_memories(user_id, status=status, memory_type=type, limit=limit)
    return {"memories": [asdict(m) for m in memories], "count": len(memories)}


@api_router.post("/memories/{memory_id}/status")
async def update_memory_status(
    memory_id: str,
    body: MemoryStatusRequest,
    store: DatabaseStore = Depends(get_store),
):
    """Mark a memory done, ignored, overridden or active again."""
    updated = await store.update_memory_status(memory_id, body.status)
    if not updated:
        raise HTTPException(status_code=404, detail="Memory not found")
    return {"id": memory_id, "status": body.status}


@api_router.post("/invite-codes/redeem")
async def redeem_invite_code(
    body: RedeemInviteRequest,
    store: DatabaseStore = Depends(get_store),
):
    """Redeem an invite code (409 if unknown, used, disabled or expired)."""
    invite = await store.redeem_invite_code(body.code.strip().upper(), user_id=body.user_id)
    return {"code": invite.code, "status": invite.status}


@api_router.post("/users/{user_id}/devices")
async def register_device(
    user_id: str,
    body: RegisterDeviceRequest,
    store: DatabaseStore = Depends(get_store),
):
    """Register a device push token, or refresh it for a known device."""
    if await store.get_user(user_id) is None:
        raise HTTPException(status_code=404, detail="User not found")

    device = await store.register_device(
        user_id=user_id,
        device_id=body.device_id,
        token=body.token,
        platform=body.platform,
        device_name=body.device_name,
        metadata=body.metadata,
    )
    logger.info("device_registered", user_id=user_id, platform=device.platform)
    return {
        "id": device.id,
        "device_id": device.device_id,
        "platform": device.platform,
        "is_active": device.is_active,
        "last_used_at": device.last_used_at,
    }
