"""
HTTP API for Tessera.

This module exposes the version engine as JSON-over-HTTP procedures:
- Workspace create / list / get / update
- Patch event recording
- Undo / redo
- History and historical versions

Invariants:
    - Every route resolves the caller identity before touching data
    - Engine errors map to stable status codes and error_code values
    - Response bodies for errors are {"error": ..., "error_code": ...}

How to change safely:
    - Keep routes under /v1; add /v2 for breaking changes
    - Keep the SDK client in sync with any route change
    - Never echo bearer tokens in logs or responses
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .._version import __version__
from ..config import ServerConfig
from ..store.base import create_workspace_store
from ..store.sqlite import SqliteWorkspaceStore
from ..versioning.engine import VersionEngine
from ..versioning.errors import (
    AccessDeniedError,
    PatchApplyError,
    UnauthenticatedError,
    VersionConflictError,
    VersioningError,
    WorkspaceNotFoundError,
)
from ..versioning.types import Workspace

logger = logging.getLogger(__name__)

STATUS_CODES: dict[type[VersioningError], int] = {
    UnauthenticatedError: 401,
    AccessDeniedError: 403,
    WorkspaceNotFoundError: 404,
    VersionConflictError: 409,
    PatchApplyError: 500,
}

router = APIRouter(tags=["Workspaces"])


# --- Request Models ---


class CreateWorkspaceRequest(BaseModel):
    """Request to create a workspace."""

    name: str = Field(..., min_length=1, description="Display name")
    data: Any = Field(..., description="Initial JSON document")


class UpdateWorkspaceRequest(BaseModel):
    """Request to replace a workspace document."""

    data: Any = Field(..., description="Full new JSON document")
    expected_version: int = Field(..., ge=1, description="Caller's view of workspace.version")


class RecordEventRequest(BaseModel):
    """Request to apply and record client-computed patches."""

    patches: list[dict[str, Any]] = Field(..., description="RFC 6902 operations")
    expected_version: int | None = Field(None, ge=1, description="Optional version guard")


# --- Dependencies ---


def get_engine(request: Request) -> VersionEngine:
    """Get the version engine from app state."""
    return request.app.state.engine


def get_actor(request: Request) -> str | None:
    """Resolve the caller identity.

    A bearer token is looked up in the configured token table. Without
    one, X-Actor is honored only when the server trusts that header.
    """
    config: ServerConfig = request.app.state.config

    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return config.auth.resolve(token.strip())

    if config.auth.trust_actor_header:
        return request.headers.get("X-Actor") or None
    return None


def _workspace_to_dict(workspace: Workspace) -> dict[str, Any]:
    result = workspace.to_dict()
    result["can_undo"] = workspace.can_undo
    result["can_redo"] = workspace.can_redo
    return result


# --- Workspace Routes ---


@router.post("/workspaces", status_code=201)
async def create_workspace(
    body: CreateWorkspaceRequest,
    engine: VersionEngine = Depends(get_engine),
    actor: str | None = Depends(get_actor),
):
    """Create a workspace owned by the caller."""
    workspace_id = await engine.create(body.name, body.data, actor)
    return {"id": workspace_id}


@router.get("/workspaces")
async def list_workspaces(
    engine: VersionEngine = Depends(get_engine),
    actor: str | None = Depends(get_actor),
):
    """List the caller's workspaces."""
    workspaces = await engine.list(actor)
    return {"workspaces": [_workspace_to_dict(w) for w in workspaces]}


@router.get("/workspaces/{workspace_id}")
async def get_workspace(
    workspace_id: str,
    engine: VersionEngine = Depends(get_engine),
    actor: str | None = Depends(get_actor),
):
    """Get a workspace. Missing and foreign workspaces are both 404."""
    workspace = await engine.get(workspace_id, actor)
    if workspace is None:
        raise WorkspaceNotFoundError(workspace_id)
    return _workspace_to_dict(workspace)


@router.put("/workspaces/{workspace_id}")
async def update_workspace(
    workspace_id: str,
    body: UpdateWorkspaceRequest,
    engine: VersionEngine = Depends(get_engine),
    actor: str | None = Depends(get_actor),
):
    """Replace the workspace document, guarded by expected_version."""
    result = await engine.update(workspace_id, body.data, body.expected_version, actor)
    return result.to_dict()


@router.post("/workspaces/{workspace_id}/events")
async def record_event(
    workspace_id: str,
    body: RecordEventRequest,
    engine: VersionEngine = Depends(get_engine),
    actor: str | None = Depends(get_actor),
):
    """Apply patches to the current document and record them as an event."""
    result = await engine.record_event(
        workspace_id,
        body.patches,
        actor,
        expected_version=body.expected_version,
    )
    return result.to_dict()


@router.post("/workspaces/{workspace_id}/undo")
async def undo(
    workspace_id: str,
    engine: VersionEngine = Depends(get_engine),
    actor: str | None = Depends(get_actor),
):
    """Step back one event. Nothing to undo is a 200 with success=false."""
    result = await engine.undo(workspace_id, actor)
    return result.to_dict()


@router.post("/workspaces/{workspace_id}/redo")
async def redo(
    workspace_id: str,
    engine: VersionEngine = Depends(get_engine),
    actor: str | None = Depends(get_actor),
):
    """Step forward one event. Nothing to redo is a 200 with success=false."""
    result = await engine.redo(workspace_id, actor)
    return result.to_dict()


@router.get("/workspaces/{workspace_id}/history")
async def get_history(
    workspace_id: str,
    engine: VersionEngine = Depends(get_engine),
    actor: str | None = Depends(get_actor),
):
    """All events of the workspace in append order."""
    events = await engine.get_history(workspace_id, actor)
    return {"events": [e.to_dict() for e in events]}


@router.get("/workspaces/{workspace_id}/versions/{event_version}")
async def get_version(
    workspace_id: str,
    event_version: int,
    engine: VersionEngine = Depends(get_engine),
    actor: str | None = Depends(get_actor),
):
    """Materialize the document at a historical event version."""
    try:
        data = await engine.state_at(workspace_id, event_version, actor)
    except ValueError as e:
        return JSONResponse(
            {"error": str(e), "error_code": "INVALID_VERSION"},
            status_code=422,
        )
    return {"event_version": event_version, "data": data}


# --- Error Handlers ---


async def versioning_error_handler(request: Request, exc: VersioningError) -> JSONResponse:
    status = 500
    for error_type, code in STATUS_CODES.items():
        if isinstance(exc, error_type):
            status = code
            break

    if status >= 500:
        logger.error(
            f"Request failed: {exc.message}",
            extra={"path": request.url.path, "error_code": exc.code},
        )

    body: dict[str, Any] = {"error": exc.message, "error_code": exc.code}
    if exc.details:
        body["details"] = exc.details
    return JSONResponse(body, status_code=status)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        {
            "error": "Invalid request",
            "error_code": "INVALID_REQUEST",
            "details": {"errors": jsonable_errors(exc)},
        },
        status_code=422,
    )


async def internal_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"HTTP handler error: {exc}", exc_info=True)
    return JSONResponse({"error": "Internal server error", "error_code": "INTERNAL"}, status_code=500)


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    """Validation errors reduced to JSON-safe location/message pairs."""
    return [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": error.get("msg", "")}
        for error in exc.errors()
    ]


# --- Application ---


def create_app(
    config: ServerConfig | None = None,
    engine: VersionEngine | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Server configuration (defaults to ServerConfig())
        engine: Pre-built engine; when omitted one is created on startup
            from config.store_backend and closed on shutdown

    Returns:
        FastAPI application
    """
    config = config or ServerConfig()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage workspace store lifecycle."""
        store = None
        if app.state.engine is None:
            store = create_workspace_store(config)
            if isinstance(store, SqliteWorkspaceStore):
                await store.initialize()
            app.state.engine = VersionEngine(store)

        yield

        if store is not None:
            await store.close()

    app = FastAPI(
        title="Tessera",
        description="Event-sourced version control for JSON design workspaces.",
        version=__version__,
        lifespan=lifespan,
        root_path=config.http.root_path,
    )
    app.state.config = config
    app.state.engine = engine

    app.add_exception_handler(VersioningError, versioning_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, internal_error_handler)

    app.include_router(router, prefix="/v1")

    @app.get("/health")
    async def health():
        return {"status": "healthy", "service": "tessera", "version": __version__}

    return app
