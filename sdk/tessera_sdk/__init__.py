"""
Tessera Python SDK - Client library for the Tessera workspace service.

This SDK provides an async interface to versioned design workspaces:
- WorkspaceClient for create / get / update / undo / redo / history
- Typed errors mapped from the server's error codes
- with_retry() for transient failures

Example:
    >>> from sdk.tessera_sdk import WorkspaceClient, VersionConflictError
    >>>
    >>> async with WorkspaceClient("http://localhost:8080", token="tok") as client:
    ...     ws = await client.get(ws_id)
    ...     try:
    ...         await client.update(ws_id, new_data, ws.version)
    ...     except VersionConflictError:
    ...         ...  # re-fetch and reconcile

Invariants:
    - Every call is scoped to the token's principal
    - Updates are guarded by expected_version

Version: 0.1.0
"""

__version__ = "0.1.0"

from .client import RemoteWorkspace, WorkspaceClient
from .errors import (
    AccessDeniedError,
    ConnectionError,
    NotFoundError,
    PatchApplyError,
    TesseraError,
    UnauthenticatedError,
    VersionConflictError,
)
from .retry import with_retry

__all__ = [
    # Client
    "WorkspaceClient",
    "RemoteWorkspace",
    "with_retry",
    # Errors
    "TesseraError",
    "ConnectionError",
    "UnauthenticatedError",
    "AccessDeniedError",
    "NotFoundError",
    "VersionConflictError",
    "PatchApplyError",
]
