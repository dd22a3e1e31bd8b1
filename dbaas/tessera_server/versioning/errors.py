"""
Error types for the Tessera version engine.

This module defines every failure the engine and access gate can raise:
- VersioningError: Base exception
- UnauthenticatedError: No caller identity
- AccessDeniedError: Caller does not own the workspace
- WorkspaceNotFoundError: Workspace id does not resolve
- VersionConflictError: Optimistic-concurrency check failed
- PatchApplyError: A patch could not be applied (log corruption)

Invariants:
    - All errors inherit from VersioningError
    - Every error carries a stable machine-readable code
    - AccessDeniedError never reveals whether the workspace exists for others

How to change safely:
    - Codes are part of the HTTP contract; never rename an existing code
    - Add new error types as subclasses of VersioningError
"""

from __future__ import annotations

from typing import Any


class VersioningError(Exception):
    """Base exception for version engine errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    code = "VERSIONING_ERROR"

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class UnauthenticatedError(VersioningError):
    """No caller identity was presented."""

    code = "UNAUTHENTICATED"

    def __init__(self, message: str = "Unauthenticated") -> None:
        super().__init__(message)


class AccessDeniedError(VersioningError):
    """Caller is authenticated but does not own the workspace."""

    code = "ACCESS_DENIED"

    def __init__(self, actor: str, workspace_id: str) -> None:
        super().__init__("Access denied", details={"workspace_id": workspace_id})
        self.actor = actor
        self.workspace_id = workspace_id


class WorkspaceNotFoundError(VersioningError):
    """Workspace does not exist in the store."""

    code = "NOT_FOUND"

    def __init__(self, workspace_id: str) -> None:
        super().__init__("Workspace not found", details={"workspace_id": workspace_id})
        self.workspace_id = workspace_id


class VersionConflictError(VersioningError):
    """The caller's expected version no longer matches the stored version.

    The caller must re-fetch the workspace and retry; the engine never
    retries on its own.
    """

    code = "VERSION_CONFLICT"

    def __init__(
        self,
        workspace_id: str,
        expected_version: int,
        actual_version: int | None = None,
    ) -> None:
        super().__init__(
            "Version conflict",
            details={
                "workspace_id": workspace_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.workspace_id = workspace_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class PatchApplyError(VersioningError):
    """A JSON-Patch operation could not be applied.

    Raised when a path does not resolve, a test operation fails, or an
    operation is malformed. During replay this means the event log is
    corrupt; it is never retried or swallowed.
    """

    code = "PATCH_APPLY"

    def __init__(
        self,
        message: str,
        event_version: int | None = None,
        operation: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            message,
            details={"event_version": event_version, "operation": operation},
        )
        self.event_version = event_version
        self.operation = operation
