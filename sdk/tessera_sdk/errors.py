"""
Error types for Tessera SDK.

This module defines all exception types raised by the SDK:
- TesseraError: Base exception
- ConnectionError: Server unreachable or timed out
- UnauthenticatedError: No valid identity presented
- AccessDeniedError: Workspace belongs to someone else
- NotFoundError: Workspace does not exist
- VersionConflictError: expected_version is stale
- PatchApplyError: A patch could not be applied on the server

Invariants:
    - All errors inherit from TesseraError
    - Errors carry the server's error_code and details
    - Error messages are actionable
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class TesseraError(Exception):
    """Base exception for all Tessera SDK errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
        status_code: HTTP status, when the error came from a response
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "TESSERA_ERROR"
        self.details = details or {}
        self.status_code = status_code


class ConnectionError(TesseraError):
    """Failed to reach the Tessera server.

    Raised when:
    - Server is unreachable
    - Connection or read times out
    """

    def __init__(
        self,
        message: str,
        address: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="CONNECTION_ERROR",
            details={"address": address},
        )
        self.address = address


class UnauthenticatedError(TesseraError):
    """The server did not recognize the caller.

    Raised when:
    - No token was configured
    - The token is unknown or expired
    """

    def __init__(self, message: str = "Unauthenticated", **kwargs: Any) -> None:
        super().__init__(message, code="UNAUTHENTICATED", **kwargs)


class AccessDeniedError(TesseraError):
    """The caller does not own the workspace."""

    def __init__(self, message: str = "Access denied", **kwargs: Any) -> None:
        super().__init__(message, code="ACCESS_DENIED", **kwargs)


class NotFoundError(TesseraError):
    """The workspace does not exist (or is not visible to the caller)."""

    def __init__(self, message: str = "Workspace not found", **kwargs: Any) -> None:
        super().__init__(message, code="NOT_FOUND", **kwargs)


class VersionConflictError(TesseraError):
    """Someone else wrote the workspace since it was read.

    Re-fetch the workspace, reconcile, and retry with the new version.
    """

    def __init__(self, message: str = "Version conflict", **kwargs: Any) -> None:
        super().__init__(message, code="VERSION_CONFLICT", **kwargs)

    @property
    def actual_version(self) -> Optional[int]:
        return self.details.get("actual_version")


class PatchApplyError(TesseraError):
    """A JSON-Patch operation could not be applied on the server."""

    def __init__(self, message: str = "Patch could not be applied", **kwargs: Any) -> None:
        super().__init__(message, code="PATCH_APPLY", **kwargs)


ERRORS_BY_CODE: Dict[str, type] = {
    "UNAUTHENTICATED": UnauthenticatedError,
    "ACCESS_DENIED": AccessDeniedError,
    "NOT_FOUND": NotFoundError,
    "VERSION_CONFLICT": VersionConflictError,
    "PATCH_APPLY": PatchApplyError,
}

ERRORS_BY_STATUS: Dict[int, type] = {
    401: UnauthenticatedError,
    403: AccessDeniedError,
    404: NotFoundError,
    409: VersionConflictError,
}


def error_from_response(status_code: int, body: Any) -> TesseraError:
    """Build a typed error from an HTTP error response.

    Args:
        status_code: HTTP status
        body: Decoded JSON body (or None)

    Returns:
        The most specific TesseraError subclass for the response
    """
    if not isinstance(body, dict):
        body = {}

    code = body.get("error_code")
    message = body.get("error") or f"HTTP {status_code}"
    details = body.get("details") or {}

    error_cls = ERRORS_BY_CODE.get(code) or ERRORS_BY_STATUS.get(status_code)
    if error_cls is None:
        return TesseraError(message, code=code, details=details, status_code=status_code)
    return error_cls(message, details=details, status_code=status_code)
