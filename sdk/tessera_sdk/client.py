"""
Tessera Client for Python SDK.

This module provides the main client interface:
- WorkspaceClient: Async HTTP client for the Tessera API
- RemoteWorkspace: Workspace as returned by the server

Example:
    >>> async with WorkspaceClient("http://localhost:8080", token="tok") as client:
    ...     ws_id = await client.create("Landing page", {"components": {}})
    ...     ws = await client.get(ws_id)
    ...     await client.update(ws_id, {"components": {"a": {}}}, ws.version)

Invariants:
    - Every request carries the configured identity
    - Non-2xx responses raise typed TesseraError subclasses
    - The client never retries; wrap calls in with_retry() for that
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .errors import ConnectionError, NotFoundError, error_from_response

logger = logging.getLogger(__name__)


@dataclass
class RemoteWorkspace:
    """A workspace as returned by the server.

    Attributes:
        id: Workspace id
        name: Display name
        owner_id: Owning principal
        data: Current document
        version: Optimistic-concurrency version
        event_version: Current log position
        max_event_version: Highest redo position
        can_undo: Whether undo would succeed
        can_redo: Whether redo would succeed
        updated_at: Last write (Unix ms)
    """

    id: str
    name: str
    owner_id: str
    data: Any
    version: int
    event_version: int
    max_event_version: int
    can_undo: bool = False
    can_redo: bool = False
    updated_at: int = 0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RemoteWorkspace:
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            owner_id=data.get("owner_id", ""),
            data=data.get("current_data"),
            version=data["version"],
            event_version=data.get("event_version", 0),
            max_event_version=data.get("max_event_version", 0),
            can_undo=data.get("can_undo", False),
            can_redo=data.get("can_redo", False),
            updated_at=data.get("updated_at", 0),
        )


class WorkspaceClient:
    """Async client for the Tessera HTTP API.

    Attributes:
        base_url: Server URL (without the /v1 prefix)
        token: Bearer token
        actor: X-Actor identity, for servers that trust that header
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        actor: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            base_url: Server URL
            token: Bearer token
            actor: X-Actor identity
            timeout: Request timeout in seconds
            transport: Custom httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.actor = actor
        self.timeout = timeout

        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if actor:
            headers["X-Actor"] = actor

        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/v1",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> WorkspaceClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def close(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    async def _request(self, method: str, path: str, json: Any = None) -> Any:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.TimeoutException as e:
            raise ConnectionError(f"Request timed out: {e}", address=self.base_url) from e
        except httpx.TransportError as e:
            raise ConnectionError(f"Cannot reach server: {e}", address=self.base_url) from e

        if response.is_success:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = None
        error = error_from_response(response.status_code, body)
        logger.debug(
            "Request failed",
            extra={"method": method, "path": path, "status": response.status_code, "code": error.code},
        )
        raise error

    async def health(self) -> dict[str, Any]:
        """Server health (outside the /v1 prefix)."""
        return await self._request("GET", f"{self.base_url}/health")

    async def create(self, name: str, data: Any) -> str:
        """Create a workspace.

        Returns:
            The new workspace id
        """
        result = await self._request("POST", "/workspaces", json={"name": name, "data": data})
        return result["id"]

    async def list(self) -> list[RemoteWorkspace]:
        """List the caller's workspaces."""
        result = await self._request("GET", "/workspaces")
        return [RemoteWorkspace.from_dict(w) for w in result["workspaces"]]

    async def get(self, workspace_id: str) -> RemoteWorkspace | None:
        """Get a workspace, or None if missing or not visible."""
        try:
            result = await self._request("GET", f"/workspaces/{workspace_id}")
        except NotFoundError:
            return None
        return RemoteWorkspace.from_dict(result)

    async def update(
        self,
        workspace_id: str,
        data: Any,
        expected_version: int,
    ) -> dict[str, Any]:
        """Replace the workspace document.

        Returns:
            {"success", "version", "event_version", "no_changes"?}

        Raises:
            VersionConflictError: If expected_version is stale
        """
        return await self._request(
            "PUT",
            f"/workspaces/{workspace_id}",
            json={"data": data, "expected_version": expected_version},
        )

    async def record_event(
        self,
        workspace_id: str,
        patches: list[dict[str, Any]],
        expected_version: int | None = None,
    ) -> dict[str, Any]:
        """Apply RFC 6902 patches to the current document and record them."""
        body: dict[str, Any] = {"patches": patches}
        if expected_version is not None:
            body["expected_version"] = expected_version
        return await self._request("POST", f"/workspaces/{workspace_id}/events", json=body)

    async def undo(self, workspace_id: str) -> dict[str, Any]:
        """Step back one event. success=False means nothing to undo."""
        return await self._request("POST", f"/workspaces/{workspace_id}/undo")

    async def redo(self, workspace_id: str) -> dict[str, Any]:
        """Step forward one event. success=False means nothing to redo."""
        return await self._request("POST", f"/workspaces/{workspace_id}/redo")

    async def history(self, workspace_id: str) -> list[dict[str, Any]]:
        """All events in append order."""
        result = await self._request("GET", f"/workspaces/{workspace_id}/history")
        return result["events"]

    async def version(self, workspace_id: str, event_version: int) -> Any:
        """The document as it was at event_version."""
        result = await self._request(
            "GET", f"/workspaces/{workspace_id}/versions/{event_version}"
        )
        return result["data"]
