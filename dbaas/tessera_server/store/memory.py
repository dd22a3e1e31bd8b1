"""
In-memory workspace store for testing.

This module provides a dict-backed store for:
- Unit tests
- Integration tests of the HTTP API
- Local development without a database file

Invariants:
    - All data is lost on process exit
    - Provides the same atomicity and ordering guarantees as SQLite
    - Safe for concurrent access from multiple coroutines

How to change safely:
    - Keep interface compatible with the WorkspaceStore protocol
    - Behavior must match SqliteWorkspaceStore; tests run against both
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import defaultdict
from typing import Any
import uuid

from ..versioning.errors import VersionConflictError, WorkspaceNotFoundError
from ..versioning.types import Event, Workspace
from .base import StoreError, check_fields

logger = logging.getLogger(__name__)


class InMemoryWorkspaceStore:
    """In-memory implementation of WorkspaceStore.

    Example:
        >>> store = InMemoryWorkspaceStore()
        >>> ws_id = await store.insert_workspace(workspace)
        >>> await store.get(ws_id)
    """

    def __init__(self) -> None:
        self._workspaces: dict[str, Workspace] = {}
        self._events: dict[str, list[tuple[int, Event]]] = defaultdict(list)
        self._next_event_id = 1
        self._lock = asyncio.Lock()

    async def get(self, workspace_id: str) -> Workspace | None:
        workspace = self._workspaces.get(workspace_id)
        return workspace.copy() if workspace else None

    async def insert_workspace(self, workspace: Workspace) -> str:
        async with self._lock:
            if not workspace.id:
                workspace.id = str(uuid.uuid4())
            if workspace.id in self._workspaces:
                raise StoreError(f"Workspace already exists: {workspace.id}")
            self._workspaces[workspace.id] = workspace.copy()

        logger.debug("Workspace inserted", extra={"workspace_id": workspace.id})
        return workspace.id

    async def put(
        self,
        workspace_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> None:
        check_fields(fields)
        async with self._lock:
            workspace = self._require(workspace_id)
            if expected_version is not None and workspace.version != expected_version:
                raise VersionConflictError(workspace_id, expected_version, workspace.version)
            self._write_fields(workspace, fields)

    async def insert_event(self, event: Event) -> int:
        async with self._lock:
            return self._append(event)

    async def query_events(
        self,
        workspace_id: str,
        up_to: int | None = None,
    ) -> list[Event]:
        return [
            copy.deepcopy(event)
            for _, event in self._events.get(workspace_id, [])
            if up_to is None or event.version <= up_to
        ]

    async def list_by_owner(self, owner_id: str) -> list[Workspace]:
        owned = [w.copy() for w in self._workspaces.values() if w.owner_id == owner_id]
        return sorted(owned, key=lambda w: w.updated_at, reverse=True)

    async def commit(
        self,
        workspace_id: str,
        expected_version: int,
        fields: dict[str, Any],
        event: Event | None = None,
        truncate_after: int | None = None,
    ) -> None:
        check_fields(fields)
        async with self._lock:
            workspace = self._require(workspace_id)
            if workspace.version != expected_version:
                raise VersionConflictError(workspace_id, expected_version, workspace.version)

            if truncate_after is not None:
                self._events[workspace_id] = [
                    (event_id, e)
                    for event_id, e in self._events[workspace_id]
                    if e.version <= truncate_after
                ]
            if event is not None:
                self._append(event)
            self._write_fields(workspace, fields)

    async def close(self) -> None:
        """Clear all data."""
        self._workspaces.clear()
        self._events.clear()

    def _require(self, workspace_id: str) -> Workspace:
        workspace = self._workspaces.get(workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(workspace_id)
        return workspace

    def _append(self, event: Event) -> int:
        if event.workspace_id not in self._workspaces:
            raise WorkspaceNotFoundError(event.workspace_id)
        event_id = self._next_event_id
        self._next_event_id += 1
        self._events[event.workspace_id].append((event_id, copy.deepcopy(event)))
        return event_id

    @staticmethod
    def _write_fields(workspace: Workspace, fields: dict[str, Any]) -> None:
        for key, value in fields.items():
            setattr(workspace, key, copy.deepcopy(value))

    # Testing helpers

    def event_count(self, workspace_id: str) -> int:
        """Number of stored events for a workspace."""
        return len(self._events.get(workspace_id, []))
