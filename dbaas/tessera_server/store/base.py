"""
Base protocol and types for workspace store backends.

This module defines the WorkspaceStore protocol that every backend must
implement. The version engine only talks to this protocol, so the hosted
table, the local working directory and the in-memory test store are
interchangeable.

Invariants:
    - commit() is atomic: truncate + event insert + workspace update
      either all happen or none do
    - commit() is a compare-and-swap on workspace.version
    - query_events() returns events in append order
    - Records handed out are copies; callers cannot mutate stored state

How to change safely:
    - Protocol changes require updating all implementations
    - Add new methods with default implementations where possible
"""

from __future__ import annotations

import logging
from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..versioning.types import Event, Workspace

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)

# Workspace fields the engine may change after creation
MUTABLE_FIELDS = frozenset(
    {
        "name",
        "current_data",
        "version",
        "event_version",
        "max_event_version",
        "updated_at",
    }
)


class StoreError(Exception):
    """Base exception for store backend failures."""

    pass


def check_fields(fields: dict[str, Any]) -> None:
    """Reject writes to immutable or unknown workspace fields.

    Raises:
        StoreError: If a field may not be written
    """
    invalid = set(fields) - MUTABLE_FIELDS
    if invalid:
        raise StoreError(f"Cannot update workspace fields: {sorted(invalid)}")


@runtime_checkable
class WorkspaceStore(Protocol):
    """Protocol for workspace store backends.

    Durability contract:
        - Methods return only after the write is persisted by the backend
        - A failed commit() leaves the previous state untouched

    Example:
        >>> store = SqliteWorkspaceStore("/var/lib/tessera/tessera.db")
        >>> ws_id = await store.insert_workspace(workspace)
        >>> await store.commit(ws_id, 1, {"version": 2}, event=event)
    """

    @abstractmethod
    async def get(self, workspace_id: str) -> Workspace | None:
        """Fetch a workspace. Returns None if not found."""
        ...

    @abstractmethod
    async def insert_workspace(self, workspace: Workspace) -> str:
        """Persist a new workspace.

        Returns:
            The workspace id
        """
        ...

    @abstractmethod
    async def put(
        self,
        workspace_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> None:
        """Partially update a workspace.

        Args:
            workspace_id: Workspace to update
            fields: Field values to write (see MUTABLE_FIELDS)
            expected_version: If given, only write when the stored
                version matches

        Raises:
            WorkspaceNotFoundError: If the workspace does not exist
            VersionConflictError: If expected_version does not match
        """
        ...

    @abstractmethod
    async def insert_event(self, event: Event) -> int:
        """Append an event to a workspace's log.

        Returns:
            Backend event id (monotonic per store)
        """
        ...

    @abstractmethod
    async def query_events(
        self,
        workspace_id: str,
        up_to: int | None = None,
    ) -> list[Event]:
        """Read a workspace's events in append order.

        Args:
            workspace_id: Workspace to read
            up_to: Only return events with version <= up_to
        """
        ...

    @abstractmethod
    async def list_by_owner(self, owner_id: str) -> list[Workspace]:
        """List all workspaces owned by a principal."""
        ...

    @abstractmethod
    async def commit(
        self,
        workspace_id: str,
        expected_version: int,
        fields: dict[str, Any],
        event: Event | None = None,
        truncate_after: int | None = None,
    ) -> None:
        """Atomically apply one engine transition.

        In a single transaction:
        1. Verify the stored version equals expected_version
        2. Delete events with version > truncate_after (if given)
        3. Insert event (if given)
        4. Write fields

        Raises:
            WorkspaceNotFoundError: If the workspace does not exist
            VersionConflictError: If the stored version differs
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release backend resources."""
        ...


def create_workspace_store(config: ServerConfig) -> WorkspaceStore:
    """Factory function to create a workspace store from configuration.

    Args:
        config: Server configuration

    Returns:
        Appropriate WorkspaceStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .memory import InMemoryWorkspaceStore
    from .sqlite import SqliteWorkspaceStore

    if config.store_backend == StoreBackend.SQLITE:
        return SqliteWorkspaceStore(
            db_path=config.storage.db_path,
            wal_mode=config.storage.wal_mode,
            busy_timeout_ms=config.storage.busy_timeout_ms,
        )
    elif config.store_backend == StoreBackend.MEMORY:
        return InMemoryWorkspaceStore()
    else:
        raise ValueError(f"Unsupported store backend: {config.store_backend}")
