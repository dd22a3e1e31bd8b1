"""
Workspace store backends for Tessera.

This module provides a pluggable store interface supporting:
- SQLite (the hosted workspace table)
- Local working directory (the CLI)
- In-memory (for testing)

Invariants:
    - commit() is atomic and compare-and-swaps on workspace.version
    - Events are returned in append order
    - Returned records are copies

How to change safely:
    - New backends must implement the WorkspaceStore protocol
    - Run the shared store tests against every backend
"""

from .base import (
    MUTABLE_FIELDS,
    StoreError,
    WorkspaceStore,
    create_workspace_store,
)
from .local import LocalFileStore
from .memory import InMemoryWorkspaceStore
from .sqlite import SqliteWorkspaceStore

__all__ = [
    # Protocol and types
    "WorkspaceStore",
    "StoreError",
    "MUTABLE_FIELDS",
    # Factory
    "create_workspace_store",
    # Implementations
    "SqliteWorkspaceStore",
    "LocalFileStore",
    "InMemoryWorkspaceStore",
]
