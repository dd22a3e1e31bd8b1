"""
Tessera Server - Event-sourced version control for JSON design workspaces.

This package implements the versioned-workspace backend of a code-driven
design tool:
- Workspaces are JSON documents owned by a single principal
- Every accepted change is an immutable JSON-Patch event
- Undo, redo and replay rebuild state from base_data + events
- Updates are guarded by optimistic concurrency on workspace.version

Architecture:
    ┌─────────────┐     ┌─────────────┐     ┌─────────────────┐
    │  CLI / SDK  │────▶│  HTTP API   │────▶│  VersionEngine  │
    └─────────────┘     └─────────────┘     └────────┬────────┘
                                                     │
                                              ┌──────┴──────┐
                                              │ AccessGate  │
                                              └──────┬──────┘
                                                     │
                        ┌────────────────────────────┼────────────────┐
                        ▼                            ▼                ▼
                   ┌─────────┐                ┌────────────┐    ┌──────────┐
                   │ SQLite  │                │ Local dir  │    │ In-memory│
                   │ (hosted)│                │   (CLI)    │    │  (tests) │
                   └─────────┘                └────────────┘    └──────────┘

Invariants:
    - The event log plus base_data is the source of truth
    - current_data is a cache that can always be rebuilt
    - All workspace operations require an authenticated owner
    - Every accepted write bumps workspace.version by one

How to change safely:
    - Persisted event shapes must stay readable by event_from_dict()
    - New store backends must implement the WorkspaceStore protocol
    - Error codes are part of the HTTP contract

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
