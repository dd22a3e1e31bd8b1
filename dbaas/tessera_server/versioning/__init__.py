"""
Versioning core for Tessera.

Provides the JSON-Patch primitive, the workspace and event types, the
access gate and the version engine. Nothing in this package performs I/O
except through a WorkspaceStore.
"""

from .access import AccessGate
from .engine import VersionEngine, rebuild_state
from .errors import (
    AccessDeniedError,
    PatchApplyError,
    UnauthenticatedError,
    VersionConflictError,
    VersioningError,
    WorkspaceNotFoundError,
)
from .patches import apply, diff, replay, validate_patches
from .types import (
    CheckpointEvent,
    Event,
    HistoryMoveResult,
    PatchEvent,
    UpdateResult,
    Workspace,
    event_from_dict,
    now_ms,
)

__all__ = [
    # Engine
    "VersionEngine",
    "AccessGate",
    "rebuild_state",
    # Patches
    "diff",
    "apply",
    "replay",
    "validate_patches",
    # Types
    "Workspace",
    "Event",
    "PatchEvent",
    "CheckpointEvent",
    "UpdateResult",
    "HistoryMoveResult",
    "event_from_dict",
    "now_ms",
    # Errors
    "VersioningError",
    "UnauthenticatedError",
    "AccessDeniedError",
    "WorkspaceNotFoundError",
    "VersionConflictError",
    "PatchApplyError",
]
