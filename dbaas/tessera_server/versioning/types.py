"""
Core data types for Tessera workspaces and their event log.

Invariants:
    - 0 <= event_version <= max_event_version
    - PatchEvent versions are 1-indexed and contiguous per workspace
    - CheckpointEvent.version is the event_version it bookmarks
    - Events are immutable once written

How to change safely:
    - to_dict()/from_dict() define the persisted format for every store;
      new fields must be optional with defaults
    - Keep the "kind" tag on every serialized event
"""

from __future__ import annotations

import copy
import time
from dataclasses import dataclass, field
from typing import Any, Union


def now_ms() -> int:
    """Current time as Unix milliseconds."""
    return int(time.time() * 1000)


@dataclass
class Workspace:
    """A versioned JSON document owned by a single principal.

    Attributes:
        id: Stable workspace identifier
        name: Display name
        owner_id: Principal that created the workspace (immutable)
        current_data: Materialized document at event_version
        base_data: Document at event version 0 (replay anchor)
        version: Optimistic-concurrency counter, bumped on every write
        event_version: Log position current_data reflects
        max_event_version: Highest position reachable by redo
        created_at: Creation timestamp (Unix ms)
        updated_at: Last accepted write (Unix ms)
    """

    id: str
    name: str
    owner_id: str
    current_data: Any
    base_data: Any
    version: int = 1
    event_version: int = 0
    max_event_version: int = 0
    created_at: int = field(default_factory=now_ms)
    updated_at: int = field(default_factory=now_ms)

    @property
    def can_undo(self) -> bool:
        return self.event_version > 0

    @property
    def can_redo(self) -> bool:
        return self.event_version < self.max_event_version

    def copy(self) -> Workspace:
        """Deep copy, so callers can never mutate a store's record."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "owner_id": self.owner_id,
            "current_data": self.current_data,
            "base_data": self.base_data,
            "version": self.version,
            "event_version": self.event_version,
            "max_event_version": self.max_event_version,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Workspace:
        """Create from dictionary."""
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            owner_id=data["owner_id"],
            current_data=data.get("current_data"),
            base_data=data.get("base_data"),
            version=data.get("version", 1),
            event_version=data.get("event_version", 0),
            max_event_version=data.get("max_event_version", 0),
            created_at=data.get("created_at", 0),
            updated_at=data.get("updated_at", 0),
        )


@dataclass(frozen=True)
class PatchEvent:
    """An accepted state transition.

    Attributes:
        workspace_id: Owning workspace
        version: Log position after this event is applied
        patches: RFC 6902 operations from version-1 to version
        user_id: Principal that caused the transition
        timestamp: Creation time (Unix ms)
    """

    workspace_id: str
    version: int
    patches: list[dict[str, Any]]
    user_id: str | None = None
    timestamp: int = field(default_factory=now_ms)

    kind = "patch"

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "workspace_id": self.workspace_id,
            "version": self.version,
            "timestamp": self.timestamp,
            "user_id": self.user_id,
            "patches": self.patches,
        }


@dataclass(frozen=True)
class CheckpointEvent:
    """A named bookmark at an event position. Never changes state.

    Attributes:
        workspace_id: Owning workspace
        version: Event version being bookmarked
        label: Human-readable milestone name
        user_id: Principal that created it, if known
        timestamp: Creation time (Unix ms)
    """

    workspace_id: str
    version: int
    label: str
    user_id: str | None = None
    timestamp: int = field(default_factory=now_ms)

    kind = "checkpoint"

    @property
    def patches(self) -> list[dict[str, Any]]:
        return []

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "workspace_id": self.workspace_id,
            "version": self.version,
            "timestamp": self.timestamp,
            "user_id": self.user_id,
            "label": self.label,
        }


Event = Union[PatchEvent, CheckpointEvent]


def event_from_dict(data: dict[str, Any], workspace_id: str | None = None) -> Event:
    """Parse a serialized event.

    Accepts both the tagged format and the compact local log format
    ({"v", "ts", "patches", "checkpoint"?}).

    Args:
        data: Serialized event
        workspace_id: Fallback workspace id for compact entries

    Returns:
        PatchEvent or CheckpointEvent

    Raises:
        ValueError: If the entry is not a recognizable event
    """
    ws_id = data.get("workspace_id", workspace_id)
    if ws_id is None:
        raise ValueError("Event is missing workspace_id")

    version = data.get("version", data.get("v"))
    if not isinstance(version, int):
        raise ValueError(f"Event has invalid version: {version!r}")

    timestamp = data.get("timestamp", data.get("ts", 0))
    kind = data.get("kind")
    if kind is None:
        kind = "checkpoint" if data.get("checkpoint") else "patch"

    if kind == "checkpoint":
        return CheckpointEvent(
            workspace_id=ws_id,
            version=version,
            label=data.get("label", data.get("checkpoint", "")),
            user_id=data.get("user_id"),
            timestamp=timestamp,
        )
    if kind == "patch":
        return PatchEvent(
            workspace_id=ws_id,
            version=version,
            patches=list(data.get("patches", [])),
            user_id=data.get("user_id"),
            timestamp=timestamp,
        )
    raise ValueError(f"Unknown event kind: {kind!r}")


@dataclass
class UpdateResult:
    """Result of update() / record_event().

    Attributes:
        success: Always True; failures raise
        version: Workspace OCC version after the call
        event_version: Log position after the call
        no_changes: True when the write was a no-op
    """

    success: bool
    version: int
    event_version: int
    no_changes: bool = False

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": self.success,
            "version": self.version,
            "event_version": self.event_version,
        }
        if self.no_changes:
            result["no_changes"] = True
        return result


@dataclass
class HistoryMoveResult:
    """Result of undo() / redo().

    success=False with a message is the expected terminal outcome at
    either end of history; it is not an error.
    """

    success: bool
    message: str | None = None
    data: Any = None
    previous_version: int | None = None
    current_version: int | None = None
    version: int | None = None

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "message": self.message}
        return {
            "success": True,
            "data": self.data,
            "previous_version": self.previous_version,
            "current_version": self.current_version,
            "version": self.version,
        }
