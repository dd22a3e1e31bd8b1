"""
Version engine for Tessera workspaces.

The engine owns every state transition of a workspace:
- update / record_event: append a PatchEvent and advance the head
- undo / redo: move event_version within [0, max_event_version]
- checkpoint: bookmark the current event_version
- rebuild_state: replay base_data + patch events to any position

Invariants:
    - 0 <= event_version <= max_event_version at all times
    - current_data == rebuild_state(event_version) after every operation
    - version increases by exactly 1 on every accepted write, including
      undo and redo; checkpoints and no-op updates leave it unchanged
    - Writing after an undo discards the redo branch in the same commit
    - Every operation on a workspace passes the access gate first

How to change safely:
    - All writes go through store.commit() so they stay atomic and
      compare-and-swap on version
    - Never write current_data without the matching event_version
    - Keep rebuild_state() pure; tooling depends on it
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from . import patches as patchlib
from .access import AccessGate
from .errors import PatchApplyError, VersionConflictError, VersioningError
from .types import (
    CheckpointEvent,
    Event,
    HistoryMoveResult,
    PatchEvent,
    UpdateResult,
    Workspace,
    now_ms,
)

if TYPE_CHECKING:
    from ..store.base import WorkspaceStore

logger = logging.getLogger(__name__)


def rebuild_state(
    workspace: Workspace,
    target_event_version: int,
    events: list[Event],
) -> Any:
    """Materialize the document at a given event version.

    Starts from a deep copy of base_data and applies the patch events with
    version <= target in ascending order. Checkpoints are skipped.

    Args:
        workspace: Workspace providing base_data and max_event_version
        target_event_version: Position to materialize
        events: The workspace's events (any order)

    Returns:
        The document at target_event_version

    Raises:
        ValueError: If target is outside [0, max_event_version]
        PatchApplyError: If the log is incomplete or a patch fails to apply
    """
    if target_event_version < 0 or target_event_version > workspace.max_event_version:
        raise ValueError(
            f"Target version {target_event_version} out of range "
            f"[0, {workspace.max_event_version}]"
        )

    selected = sorted(
        (e for e in events if isinstance(e, PatchEvent) and e.version <= target_event_version),
        key=lambda e: e.version,
    )

    for expected, event in enumerate(selected, start=1):
        if event.version != expected:
            raise PatchApplyError(
                f"Event log has a gap before version {event.version}",
                event_version=expected,
            )
    if len(selected) != target_event_version:
        raise PatchApplyError(
            f"Event log ends at version {len(selected)}, expected {target_event_version}",
            event_version=len(selected) + 1,
        )

    return patchlib.replay(workspace.base_data, ((e.version, e.patches) for e in selected))


class VersionEngine:
    """Event-sourced version control over a WorkspaceStore.

    Thread safety:
        Writes to one workspace are serialized with a per-workspace
        asyncio.Lock, held only while a writer uses it. Writers in other processes are caught by the
        store's compare-and-swap and surface as VersionConflictError.

    Example:
        >>> engine = VersionEngine(InMemoryWorkspaceStore())
        >>> ws_id = await engine.create("Landing page", {"components": {}}, "user_1")
        >>> await engine.update(ws_id, {"components": {"a": {}}}, 1, "user_1")
        >>> await engine.undo(ws_id, "user_1")
    """

    def __init__(self, store: WorkspaceStore) -> None:
        self.store = store
        self.gate = AccessGate(store)
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    async def create(self, name: str, initial_data: Any, owner_id: str | None) -> str:
        """Create a workspace owned by the caller.

        Raises:
            UnauthenticatedError: If owner_id is missing
        """
        owner_id = self.gate.require_auth(owner_id)
        now = now_ms()
        workspace = Workspace(
            id="",
            name=name,
            owner_id=owner_id,
            current_data=copy.deepcopy(initial_data),
            base_data=copy.deepcopy(initial_data),
            version=1,
            event_version=0,
            max_event_version=0,
            created_at=now,
            updated_at=now,
        )
        workspace_id = await self.store.insert_workspace(workspace)

        logger.info(
            "Workspace created",
            extra={"workspace_id": workspace_id, "owner_id": owner_id},
        )
        return workspace_id

    async def get(self, workspace_id: str, actor_id: str | None) -> Workspace | None:
        """Fetch a workspace for its owner.

        Returns None when the caller is anonymous, the workspace does not
        exist, or another principal owns it.
        """
        if not self.gate.is_authenticated(actor_id):
            return None
        workspace = await self.store.get(workspace_id)
        if workspace is None or not self.gate.owns(actor_id, workspace):
            return None
        return workspace

    async def list(self, actor_id: str | None) -> list[Workspace]:
        """List the caller's workspaces, most recently updated first."""
        if not self.gate.is_authenticated(actor_id):
            return []
        return await self.store.list_by_owner(actor_id)  # type: ignore[arg-type]

    async def update(
        self,
        workspace_id: str,
        new_data: Any,
        expected_version: int,
        actor_id: str | None,
    ) -> UpdateResult:
        """Replace the document, recording the difference as a patch event.

        Args:
            workspace_id: Workspace to update
            new_data: Full new document
            expected_version: Caller's view of workspace.version
            actor_id: Caller identity

        Returns:
            UpdateResult; no_changes=True when new_data equals current_data

        Raises:
            UnauthenticatedError, WorkspaceNotFoundError, AccessDeniedError
            VersionConflictError: If expected_version is stale
        """
        async with self._write_lock(workspace_id, actor_id):
            workspace = await self.gate.require_workspace_access(actor_id, workspace_id)
            self._check_version(workspace, expected_version)

            patches = patchlib.diff(workspace.current_data, new_data)
            if not patches:
                return UpdateResult(
                    success=True,
                    version=workspace.version,
                    event_version=workspace.event_version,
                    no_changes=True,
                )

            return await self._append(workspace, patches, copy.deepcopy(new_data), actor_id)

    async def record_event(
        self,
        workspace_id: str,
        patches: list[dict[str, Any]],
        actor_id: str | None,
        expected_version: int | None = None,
    ) -> UpdateResult:
        """Apply client-computed patches to the current document and record them.

        Args:
            workspace_id: Workspace to update
            patches: RFC 6902 operations against current_data
            actor_id: Caller identity
            expected_version: If given, caller's view of workspace.version

        Returns:
            UpdateResult with the new event_version

        Raises:
            PatchApplyError: If the patches do not apply to current_data
            VersionConflictError: If expected_version is stale
        """
        async with self._write_lock(workspace_id, actor_id):
            workspace = await self.gate.require_workspace_access(actor_id, workspace_id)
            if expected_version is not None:
                self._check_version(workspace, expected_version)

            if not patches:
                return UpdateResult(
                    success=True,
                    version=workspace.version,
                    event_version=workspace.event_version,
                    no_changes=True,
                )

            new_data = patchlib.apply(
                workspace.current_data,
                patches,
                event_version=workspace.event_version + 1,
            )
            return await self._append(workspace, copy.deepcopy(patches), new_data, actor_id)

    async def undo(self, workspace_id: str, actor_id: str | None) -> HistoryMoveResult:
        """Step back one event.

        Returns:
            HistoryMoveResult; success=False with "Nothing to undo" at
            event_version 0
        """
        async with self._write_lock(workspace_id, actor_id):
            workspace = await self.gate.require_workspace_access(actor_id, workspace_id)
            if not workspace.can_undo:
                return HistoryMoveResult(success=False, message="Nothing to undo")

            result = await self._move(workspace, workspace.event_version - 1)

        logger.info(
            "Undo",
            extra={
                "workspace_id": workspace_id,
                "from_event_version": result.previous_version,
                "to_event_version": result.current_version,
            },
        )
        return result

    async def redo(self, workspace_id: str, actor_id: str | None) -> HistoryMoveResult:
        """Step forward one event along the current branch.

        Returns:
            HistoryMoveResult; success=False with "Nothing to redo" when
            event_version == max_event_version
        """
        async with self._write_lock(workspace_id, actor_id):
            workspace = await self.gate.require_workspace_access(actor_id, workspace_id)
            if not workspace.can_redo:
                return HistoryMoveResult(success=False, message="Nothing to redo")

            result = await self._move(workspace, workspace.event_version + 1)

        logger.info(
            "Redo",
            extra={
                "workspace_id": workspace_id,
                "from_event_version": result.previous_version,
                "to_event_version": result.current_version,
            },
        )
        return result

    async def checkpoint(
        self,
        workspace_id: str,
        label: str,
        actor_id: str | None,
    ) -> CheckpointEvent:
        """Bookmark the current event_version. State and counters are unchanged."""
        async with self._write_lock(workspace_id, actor_id):
            workspace = await self.gate.require_workspace_access(actor_id, workspace_id)
            event = CheckpointEvent(
                workspace_id=workspace_id,
                version=workspace.event_version,
                label=label,
                user_id=actor_id,
            )
            await self.store.commit(workspace_id, workspace.version, {}, event=event)

        logger.debug(
            "Checkpoint recorded",
            extra={"workspace_id": workspace_id, "event_version": event.version, "label": label},
        )
        return event

    async def get_history(self, workspace_id: str, actor_id: str | None) -> list[Event]:
        """All events of a workspace in append order."""
        await self.gate.require_workspace_access(actor_id, workspace_id)
        return await self.store.query_events(workspace_id)

    async def state_at(
        self,
        workspace_id: str,
        target_event_version: int,
        actor_id: str | None,
    ) -> Any:
        """Materialize a historical version without changing the workspace.

        Raises:
            ValueError: If the target is outside [0, max_event_version]
        """
        workspace = await self.gate.require_workspace_access(actor_id, workspace_id)
        events = await self.store.query_events(workspace_id, up_to=target_event_version)
        return rebuild_state(workspace, target_event_version, events)

    async def rebuild_state(
        self,
        workspace_id: str,
        target_event_version: int,
        actor_id: str | None,
    ) -> Any:
        """Alias of state_at(), named after the replay it performs."""
        return await self.state_at(workspace_id, target_event_version, actor_id)

    @asynccontextmanager
    async def _write_lock(self, workspace_id: str, actor_id: str | None) -> AsyncIterator[None]:
        """Serialize writes to one workspace.

        Anonymous callers are rejected before any lock exists. The lock is
        dropped once its last holder or waiter leaves.
        """
        self.gate.require_auth(actor_id)

        lock = self._locks.get(workspace_id)
        if lock is None:
            lock = self._locks[workspace_id] = asyncio.Lock()
        self._lock_users[workspace_id] = self._lock_users.get(workspace_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[workspace_id] -= 1
            if self._lock_users[workspace_id] == 0:
                del self._lock_users[workspace_id]
                del self._locks[workspace_id]

    @staticmethod
    def _check_version(workspace: Workspace, expected_version: int) -> None:
        if workspace.version != expected_version:
            logger.debug(
                "Version conflict",
                extra={
                    "workspace_id": workspace.id,
                    "expected_version": expected_version,
                    "actual_version": workspace.version,
                },
            )
            raise VersionConflictError(workspace.id, expected_version, workspace.version)

    async def _append(
        self,
        workspace: Workspace,
        patches: list[dict[str, Any]],
        new_data: Any,
        actor_id: str | None,
    ) -> UpdateResult:
        branching = workspace.event_version < workspace.max_event_version
        new_event_version = workspace.event_version + 1
        new_version = workspace.version + 1

        event = PatchEvent(
            workspace_id=workspace.id,
            version=new_event_version,
            patches=patches,
            user_id=actor_id,
        )
        await self.store.commit(
            workspace.id,
            workspace.version,
            {
                "current_data": new_data,
                "event_version": new_event_version,
                "max_event_version": new_event_version,
                "version": new_version,
                "updated_at": now_ms(),
            },
            event=event,
            truncate_after=workspace.event_version if branching else None,
        )

        logger.debug(
            "Patch event recorded",
            extra={
                "workspace_id": workspace.id,
                "event_version": new_event_version,
                "version": new_version,
                "patch_count": len(patches),
                "branched": branching,
            },
        )
        return UpdateResult(success=True, version=new_version, event_version=new_event_version)

    async def _move(self, workspace: Workspace, target: int) -> HistoryMoveResult:
        events = await self.store.query_events(workspace.id, up_to=target)
        try:
            data = rebuild_state(workspace, target, events)
        except VersioningError:
            logger.error(
                "Cannot rebuild workspace state",
                extra={"workspace_id": workspace.id, "target_event_version": target},
            )
            raise

        new_version = workspace.version + 1
        await self.store.commit(
            workspace.id,
            workspace.version,
            {
                "current_data": data,
                "event_version": target,
                "version": new_version,
                "updated_at": now_ms(),
            },
        )
        return HistoryMoveResult(
            success=True,
            data=data,
            previous_version=workspace.event_version,
            current_version=target,
            version=new_version,
        )
