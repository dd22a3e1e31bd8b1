"""
Unit tests for the version engine.

Tests cover:
- Create / update / undo / redo lifecycle
- Branch truncation after undo
- No-op updates
- Optimistic concurrency conflicts
- record_event, checkpoints, history and state_at
- rebuild_state purity and failure modes
"""

import asyncio

import pytest

from dbaas.tessera_server.store.memory import InMemoryWorkspaceStore
from dbaas.tessera_server.versioning.engine import VersionEngine, rebuild_state
from dbaas.tessera_server.versioning.errors import (
    AccessDeniedError,
    PatchApplyError,
    UnauthenticatedError,
    VersionConflictError,
    WorkspaceNotFoundError,
)
from dbaas.tessera_server.versioning.types import CheckpointEvent, PatchEvent, Workspace

OWNER = "user_1"
OTHER = "user_2"


async def assert_consistent(engine: VersionEngine, workspace_id: str) -> Workspace:
    """current_data must equal a replay to event_version."""
    workspace = await engine.get(workspace_id, OWNER)
    assert 0 <= workspace.event_version <= workspace.max_event_version
    events = await engine.store.query_events(workspace_id)
    assert rebuild_state(workspace, workspace.event_version, events) == workspace.current_data
    return workspace


class TestVersionEngineLifecycle:
    """End-to-end lifecycle of a single workspace."""

    @pytest.fixture
    def store(self):
        return InMemoryWorkspaceStore()

    @pytest.fixture
    def engine(self, store):
        return VersionEngine(store)

    @pytest.mark.asyncio
    async def test_create_initial_state(self, engine):
        """A new workspace starts at version 1, event version 0."""
        ws_id = await engine.create("Test", {"name": "Original"}, OWNER)

        workspace = await engine.get(ws_id, OWNER)
        assert workspace.version == 1
        assert workspace.event_version == 0
        assert workspace.max_event_version == 0
        assert workspace.current_data == {"name": "Original"}
        assert workspace.base_data == {"name": "Original"}
        assert workspace.owner_id == OWNER

    @pytest.mark.asyncio
    async def test_update_records_event(self, engine):
        """update() bumps both counters and appends one event."""
        ws_id = await engine.create("Test", {"name": "Original"}, OWNER)

        result = await engine.update(ws_id, {"name": "Updated"}, 1, OWNER)

        assert result.success is True
        assert result.version == 2
        assert result.no_changes is False
        workspace = await engine.get(ws_id, OWNER)
        assert workspace.version == 2
        assert workspace.event_version == 1
        assert workspace.max_event_version == 1
        assert workspace.current_data == {"name": "Updated"}

        history = await engine.get_history(ws_id, OWNER)
        assert len(history) == 1
        assert isinstance(history[0], PatchEvent)
        assert history[0].version == 1
        assert history[0].user_id == OWNER

    @pytest.mark.asyncio
    async def test_undo_restores_previous_state(self, engine):
        """undo() rebuilds from base and still bumps version."""
        ws_id = await engine.create("Test", {"name": "Original"}, OWNER)
        await engine.update(ws_id, {"name": "Updated"}, 1, OWNER)

        result = await engine.undo(ws_id, OWNER)

        assert result.success is True
        assert result.data == {"name": "Original"}
        assert result.previous_version == 1
        assert result.current_version == 0
        workspace = await engine.get(ws_id, OWNER)
        assert workspace.current_data == {"name": "Original"}
        assert workspace.event_version == 0
        assert workspace.max_event_version == 1
        assert workspace.version == 3

    @pytest.mark.asyncio
    async def test_redo_reapplies_next_event(self, engine):
        """redo() moves forward one event and bumps version."""
        ws_id = await engine.create("Test", {"name": "Original"}, OWNER)
        await engine.update(ws_id, {"name": "Updated"}, 1, OWNER)
        await engine.undo(ws_id, OWNER)

        result = await engine.redo(ws_id, OWNER)

        assert result.success is True
        assert result.previous_version == 0
        assert result.current_version == 1
        workspace = await engine.get(ws_id, OWNER)
        assert workspace.current_data == {"name": "Updated"}
        assert workspace.event_version == 1
        assert workspace.version == 4

    @pytest.mark.asyncio
    async def test_update_after_undo_discards_redo_branch(self, engine):
        """Writing after undo makes the undone future unreachable."""
        ws_id = await engine.create("Test", {"name": "v0"}, OWNER)
        await engine.update(ws_id, {"name": "v1"}, 1, OWNER)
        await engine.update(ws_id, {"name": "v2"}, 2, OWNER)
        await engine.undo(ws_id, OWNER)

        result = await engine.update(ws_id, {"name": "v1-alt"}, 4, OWNER)
        assert result.version == 5

        redo = await engine.redo(ws_id, OWNER)
        assert redo.success is False
        assert redo.message == "Nothing to redo"

        workspace = await assert_consistent(engine, ws_id)
        assert workspace.current_data == {"name": "v1-alt"}
        assert workspace.event_version == 2
        assert workspace.max_event_version == 2

        history = await engine.get_history(ws_id, OWNER)
        assert [e.version for e in history] == [1, 2]
        assert history[1].patches == [{"op": "replace", "path": "/name", "value": "v1-alt"}]

    @pytest.mark.asyncio
    async def test_update_with_same_data_is_noop(self, engine):
        """Identical data short-circuits without writing."""
        ws_id = await engine.create("Test", {"name": "Original"}, OWNER)

        result = await engine.update(ws_id, {"name": "Original"}, 1, OWNER)

        assert result.success is True
        assert result.no_changes is True
        assert result.version == 1
        assert result.to_dict() == {
            "success": True,
            "version": 1,
            "event_version": 0,
            "no_changes": True,
        }
        workspace = await engine.get(ws_id, OWNER)
        assert workspace.version == 1
        assert await engine.get_history(ws_id, OWNER) == []

    @pytest.mark.asyncio
    async def test_noop_after_writes_keeps_counters(self, engine):
        """A no-op on a non-initial write leaves every counter alone."""
        ws_id = await engine.create("Test", {"n": 0}, OWNER)
        await engine.update(ws_id, {"n": 1}, 1, OWNER)
        await engine.undo(ws_id, OWNER)

        result = await engine.update(ws_id, {"n": 0}, 3, OWNER)

        assert result.no_changes is True
        workspace = await engine.get(ws_id, OWNER)
        assert (workspace.version, workspace.event_version, workspace.max_event_version) == (3, 0, 1)
        # The redo branch survives a no-op
        assert (await engine.redo(ws_id, OWNER)).success is True


class TestVersionEngineBoundaries:
    """Boundary and error behavior."""

    @pytest.fixture
    def engine(self):
        return VersionEngine(InMemoryWorkspaceStore())

    @pytest.mark.asyncio
    async def test_undo_at_start_is_not_an_error(self, engine):
        """Nothing to undo is success=False and mutates nothing."""
        ws_id = await engine.create("Test", {"a": 1}, OWNER)

        result = await engine.undo(ws_id, OWNER)

        assert result.success is False
        assert result.message == "Nothing to undo"
        assert result.to_dict() == {"success": False, "message": "Nothing to undo"}
        workspace = await engine.get(ws_id, OWNER)
        assert workspace.version == 1

    @pytest.mark.asyncio
    async def test_redo_at_head_is_not_an_error(self, engine):
        """Nothing to redo is success=False and mutates nothing."""
        ws_id = await engine.create("Test", {"a": 1}, OWNER)
        await engine.update(ws_id, {"a": 2}, 1, OWNER)

        result = await engine.redo(ws_id, OWNER)

        assert result.success is False
        assert result.message == "Nothing to redo"
        workspace = await engine.get(ws_id, OWNER)
        assert workspace.version == 2

    @pytest.mark.asyncio
    async def test_stale_expected_version_conflicts(self, engine):
        """A stale expected_version raises VersionConflictError."""
        ws_id = await engine.create("Test", {"a": 1}, OWNER)
        await engine.update(ws_id, {"a": 2}, 1, OWNER)

        with pytest.raises(VersionConflictError) as exc_info:
            await engine.update(ws_id, {"a": 3}, 1, OWNER)

        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2
        workspace = await engine.get(ws_id, OWNER)
        assert workspace.current_data == {"a": 2}

    @pytest.mark.asyncio
    async def test_concurrent_updates_one_wins(self, engine):
        """Two updates with the same expected_version: exactly one succeeds."""
        ws_id = await engine.create("Test", {"a": 0}, OWNER)

        results = await asyncio.gather(
            engine.update(ws_id, {"a": 1}, 1, OWNER),
            engine.update(ws_id, {"a": 2}, 1, OWNER),
            return_exceptions=True,
        )

        successes = [r for r in results if not isinstance(r, Exception)]
        conflicts = [r for r in results if isinstance(r, VersionConflictError)]
        assert len(successes) == 1
        assert len(conflicts) == 1
        workspace = await assert_consistent(engine, ws_id)
        assert workspace.version == 2

    @pytest.mark.asyncio
    async def test_concurrent_updates_across_engines(self):
        """Engines sharing a store are serialized by the store's compare-and-swap."""
        store = InMemoryWorkspaceStore()
        first, second = VersionEngine(store), VersionEngine(store)
        ws_id = await first.create("Test", {"a": 0}, OWNER)

        results = await asyncio.gather(
            first.update(ws_id, {"a": 1}, 1, OWNER),
            second.update(ws_id, {"a": 2}, 1, OWNER),
            return_exceptions=True,
        )

        assert sum(1 for r in results if isinstance(r, VersionConflictError)) == 1
        assert store.event_count(ws_id) == 1

    @pytest.mark.asyncio
    async def test_undo_redo_round_trip_many_steps(self, engine):
        """undo then redo restores exactly the prior document at every step."""
        ws_id = await engine.create("Test", {"items": []}, OWNER)
        version = 1
        for i in range(5):
            result = await engine.update(ws_id, {"items": list(range(i + 1))}, version, OWNER)
            version = result.version

        for _ in range(5):
            before = (await engine.get(ws_id, OWNER)).current_data
            await engine.undo(ws_id, OWNER)
            await engine.redo(ws_id, OWNER)
            assert (await engine.get(ws_id, OWNER)).current_data == before
            await engine.undo(ws_id, OWNER)
            await assert_consistent(engine, ws_id)

        workspace = await engine.get(ws_id, OWNER)
        assert workspace.current_data == {"items": []}
        assert workspace.event_version == 0
        assert workspace.max_event_version == 5


class TestVersionEngineAccess:
    """Access gate integration."""

    @pytest.fixture
    def engine(self):
        return VersionEngine(InMemoryWorkspaceStore())

    @pytest.mark.asyncio
    async def test_create_requires_identity(self, engine):
        with pytest.raises(UnauthenticatedError):
            await engine.create("Test", {}, None)

    @pytest.mark.asyncio
    async def test_get_hides_foreign_and_missing(self, engine):
        """get() returns None instead of raising."""
        ws_id = await engine.create("Test", {}, OWNER)

        assert await engine.get(ws_id, OTHER) is None
        assert await engine.get(ws_id, None) is None
        assert await engine.get("missing", OWNER) is None

    @pytest.mark.asyncio
    async def test_list_is_owner_scoped(self, engine):
        await engine.create("Mine", {}, OWNER)
        await engine.create("Theirs", {}, OTHER)

        mine = await engine.list(OWNER)
        assert [w.name for w in mine] == ["Mine"]
        assert await engine.list(None) == []

    @pytest.mark.asyncio
    async def test_mutations_check_ownership(self, engine):
        """Every mutation refuses non-owners."""
        ws_id = await engine.create("Test", {"a": 1}, OWNER)

        with pytest.raises(AccessDeniedError):
            await engine.update(ws_id, {"a": 2}, 1, OTHER)
        with pytest.raises(AccessDeniedError):
            await engine.undo(ws_id, OTHER)
        with pytest.raises(AccessDeniedError):
            await engine.redo(ws_id, OTHER)
        with pytest.raises(AccessDeniedError):
            await engine.get_history(ws_id, OTHER)
        with pytest.raises(UnauthenticatedError):
            await engine.update(ws_id, {"a": 2}, 1, None)
        with pytest.raises(WorkspaceNotFoundError):
            await engine.update("missing", {"a": 2}, 1, OWNER)

        workspace = await engine.get(ws_id, OWNER)
        assert workspace.version == 1

    @pytest.mark.asyncio
    async def test_rejected_writes_leave_no_locks(self, engine):
        """Locks for unknown ids must not accumulate."""
        for i in range(50):
            with pytest.raises(UnauthenticatedError):
                await engine.update(f"bogus-{i}", {"a": 1}, 1, None)
            with pytest.raises(WorkspaceNotFoundError):
                await engine.undo(f"bogus-{i}", OWNER)

        assert engine._locks == {}
        assert engine._lock_users == {}

    @pytest.mark.asyncio
    async def test_locks_released_after_concurrent_writes(self, engine):
        ws_id = await engine.create("Test", {"a": 0}, OWNER)

        await asyncio.gather(
            engine.update(ws_id, {"a": 1}, 1, OWNER),
            engine.update(ws_id, {"a": 2}, 1, OWNER),
            engine.checkpoint(ws_id, "cp", OWNER),
            return_exceptions=True,
        )

        assert engine._locks == {}
        assert engine._lock_users == {}


class TestRecordEventAndCheckpoints:
    """record_event(), checkpoint(), state_at()."""

    @pytest.fixture
    def engine(self):
        return VersionEngine(InMemoryWorkspaceStore())

    @pytest.mark.asyncio
    async def test_record_event_applies_patches(self, engine):
        ws_id = await engine.create("Test", {"a": 1}, OWNER)

        result = await engine.record_event(
            ws_id, [{"op": "add", "path": "/b", "value": 2}], OWNER
        )

        assert result.event_version == 1
        assert result.version == 2
        workspace = await assert_consistent(engine, ws_id)
        assert workspace.current_data == {"a": 1, "b": 2}

    @pytest.mark.asyncio
    async def test_record_event_rejects_unappliable_patch(self, engine):
        """A patch that does not apply leaves the workspace untouched."""
        ws_id = await engine.create("Test", {"a": 1}, OWNER)

        with pytest.raises(PatchApplyError):
            await engine.record_event(ws_id, [{"op": "remove", "path": "/zzz"}], OWNER)

        workspace = await engine.get(ws_id, OWNER)
        assert workspace.version == 1
        assert await engine.get_history(ws_id, OWNER) == []

    @pytest.mark.asyncio
    async def test_record_event_checks_expected_version(self, engine):
        ws_id = await engine.create("Test", {"a": 1}, OWNER)

        with pytest.raises(VersionConflictError):
            await engine.record_event(
                ws_id, [{"op": "replace", "path": "/a", "value": 2}], OWNER, expected_version=5
            )

    @pytest.mark.asyncio
    async def test_checkpoint_does_not_change_state(self, engine):
        """Checkpoints bookmark event_version and leave counters alone."""
        ws_id = await engine.create("Test", {"a": 1}, OWNER)
        await engine.update(ws_id, {"a": 2}, 1, OWNER)

        event = await engine.checkpoint(ws_id, "milestone", OWNER)

        assert isinstance(event, CheckpointEvent)
        assert event.version == 1
        assert event.label == "milestone"
        workspace = await engine.get(ws_id, OWNER)
        assert (workspace.version, workspace.event_version, workspace.max_event_version) == (2, 1, 1)

        history = await engine.get_history(ws_id, OWNER)
        assert [e.kind for e in history] == ["patch", "checkpoint"]

    @pytest.mark.asyncio
    async def test_undo_redo_skip_checkpoints(self, engine):
        ws_id = await engine.create("Test", {"a": 1}, OWNER)
        await engine.update(ws_id, {"a": 2}, 1, OWNER)
        await engine.checkpoint(ws_id, "two", OWNER)
        await engine.update(ws_id, {"a": 3}, 2, OWNER)

        result = await engine.undo(ws_id, OWNER)
        assert result.data == {"a": 2}
        result = await engine.undo(ws_id, OWNER)
        assert result.data == {"a": 1}
        result = await engine.redo(ws_id, OWNER)
        assert result.data == {"a": 2}

    @pytest.mark.asyncio
    async def test_branching_drops_future_checkpoints(self, engine):
        ws_id = await engine.create("Test", {"a": 1}, OWNER)
        await engine.update(ws_id, {"a": 2}, 1, OWNER)
        await engine.checkpoint(ws_id, "two", OWNER)
        await engine.undo(ws_id, OWNER)
        await engine.update(ws_id, {"a": 5}, 3, OWNER)

        history = await engine.get_history(ws_id, OWNER)
        assert [(e.kind, e.version) for e in history] == [("patch", 1)]

    @pytest.mark.asyncio
    async def test_state_at_each_version(self, engine):
        ws_id = await engine.create("Test", {"n": 0}, OWNER)
        for i in range(1, 4):
            await engine.update(ws_id, {"n": i}, i, OWNER)

        for i in range(4):
            assert await engine.state_at(ws_id, i, OWNER) == {"n": i}

        with pytest.raises(ValueError):
            await engine.state_at(ws_id, 4, OWNER)
        with pytest.raises(ValueError):
            await engine.state_at(ws_id, -1, OWNER)


class TestRebuildState:
    """Tests for the pure rebuild_state() function."""

    def _workspace(self, base, max_event_version):
        return Workspace(
            id="ws",
            name="Test",
            owner_id=OWNER,
            current_data=None,
            base_data=base,
            event_version=max_event_version,
            max_event_version=max_event_version,
        )

    def test_rebuild_does_not_mutate_base(self):
        workspace = self._workspace({"a": [1]}, 1)
        events = [PatchEvent("ws", 1, [{"op": "add", "path": "/a/-", "value": 2}])]

        assert rebuild_state(workspace, 1, events) == {"a": [1, 2]}
        assert workspace.base_data == {"a": [1]}

    def test_rebuild_ignores_event_order(self):
        workspace = self._workspace({"n": 0}, 2)
        events = [
            PatchEvent("ws", 2, [{"op": "replace", "path": "/n", "value": 2}]),
            PatchEvent("ws", 1, [{"op": "replace", "path": "/n", "value": 1}]),
        ]
        assert rebuild_state(workspace, 2, events) == {"n": 2}

    def test_rebuild_detects_gap(self):
        """A missing event in the chain is a PatchApplyError."""
        workspace = self._workspace({"n": 0}, 2)
        events = [PatchEvent("ws", 2, [{"op": "replace", "path": "/n", "value": 2}])]

        with pytest.raises(PatchApplyError):
            rebuild_state(workspace, 2, events)

    def test_rebuild_detects_corrupt_patch(self):
        workspace = self._workspace({"n": 0}, 1)
        events = [PatchEvent("ws", 1, [{"op": "remove", "path": "/missing"}])]

        with pytest.raises(PatchApplyError):
            rebuild_state(workspace, 1, events)
