"""
Local working-directory store for the Tessera CLI.

One directory holds exactly one workspace:
    base.json      Document at event version 0
    snapshot.json  Materialized current document
    events.jsonl   Event log, one JSON object per line, append-only
    head.json      Workspace metadata and version counters

Invariants:
    - head.json is written last; it is the commit point of every write.
      On open, log entries it never committed are discarded and
      snapshot.json is rebuilt from the log
    - Truncating the redo branch rewrites events.jsonl through a temp
      file and os.replace, never in place
    - Event version counters survive restarts, so redo works across
      CLI invocations

How to change safely:
    - events.jsonl lines must stay readable by event_from_dict(),
      including the compact {"v", "ts", "patches", "checkpoint"} form that
      legacy adoption renumbers and rewrites
    - Keep writes ordered: events, snapshot, head
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
import json
import logging
import os
import tempfile
import uuid
from pathlib import Path
from typing import Any

from ..versioning import patches as patchlib
from ..versioning.errors import VersionConflictError, WorkspaceNotFoundError
from ..versioning.types import Event, PatchEvent, UpdateResult, Workspace, event_from_dict
from .base import StoreError, check_fields

logger = logging.getLogger(__name__)

BASE_FILE = "base.json"
SNAPSHOT_FILE = "snapshot.json"
EVENTS_FILE = "events.jsonl"
HEAD_FILE = "head.json"

# Owner recorded for workspaces created offline
LOCAL_OWNER = "local"


def _atomic_write(path: Path, text: str) -> None:
    """Write a file by renaming a fully written temp file over it."""
    fd, tmp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class LocalFileStore:
    """WorkspaceStore backed by a single local directory.

    Example:
        >>> store = LocalFileStore(".tessera")
        >>> await store.open()
        >>> await store.record_change({"components": {}})
    """

    def __init__(self, directory: str | Path, owner_id: str = LOCAL_OWNER) -> None:
        self.directory = Path(directory)
        self.owner_id = owner_id
        self._workspace: Workspace | None = None
        self._events: list[Event] = []
        self._lock = asyncio.Lock()

    @property
    def base_path(self) -> Path:
        return self.directory / BASE_FILE

    @property
    def snapshot_path(self) -> Path:
        return self.directory / SNAPSHOT_FILE

    @property
    def events_path(self) -> Path:
        return self.directory / EVENTS_FILE

    @property
    def head_path(self) -> Path:
        return self.directory / HEAD_FILE

    @property
    def workspace_id(self) -> str | None:
        return self._workspace.id if self._workspace else None

    async def open(self) -> LocalFileStore:
        """Create the directory if needed and load any existing workspace."""
        self.directory.mkdir(parents=True, exist_ok=True)
        self._load()
        return self

    def _load(self) -> None:
        self._events = self._read_events()

        if self.head_path.exists():
            head = self._read_json(self.head_path)
            head["base_data"] = self._read_json(self.base_path, default=None)
            head["current_data"] = self._read_json(self.snapshot_path, default=None)
            self._workspace = self._recover(Workspace.from_dict(head))
            logger.debug(
                "Loaded local workspace",
                extra={
                    "workspace_id": self._workspace.id,
                    "event_version": self._workspace.event_version,
                    "max_event_version": self._workspace.max_event_version,
                },
            )
        elif self._events or self.base_path.exists():
            self._workspace = self._adopt_legacy()
            logger.info(
                "Adopted legacy local history",
                extra={"directory": str(self.directory), "events": len(self._events)},
            )
        else:
            self._workspace = None

    def _recover(self, workspace: Workspace) -> Workspace:
        """Bring events.jsonl and snapshot.json back in line with head.json.

        Entries appended after the last head write were never committed
        and are dropped. A branch truncation interrupted before its head
        write leaves the log shorter than max_event_version, so the redo
        bound is lowered to the end of the log.

        Raises:
            StoreError: If the log cannot reach the head's event_version
        """
        events = [e for e in self._events if e.version <= workspace.max_event_version]
        patch_versions = sorted(e.version for e in events if isinstance(e, PatchEvent))
        log_end = len(patch_versions)
        if patch_versions != list(range(1, log_end + 1)) or log_end < workspace.event_version:
            raise StoreError(
                f"{self.events_path}: event log does not reach event version "
                f"{workspace.event_version} recorded in {HEAD_FILE}"
            )

        recovered = workspace.copy()
        recovered.max_event_version = log_end
        recovered.current_data = self._replay(workspace.base_data, events, workspace.event_version)

        dropped = len(self._events) - len(events)
        if (
            dropped
            or recovered.max_event_version != workspace.max_event_version
            or recovered.current_data != workspace.current_data
        ):
            logger.warning(
                "Recovered local workspace from an interrupted write",
                extra={
                    "workspace_id": workspace.id,
                    "dropped_events": dropped,
                    "max_event_version": recovered.max_event_version,
                },
            )
            self._rewrite_events(events)
            self._write_snapshot(recovered.current_data)
            self._write_head(recovered)
            self._events = events

        return recovered

    def _adopt_legacy(self) -> Workspace:
        """Build head metadata for a directory without head.json.

        Older logs number patches by history length, so numbers repeat or
        skip after a checkpoint and a restart. Events are renumbered in
        file order: patches become 1..N and each checkpoint takes the
        position of the patch before it. The log is rewritten in tagged
        form before head.json is written.
        """
        workspace_id = str(uuid.uuid4())
        events: list[Event] = []
        position = 0
        for event in self._events:
            if isinstance(event, PatchEvent):
                position += 1
            events.append(dataclasses.replace(event, workspace_id=workspace_id, version=position))

        base = self._read_json(self.base_path, default=None)
        current = self._replay(base, events, position)
        if self.snapshot_path.exists() and self._read_json(self.snapshot_path) != current:
            logger.warning(
                "Legacy snapshot does not match its event log; using the replayed document",
                extra={"directory": str(self.directory), "event_version": position},
            )

        workspace = Workspace(
            id=workspace_id,
            name=self.directory.resolve().parent.name,
            owner_id=self.owner_id,
            current_data=current,
            base_data=base,
            version=position + 1,
            event_version=position,
            max_event_version=position,
        )
        self._rewrite_events(events)
        self._write_snapshot(current)
        self._write_head(workspace)
        self._events = events
        return workspace

    @staticmethod
    def _replay(base: Any, events: list[Event], up_to: int) -> Any:
        selected = sorted(
            (e for e in events if isinstance(e, PatchEvent) and e.version <= up_to),
            key=lambda e: e.version,
        )
        return patchlib.replay(base, ((e.version, e.patches) for e in selected))

    def _read_events(self) -> list[Event]:
        if not self.events_path.exists():
            return []

        events = []
        with open(self.events_path, encoding="utf-8") as f:
            for lineno, line in enumerate(f, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    events.append(event_from_dict(json.loads(line), workspace_id=LOCAL_OWNER))
                except (json.JSONDecodeError, ValueError) as e:
                    raise StoreError(f"{self.events_path}:{lineno}: unreadable event: {e}") from e
        return events

    @staticmethod
    def _read_json(path: Path, default: Any = ...) -> Any:
        if not path.exists():
            if default is ...:
                raise StoreError(f"Missing file: {path}")
            return default
        with open(path, encoding="utf-8") as f:
            return json.load(f)

    def _write_head(self, workspace: Workspace) -> None:
        head = workspace.to_dict()
        del head["current_data"]
        del head["base_data"]
        _atomic_write(self.head_path, json.dumps(head, indent=2) + "\n")

    def _write_snapshot(self, data: Any) -> None:
        _atomic_write(self.snapshot_path, json.dumps(data, indent=2) + "\n")

    def _append_line(self, event: Event) -> None:
        with open(self.events_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(event.to_dict()) + "\n")
            f.flush()
            os.fsync(f.fileno())

    def _rewrite_events(self, events: list[Event]) -> None:
        text = "".join(json.dumps(e.to_dict()) + "\n" for e in events)
        _atomic_write(self.events_path, text)

    def _require(self, workspace_id: str) -> Workspace:
        if self._workspace is None or self._workspace.id != workspace_id:
            raise WorkspaceNotFoundError(workspace_id)
        return self._workspace

    # WorkspaceStore protocol

    async def get(self, workspace_id: str) -> Workspace | None:
        if self._workspace is None or self._workspace.id != workspace_id:
            return None
        return self._workspace.copy()

    async def insert_workspace(self, workspace: Workspace) -> str:
        async with self._lock:
            if self._workspace is not None:
                raise StoreError(f"{self.directory} already holds workspace {self._workspace.id}")
            if not workspace.id:
                workspace.id = str(uuid.uuid4())

            self.directory.mkdir(parents=True, exist_ok=True)
            _atomic_write(self.base_path, json.dumps(workspace.base_data, indent=2) + "\n")
            self._write_snapshot(workspace.current_data)
            self._rewrite_events([])
            self._write_head(workspace)

            self._workspace = workspace.copy()
            self._events = []

        logger.debug("Local workspace created", extra={"workspace_id": workspace.id})
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
            self._require(event.workspace_id)
            self._append_line(event)
            self._events.append(copy.deepcopy(event))
            return len(self._events)

    async def query_events(
        self,
        workspace_id: str,
        up_to: int | None = None,
    ) -> list[Event]:
        if self._workspace is None or self._workspace.id != workspace_id:
            return []
        return [
            copy.deepcopy(e)
            for e in self._events
            if up_to is None or e.version <= up_to
        ]

    async def list_by_owner(self, owner_id: str) -> list[Workspace]:
        if self._workspace is not None and self._workspace.owner_id == owner_id:
            return [self._workspace.copy()]
        return []

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

            events = self._events
            if truncate_after is not None:
                kept = [e for e in events if e.version <= truncate_after]
                if len(kept) != len(events):
                    self._rewrite_events(kept)
                    logger.debug(
                        "Truncated local redo branch",
                        extra={"workspace_id": workspace_id, "after_version": truncate_after},
                    )
                events = kept

            if event is not None:
                self._append_line(event)
                events = [*events, copy.deepcopy(event)]

            self._events = events
            self._write_fields(workspace, fields)

    async def close(self) -> None:
        self._workspace = None
        self._events = []

    def _write_fields(self, workspace: Workspace, fields: dict[str, Any]) -> None:
        updated = workspace.copy()
        for key, value in fields.items():
            setattr(updated, key, copy.deepcopy(value))

        if "current_data" in fields:
            self._write_snapshot(updated.current_data)
        self._write_head(updated)
        self._workspace = updated

    # CLI conveniences

    async def record_change(self, data: Any, actor_id: str | None = None) -> UpdateResult:
        """Record the latest local document.

        The first call creates the workspace with data as its base. Later
        calls record a patch event unless nothing changed.

        Args:
            data: Current document
            actor_id: Principal recorded on the event; defaults to the store
                owner. Only the workspace owner may record changes.

        Returns:
            UpdateResult of the write
        """
        from ..versioning.engine import VersionEngine

        actor = actor_id or self.owner_id
        engine = VersionEngine(self)

        if self._workspace is None:
            name = self.directory.resolve().parent.name
            await engine.create(name, data, actor)
            return UpdateResult(
                success=True,
                version=self._workspace.version,
                event_version=self._workspace.event_version,
                no_changes=True,
            )

        workspace = self._workspace
        return await engine.update(workspace.id, data, workspace.version, actor)

    async def history(self) -> list[Event]:
        """All local events in append order."""
        if self._workspace is None:
            return []
        return await self.query_events(self._workspace.id)

    def current(self) -> Workspace | None:
        """Copy of the local workspace, or None if nothing was recorded yet."""
        return self._workspace.copy() if self._workspace else None
