"""
SQLite workspace store for Tessera (the hosted table).

This module manages the SQLite database that stores:
- Workspaces with their current and base documents and version counters
- The per-workspace event log (patch events and checkpoints)

Invariants:
    - All writes are atomic (single BEGIN IMMEDIATE transaction)
    - commit() is a compare-and-swap on workspaces.version
    - At most one patch event per (workspace_id, version)
    - Events are returned in insertion order (event_id)

How to change safely:
    - Schema migrations must be backward compatible
    - Use transactions for all multi-statement writes
    - Never update or delete events outside commit(truncate_after=...)

Table schema:
    workspaces:
        - id TEXT PRIMARY KEY
        - name TEXT
        - owner_id TEXT
        - current_json TEXT (JSON)
        - base_json TEXT (JSON)
        - version INTEGER
        - event_version INTEGER
        - max_event_version INTEGER
        - created_at INTEGER (Unix ms)
        - updated_at INTEGER (Unix ms)

    events:
        - event_id INTEGER PRIMARY KEY AUTOINCREMENT
        - workspace_id TEXT
        - kind TEXT ('patch' | 'checkpoint')
        - version INTEGER
        - timestamp INTEGER (Unix ms)
        - user_id TEXT
        - patches_json TEXT (JSON)
        - label TEXT
        - UNIQUE (workspace_id, version) WHERE kind = 'patch'
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..versioning.errors import VersionConflictError, WorkspaceNotFoundError
from ..versioning.types import CheckpointEvent, Event, PatchEvent, Workspace
from .base import StoreError, check_fields

logger = logging.getLogger(__name__)

# Workspace field -> column
_COLUMNS = {
    "name": "name",
    "current_data": "current_json",
    "version": "version",
    "event_version": "event_version",
    "max_event_version": "max_event_version",
    "updated_at": "updated_at",
}

_JSON_FIELDS = frozenset({"current_data"})


def _row_to_workspace(row: sqlite3.Row) -> Workspace:
    """Convert a database row to a Workspace."""
    return Workspace(
        id=row["id"],
        name=row["name"],
        owner_id=row["owner_id"],
        current_data=json.loads(row["current_json"]),
        base_data=json.loads(row["base_json"]),
        version=row["version"],
        event_version=row["event_version"],
        max_event_version=row["max_event_version"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_event(row: sqlite3.Row) -> Event:
    """Convert a database row to a PatchEvent or CheckpointEvent."""
    if row["kind"] == "checkpoint":
        return CheckpointEvent(
            workspace_id=row["workspace_id"],
            version=row["version"],
            label=row["label"] or "",
            user_id=row["user_id"],
            timestamp=row["timestamp"],
        )
    return PatchEvent(
        workspace_id=row["workspace_id"],
        version=row["version"],
        patches=json.loads(row["patches_json"]),
        user_id=row["user_id"],
        timestamp=row["timestamp"],
    )


class SqliteWorkspaceStore:
    """SQLite-backed implementation of WorkspaceStore.

    Thread safety:
        Each operation opens its own connection. Writes take an
        IMMEDIATE lock, so concurrent commits are serialized by SQLite.

    Example:
        >>> store = SqliteWorkspaceStore("/var/lib/tessera/tessera.db")
        >>> await store.initialize()
        >>> ws_id = await store.insert_workspace(workspace)
    """

    # SQLite schema version for migrations
    SCHEMA_VERSION = 1

    def __init__(
        self,
        db_path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the workspace store.

        Args:
            db_path: Path of the SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.db_path = Path(db_path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._initialized = False
        self._lock = asyncio.Lock()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection, creating the schema on first use."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            if not self._initialized:
                self._create_schema(conn)
                self._initialized = True

            yield conn
        finally:
            conn.close()

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS workspaces (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL DEFAULT '',
                owner_id TEXT NOT NULL,
                current_json TEXT NOT NULL DEFAULT 'null',
                base_json TEXT NOT NULL DEFAULT 'null',
                version INTEGER NOT NULL DEFAULT 1,
                event_version INTEGER NOT NULL DEFAULT 0,
                max_event_version INTEGER NOT NULL DEFAULT 0,
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL,
                CHECK (event_version >= 0 AND event_version <= max_event_version)
            );

            CREATE INDEX IF NOT EXISTS idx_workspaces_owner
                ON workspaces(owner_id, updated_at DESC);

            CREATE TABLE IF NOT EXISTS events (
                event_id INTEGER PRIMARY KEY AUTOINCREMENT,
                workspace_id TEXT NOT NULL REFERENCES workspaces(id),
                kind TEXT NOT NULL DEFAULT 'patch',
                version INTEGER NOT NULL,
                timestamp INTEGER NOT NULL,
                user_id TEXT,
                patches_json TEXT NOT NULL DEFAULT '[]',
                label TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_events_workspace
                ON events(workspace_id, version);

            CREATE UNIQUE INDEX IF NOT EXISTS idx_events_patch_version
                ON events(workspace_id, version) WHERE kind = 'patch';

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES (1, strftime('%s', 'now') * 1000);
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        async with self._lock:
            with self._get_connection():
                logger.info(f"Initialized workspace database: {self.db_path}")

    async def get(self, workspace_id: str) -> Workspace | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM workspaces WHERE id = ?",
                (workspace_id,),
            ).fetchone()
            return _row_to_workspace(row) if row else None

    async def insert_workspace(self, workspace: Workspace) -> str:
        if not workspace.id:
            workspace.id = str(uuid.uuid4())

        with self._get_connection() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO workspaces (id, name, owner_id, current_json, base_json,
                                            version, event_version, max_event_version,
                                            created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        workspace.id,
                        workspace.name,
                        workspace.owner_id,
                        json.dumps(workspace.current_data),
                        json.dumps(workspace.base_data),
                        workspace.version,
                        workspace.event_version,
                        workspace.max_event_version,
                        workspace.created_at,
                        workspace.updated_at,
                    ),
                )
            except sqlite3.IntegrityError as e:
                raise StoreError(f"Cannot insert workspace {workspace.id}: {e}") from e

        logger.debug(
            "Workspace inserted",
            extra={"workspace_id": workspace.id, "owner_id": workspace.owner_id},
        )
        return workspace.id

    async def put(
        self,
        workspace_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> None:
        check_fields(fields)
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                self._update_workspace(conn, workspace_id, fields, expected_version)
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def insert_event(self, event: Event) -> int:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                event_id = self._insert_event(conn, event)
                conn.execute("COMMIT")
                return event_id
            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def query_events(
        self,
        workspace_id: str,
        up_to: int | None = None,
    ) -> list[Event]:
        query = "SELECT * FROM events WHERE workspace_id = ?"
        params: list[Any] = [workspace_id]
        if up_to is not None:
            query += " AND version <= ?"
            params.append(up_to)
        query += " ORDER BY event_id ASC"

        with self._get_connection() as conn:
            return [_row_to_event(row) for row in conn.execute(query, params).fetchall()]

    async def list_by_owner(self, owner_id: str) -> list[Workspace]:
        with self._get_connection() as conn:
            cursor = conn.execute(
                "SELECT * FROM workspaces WHERE owner_id = ? ORDER BY updated_at DESC",
                (owner_id,),
            )
            return [_row_to_workspace(row) for row in cursor.fetchall()]

    async def commit(
        self,
        workspace_id: str,
        expected_version: int,
        fields: dict[str, Any],
        event: Event | None = None,
        truncate_after: int | None = None,
    ) -> None:
        check_fields(fields)
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                self._check_version(conn, workspace_id, expected_version)

                if truncate_after is not None:
                    cursor = conn.execute(
                        "DELETE FROM events WHERE workspace_id = ? AND version > ?",
                        (workspace_id, truncate_after),
                    )
                    if cursor.rowcount:
                        logger.debug(
                            "Truncated redo branch",
                            extra={
                                "workspace_id": workspace_id,
                                "after_version": truncate_after,
                                "deleted": cursor.rowcount,
                            },
                        )

                if event is not None:
                    self._insert_event(conn, event)

                self._update_workspace(conn, workspace_id, fields, expected_version)
                conn.execute("COMMIT")

            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def close(self) -> None:
        """Connections are per-operation; nothing to release."""
        self._initialized = False

    def _check_version(
        self,
        conn: sqlite3.Connection,
        workspace_id: str,
        expected_version: int,
    ) -> None:
        row = conn.execute(
            "SELECT version FROM workspaces WHERE id = ?",
            (workspace_id,),
        ).fetchone()
        if row is None:
            raise WorkspaceNotFoundError(workspace_id)
        if row["version"] != expected_version:
            raise VersionConflictError(workspace_id, expected_version, row["version"])

    def _update_workspace(
        self,
        conn: sqlite3.Connection,
        workspace_id: str,
        fields: dict[str, Any],
        expected_version: int | None,
    ) -> None:
        if expected_version is not None:
            self._check_version(conn, workspace_id, expected_version)

        if not fields:
            return

        # Column names come from _COLUMNS only
        set_clause = ", ".join(f"{_COLUMNS[k]} = ?" for k in fields)
        values = [json.dumps(v) if k in _JSON_FIELDS else v for k, v in fields.items()]

        query = f"UPDATE workspaces SET {set_clause} WHERE id = ?"  # noqa: S608
        params = [*values, workspace_id]
        if expected_version is not None:
            query += " AND version = ?"
            params.append(expected_version)

        cursor = conn.execute(query, params)
        if cursor.rowcount == 0:
            raise WorkspaceNotFoundError(workspace_id)

    def _insert_event(self, conn: sqlite3.Connection, event: Event) -> int:
        exists = conn.execute(
            "SELECT 1 FROM workspaces WHERE id = ?",
            (event.workspace_id,),
        ).fetchone()
        if exists is None:
            raise WorkspaceNotFoundError(event.workspace_id)

        try:
            cursor = conn.execute(
                """
                INSERT INTO events (workspace_id, kind, version, timestamp, user_id,
                                    patches_json, label)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    event.workspace_id,
                    event.kind,
                    event.version,
                    event.timestamp,
                    event.user_id,
                    json.dumps(event.patches),
                    event.label if isinstance(event, CheckpointEvent) else None,
                ),
            )
        except sqlite3.IntegrityError as e:
            raise StoreError(
                f"Event {event.version} already exists for workspace {event.workspace_id}"
            ) from e

        return cursor.lastrowid

    async def get_stats(self) -> dict[str, int]:
        """Get row counts for health reporting."""
        with self._get_connection() as conn:
            stats = {}
            stats["workspaces"] = conn.execute("SELECT COUNT(*) FROM workspaces").fetchone()[0]
            stats["events"] = conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
            return stats
