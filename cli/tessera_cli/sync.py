"""
Design file watching and syncing for `tessera dev`.

Three pieces:
- DesignWatcher polls design.json and reports debounced changes
- SingleFlightSyncer keeps at most one sync in flight; the latest
  payload submitted meanwhile is flushed right after
- DesignSync records each payload locally, then pushes it remotely

Invariants:
    - A change is recorded in the local store before any remote call
    - Intermediate payloads may be skipped; the latest is never lost
    - A remote version conflict never overwrites the remote workspace
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Any

from dbaas.tessera_server.store.local import LocalFileStore
from sdk.tessera_sdk.client import WorkspaceClient
from sdk.tessera_sdk.errors import TesseraError, VersionConflictError
from sdk.tessera_sdk.retry import with_retry

logger = logging.getLogger(__name__)

_NOTHING = object()


class SingleFlightSyncer:
    """Serialize sync calls, coalescing payloads that arrive mid-flight.

    Example:
        >>> syncer = SingleFlightSyncer(design_sync.sync)
        >>> await syncer.submit({"components": {}})
    """

    def __init__(self, sync_fn: Callable[[Any], Awaitable[None]]) -> None:
        self._sync_fn = sync_fn
        self._pending: Any = _NOTHING
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def submit(self, data: Any) -> None:
        """Queue data for syncing.

        If a sync is already running, data replaces any queued payload and
        this call returns immediately; the running loop picks it up.
        """
        self._pending = data
        if self._in_flight:
            return

        self._in_flight = True
        try:
            while self._pending is not _NOTHING:
                to_sync, self._pending = self._pending, _NOTHING
                try:
                    await self._sync_fn(to_sync)
                except Exception as e:
                    logger.error(f"Sync failed: {e}", exc_info=True)
                    print(f"✗ Sync failed: {e}")
        finally:
            self._in_flight = False


class DesignSync:
    """Record a design locally and push it to the remote workspace.

    Attributes:
        local: Local store for the project
        client: Remote client, or None for local-only projects
        workspace_id: Remote workspace id
        remote_version: Last known remote workspace.version
    """

    def __init__(
        self,
        local: LocalFileStore,
        client: WorkspaceClient | None = None,
        workspace_id: str | None = None,
        remote_version: int | None = None,
    ) -> None:
        self.local = local
        self.client = client
        self.workspace_id = workspace_id
        self.remote_version = remote_version

    async def sync(self, data: Any) -> None:
        print(f"[{datetime.now().strftime('%H:%M:%S')}] Syncing design...")

        await self.local.record_change(data)
        local_version = self.local.current().event_version

        if self.client is None or self.workspace_id is None:
            print(f"✓ Synced locally (v{local_version})")
            return

        try:
            result = await with_retry(
                lambda: self.client.update(self.workspace_id, data, self.remote_version)
            )
        except VersionConflictError:
            print("✗ Conflict detected - please reload to get latest version")
            await self._refresh_remote_version()
            return
        except TesseraError as e:
            logger.warning(
                "Remote sync failed",
                extra={"workspace_id": self.workspace_id, "code": e.code},
            )
            print(f"⚠ Remote sync failed (local changes saved): {e.message}")
            return

        self.remote_version = result["version"]
        if result.get("no_changes"):
            print(f"✓ No remote changes (v{local_version})")
        else:
            print(f"✓ Synced to store (v{local_version})")

    async def _refresh_remote_version(self) -> None:
        """Adopt the server's version so the next save is not stale."""
        try:
            remote = await self.client.get(self.workspace_id)
        except TesseraError as e:
            logger.warning(
                "Could not refresh remote version",
                extra={"workspace_id": self.workspace_id, "code": e.code},
            )
            return

        if remote is not None:
            self.remote_version = remote.version
            logger.info(
                "Refreshed remote version after conflict",
                extra={"workspace_id": self.workspace_id, "version": remote.version},
            )


class DesignWatcher:
    """Poll a design file and report debounced, parsed changes.

    A change is reported once the file has been quiet for debounce_ms.
    Each report runs as its own task so the watcher keeps polling while a
    sync is in flight.
    """

    def __init__(
        self,
        path: Path,
        on_change: Callable[[Any], Awaitable[None]],
        poll_interval: float = 0.1,
        debounce_ms: int = 300,
    ) -> None:
        self.path = Path(path)
        self.on_change = on_change
        self.poll_interval = poll_interval
        self.debounce_ms = debounce_ms
        self._running = False
        self._tasks: set[asyncio.Task] = set()

    def _signature(self) -> tuple[int, int] | None:
        try:
            stat = self.path.stat()
        except FileNotFoundError:
            return None
        return (stat.st_mtime_ns, stat.st_size)

    def _read(self) -> Any:
        try:
            with open(self.path, encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            print(f"✗ Error reading file: {e}")
            return _NOTHING

    async def run(self) -> None:
        """Watch until stop() is called or the task is cancelled."""
        if self._running:
            logger.warning("Watcher already running")
            return

        self._running = True
        loop = asyncio.get_running_loop()
        last_seen = self._signature()
        changed_at: float | None = None

        logger.info("Watching design file", extra={"path": str(self.path)})

        try:
            while self._running:
                await asyncio.sleep(self.poll_interval)

                signature = self._signature()
                if signature != last_seen:
                    last_seen = signature
                    changed_at = loop.time()
                    continue

                if changed_at is None or signature is None:
                    continue
                if (loop.time() - changed_at) * 1000 < self.debounce_ms:
                    continue

                changed_at = None
                data = self._read()
                if data is not _NOTHING:
                    task = asyncio.create_task(self.on_change(data))
                    self._tasks.add(task)
                    task.add_done_callback(self._tasks.discard)

        except asyncio.CancelledError:
            logger.info("Watcher cancelled")
            raise
        finally:
            self._running = False
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)

    def stop(self) -> None:
        """Stop the watch loop after the current poll."""
        self._running = False
