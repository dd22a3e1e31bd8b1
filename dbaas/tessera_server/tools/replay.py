"""
Replay CLI tool for Tessera.

This tool opens the workspace database directly (offline) and:
1. Materializes a workspace at any historical event version (show)
2. Checks that stored current_data matches a replay of the log (verify)

Usage:
    tessera-replay --db-path <path> --workspace-id <id> show --version N
    tessera-replay --db-path <path> --workspace-id <id> verify

Invariants:
    - The tool never modifies workspaces or events
    - Replay uses the same rebuild_state() as the engine
    - Ownership checks are bypassed; this is an operator tool

How to change safely:
    - Keep output of show valid JSON so it can be piped
    - Add new modes as new subcommands
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from dataclasses import dataclass
from typing import Any

from ..store.sqlite import SqliteWorkspaceStore
from ..versioning.engine import rebuild_state
from ..versioning.errors import PatchApplyError, WorkspaceNotFoundError
from ..versioning.types import PatchEvent

logger = logging.getLogger(__name__)


@dataclass
class ReplayConfig:
    """Configuration for a replay run.

    Attributes:
        db_path: SQLite workspace database
        workspace_id: Workspace to replay
        busy_timeout_ms: SQLite busy timeout
    """

    db_path: str
    workspace_id: str
    busy_timeout_ms: int = 5000


@dataclass
class ReplayResult:
    """Result of a replay operation.

    Attributes:
        success: Whether the replay succeeded (and, for verify, matched)
        event_version: Event version that was materialized
        events_replayed: Number of patch events applied
        duration_ms: Total duration
        data: Materialized document
        error: Error message if failed
    """

    success: bool
    event_version: int | None
    events_replayed: int
    duration_ms: int
    data: Any = None
    error: str | None = None


class ReplayTool:
    """Offline replay of workspace event logs.

    Example:
        >>> tool = ReplayTool(ReplayConfig("/var/lib/tessera/tessera.db", ws_id))
        >>> result = await tool.show(3)
        >>> result.data
    """

    def __init__(self, config: ReplayConfig) -> None:
        self.config = config
        self.store = SqliteWorkspaceStore(
            config.db_path,
            wal_mode=False,
            busy_timeout_ms=config.busy_timeout_ms,
        )

    async def show(self, event_version: int | None = None) -> ReplayResult:
        """Materialize the workspace at event_version (default: current)."""
        start_time = time.time()
        try:
            workspace = await self._load()
            target = workspace.event_version if event_version is None else event_version
            events = await self.store.query_events(workspace.id, up_to=target)
            data = rebuild_state(workspace, target, events)
        except (WorkspaceNotFoundError, PatchApplyError, ValueError) as e:
            return self._failed(start_time, event_version, e)

        return ReplayResult(
            success=True,
            event_version=target,
            events_replayed=sum(1 for e in events if isinstance(e, PatchEvent)),
            duration_ms=int((time.time() - start_time) * 1000),
            data=data,
        )

    async def verify(self) -> ReplayResult:
        """Rebuild at the stored event_version and compare with current_data."""
        start_time = time.time()
        result = await self.show()
        if not result.success:
            return result

        workspace = await self._load()
        if result.data != workspace.current_data:
            logger.error(
                "Stored state does not match replay",
                extra={"workspace_id": workspace.id, "event_version": workspace.event_version},
            )
            return ReplayResult(
                success=False,
                event_version=result.event_version,
                events_replayed=result.events_replayed,
                duration_ms=int((time.time() - start_time) * 1000),
                data=result.data,
                error="current_data does not match replay of the event log",
            )

        logger.info(
            "Workspace verified",
            extra={"workspace_id": workspace.id, "event_version": workspace.event_version},
        )
        return result

    async def _load(self):
        workspace = await self.store.get(self.config.workspace_id)
        if workspace is None:
            raise WorkspaceNotFoundError(self.config.workspace_id)
        return workspace

    @staticmethod
    def _failed(start_time: float, event_version: int | None, error: Exception) -> ReplayResult:
        logger.error(f"Replay failed: {error}")
        return ReplayResult(
            success=False,
            event_version=event_version,
            events_replayed=0,
            duration_ms=int((time.time() - start_time) * 1000),
            error=str(error),
        )


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for replay tool."""
    parser = argparse.ArgumentParser(
        description="Replay a Tessera workspace from its event log"
    )
    parser.add_argument("--db-path", required=True, help="SQLite workspace database")
    parser.add_argument("--workspace-id", required=True, help="Workspace to replay")
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    show_parser = subparsers.add_parser("show", help="Print the document at an event version")
    show_parser.add_argument(
        "--version",
        type=int,
        default=None,
        help="Event version to materialize (default: current)",
    )

    subparsers.add_parser("verify", help="Check stored state against a replay")

    args = parser.parse_args(argv)

    # Configure logging
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    tool = ReplayTool(ReplayConfig(db_path=args.db_path, workspace_id=args.workspace_id))

    if args.command == "show":
        result = asyncio.run(tool.show(args.version))
        if result.success:
            print(json.dumps(result.data, indent=2))
            sys.exit(0)
    else:
        result = asyncio.run(tool.verify())
        if result.success:
            print("Verification passed")
            print(f"  Event version: {result.event_version}")
            print(f"  Events replayed: {result.events_replayed}")
            print(f"  Duration: {result.duration_ms}ms")
            sys.exit(0)

    print(f"Replay failed: {result.error}", file=sys.stderr)
    sys.exit(1)


if __name__ == "__main__":
    main()
