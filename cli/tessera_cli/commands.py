"""
Command implementations for the Tessera CLI.

Each command is an async method returning a process exit code. Output
goes to stdout; user-facing failures raise CliError (or an SDK error)
and are reported by main().

Invariants:
    - design.json is the only file users edit; commands that change the
      current version rewrite it
    - undo/redo go to the remote workspace when the project is linked,
      otherwise to the local store
    - history and checkpoint always use the local store
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from dbaas.tessera_server.store.local import LocalFileStore
from dbaas.tessera_server.versioning.engine import VersionEngine
from dbaas.tessera_server.versioning.types import CheckpointEvent, HistoryMoveResult
from sdk.tessera_sdk.client import WorkspaceClient
from sdk.tessera_sdk.errors import UnauthenticatedError
from sdk.tessera_sdk.retry import with_retry

from . import __version__
from .config import CliError, ProjectConfig, load_project_config, save_project_config
from .credentials import (
    TokenData,
    clear_credentials,
    credentials_path,
    get_valid_token,
    load_credentials,
    save_credentials,
)
from .settings import CliSettings
from .sync import DesignSync, DesignWatcher, SingleFlightSyncer
from .templates import starter_design

logger = logging.getLogger(__name__)


def _format_time(timestamp_ms: int) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000).strftime("%Y-%m-%d %H:%M:%S")


class TesseraCLI:
    """The `tessera` commands, bound to a project directory.

    Example:
        >>> cli = TesseraCLI(CliSettings(), cwd=Path("."))
        >>> await cli.init("Landing page")
        >>> await cli.history()
    """

    def __init__(self, settings: CliSettings | None = None, cwd: Path | None = None) -> None:
        self.settings = settings or CliSettings()
        self.cwd = Path(cwd) if cwd else Path.cwd()

    @property
    def project_dir(self) -> Path:
        return self.cwd / self.settings.project_dir

    @property
    def design_path(self) -> Path:
        return self.cwd / self.settings.design_file

    async def _open_local(self) -> LocalFileStore:
        return await LocalFileStore(self.project_dir).open()

    def _client(self, store_url: str) -> WorkspaceClient:
        return WorkspaceClient(
            store_url,
            token=get_valid_token(self.settings),
            timeout=self.settings.timeout,
        )

    def _write_design(self, data: Any) -> None:
        with open(self.design_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
            f.write("\n")

    # --- Project commands ---

    async def init(self, name: str, store_url: str | None = None, force: bool = False) -> int:
        """Write a starter design and record it as the local base.

        When a store URL and credentials are available, also create the
        remote workspace and link the project to it.
        """
        if self.design_path.exists() and not force:
            raise CliError(
                f"{self.settings.design_file} already exists. Use --force to overwrite."
            )

        data = starter_design(name)
        self._write_design(data)

        local = await self._open_local()
        await local.record_change(data)

        print(f"✓ Created {self.settings.design_file}")
        print(f"  Workspace: {name}")

        store_url = store_url or self.settings.store_url
        if store_url:
            if load_credentials(self.settings) is None:
                print("⚠ Not logged in; remote workspace not created.")
                print("  Run `tessera login`, then `tessera init` again to link this project.")
            else:
                async with self._client(store_url) as client:
                    workspace_id = await with_retry(lambda: client.create(name, data))
                save_project_config(self.project_dir, ProjectConfig(store_url, workspace_id))
                print(f"  ID: {workspace_id}")
                print(f"  Store: {store_url}")

        print("")
        print("Next steps:")
        print("  1. Run 'tessera dev' to start watching for changes")
        print(f"  2. Edit {self.settings.design_file} to modify your design")
        return 0

    async def dev(self) -> int:
        """Watch design.json and sync every change until interrupted."""
        local = await self._open_local()
        config = load_project_config(self.project_dir)

        print(f"Tessera CLI v{__version__}")

        client: WorkspaceClient | None = None
        design_sync = DesignSync(local)
        if config:
            print(f"Store URL: {config.store_url}")
            print(f"Workspace ID: {config.workspace_id}")
            client = self._client(config.store_url)
            remote = await with_retry(lambda: client.get(config.workspace_id))
            if remote is None:
                await client.close()
                raise CliError(f"Workspace {config.workspace_id} not found on {config.store_url}")
            design_sync = DesignSync(local, client, config.workspace_id, remote.version)
        else:
            print("No store configuration found - syncing locally only")
            print("Run 'tessera init <name> --store-url URL' to link a remote workspace")
        print("")

        syncer = SingleFlightSyncer(design_sync.sync)
        watcher = DesignWatcher(
            self.design_path,
            syncer.submit,
            poll_interval=self.settings.poll_interval,
            debounce_ms=self.settings.debounce_ms,
        )

        print(f"Watching {self.settings.design_file} for changes...")
        print("Press Ctrl+C to stop")
        print("")

        try:
            await watcher.run()
        finally:
            if client is not None:
                await client.close()
        return 0

    # --- Version commands ---

    async def undo(self) -> int:
        """Step back one version."""
        return await self._move("undo")

    async def redo(self) -> int:
        """Step forward one version."""
        return await self._move("redo")

    async def _move(self, direction: str) -> int:
        config = load_project_config(self.project_dir)

        if config:
            async with self._client(config.store_url) as client:
                call = client.undo if direction == "undo" else client.redo
                result = HistoryMoveResult(**await call(config.workspace_id))
        else:
            local = await self._open_local()
            workspace = local.current()
            if workspace is None:
                print(f"Nothing to {direction}")
                return 0
            engine = VersionEngine(local)
            call = engine.undo if direction == "undo" else engine.redo
            result = await call(workspace.id, workspace.owner_id)

        if not result.success:
            print(result.message)
            return 0

        self._write_design(result.data)
        verb = "Undone" if direction == "undo" else "Redone"
        print(f"✓ {verb}: v{result.previous_version} → v{result.current_version}")
        return 0

    async def history(self) -> int:
        """List local versions and checkpoints."""
        local = await self._open_local()
        events = await local.history()

        if not events:
            print("No version history found.")
            print("Run 'tessera dev' and make some changes to start tracking.")
            return 0

        print("Version History")
        print("===============")
        print("")

        for event in events:
            count = len(event.patches)
            label = f" [{event.label}]" if isinstance(event, CheckpointEvent) else ""
            plural = "" if count == 1 else "s"
            print(f"  v{event.version}  {_format_time(event.timestamp)}  ({count} change{plural}){label}")

        print("")
        print(f"Current version: v{local.current().event_version}")
        return 0

    async def checkpoint(self, name: str) -> int:
        """Label the current local version."""
        local = await self._open_local()
        workspace = local.current()
        if workspace is None:
            raise CliError("No local history. Run `tessera init <name>` or `tessera dev` first.")

        event = await VersionEngine(local).checkpoint(workspace.id, name, workspace.owner_id)
        print(f"✓ Checkpoint '{name}' at v{event.version}")
        return 0

    # --- Auth commands ---

    async def login(self, token: str, expires_at: int | None = None) -> int:
        """Save a bearer token for later commands."""
        if load_credentials(self.settings) is not None:
            print("Already logged in; replacing saved credentials.")

        save_credentials(TokenData(access_token=token, expires_at=expires_at), self.settings.home)
        print("✓ Login successful!")
        return 0

    async def logout(self) -> int:
        """Remove saved credentials."""
        if not clear_credentials(self.settings.home):
            print("Not currently logged in.")
            return 0
        print("✓ Logged out successfully.")
        return 0

    async def whoami(self) -> int:
        """Check that the saved token is accepted by the store."""
        if load_credentials(self.settings) is None:
            print("Not logged in. Run `tessera login` to authenticate.")
            return 0

        config = load_project_config(self.project_dir)
        store_url = config.store_url if config else self.settings.store_url
        if not store_url:
            print("Logged in, but no project configured.")
            print("Run `tessera init <name> --store-url URL` to set up a project.")
            return 0

        try:
            async with self._client(store_url) as client:
                workspaces = await client.list()
        except UnauthenticatedError:
            print("Token invalid or expired. Run `tessera login` to re-authenticate.")
            return 1

        print("✓ Authenticated")
        print(f"  Workspaces: {len(workspaces)}")
        print(f"  Store URL: {store_url}")
        if self.settings.token is None:
            print(f"  Credentials: {credentials_path(self.settings.home)}")
        return 0
