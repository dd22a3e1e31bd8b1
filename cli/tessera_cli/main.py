"""
Entry point for the `tessera` command.

Usage:
    tessera init <name> [--store-url URL] [--force]
    tessera dev
    tessera undo | redo | history
    tessera checkpoint <name>
    tessera login --token TOKEN [--expires-at MS]
    tessera logout | whoami

Exit codes:
    0 on success (including "Nothing to undo/redo")
    1 on missing configuration or credentials, and on store errors
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from dbaas.tessera_server.store.base import StoreError
from dbaas.tessera_server.versioning.errors import VersioningError
from sdk.tessera_sdk.errors import TesseraError, VersionConflictError

from .commands import TesseraCLI
from .config import CliError
from .settings import CliSettings

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tessera",
        description="Version a JSON design locally and sync it to a Tessera store",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # init command
    init_parser = subparsers.add_parser("init", help="Create design.json and start tracking it")
    init_parser.add_argument("name", help="Workspace name")
    init_parser.add_argument("--store-url", help="Tessera server URL (default: $TESSERA_STORE_URL)")
    init_parser.add_argument("--force", action="store_true", help="Overwrite design.json")

    subparsers.add_parser("dev", help="Watch design.json and sync changes")
    subparsers.add_parser("undo", help="Step back one version")
    subparsers.add_parser("redo", help="Step forward one version")
    subparsers.add_parser("history", help="List local versions")

    # checkpoint command
    checkpoint_parser = subparsers.add_parser("checkpoint", help="Label the current version")
    checkpoint_parser.add_argument("name", help="Checkpoint label")

    # login command
    login_parser = subparsers.add_parser("login", help="Save a bearer token")
    login_parser.add_argument("--token", required=True, help="Bearer token issued by the store")
    login_parser.add_argument("--expires-at", type=int, help="Token expiry (Unix ms)")

    subparsers.add_parser("logout", help="Remove saved credentials")
    subparsers.add_parser("whoami", help="Check the saved credentials")

    return parser


async def dispatch(cli: TesseraCLI, args: argparse.Namespace) -> int:
    if args.command == "init":
        return await cli.init(args.name, store_url=args.store_url, force=args.force)
    elif args.command == "dev":
        return await cli.dev()
    elif args.command == "undo":
        return await cli.undo()
    elif args.command == "redo":
        return await cli.redo()
    elif args.command == "history":
        return await cli.history()
    elif args.command == "checkpoint":
        return await cli.checkpoint(args.name)
    elif args.command == "login":
        return await cli.login(args.token, expires_at=args.expires_at)
    elif args.command == "logout":
        return await cli.logout()
    elif args.command == "whoami":
        return await cli.whoami()
    raise CliError(f"Unknown command: {args.command}")


def run(argv: Sequence[str] | None = None, cli: TesseraCLI | None = None) -> int:
    """Parse arguments, run one command and map failures to exit codes."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    cli = cli or TesseraCLI(CliSettings())
    try:
        return asyncio.run(dispatch(cli, args))
    except KeyboardInterrupt:
        print("")
        print("Stopped.")
        return 0
    except CliError as e:
        print(str(e), file=sys.stderr)
        return 1
    except VersionConflictError:
        print("✗ Conflict detected - please reload to get latest version", file=sys.stderr)
        return 1
    except TesseraError as e:
        print(f"{args.command.capitalize()} failed: {e.message}", file=sys.stderr)
        return 1
    except VersioningError as e:
        print(f"{args.command.capitalize()} failed: {e.message}", file=sys.stderr)
        return 1
    except StoreError as e:
        print(f"Local store error: {e}", file=sys.stderr)
        return 1


def main() -> None:
    """CLI entry point."""
    sys.exit(run())


if __name__ == "__main__":
    main()
