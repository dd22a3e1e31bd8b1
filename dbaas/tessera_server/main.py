"""
Tessera Server - Main entry point.

This module starts the Tessera server:
- Workspace store (SQLite or in-memory)
- Version engine
- HTTP API (FastAPI served by uvicorn)

Usage:
    python -m dbaas.tessera_server.main

Configuration is entirely via environment variables.
See config.py for all available settings.

Invariants:
    - The store is initialized before the HTTP API accepts requests
    - Graceful shutdown lets in-flight requests finish, then closes the store

How to change safely:
    - Close the store only after uvicorn has drained requests
    - Keep signal handling in main(); Server must stay embeddable in tests
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter
import uvicorn

from .api import create_app
from .config import ServerConfig
from .store import SqliteWorkspaceStore, WorkspaceStore, create_workspace_store
from .versioning import VersionEngine

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


class Server:
    """Tessera Server orchestrator.

    Manages the lifecycle of:
    - Workspace store
    - Version engine
    - HTTP server

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False

        # Set in start()
        self.store: WorkspaceStore | None = None
        self.engine: VersionEngine | None = None
        self.http_server: uvicorn.Server | None = None

    async def start(self) -> None:
        """Start the server and block until shutdown is requested."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting Tessera server")
        self.config.log_config()

        try:
            self.store = create_workspace_store(self.config)
            if isinstance(self.store, SqliteWorkspaceStore):
                await self.store.initialize()
            self.engine = VersionEngine(self.store)

            app = create_app(self.config, engine=self.engine)
            self.http_server = uvicorn.Server(
                uvicorn.Config(
                    app,
                    host=self.config.http.host,
                    port=self.config.http.port,
                    log_config=None,
                )
            )
            # Signals are handled by main()
            self.http_server.install_signal_handlers = lambda: None

            self._running = True
            logger.info(
                "Tessera server started",
                extra={"host": self.config.http.host, "port": self.config.http.port},
            )

            await self.http_server.serve()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping Tessera server")

        if self.store:
            await self.store.close()

        self._running = False
        logger.info("Tessera server stopped")

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        if self.http_server:
            self.http_server.should_exit = True


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    server = Server(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
