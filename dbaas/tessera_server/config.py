"""
Configuration management for Tessera Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for critical settings
    - Secrets (auth tokens) are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class StoreBackend(Enum):
    """Supported workspace store backends."""

    SQLITE = "sqlite"
    MEMORY = "memory"


@dataclass(frozen=True)
class HttpConfig:
    """HTTP API server configuration.

    Attributes:
        host: Address to bind
        port: Port to bind
        root_path: ASGI root path when served behind a proxy prefix
    """

    host: str = "0.0.0.0"
    port: int = 8080
    root_path: str = ""

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            root_path=os.getenv("HTTP_ROOT_PATH", ""),
        )


@dataclass(frozen=True)
class StorageConfig:
    """Local storage configuration.

    Attributes:
        db_path: SQLite database file holding workspaces and events
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    db_path: str = "/var/lib/tessera/tessera.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> StorageConfig:
        """Load configuration from environment variables."""
        return cls(
            db_path=os.getenv("TESSERA_DB_PATH", "/var/lib/tessera/tessera.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class AuthConfig:
    """Caller identity configuration.

    Attributes:
        tokens: Bearer token -> subject (principal id)
        trust_actor_header: Accept X-Actor as the caller identity.
            Development only; anyone can claim any identity.
    """

    tokens: dict[str, str] = field(default_factory=dict)
    trust_actor_header: bool = False

    @classmethod
    def from_env(cls) -> AuthConfig:
        """Load configuration from environment variables.

        Raises:
            ValueError: If TESSERA_AUTH_TOKENS is not a JSON object of strings
        """
        raw = os.getenv("TESSERA_AUTH_TOKENS", "")
        tokens: dict[str, str] = {}
        if raw:
            try:
                tokens = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ValueError(f"TESSERA_AUTH_TOKENS is not valid JSON: {e.msg}") from None
            if not isinstance(tokens, dict) or not all(
                isinstance(k, str) and isinstance(v, str) for k, v in tokens.items()
            ):
                raise ValueError("TESSERA_AUTH_TOKENS must map token strings to subject strings")

        return cls(
            tokens=tokens,
            trust_actor_header=os.getenv("TESSERA_TRUST_ACTOR_HEADER", "false").lower() == "true",
        )

    def resolve(self, token: str | None) -> str | None:
        """Subject for a bearer token, or None if unknown."""
        if not token:
            return None
        return self.tokens.get(token)


@dataclass(frozen=True)
class ObservabilityConfig:
    """Observability and logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        store_backend: Which workspace store to use
        http: HTTP API configuration
        storage: SQLite storage configuration
        auth: Caller identity configuration
        observability: Observability configuration
    """

    store_backend: StoreBackend = StoreBackend.SQLITE
    http: HttpConfig = field(default_factory=HttpConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("TESSERA_STORE_BACKEND", "sqlite").lower()
        try:
            store_backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid TESSERA_STORE_BACKEND '{backend_str}'. Must be one of: sqlite, memory"
            ) from None

        config = cls(
            store_backend=store_backend,
            http=HttpConfig.from_env(),
            storage=StorageConfig.from_env(),
            auth=AuthConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.store_backend == StoreBackend.SQLITE and not self.storage.db_path:
            raise ValueError("TESSERA_DB_PATH is required when TESSERA_STORE_BACKEND=sqlite")

        if not 0 < self.http.port < 65536:
            raise ValueError(f"HTTP_PORT out of range: {self.http.port}")

        if self.observability.log_level.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR"):
            raise ValueError(f"Invalid LOG_LEVEL '{self.observability.log_level}'")

        if not self.auth.tokens and not self.auth.trust_actor_header:
            logger.warning(
                "No TESSERA_AUTH_TOKENS configured and X-Actor is not trusted. "
                "Every request will be unauthenticated."
            )
        if self.auth.trust_actor_header:
            logger.warning("TESSERA_TRUST_ACTOR_HEADER is enabled. Do not use in production.")

        if self.store_backend == StoreBackend.SQLITE:
            data_dir = os.path.dirname(self.storage.db_path) or "."
            if not os.path.exists(data_dir):
                logger.warning(
                    f"Data directory does not exist: {data_dir}. "
                    "It will be created on first write."
                )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "store_backend": self.store_backend.value,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "db_path": self.storage.db_path
                if self.store_backend == StoreBackend.SQLITE
                else None,
                "auth_token_count": len(self.auth.tokens),
                "trust_actor_header": self.auth.trust_actor_header,
                "log_level": self.observability.log_level,
            },
        )
