"""
Credential storage for the Tessera CLI.

Tokens live in <home>/credentials.json with owner-only permissions.
TESSERA_TOKEN overrides the saved file (CI and headless use).

Invariants:
    - The credentials file is mode 0600
    - Tokens expiring within EXPIRY_MARGIN_MS are treated as expired
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import CliError
from .settings import CliSettings

logger = logging.getLogger(__name__)

CREDENTIALS_FILE = "credentials.json"

# Refuse tokens this close to expiry
EXPIRY_MARGIN_MS = 5 * 60 * 1000


class CredentialsError(CliError):
    """Missing or expired credentials."""

    pass


@dataclass
class TokenData:
    """A saved login.

    Attributes:
        access_token: Bearer token
        refresh_token: Refresh token, if the issuer provided one
        expires_at: Expiry (Unix ms), if known
    """

    access_token: str
    refresh_token: str | None = None
    expires_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"access_token": self.access_token}
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        if self.expires_at is not None:
            data["expires_at"] = self.expires_at
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TokenData:
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=data.get("expires_at"),
        )

    def is_expired(self, now_ms: int | None = None) -> bool:
        if self.expires_at is None:
            return False
        now_ms = int(time.time() * 1000) if now_ms is None else now_ms
        return now_ms > self.expires_at - EXPIRY_MARGIN_MS


def credentials_path(home: Path) -> Path:
    return Path(home) / CREDENTIALS_FILE


def save_credentials(tokens: TokenData, home: Path) -> Path:
    """Write credentials with owner-only permissions."""
    path = credentials_path(home)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(tokens.to_dict(), f, indent=2)
    # O_CREAT mode does not apply to an existing file
    os.chmod(path, 0o600)

    logger.debug("Credentials saved", extra={"path": str(path)})
    return path


def load_credentials(settings: CliSettings) -> TokenData | None:
    """Load credentials, preferring TESSERA_TOKEN over the saved file.

    Returns:
        TokenData, or None if not logged in
    """
    if settings.token:
        return TokenData(access_token=settings.token)

    path = credentials_path(settings.home)
    if not path.exists():
        return None

    try:
        with open(path, encoding="utf-8") as f:
            return TokenData.from_dict(json.load(f))
    except (OSError, json.JSONDecodeError, KeyError) as e:
        logger.warning(f"Ignoring unreadable credentials {path}: {e}")
        return None


def clear_credentials(home: Path) -> bool:
    """Delete saved credentials.

    Returns:
        True if a file was removed
    """
    path = credentials_path(home)
    if not path.exists():
        return False
    path.unlink()
    return True


def get_valid_token(settings: CliSettings) -> str:
    """Return a usable bearer token.

    Raises:
        CredentialsError: If not logged in or the token is (nearly) expired
    """
    creds = load_credentials(settings)
    if creds is None:
        raise CredentialsError("Not authenticated. Run `tessera login` first.")
    if creds.is_expired():
        raise CredentialsError("Token expired. Run `tessera login` to refresh.")
    return creds.access_token
