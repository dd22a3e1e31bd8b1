"""
Settings for the Tessera CLI.

Uses pydantic-settings for environment variable loading.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings


class CliSettings(BaseSettings):
    """CLI configuration loaded from environment."""

    # Remote store
    store_url: str | None = Field(default=None, description="Tessera server URL")
    token: str | None = Field(default=None, description="Bearer token (overrides saved login)")

    # Per-user state (credentials)
    home: Path = Field(
        default_factory=lambda: Path.home() / ".tessera",
        description="Directory holding credentials.json",
    )

    # Project layout
    project_dir: str = Field(default=".tessera", description="Local store directory")
    design_file: str = Field(default="design.json", description="Watched design document")

    # Watcher
    poll_interval: float = Field(default=0.1, description="Seconds between mtime checks")
    debounce_ms: int = Field(default=300, description="Quiet period before a change is synced")

    # Remote calls
    timeout: float = Field(default=30.0, description="Request timeout seconds")

    model_config = {"env_prefix": "TESSERA_"}
