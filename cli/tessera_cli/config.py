"""
Project configuration for the Tessera CLI.

A project directory links to a remote workspace through
.tessera/config.json: {"store_url": ..., "workspace_id": ...}.
A project without this file works offline against the local store only.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.json"


class CliError(Exception):
    """A user-facing CLI failure. The message is printed as-is."""

    pass


@dataclass
class ProjectConfig:
    """Link between a project directory and a remote workspace.

    Attributes:
        store_url: Tessera server URL
        workspace_id: Remote workspace id
    """

    store_url: str
    workspace_id: str


def load_project_config(project_dir: Path) -> ProjectConfig | None:
    """Read .tessera/config.json.

    Returns:
        ProjectConfig, or None if the file is missing, unreadable or
        lacks either field
    """
    path = Path(project_dir) / CONFIG_FILE
    if not path.exists():
        return None

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Ignoring unreadable project config {path}: {e}")
        return None

    if not isinstance(data, dict) or not data.get("store_url") or not data.get("workspace_id"):
        return None
    return ProjectConfig(store_url=data["store_url"], workspace_id=data["workspace_id"])


def save_project_config(project_dir: Path, config: ProjectConfig) -> Path:
    """Write .tessera/config.json, creating the directory if needed."""
    path = Path(project_dir) / CONFIG_FILE
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(asdict(config), f, indent=2)
        f.write("\n")
    return path
