"""
Sync settings -- relays, timeouts, and paging limits.

Settings live in ``<home>/config.yaml``. A missing or broken file falls
back to defaults so a fresh install can still read from relays.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from . import RELAYLISTS_HOME

logger = logging.getLogger("relaylists.config")

CONFIG_FILE = "config.yaml"

DEFAULT_RELAYS = [
    "wss://relay.damus.io",
    "wss://nos.lol",
    "wss://relay.nostr.band",
]


class SyncSettings(BaseModel):
    """Complete synchronization configuration."""

    relays: list[str] = Field(default_factory=lambda: list(DEFAULT_RELAYS))
    relay_timeout: float = Field(default=8.0, gt=0, description="Seconds per relay query")
    publish_timeout: float = Field(default=10.0, gt=0, description="Seconds to wait for OK")
    relay_concurrency: int = Field(default=3, ge=1, description="Relays queried at once")
    page_size: int = Field(default=500, ge=1)
    max_pages: int = Field(default=20, ge=1)
    cache_ttl_seconds: float = Field(default=60.0, ge=0)
    lists: list[str] = Field(default_factory=lambda: ["tribes", "bookmarks", "mutes"])


def resolve_home(home: Optional[Path] = None) -> Path:
    """Expand the configured home directory."""
    return Path(home or RELAYLISTS_HOME).expanduser()


def load_settings(home: Optional[Path] = None) -> SyncSettings:
    """Load sync settings from disk.

    Args:
        home: Override for the relaylists home directory.

    Returns:
        SyncSettings: Parsed settings, or defaults when the file is
        missing or invalid.
    """
    config_file = resolve_home(home) / CONFIG_FILE
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            return SyncSettings(**data)
        except (yaml.YAMLError, ValueError, TypeError) as exc:
            logger.warning("Failed to load sync config: %s", exc)
    return SyncSettings()


def save_settings(settings: SyncSettings, home: Optional[Path] = None) -> Path:
    """Persist sync settings to disk.

    Returns:
        Path: The written config file.
    """
    home_path = resolve_home(home)
    home_path.mkdir(parents=True, exist_ok=True)
    config_file = home_path / CONFIG_FILE
    config_file.write_text(
        yaml.dump(settings.model_dump(mode="json"), default_flow_style=False),
        encoding="utf-8",
    )
    return config_file
