"""Configuration and directory management for Wormhole."""

import json
import logging
import os
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

WORMHOLE_DIR = Path(os.environ.get("WORMHOLE_DIR", Path.home() / ".wormhole")).expanduser()
DB_PATH = WORMHOLE_DIR / "timeline.db"
CONFIG_PATH = WORMHOLE_DIR / "config.json"
ARCHIVE_DIR = WORMHOLE_DIR / "archives"

DetailLevel = Literal["minimal", "normal", "full"]


class WormholeConfig(BaseModel):
    """User-tunable settings, stored as JSON in the Wormhole directory."""

    retention_hours: int = Field(default=24, ge=0, description="Hours of timeline history to keep")
    max_payload_chars: int = Field(default=200, ge=4, description="Truncation length for logged string values")
    auto_cleanup: bool = Field(default=True, description="Drop expired events when the server starts")
    archive_before_delete: bool = Field(default=False, description="Write expired events to archives/ first")
    default_limit: int = Field(default=5, ge=1, description="Events returned by get_recent when no limit is given")
    default_detail: DetailLevel = Field(default="minimal", description="Rendering detail for get_recent")


def ensure_dirs() -> None:
    """Ensure the Wormhole directory structure exists."""
    WORMHOLE_DIR.mkdir(parents=True, exist_ok=True)
    ARCHIVE_DIR.mkdir(parents=True, exist_ok=True)


def load_config(path: Path | None = None) -> WormholeConfig:
    """Load the config file, writing the defaults on first run.

    User values are merged over the defaults. A file that cannot be read or
    parsed falls back to the defaults rather than failing startup.
    """
    ensure_dirs()
    config_path = path or CONFIG_PATH

    if not config_path.exists():
        config = WormholeConfig()
        save_config(config, config_path)
        return config

    try:
        data = json.loads(config_path.read_text())
    except (json.JSONDecodeError, OSError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", config_path, exc)
        return WormholeConfig()

    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: expected a JSON object", config_path)
        return WormholeConfig()

    try:
        return WormholeConfig(**{**WormholeConfig().model_dump(), **data})
    except ValidationError as exc:
        logger.warning("Ignoring invalid config %s: %s", config_path, exc)
        return WormholeConfig()


def save_config(config: WormholeConfig, path: Path | None = None) -> Path:
    """Write a config to disk as indented JSON."""
    config_path = path or CONFIG_PATH
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(config.model_dump(), indent=2) + "\n")
    return config_path
