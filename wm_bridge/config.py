"""Configuration loader for the window-manager bridge.

Loads bridge settings from a JSON file. A missing or invalid file falls back
to defaults so the bridge can always start.
"""

import json
import logging
import os
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "WM_BRIDGE_CONFIG"
DEFAULT_CONFIG_FILE = Path.home() / ".config" / "wm-bridge" / "config.json"

DEFAULT_PATH_PREFIX = ["/usr/local/bin", "/opt/homebrew/bin"]

DEFAULT_ICON_SEARCH_DIRS = [
    "/Applications",
    "/System/Applications",
    "/System/Applications/Utilities",
    str(Path.home() / "Applications"),
]

DEFAULT_SIGNAL_EVENTS = [
    "window_created",
    "window_destroyed",
    "window_focused",
    "window_moved",
    "window_title_changed",
    "space_changed",
    "space_created",
    "space_destroyed",
    "display_changed",
]


class BridgeConfig(BaseModel):
    """Settings for the runner, bridge, icon cache and signal watcher."""

    yabai_path: str = Field(
        default="yabai",
        description="yabai executable name or absolute path"
    )
    mdfind_path: str = Field(
        default="mdfind",
        description="Spotlight search executable used for slow icon lookups"
    )
    path_prefix: List[str] = Field(
        default_factory=lambda: list(DEFAULT_PATH_PREFIX),
        description="Directories prepended to PATH for every child process"
    )

    command_timeout: float = Field(
        default=10.0,
        gt=0,
        le=120,
        description="Default subprocess timeout (seconds)"
    )
    kill_grace_period: float = Field(
        default=1.0,
        ge=0,
        le=10,
        description="Delay between SIGTERM and SIGKILL on timeout (seconds)"
    )

    refresh_interval: float = Field(
        default=10.0,
        ge=0,
        description="Periodic refresh interval in seconds (0 disables the timer)"
    )
    debounce_ms: int = Field(
        default=200,
        ge=0,
        le=5000,
        description="Window for coalescing change notifications into one refresh (ms)"
    )
    coalesce_mutations: bool = Field(
        default=True,
        description="Replace identical queued mutations with the latest one"
    )
    max_mutation_batch: int = Field(
        default=16,
        ge=1,
        le=1000,
        description="Mutations run before a reconciliation refresh releases their callers"
    )

    icon_search_dirs: List[str] = Field(
        default_factory=lambda: list(DEFAULT_ICON_SEARCH_DIRS),
        description="Directories searched for <name>.app bundles"
    )
    icon_lookup_timeout: float = Field(
        default=5.0,
        gt=0,
        le=60,
        description="Timeout for the slow icon search (seconds)"
    )
    icon_workers: int = Field(
        default=2,
        ge=1,
        le=16,
        description="Worker threads for slow icon lookups"
    )

    register_signals: bool = Field(
        default=True,
        description="Register yabai signals that notify the bridge of changes"
    )
    signal_dir: Path = Field(
        default_factory=lambda: Path.home() / ".cache" / "wm-bridge" / "signals",
        description="Directory whose trigger files are touched by yabai signals"
    )
    signal_events: List[str] = Field(
        default_factory=lambda: list(DEFAULT_SIGNAL_EVENTS),
        description="yabai events that trigger a refresh"
    )

    @field_validator("path_prefix", "icon_search_dirs")
    @classmethod
    def validate_directories(cls, v: List[str]) -> List[str]:
        """Drop blank entries and expand ~."""
        return [os.path.expanduser(entry) for entry in v if entry and entry.strip()]

    @field_validator("yabai_path", "mdfind_path")
    @classmethod
    def validate_executable(cls, v: str) -> str:
        """Executable names cannot be empty."""
        if not v.strip():
            raise ValueError("Executable path cannot be empty")
        return os.path.expanduser(v.strip())

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000


def default_config_path() -> Path:
    """Config file path, honoring $WM_BRIDGE_CONFIG."""
    override = os.environ.get(CONFIG_ENV_VAR)
    if override:
        return Path(override).expanduser()
    return DEFAULT_CONFIG_FILE


def load_config(config_file: Optional[Path] = None) -> BridgeConfig:
    """Load bridge configuration from JSON.

    Args:
        config_file: Path to config.json (defaults to default_config_path())

    Returns:
        BridgeConfig; defaults when the file is missing or invalid
    """
    config_file = config_file or default_config_path()

    if not config_file.exists():
        logger.info(f"Config file does not exist: {config_file}, using defaults")
        return BridgeConfig()

    try:
        with open(config_file) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error(f"Failed to read config from {config_file}: {e}")
        logger.warning("Using default bridge configuration")
        return BridgeConfig()

    if not isinstance(data, dict):
        logger.error(f"Config root in {config_file} must be an object, got {type(data).__name__}")
        return BridgeConfig()

    try:
        config = BridgeConfig(**data)
    except ValidationError as e:
        logger.error(f"Invalid bridge configuration in {config_file}: {e}")
        logger.warning("Using default bridge configuration")
        return BridgeConfig()

    logger.info(f"Loaded bridge configuration from {config_file}")
    return config
