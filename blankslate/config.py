"""Configuration loading for blankslate.

Loads settings from TOML config file with CLI override support.
"""

import logging
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import tomli

from blankslate.models import Group, Site, TimeBlock
from blankslate.policies.group_manager import GroupError, validate_time_block
from blankslate.policies.patterns import normalize_site_pattern, validate_site_pattern

logger = logging.getLogger(__name__)

SINK_TYPES = ("memory", "file", "webhook")


def get_config_search_paths() -> list[Path]:
    """Get list of paths to search for config file."""
    return [
        Path("blankslate.toml"),  # Current directory
        Path.home() / ".config" / "blankslate" / "blankslate.toml",
        Path("/etc/blankslate/blankslate.toml"),
    ]


def find_config_file() -> Optional[Path]:
    """Find the first existing config file."""
    for path in get_config_search_paths():
        if path.exists():
            return path
    return None


def _data_dir() -> Path:
    return Path.home() / ".local" / "share" / "blankslate"


@dataclass
class Config:
    """Loaded configuration with all sections."""

    # Database
    db_path: Path = field(default_factory=lambda: _data_dir() / "state.db")

    # Enforcement
    block_page_url: str = "http://127.0.0.1:8765/blocked"
    sink: str = "file"
    rules_path: Path = field(default_factory=lambda: _data_dir() / "rules.json")
    webhook_url: Optional[str] = None

    # Tracking
    tick_seconds: float = 1.0
    persist_every_ticks: int = 10
    heartbeat_seconds: float = 30.0

    # Pauses (0 = unlimited)
    max_daily_pauses: int = 3

    # Logging
    log_level: str = "info"

    # Seed groups, written to the store by `blankslate groups import`
    groups: list[Group] = field(default_factory=list)


def _stable_id(*parts: str) -> str:
    """Deterministic ID so re-importing the same config keeps IDs stable."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, "blankslate:" + ":".join(parts)))


def parse_group(group_data: dict[str, Any]) -> Optional[Group]:
    """Build a Group from a [[groups]] table, skipping invalid sites and time blocks."""
    name = group_data.get("name")
    if not name:
        logger.warning("Skipping group without a name")
        return None

    sites = []
    for raw in group_data.get("sites", []):
        pattern = normalize_site_pattern(raw)
        error = validate_site_pattern(pattern)
        if error is not None:
            logger.warning(f"Skipping site '{raw}' in group '{name}': {error.message}")
            continue
        sites.append(Site(id=_stable_id(name, "site", pattern), pattern=pattern))

    blocks = []
    for i, block_data in enumerate(group_data.get("time_blocks", [])):
        try:
            block = TimeBlock(
                id=_stable_id(name, "block", str(i)),
                days=[str(d).lower() for d in block_data.get("days", [])],
                start_time=str(block_data.get("start", "09:00")),
                end_time=str(block_data.get("end", "17:00")),
                all_day=bool(block_data.get("all_day", False)),
                allowed_minutes=int(block_data.get("allowed_minutes", 15)),
            )
            validate_time_block(block)
        except (GroupError, TypeError, ValueError) as e:
            logger.warning(f"Skipping time block {i} in group '{name}': {e}")
            continue
        blocks.append(block)

    return Group(id=_stable_id(name), name=name, sites=sites, allowed_time_blocks=blocks)


def load_config(config_path: Optional[Path] = None) -> Config:
    """Load configuration from TOML file.

    Args:
        config_path: Explicit path to config file, or None to search

    Returns:
        Config object with loaded values
    """
    config = Config()

    # Find config file
    if config_path is None:
        config_path = find_config_file()

    if config_path is None or not config_path.exists():
        logger.debug("No config file found, using defaults")
        return config

    logger.info(f"Loading config from {config_path}")

    try:
        with open(config_path, "rb") as f:
            data = tomli.load(f)
    except Exception as e:
        logger.warning(f"Failed to load config file: {e}")
        return config

    # Database section
    if "database" in data:
        db = data["database"]
        if "path" in db:
            config.db_path = Path(db["path"]).expanduser()

    # Enforcement section
    if "enforcement" in data:
        enforcement = data["enforcement"]
        if "block_page_url" in enforcement:
            config.block_page_url = enforcement["block_page_url"]
        if "sink" in enforcement:
            if enforcement["sink"] in SINK_TYPES:
                config.sink = enforcement["sink"]
            else:
                logger.warning(f"Unknown sink '{enforcement['sink']}', using '{config.sink}'")
        if "rules_path" in enforcement:
            config.rules_path = Path(enforcement["rules_path"]).expanduser()
        if "webhook_url" in enforcement:
            config.webhook_url = enforcement["webhook_url"]

    # Tracking section
    if "tracking" in data:
        tracking = data["tracking"]
        if "tick_seconds" in tracking:
            config.tick_seconds = float(tracking["tick_seconds"])
        if "persist_every_ticks" in tracking:
            config.persist_every_ticks = int(tracking["persist_every_ticks"])
        if "heartbeat_seconds" in tracking:
            config.heartbeat_seconds = float(tracking["heartbeat_seconds"])

    # Pauses section
    if "pauses" in data:
        pauses = data["pauses"]
        if "max_daily" in pauses:
            config.max_daily_pauses = int(pauses["max_daily"])

    # Logging section
    if "logging" in data:
        if "level" in data["logging"]:
            config.log_level = data["logging"]["level"]

    # Seed groups
    for group_data in data.get("groups", []):
        group = parse_group(group_data)
        if group is not None:
            config.groups.append(group)

    return config


def merge_cli_options(config: Config, **cli_options: Any) -> Config:
    """Merge CLI options into config (CLI takes precedence).

    Args:
        config: Base config from file
        **cli_options: CLI option overrides (None values are ignored)

    Returns:
        Config with CLI overrides applied
    """
    # Map CLI option names to config attributes
    mappings = {
        "db": "db_path",
        "sink": "sink",
        "rules": "rules_path",
        "webhook": "webhook_url",
        "block_page": "block_page_url",
    }

    for cli_name, config_name in mappings.items():
        if cli_name in cli_options:
            value = cli_options[cli_name]
            # Only override if CLI value is meaningful
            if value is not None and value != "":
                if cli_name in ("db", "rules"):
                    value = Path(value)
                setattr(config, config_name, value)

    return config
