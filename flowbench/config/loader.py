"""TOML configuration loader.

Loads server, client, scheduler and segment settings from defaults.toml
(or a user-supplied file) into a FlowbenchConfig.
"""

from __future__ import annotations

import logging
import tomllib
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from flowbench.errors import ConfigError
from flowbench.schemas.config import (
    ClientConfig,
    FlowbenchConfig,
    PolicyKind,
    SegmentMarkup,
    ServerConfig,
    policy_for,
)

logger = logging.getLogger(__name__)

# Default config shipped with the package
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.toml"


def _section(raw: dict[str, Any], name: str, path: Path) -> dict[str, Any]:
    section = raw.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] in {path} must be a table")
    return dict(section)


def load_config(config_path: Path | None = None) -> FlowbenchConfig:
    """Load configuration from a TOML file.

    Args:
        config_path: Path to a TOML file. Defaults to flowbench/config/defaults.toml.

    Returns:
        FlowbenchConfig with values from the file; missing keys keep
        their schema defaults.

    Raises:
        FileNotFoundError: If the config file does not exist.
        ConfigError: If the TOML is unreadable or a value is invalid.
    """
    path = config_path or DEFAULT_CONFIG_PATH
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(path, "rb") as f:
            raw = tomllib.load(f)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {path}: {exc}") from exc

    scheduler_section = _section(raw, "scheduler", path)
    policy_name = scheduler_section.pop("policy", PolicyKind.FRAME_BATCHED)
    try:
        kind = PolicyKind(policy_name)
    except ValueError:
        valid = ", ".join(p.value for p in PolicyKind)
        raise ConfigError(
            f"Unknown scheduler policy '{policy_name}' in {path} (expected one of: {valid})"
        ) from None

    try:
        scheduler = policy_for(kind, **scheduler_section)
    except ConfigError as exc:
        raise ConfigError(f"{exc} in {path}") from None
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {path}: {exc}") from exc

    try:
        config = FlowbenchConfig(
            server=ServerConfig(**_section(raw, "server", path)),
            client=ClientConfig(**_section(raw, "client", path)),
            scheduler=scheduler,
            segments=SegmentMarkup(**_section(raw, "segments", path)),
        )
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration in {path}: {exc}") from exc

    logger.debug("Loaded config from %s (policy=%s)", path, kind)
    return config
