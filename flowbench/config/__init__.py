"""TOML configuration loading for flowbench."""

from flowbench.config.loader import DEFAULT_CONFIG_PATH, load_config

__all__ = ["DEFAULT_CONFIG_PATH", "load_config"]
