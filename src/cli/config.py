"""Configuration loading and management."""

import os
from pathlib import Path
from typing import Optional

import yaml

from .config_models import AlphaConfig

DEFAULT_CONFIG = AlphaConfig().to_dict()


def find_config() -> Optional[Path]:
    """Find config file in standard locations."""
    locations = [
        Path.cwd() / "config.yaml",
        Path.home() / ".alphascroll" / "config.yaml",
        Path.home() / "alphascroll" / "config.yaml",
    ]
    env_path = os.getenv("ALPHA_CONFIG")
    if env_path:
        locations.insert(0, Path(env_path).expanduser())
    for loc in locations:
        if loc.exists():
            return loc
    return None


def load_config(config_path: Optional[Path] = None) -> dict:
    """Load configuration as a plain dict. Use load_config_model() for typed access."""
    return load_config_model(config_path).to_dict()


def load_config_model(config_path: Optional[Path] = None) -> AlphaConfig:
    """Load configuration as Pydantic model with validation."""
    base_config = {}

    path = config_path or find_config()
    if path and path.exists():
        try:
            with open(path) as f:
                base_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in config file: {e}")

    try:
        return AlphaConfig.from_dict(base_config)
    except Exception as e:
        raise ValueError(f"Config validation failed: {e}")


def get_paths(config: dict) -> dict:
    """Get expanded paths from config."""
    paths = config.get("paths", DEFAULT_CONFIG["paths"])
    return {
        "db_path": Path(paths["db_path"]).expanduser(),
        "log_file": Path(paths.get("log_file", "~/alphascroll/alpha.log")).expanduser(),
    }
