"""Configuration loading utilities."""

import json
import re
from pathlib import Path
from typing import Any

from loguru import logger

from relaybot.config.schema import Config


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".relaybot" / "config.json"


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def convert_keys(data: Any) -> Any:
    """Recursively convert camelCase dict keys to snake_case."""
    if isinstance(data, dict):
        return {camel_to_snake(k): convert_keys(v) for k, v in data.items()}
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from file, or return defaults (plus environment)."""
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path) as f:
                data = json.load(f)
            return Config(**convert_keys(data))
        except (json.JSONDecodeError, TypeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}. Using defaults.")

    return Config()
