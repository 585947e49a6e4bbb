"""Configuration loading."""

from __future__ import annotations

import json
from pathlib import Path

from mnemo.config.schema import Config
from mnemo.logging import get_logger, setup_logging

logger = get_logger(__name__)


def get_config_path() -> Path:
    return Path.home() / ".mnemo" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from a JSON file, falling back to defaults.

    A missing or unreadable file yields the default config; a file that
    parses but fails validation raises ``pydantic.ValidationError``.
    """
    path = config_path or get_config_path()
    if not path.exists():
        return Config()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Failed to load config, using defaults", path=str(path), error=str(e))
        return Config()

    return Config.model_validate(data)


def configure_logging(config: Config) -> None:
    """Apply ``config.logging`` to the ``mnemo`` logger hierarchy."""
    setup_logging(json_output=config.logging.json_output, level=config.logging.level)
