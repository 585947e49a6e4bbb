"""Configuration module for mnemo."""

from mnemo.config.loader import configure_logging, get_config_path, load_config
from mnemo.config.schema import BudgetConfig, Config, ExtractionConfig, LoggingConfig, MemoryConfig

__all__ = [
    "BudgetConfig",
    "Config",
    "ExtractionConfig",
    "LoggingConfig",
    "MemoryConfig",
    "configure_logging",
    "get_config_path",
    "load_config",
]
