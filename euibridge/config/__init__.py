"""Configuration helpers for euibridge."""

from .model import RuntimeConfig
from .settings import ConfigError, get_default_config, load_runtime_config

__all__ = [
    "ConfigError",
    "RuntimeConfig",
    "get_default_config",
    "load_runtime_config",
]
