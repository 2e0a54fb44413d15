"""Settings loader for the euibridge programs.

Configuration comes from the built-in defaults merged with command-line
overrides; there is no configuration file.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Mapping
from typing import Any

from marshmallow import ValidationError

from .model import RuntimeConfig
from .schema import RuntimeConfigSchema

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when configuration values fail validation."""

    def __init__(self, messages: dict[str, Any]) -> None:
        details = "; ".join(f"{key}: {value}" for key, value in sorted(messages.items()))
        super().__init__(f"Invalid configuration: {details}")
        self.messages = messages


def get_default_config() -> dict[str, Any]:
    """Provide default configuration values.

    Derived from the ``RuntimeConfig`` field defaults so the dataclass stays
    the single source of truth.
    """
    defaults: dict[str, Any] = {}
    for fi in dataclasses.fields(RuntimeConfig):
        defaults[fi.name] = fi.default
    return defaults


def load_runtime_config(overrides: Mapping[str, Any] | None = None) -> RuntimeConfig:
    """Validate defaults merged with *overrides* and build a RuntimeConfig.

    ``None`` values in *overrides* mean "not given" and keep the default.
    """
    raw = get_default_config()
    if overrides:
        unknown = sorted(set(overrides) - set(raw))
        if unknown:
            raise ConfigError({key: ["Unknown field."] for key in unknown})
        raw.update({key: value for key, value in overrides.items() if value is not None})

    try:
        config: RuntimeConfig = RuntimeConfigSchema().load(raw)
    except ValidationError as exc:
        messages = exc.messages if isinstance(exc.messages, dict) else {"_schema": exc.messages}
        raise ConfigError(messages) from exc

    logger.debug("Loaded runtime configuration: %s", config)
    return config


__all__ = [
    "ConfigError",
    "RuntimeConfig",
    "get_default_config",
    "load_runtime_config",
]
