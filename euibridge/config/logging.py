"""JSON-lines logging for the euibridge programs.

Protocol context passed through ``extra`` (``msg_id``, ``direction`` and
``frame_len``) is lifted to the top level of each line so a log reader can
filter on a message identifier without parsing the text.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from logging.config import dictConfig
from logging.handlers import SysLogHandler
from pathlib import Path
from typing import Any

import msgspec

from ..protocol.protocol import format_message_id
from .model import RuntimeConfig

SYSLOG_SOCKET = Path("/dev/log")
SYSLOG_ENV = "EUIBRIDGE_LOG_SYSLOG"
LOGGER_PREFIX = "euibridge."

PROTOCOL_FIELDS = ("msg_id", "direction", "frame_len")

# Attributes every LogRecord carries; anything else arrived through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def _render(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"[{bytes(value).hex(' ').upper()}]"
    return str(value)


def _render_field(key: str, value: Any) -> Any:
    if key == "msg_id" and isinstance(value, (bytes, bytearray)):
        return format_message_id(bytes(value))
    return _render(value)


class StructuredLogFormatter(logging.Formatter):
    """One JSON object per record: ts, level, logger, message, protocol fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name.removeprefix(LOGGER_PREFIX),
            "message": record.getMessage(),
        }

        extra: dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            if key in PROTOCOL_FIELDS:
                payload[key] = _render_field(key, value)
            else:
                extra[key] = _render(value)
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return msgspec.json.encode(payload).decode("utf-8")


def _build_handler() -> logging.Handler:
    """Syslog when requested and available, stderr otherwise."""
    if os.environ.get(SYSLOG_ENV) and SYSLOG_SOCKET.exists():
        handler = SysLogHandler(address=str(SYSLOG_SOCKET), facility=SysLogHandler.LOG_DAEMON)
        handler.ident = "euibridge "
        return handler
    return logging.StreamHandler()


def configure_logging(config: RuntimeConfig) -> None:
    """Install the JSON handler on the root logger.

    Frame hexdumps are emitted at DEBUG, so they only appear with
    ``debug_logging``. The FSM library stays at WARNING either way.
    """
    level = "DEBUG" if config.debug_logging else "INFO"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"json": {"()": StructuredLogFormatter}},
            "handlers": {
                "euibridge": {
                    "()": _build_handler,
                    "level": level,
                    "formatter": "json",
                }
            },
            "loggers": {"transitions": {"level": "WARNING"}},
            "root": {"level": level, "handlers": ["euibridge"]},
        }
    )

    logging.getLogger("euibridge").info("Logging configured at level %s", level)
