"""Runtime configuration model."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Final

from ..protocol import protocol

DEFAULT_SERIAL_PORT: Final[str] = "/dev/ttyACM0"
DEFAULT_RESPONSE_TIMEOUT: Final[float] = 0.5
DEFAULT_RETRY_ATTEMPTS: Final[int] = 3
DEFAULT_INBOX_LIMIT: Final[int] = 8
DEFAULT_DEBUG_LOGGING: Final[bool] = False


@dataclass(slots=True)
class RuntimeConfig:
    """Strongly typed configuration shared by the target and host programs."""

    serial_port: str = DEFAULT_SERIAL_PORT
    serial_baud: int = protocol.DEFAULT_BAUDRATE
    board_id: int = protocol.DEFAULT_BOARD_ID
    device_name: bytes = protocol.DEFAULT_DEVICE_NAME
    library_version: int = protocol.LIBRARY_VERSION
    response_timeout: float = DEFAULT_RESPONSE_TIMEOUT
    retry_attempts: int = DEFAULT_RETRY_ATTEMPTS
    inbox_limit: int = DEFAULT_INBOX_LIMIT
    debug_logging: bool = DEFAULT_DEBUG_LOGGING
