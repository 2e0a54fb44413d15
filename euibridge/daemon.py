"""Demo target: serves the "hello blink" variable set on a serial port."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from typing import Any, NoReturn

import uvloop

from .config.logging import configure_logging
from .config.settings import ConfigError, RuntimeConfig, load_runtime_config
from .protocol.protocol import MessageType
from .registry import StaticVariableRegistry, Variable
from .services.engine import TargetEngine
from .services.responder import TargetResponder
from .transport.serial import SerialTargetRunner

logger = logging.getLogger("euibridge.daemon")

LED_BLINK = b"led_blink"
LED_STATE = b"led_state"
LIT_TIME = b"lit_time"

MIN_LIT_TIME_MS = 20
MAX_LIT_TIME_MS = 5000


def build_demo_registry() -> StaticVariableRegistry:
    return StaticVariableRegistry(
        [
            Variable(identifier=LED_BLINK, kind=MessageType.UINT8, value=1, minimum=0, maximum=1),
            Variable(identifier=LED_STATE, kind=MessageType.UINT8, value=0, writable=False),
            Variable(
                identifier=LIT_TIME,
                kind=MessageType.UINT16,
                value=200,
                minimum=MIN_LIT_TIME_MS,
                maximum=MAX_LIT_TIME_MS,
            ),
        ],
        clamp=True,
    )


class TargetDaemon:
    """Run the demo target until cancelled."""

    def __init__(self, config: RuntimeConfig) -> None:
        self.config = config
        self.registry = build_demo_registry()
        responder = TargetResponder(
            self.registry,
            board_id=config.board_id,
            device_name=config.device_name,
            library_version=config.library_version,
        )
        self.engine = TargetEngine(responder, inbox_limit=config.inbox_limit)

    async def blink(self) -> None:
        """Toggle ``led_state`` every ``lit_time`` milliseconds while blinking."""
        while True:
            if self.registry.get(LED_BLINK):
                self.registry.set(LED_STATE, 0 if self.registry.get(LED_STATE) else 1)
            lit_time = self.registry.get(LIT_TIME)
            await asyncio.sleep(int(lit_time or MIN_LIT_TIME_MS) / 1000)  # type: ignore[arg-type]

    async def run(self) -> None:
        runner = SerialTargetRunner(self.engine, self.config)
        async with asyncio.TaskGroup() as group:
            group.create_task(runner.run())
            group.create_task(self.blink())


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Serve the euibridge demo target on a serial port.")
    parser.add_argument("--port", dest="serial_port", help="Serial device path")
    parser.add_argument("--baud", dest="serial_baud", type=int, help="Serial baud rate")
    parser.add_argument("--board-id", dest="board_id", type=lambda value: int(value, 0), help="Board id (16-bit)")
    parser.add_argument("--name", dest="device_name", help="Device name reported to hosts")
    parser.add_argument("--inbox-limit", dest="inbox_limit", type=int, help="Queued requests kept while replying")
    parser.add_argument("--debug", dest="debug_logging", action="store_true", default=None, help="Enable debug logs")
    return parser


def parse_config(argv: Sequence[str] | None = None) -> RuntimeConfig:
    args = _build_arg_parser().parse_args(argv)
    overrides: dict[str, Any] = vars(args)
    return load_runtime_config(overrides)


def main(argv: Sequence[str] | None = None) -> NoReturn:  # pragma: no cover (Entry point wrapper)
    try:
        config = parse_config(argv)
    except ConfigError as exc:
        print(exc, file=sys.stderr)
        sys.exit(2)
    configure_logging(config)

    logger.info(
        "Starting euibridge target. Serial: %s@%d board 0x%04X",
        config.serial_port,
        config.serial_baud,
        config.board_id,
    )

    try:
        daemon = TargetDaemon(config)
        asyncio.run(daemon.run(), loop_factory=uvloop.new_event_loop)
        sys.exit(0)
    except KeyboardInterrupt:
        logger.info("Target interrupted by user.")
        sys.exit(0)
    except ExceptionGroup as exc_group:
        for group_exc in exc_group.exceptions:
            logger.critical("Fatal error in task group: %s", group_exc, exc_info=group_exc)
        sys.exit(1)
    except OSError as exc:
        logger.critical("System/OS error during target execution: %s", exc, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
