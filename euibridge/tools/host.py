"""Host tool: handshake with a serial target and exercise each exchange.

The target must not be shared with another host while this runs.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence
from typing import Any, NoReturn

import uvloop

from ..config.logging import configure_logging
from ..config.settings import ConfigError, RuntimeConfig, load_runtime_config
from ..protocol.protocol import MessageType, format_message_id
from ..protocol.values import TypedValue
from ..services.host import HostClient, HostError
from ..transport.serial import SerialHostLink

logger = logging.getLogger("euibridge.tools.host")

HEARTBEAT_VALUE = 3


def _parse_identifier(value: str) -> bytes:
    identifier = value.encode("utf-8")
    if not 1 <= len(identifier) <= 15:
        raise argparse.ArgumentTypeError("identifier must be 1..15 bytes")
    return identifier


def _build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the handshake, a heartbeat, one query and one action against a target."
    )
    parser.add_argument("port", help="Serial device path")
    parser.add_argument("--baud", dest="serial_baud", type=int, help="Serial baud rate")
    parser.add_argument("--timeout", dest="response_timeout", type=float, help="Response timeout in seconds")
    parser.add_argument("--retries", dest="retry_attempts", type=int, help="Attempts per request")
    parser.add_argument("--query", type=_parse_identifier, default=b"led_state", help="Identifier to query")
    parser.add_argument("--action", type=_parse_identifier, default=b"lit_time", help="Identifier to write")
    parser.add_argument("--value", type=lambda value: int(value, 0), default=22, help="Integer value to write")
    parser.add_argument("--debug", dest="debug_logging", action="store_true", default=None, help="Enable debug logs")
    return parser


def render_value(typed: TypedValue) -> str:
    if isinstance(typed.value, bytes):
        return f"{typed.kind.name} {typed.value!r}"
    return f"{typed.kind.name} {typed.value}"


async def run_session(client: HostClient, query_id: bytes, action_id: bytes, action_value: int) -> None:
    result = await client.handshake()
    print(f"Board ID: 0x{result.board_id:04X}")
    print(f"Name: {result.name.decode('utf-8', errors='replace')}")
    print(f"Writable IDs ({len(result.writable_ids)}):")
    for identifier in result.writable_ids:
        typed = result.variables.get(identifier)
        rendered = render_value(typed) if typed is not None else "<no value>"
        print(f"  {format_message_id(identifier)} = {rendered}")

    echoed = await client.heartbeat(HEARTBEAT_VALUE)
    print(f"Heartbeat: sent {HEARTBEAT_VALUE}, got {echoed}")

    print(f"Query {format_message_id(query_id)}: {render_value(await client.query(query_id))}")

    current = result.variables.get(action_id)
    kind = current.kind if current is not None else MessageType.UINT16
    stored = await client.action(action_id, TypedValue(kind, action_value))
    print(f"Action {format_message_id(action_id)}={action_value}: stored {render_value(stored)}")


async def _run(config: RuntimeConfig, args: argparse.Namespace) -> None:
    link = SerialHostLink.open(config.serial_port, config.serial_baud)
    try:
        async with HostClient(
            link,
            response_timeout=config.response_timeout,
            retry_attempts=config.retry_attempts,
        ) as client:
            await run_session(client, args.query, args.action, args.value)
    finally:
        link.close()


def main(argv: Sequence[str] | None = None) -> NoReturn:  # pragma: no cover (Entry point wrapper)
    args = _build_arg_parser().parse_args(argv)
    overrides: dict[str, Any] = {
        "serial_port": args.port,
        "serial_baud": args.serial_baud,
        "response_timeout": args.response_timeout,
        "retry_attempts": args.retry_attempts,
        "debug_logging": args.debug_logging,
    }
    try:
        config = load_runtime_config(overrides)
    except ConfigError as exc:
        print(exc, file=sys.stderr)
        sys.exit(2)
    configure_logging(config)

    try:
        asyncio.run(_run(config, args), loop_factory=uvloop.new_event_loop)
    except KeyboardInterrupt:
        sys.exit(0)
    except HostError as exc:
        logger.error("Exchange failed: %s", exc)
        sys.exit(1)
    except OSError as exc:
        logger.critical("Serial error: %s", exc)
        sys.exit(1)
    sys.exit(0)


if __name__ == "__main__":
    main()
