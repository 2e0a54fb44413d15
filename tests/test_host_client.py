"""Tests for the host client against an in-memory target."""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable

import pytest

from euibridge.protocol.framing import FrameDecoder
from euibridge.protocol.message import Message, encode_message, parse_message
from euibridge.protocol.protocol import MessageId, MessageType
from euibridge.protocol.values import TypedValue
from euibridge.registry import StaticVariableRegistry
from euibridge.services.engine import TargetEngine
from euibridge.services.host import (
    AnnounceCountMismatch,
    HandshakeResult,
    HostClient,
    ResponseTimeout,
    UnexpectedResponse,
)
from euibridge.transport import LoopbackLink

Responder = Callable[[Message], list[Message]]


@contextlib.asynccontextmanager
async def served(
    registry: StaticVariableRegistry, **client_kwargs: float | int
) -> AsyncIterator[tuple[HostClient, TargetEngine]]:
    link = LoopbackLink()
    engine = TargetEngine(registry)
    task = asyncio.create_task(engine.serve(link.target_source, link.target_sink))
    try:
        async with HostClient(link.host, **client_kwargs) as client:  # type: ignore[arg-type]
            yield client, engine
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


@contextlib.asynccontextmanager
async def scripted(respond: Responder, **client_kwargs: float | int) -> AsyncIterator[HostClient]:
    """Run a fake target that answers each request with ``respond(request)``."""
    link = LoopbackLink()

    async def target() -> None:
        decoder = FrameDecoder()
        while True:
            data = await link.target_source.receive()
            for body in decoder.feed(data):
                assert isinstance(body, bytes)
                for message in respond(parse_message(body)):
                    link.target_sink.write(encode_message(message))

    task = asyncio.create_task(target())
    try:
        async with HostClient(link.host, **client_kwargs) as client:  # type: ignore[arg-type]
            yield client
    finally:
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


@pytest.mark.asyncio
async def test_handshake(blink_registry: StaticVariableRegistry) -> None:
    async with served(blink_registry) as (client, _):
        result = await client.handshake()

    assert result == HandshakeResult(
        board_id=0xBEEF,
        name=b"euibridge",
        writable_ids=(b"led_blink", b"lit_time"),
        variables={
            b"led_blink": TypedValue(MessageType.UINT8, 1),
            b"lit_time": TypedValue(MessageType.UINT16, 200),
        },
    )


@pytest.mark.asyncio
async def test_heartbeat_and_library_version(blink_registry: StaticVariableRegistry) -> None:
    async with served(blink_registry) as (client, _):
        assert await client.heartbeat(3) == 3
        assert await client.heartbeat(255) == 255
        assert await client.library_version() == 3


@pytest.mark.asyncio
async def test_query_and_action(blink_registry: StaticVariableRegistry) -> None:
    async with served(blink_registry) as (client, engine):
        assert await client.query(b"led_state") == TypedValue(MessageType.UINT8, 0)

        stored = await client.action(b"lit_time", TypedValue(MessageType.UINT16, 22))
        assert stored == TypedValue(MessageType.UINT16, 50)

        stored = await client.action(b"lit_time", TypedValue(MessageType.UINT16, 300), ack=False)
        assert stored == TypedValue(MessageType.UINT16, 300)

        assert await client.query(b"lit_time") == TypedValue(MessageType.UINT16, 300)
        assert engine.stats.write_errors == 0

    assert blink_registry.get(b"lit_time") == 300


@pytest.mark.asyncio
async def test_action_ack_numbers_cycle() -> None:
    seen: list[int] = []

    def respond(request: Message) -> list[Message]:
        seen.append(request.header.ack_num)
        return [request.reply(request.value())]

    async with scripted(respond) as client:
        for _ in range(9):
            await client.action(b"x", TypedValue(MessageType.UINT8, 1))

    assert seen == [1, 2, 3, 4, 5, 6, 7, 1, 2]


@pytest.mark.asyncio
async def test_silent_target_times_out() -> None:
    link = LoopbackLink()
    async with HostClient(link.host, response_timeout=0.02, retry_attempts=2) as client:
        with pytest.raises(ResponseTimeout):
            await client.query(b"led_state")

    sent = [item for item in FrameDecoder().feed(link.host_to_target.read())]
    assert len(sent) == 2
    assert all(parse_message(body).identifier == b"led_state" for body in sent)  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_lost_response_is_retried() -> None:
    attempts: list[Message] = []

    def respond(request: Message) -> list[Message]:
        attempts.append(request)
        if len(attempts) == 1:
            return []
        return [request.reply(TypedValue(MessageType.UINT16, 0x1234))]

    async with scripted(respond, response_timeout=0.05, retry_attempts=3) as client:
        assert await client.board_id() == 0x1234

    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_unrelated_messages_are_skipped() -> None:
    def respond(request: Message) -> list[Message]:
        return [
            Message.from_value(b"other", TypedValue(MessageType.UINT8, 5)),
            request.reply(TypedValue(MessageType.UINT8, 1), identifier=b"wrong"),
            request.reply(TypedValue(MessageType.UINT8, 7)),
        ]

    async with scripted(respond) as client:
        assert await client.query(b"led") == TypedValue(MessageType.UINT8, 7)


@pytest.mark.asyncio
async def test_announce_accepts_packed_identifier_lists() -> None:
    def respond(request: Message) -> list[Message]:
        if request.identifier != MessageId.INTERNAL_AM:
            return []
        return [
            Message.build(b"u", MessageType.CHAR, b"A\x00B\x00", internal=True, offset=True),
            Message.build(b"u", MessageType.CHAR, b"C", internal=True, offset=True),
            Message.from_value(b"v", TypedValue(MessageType.UINT8, 3), internal=True),
        ]

    async with scripted(respond) as client:
        assert await client.announce_ids() == [b"A", b"B", b"C"]


@pytest.mark.asyncio
async def test_announce_count_mismatch() -> None:
    def respond(request: Message) -> list[Message]:
        return [
            Message.build(b"u", MessageType.CHAR, b"A", internal=True, offset=True),
            Message.build(b"u", MessageType.CHAR, b"B", internal=True, offset=True),
            Message.from_value(b"v", TypedValue(MessageType.UINT8, 3), internal=True),
        ]

    async with scripted(respond) as client:
        with pytest.raises(AnnounceCountMismatch) as excinfo:
            await client.announce_ids()

    assert excinfo.value.expected == 3
    assert excinfo.value.received == 2


@pytest.mark.asyncio
async def test_heartbeat_mismatch() -> None:
    def respond(request: Message) -> list[Message]:
        return [Message.from_value(b"h", TypedValue(MessageType.UINT8, 4), internal=True)]

    async with scripted(respond) as client:
        with pytest.raises(UnexpectedResponse):
            await client.heartbeat(3)


@pytest.mark.asyncio
async def test_link_failure_surfaces_as_connection_error() -> None:
    class BrokenLink:
        def __init__(self) -> None:
            self.sent: list[bytes] = []

        async def send(self, data: bytes) -> None:
            self.sent.append(data)

        async def receive(self) -> bytes:
            raise OSError("port vanished")

    link = BrokenLink()
    async with HostClient(link, response_timeout=0.5) as client:
        with pytest.raises(ConnectionError):
            await client.query(b"led_state")


def test_rejects_non_positive_retry_attempts() -> None:
    link = LoopbackLink()
    with pytest.raises(ValueError):
        HostClient(link.host, retry_attempts=0)
