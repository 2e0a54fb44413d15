"""Host-side requester for discovery, handshake, query and action exchanges.

Used by the command-line host tool and by the tests. Responses are matched by
identifier; lost responses are retried with ``tenacity`` according to the
configured attempts and timeout.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

import msgspec
import tenacity

from ..config.model import DEFAULT_RESPONSE_TIMEOUT, DEFAULT_RETRY_ATTEMPTS
from ..protocol import protocol
from ..protocol.errors import FrameError, HeaderError, ParseError, ValueCodecError
from ..protocol.framing import FrameDecoder
from ..protocol.message import Message, encode_message, parse_message
from ..protocol.protocol import MessageId, MessageType
from ..protocol.values import TypedValue
from ..transport import HostLink
from ..util import log_hexdump

logger = logging.getLogger("euibridge.host")

MessageMatcher = Callable[[Message], bool]


class HostError(Exception):
    """Base class for host-side exchange failures."""


class ResponseTimeout(HostError, TimeoutError):
    """No matching response arrived after all attempts."""


class UnexpectedResponse(HostError):
    """A matching response arrived but its content is not acceptable."""


class AnnounceCountMismatch(HostError):
    """The announced count differs from the identifiers received."""

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(f"Target announced {expected} identifiers, received {received}")
        self.expected = expected
        self.received = received


class HandshakeResult(msgspec.Struct, frozen=True, kw_only=True):
    board_id: int
    name: bytes
    writable_ids: tuple[bytes, ...]
    variables: dict[bytes, TypedValue]


def _log_retry(retry_state: tenacity.RetryCallState) -> None:
    logger.warning("No response (attempt %d); retrying", retry_state.attempt_number)


class HostClient:
    """Issue requests over a :class:`~euibridge.transport.HostLink`."""

    def __init__(
        self,
        link: HostLink,
        *,
        response_timeout: float = DEFAULT_RESPONSE_TIMEOUT,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
    ) -> None:
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be a positive integer")
        self._link = link
        self.response_timeout = response_timeout
        self.retry_attempts = retry_attempts
        self._decoder = FrameDecoder()
        self._inbox: asyncio.Queue[Message | None] = asyncio.Queue()
        self._reader: asyncio.Task[None] | None = None
        self._link_error: BaseException | None = None
        self._lock = asyncio.Lock()
        self._ack_numbers: dict[bytes, int] = {}
        self.frame_errors = 0

    async def __aenter__(self) -> "HostClient":
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.get_running_loop().create_task(self._read_loop())

    async def close(self) -> None:
        if self._reader is None:
            return
        self._reader.cancel()
        try:
            await self._reader
        except asyncio.CancelledError:
            pass
        self._reader = None

    # --- Discovery ---

    async def board_id(self) -> int:
        request = Message.build(
            MessageId.INTERNAL_BOARD_ID, MessageType.UINT16, internal=True, response=True
        )
        reply = await self._exchange(request, self._reply_to(request))
        return self._scalar(reply)

    async def name(self) -> bytes:
        request = Message.request(MessageId.BOARD_NAME)
        reply = await self._exchange(request, self._reply_to(request))
        return reply.payload

    async def library_version(self) -> int:
        request = Message.build(
            MessageId.INTERNAL_LIB_VER, MessageType.UINT8, internal=True, response=True
        )
        reply = await self._exchange(request, self._reply_to(request))
        return self._scalar(reply)

    async def heartbeat(self, value: int) -> int:
        request = Message.request(
            MessageId.INTERNAL_HEARTBEAT, TypedValue(MessageType.UINT8, value), internal=True
        )
        reply = await self._exchange(request, self._reply_to(request))
        if reply.payload != request.payload:
            raise UnexpectedResponse(
                f"Heartbeat echoed {reply.payload.hex()} instead of {request.payload.hex()}"
            )
        return self._scalar(reply)

    # --- Handshake ---

    async def announce_ids(self) -> list[bytes]:
        """Collect the writable identifiers announced by the target."""
        request = Message.request(MessageId.INTERNAL_AM, internal=True)
        async with self._lock:
            return await self._retrying(self._announce_attempt, request)

    async def _announce_attempt(self, request: Message) -> list[bytes]:
        await self._send(request)
        identifiers: list[bytes] = []
        while True:
            message = await self._next_matching(
                lambda m: m.internal
                and not m.is_request
                and m.identifier in (MessageId.INTERNAL_AM_LIST, MessageId.INTERNAL_AM_END)
            )
            if message.identifier == MessageId.INTERNAL_AM_LIST:
                # Some targets pack several identifiers into one item, 0x00 separated.
                identifiers.extend(part for part in message.payload.split(b"\x00") if part)
                continue
            count = self._scalar(message)
            if count != len(identifiers):
                raise AnnounceCountMismatch(count, len(identifiers))
            return identifiers

    async def tracked_variables(self, count: int) -> dict[bytes, TypedValue]:
        """Request the values of the *count* writable variables."""
        request = Message.request(MessageId.INTERNAL_AV, internal=True)
        async with self._lock:
            return await self._retrying(self._tracked_attempt, request, count)

    async def _tracked_attempt(self, request: Message, count: int) -> dict[bytes, TypedValue]:
        await self._send(request)
        variables: dict[bytes, TypedValue] = {}
        while len(variables) < count:
            message = await self._next_matching(lambda m: not m.internal and not m.is_request)
            variables[message.identifier] = self._value(message)
        return variables

    async def handshake(self) -> HandshakeResult:
        board_id = await self.board_id()
        name = await self.name()
        writable_ids = await self.announce_ids()
        variables = await self.tracked_variables(len(writable_ids))
        logger.info(
            "Handshake complete: board 0x%04X, %d writable variables",
            board_id,
            len(writable_ids),
        )
        return HandshakeResult(
            board_id=board_id,
            name=name,
            writable_ids=tuple(writable_ids),
            variables=variables,
        )

    # --- Variables ---

    async def query(self, identifier: bytes) -> TypedValue:
        request = Message.request(identifier)
        reply = await self._exchange(request, self._reply_to(request))
        return self._value(reply)

    async def action(self, identifier: bytes, value: TypedValue, *, ack: bool = True) -> TypedValue:
        """Write *value* and return the value the target reports as stored."""
        async with self._lock:
            ack_num = self._next_ack(identifier) if ack else 0
            request = Message.request(identifier, value, ack_num=ack_num)
            reply = await self._retrying(self._single_attempt, request, self._reply_to(request))
        return self._value(reply)

    def _next_ack(self, identifier: bytes) -> int:
        ack_num = self._ack_numbers.get(identifier, 0) % protocol.MAX_ACK_NUM + 1
        self._ack_numbers[identifier] = ack_num
        return ack_num

    # --- Plumbing ---

    @staticmethod
    def _reply_to(request: Message) -> MessageMatcher:
        def matcher(message: Message) -> bool:
            return (
                message.identifier == request.identifier
                and message.internal == request.internal
                and not message.is_request
                and message.header.ack_num == request.header.ack_num
            )

        return matcher

    @staticmethod
    def _value(message: Message) -> TypedValue:
        try:
            return message.value()
        except ValueCodecError as exc:
            raise UnexpectedResponse(f"Undecodable payload for {message.identifier!r}: {exc}") from exc

    @classmethod
    def _scalar(cls, message: Message) -> int:
        value = cls._value(message).value
        if not isinstance(value, int):
            raise UnexpectedResponse(f"Expected an integer from {message.identifier!r}, got {value!r}")
        return value

    async def _exchange(self, request: Message, matcher: MessageMatcher) -> Message:
        async with self._lock:
            return await self._retrying(self._single_attempt, request, matcher)

    async def _single_attempt(self, request: Message, matcher: MessageMatcher) -> Message:
        await self._send(request)
        return await self._next_matching(matcher)

    async def _retrying(self, attempt_fn: Callable[..., Any], *args: Any) -> Any:
        retryer = tenacity.AsyncRetrying(
            stop=tenacity.stop_after_attempt(self.retry_attempts),
            retry=tenacity.retry_if_exception_type(ResponseTimeout),
            before_sleep=_log_retry,
            reraise=True,
        )
        async for attempt in retryer:
            with attempt:
                self._discard_stale()
                return await attempt_fn(*args)
        raise ResponseTimeout("No response")  # pragma: no cover

    async def _send(self, message: Message) -> None:
        if self._reader is None:
            self.start()
        frame = encode_message(message)
        log_hexdump(logger, logging.DEBUG, "TX", frame)
        await self._link.send(frame)

    async def _next_matching(self, matcher: MessageMatcher) -> Message:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.response_timeout
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise ResponseTimeout(f"No response within {self.response_timeout}s")
            try:
                message = await asyncio.wait_for(self._inbox.get(), remaining)
            except asyncio.TimeoutError as exc:
                raise ResponseTimeout(f"No response within {self.response_timeout}s") from exc
            if message is None:
                raise ConnectionError("Link closed") from self._link_error
            if matcher(message):
                return message
            logger.debug(
                "Ignoring unsolicited message %s",
                protocol.format_message_id(message.identifier),
            )

    def _discard_stale(self) -> None:
        while not self._inbox.empty():
            if self._inbox.get_nowait() is None:
                # Keep the closed marker for the next reader.
                self._inbox.put_nowait(None)
                return

    async def _read_loop(self) -> None:
        try:
            while True:
                data = await self._link.receive()
                for item in self._decoder.feed(data):
                    if isinstance(item, FrameError):
                        self.frame_errors += 1
                        logger.warning("Discarding frame: %s", item)
                        continue
                    log_hexdump(logger, logging.DEBUG, "RX", item)
                    try:
                        message = parse_message(item)
                    except (HeaderError, ParseError) as exc:
                        logger.warning("Discarding malformed message: %s", exc)
                        continue
                    self._inbox.put_nowait(message)
        except OSError as exc:
            logger.error("Link receive failed: %s", exc)
            self._link_error = exc
            self._inbox.put_nowait(None)
