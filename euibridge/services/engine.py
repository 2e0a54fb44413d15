"""Target engine: bytes in, framed responses out.

The engine is synchronous and never blocks. ``receive`` consumes whatever
bytes arrived, ``pump`` hands pending response frames to a sink that may
refuse them; a refused frame is offered again on the next ``pump``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from collections.abc import Callable
from typing import TYPE_CHECKING, Final

import msgspec
from transitions import Machine

from ..protocol import protocol
from ..protocol.errors import ChecksumError, FrameError, HeaderError, ParseError, ProtocolError
from ..protocol.framing import FrameDecoder
from ..protocol.message import Message, encode_message, parse_message
from ..registry import VariableRegistry
from ..transport import AsyncByteSource, ByteSink, ByteSource
from ..util import log_hexdump
from .responder import Exchange, TargetResponder

logger = logging.getLogger("euibridge.engine")

DEFAULT_INBOX_LIMIT: Final[int] = 8
DEFAULT_PUMP_RETRY_INTERVAL: Final[float] = 0.005


class EngineStats(msgspec.Struct, kw_only=True):
    """Counters exposed by :attr:`TargetEngine.stats`."""

    frames_ok: int = 0
    frame_errors: int = 0
    checksum_errors: int = 0
    header_errors: int = 0
    parse_errors: int = 0
    value_errors: int = 0
    unknown_identifiers: int = 0
    write_errors: int = 0
    encode_errors: int = 0
    handler_errors: int = 0
    inbox_dropped: int = 0
    responses_sent: int = 0


class TargetEngine:
    """Drive a :class:`TargetResponder` from a raw byte stream."""

    if TYPE_CHECKING:
        # FSM generated methods and attributes for static analysis
        fsm_state: str
        accept: Callable[[], None]
        respond: Callable[[], None]
        complete: Callable[[], None]

    # FSM States
    STATE_AWAITING_REQUEST = "awaiting_request"
    STATE_PROCESSING = "processing"
    STATE_EMITTING = "emitting"

    def __init__(
        self,
        responder: TargetResponder | VariableRegistry,
        *,
        inbox_limit: int = DEFAULT_INBOX_LIMIT,
        decoder: FrameDecoder | None = None,
    ) -> None:
        if inbox_limit <= 0:
            raise ValueError("inbox_limit must be a positive integer")
        self.responder = responder if isinstance(responder, TargetResponder) else TargetResponder(responder)
        self.decoder = decoder or FrameDecoder()
        self.inbox_limit = inbox_limit
        self._inbox: deque[Message] = deque()
        self._exchange: Exchange | None = None
        self._pending: bytes | None = None
        self._counters = EngineStats()

        # FSM Initialization
        self.state_machine = Machine(
            model=self,
            states=[
                self.STATE_AWAITING_REQUEST,
                self.STATE_PROCESSING,
                self.STATE_EMITTING,
            ],
            initial=self.STATE_AWAITING_REQUEST,
            ignore_invalid_triggers=True,
            auto_transitions=False,
            model_attribute="fsm_state",
        )

        # FSM Transitions
        self.state_machine.add_transition(
            trigger="accept", source=self.STATE_AWAITING_REQUEST, dest=self.STATE_PROCESSING
        )
        self.state_machine.add_transition(
            trigger="respond", source=self.STATE_PROCESSING, dest=self.STATE_EMITTING
        )
        self.state_machine.add_transition(
            trigger="complete",
            source=[self.STATE_PROCESSING, self.STATE_EMITTING],
            dest=self.STATE_AWAITING_REQUEST,
        )

    @property
    def stats(self) -> EngineStats:
        responder_stats = self.responder.stats
        return msgspec.structs.replace(
            self._counters,
            value_errors=responder_stats.value_errors,
            unknown_identifiers=responder_stats.unknown_identifiers,
            write_errors=responder_stats.write_errors,
        )

    @property
    def inbox_size(self) -> int:
        return len(self._inbox)

    @property
    def has_pending(self) -> bool:
        """True while a response frame or a queued request is outstanding."""
        return self._pending is not None or self._exchange is not None or bool(self._inbox)

    @property
    def exchange(self) -> Exchange | None:
        return self._exchange

    def receive(self, data: bytes | bytearray | memoryview) -> int:
        """Consume *data*; return the number of requests queued."""
        queued = 0
        for item in self.decoder.feed(data):
            if isinstance(item, FrameError):
                self._record_frame_error(item)
                continue

            self._counters.frames_ok += 1
            log_hexdump(logger, logging.DEBUG, "RX", item)
            try:
                message = parse_message(item)
            except HeaderError as exc:
                self._counters.header_errors += 1
                logger.warning("Discarding frame with bad header: %s", exc)
                continue
            except ParseError as exc:
                self._counters.parse_errors += 1
                logger.warning("Discarding malformed message: %s", exc)
                continue

            if len(self._inbox) >= self.inbox_limit:
                dropped = self._inbox.popleft()
                self._counters.inbox_dropped += 1
                logger.warning(
                    "Inbox full; dropping request %s",
                    protocol.format_message_id(dropped.identifier),
                    extra={"msg_id": dropped.identifier},
                )
            self._inbox.append(message)
            queued += 1

        self._advance()
        return queued

    def pump(self, sink: ByteSink) -> int:
        """Write pending response frames to *sink*; return how many were accepted."""
        written = 0
        while True:
            frame = self._pending if self._pending is not None else self._load_next()
            if frame is None:
                break
            if not sink.write(frame):
                logger.debug("Sink not ready; holding %d byte frame", len(frame))
                break
            log_hexdump(logger, logging.DEBUG, "TX", frame)
            self._pending = None
            self._counters.responses_sent += 1
            written += 1
        return written

    def poll(self, source: ByteSource, sink: ByteSink) -> int:
        """Read available bytes from *source*, process them and pump replies."""
        data = source.read()
        if data:
            self.receive(data)
        return self.pump(sink)

    async def serve(
        self,
        source: AsyncByteSource,
        sink: ByteSink,
        *,
        retry_interval: float = DEFAULT_PUMP_RETRY_INTERVAL,
    ) -> None:
        """Run until cancelled, feeding bytes from *source* and replying to *sink*."""
        while True:
            data = await source.receive()
            self.receive(data)
            self.pump(sink)
            while self._pending is not None:
                await asyncio.sleep(retry_interval)
                self.pump(sink)

    def _load_next(self) -> bytes | None:
        """Stage the next response frame of the active exchange, if any."""
        while True:
            if self._exchange is None:
                self._advance()
                if self._exchange is None:
                    return None

            try:
                message = self._exchange.next_message()
                if message is None:
                    self._finish_exchange()
                    continue
                self._pending = encode_message(message)
            except ProtocolError as exc:
                # Exchanges advance their cursor before building, so the next call moves on.
                self._counters.encode_errors += 1
                logger.error("Failed to encode response: %s", exc)
                continue
            except Exception:
                self._counters.handler_errors += 1
                logger.exception("Exchange failed while emitting; abandoning it")
                self._finish_exchange()
                continue
            return self._pending

    def _advance(self) -> None:
        while self._exchange is None and self._inbox and self.fsm_state == self.STATE_AWAITING_REQUEST:
            request = self._inbox.popleft()
            self.accept()
            try:
                exchange = self.responder.handle(request)
            except Exception:
                self._counters.handler_errors += 1
                logger.exception(
                    "Handler for %s failed",
                    protocol.format_message_id(request.identifier),
                    extra={"msg_id": request.identifier},
                )
                self.complete()
                continue
            if exchange is None:
                self.complete()
                continue
            self._exchange = exchange
            self.respond()

    def _finish_exchange(self) -> None:
        self._exchange = None
        self.complete()

    def _record_frame_error(self, error: FrameError) -> None:
        if isinstance(error, ChecksumError):
            self._counters.checksum_errors += 1
        else:
            self._counters.frame_errors += 1
        logger.warning("Discarding frame: %s", error)
