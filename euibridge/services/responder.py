"""Target-side exchange handling.

:class:`TargetResponder` turns one received request into an exchange: a
bounded sequence of response messages produced one at a time. Multi-message
exchanges keep their progress in an explicit :class:`AnnounceCursor` so the
caller can stop after any message and resume later.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import Protocol

import msgspec

from ..protocol import protocol
from ..protocol.errors import ValueCodecError, WriteError
from ..protocol.message import Message
from ..protocol.protocol import MessageId, MessageType
from ..protocol.values import TypedValue
from ..registry import VariableRegistry, writable_identifiers

logger = logging.getLogger("euibridge.responder")


class Exchange(Protocol):
    @property
    def finished(self) -> bool: ...

    def next_message(self) -> Message | None: ...


class AnnounceCursor(msgspec.Struct, kw_only=True):
    """Progress of a multi-message exchange.

    Attributes:
        index: Position in the writable identifier list.
        sent: Messages emitted for list items so far.
        finished: No further message will be produced.
    """

    index: int = 0
    sent: int = 0
    finished: bool = False


class ReplyExchange:
    """Exchange with a fixed, precomputed list of responses."""

    def __init__(self, messages: Sequence[Message]) -> None:
        self._messages = tuple(messages)
        self._position = 0

    @property
    def finished(self) -> bool:
        return self._position >= len(self._messages)

    def next_message(self) -> Message | None:
        if self.finished:
            return None
        message = self._messages[self._position]
        self._position += 1
        return message

    def __iter__(self) -> Iterator[Message]:
        while (message := self.next_message()) is not None:
            yield message


class AnnounceExchange(ReplyExchange):
    """Emit one ``u`` item per writable identifier, then the ``v`` count."""

    def __init__(
        self,
        registry: VariableRegistry,
        cursor: AnnounceCursor | None = None,
    ) -> None:
        super().__init__(())
        self.registry = registry
        self.cursor = cursor if cursor is not None else AnnounceCursor()
        self._identifiers = writable_identifiers(registry)

    @property
    def finished(self) -> bool:
        return self.cursor.finished

    def next_message(self) -> Message | None:
        cursor = self.cursor
        if cursor.finished:
            return None
        if cursor.index < len(self._identifiers):
            identifier = self._identifiers[cursor.index]
            cursor.index += 1
            cursor.sent += 1
            return Message.build(
                MessageId.INTERNAL_AM_LIST,
                MessageType.CHAR,
                identifier,
                internal=True,
                offset=True,
            )
        cursor.finished = True
        kind = MessageType.UINT8 if cursor.sent <= protocol.UINT8_MAX else MessageType.UINT16
        return Message.from_value(
            MessageId.INTERNAL_AM_END,
            TypedValue(kind, cursor.sent),
            internal=True,
        )


class VariableDumpExchange(ReplyExchange):
    """Emit the current value of every writable variable."""

    def __init__(
        self,
        registry: VariableRegistry,
        cursor: AnnounceCursor | None = None,
    ) -> None:
        super().__init__(())
        self.registry = registry
        self.cursor = cursor if cursor is not None else AnnounceCursor()
        self._identifiers = writable_identifiers(registry)

    @property
    def finished(self) -> bool:
        return self.cursor.finished

    def next_message(self) -> Message | None:
        cursor = self.cursor
        while not cursor.finished:
            if cursor.index >= len(self._identifiers):
                cursor.finished = True
                break
            identifier = self._identifiers[cursor.index]
            cursor.index += 1
            handle = self.registry.lookup(identifier)
            if handle is None:
                continue
            cursor.sent += 1
            return Message.from_value(identifier, self.registry.read(handle))
        return None


class ResponderStats(msgspec.Struct, kw_only=True):
    unknown_identifiers: int = 0
    value_errors: int = 0
    write_errors: int = 0
    ignored: int = 0


class TargetResponder:
    """Map requests onto replies using a :class:`VariableRegistry`."""

    def __init__(
        self,
        registry: VariableRegistry,
        *,
        board_id: int = protocol.DEFAULT_BOARD_ID,
        device_name: bytes = protocol.DEFAULT_DEVICE_NAME,
        library_version: int = protocol.LIBRARY_VERSION,
    ) -> None:
        self.registry = registry
        self.board_id = board_id
        self.device_name = device_name
        self.library_version = library_version
        self.stats = ResponderStats()

    def handle(self, request: Message) -> ReplyExchange | None:
        """Return the exchange answering *request*, or ``None`` for no reply."""
        if request.internal:
            return self._handle_internal(request)
        if request.identifier == MessageId.BOARD_NAME and request.is_request and not request.payload:
            return self._single(request.reply(TypedValue(MessageType.CHAR, self.device_name)))
        if request.header.data_len == 0 and request.kind is not MessageType.CALLBACK:
            if not request.is_request:
                self.stats.ignored += 1
                return None
            return self._query(request)
        if request.header.data_len == 0 and request.is_request:
            return self._query(request)
        return self._action(request)

    def _single(self, message: Message) -> ReplyExchange:
        return ReplyExchange((message,))

    def _handle_internal(self, request: Message) -> ReplyExchange | None:
        if not request.is_request:
            self.stats.ignored += 1
            return None

        identifier = request.identifier
        if identifier == MessageId.INTERNAL_HEARTBEAT:
            return self._single(Message.build(identifier, request.kind, request.payload, internal=True))
        if identifier == MessageId.INTERNAL_BOARD_ID:
            return self._single(request.reply(TypedValue(MessageType.UINT16, self.board_id)))
        if identifier == MessageId.INTERNAL_LIB_VER:
            return self._single(request.reply(TypedValue(MessageType.UINT8, self.library_version)))
        if identifier == MessageId.INTERNAL_AM:
            return AnnounceExchange(self.registry)
        if identifier == MessageId.INTERNAL_AV:
            return VariableDumpExchange(self.registry)

        self.stats.ignored += 1
        logger.debug("Ignoring internal message %s", protocol.format_message_id(identifier))
        return None

    def _query(self, request: Message) -> ReplyExchange | None:
        handle = self.registry.lookup(request.identifier)
        if handle is None:
            self._unknown(request)
            return None
        # An empty CALLBACK message addressed to a callback variable invokes it.
        if handle.kind is MessageType.CALLBACK and request.kind is MessageType.CALLBACK:
            return self._action(request)
        return self._single(request.reply(self.registry.read(handle)))

    def _action(self, request: Message) -> ReplyExchange | None:
        handle = self.registry.lookup(request.identifier)
        if handle is None:
            self._unknown(request)
            return None
        try:
            value = request.value()
        except ValueCodecError as exc:
            self.stats.value_errors += 1
            logger.warning(
                "Discarding action for %s: %s",
                protocol.format_message_id(request.identifier),
                exc,
                extra={"msg_id": request.identifier},
            )
            return None

        committed = True
        try:
            self.registry.write(handle, value)
        except WriteError as exc:
            committed = False
            self.stats.write_errors += 1
            logger.warning(
                "Write to %s rejected (%s): %s",
                protocol.format_message_id(request.identifier),
                exc.kind,
                exc,
                extra={"msg_id": request.identifier},
            )

        # The reply always carries the stored value, never the requested one.
        if request.is_request:
            return self._single(request.reply(self.registry.read(handle)))
        if request.header.ack_num and committed:
            return self._single(
                Message.build(
                    request.identifier,
                    MessageType.CALLBACK,
                    internal=request.internal,
                    ack_num=request.header.ack_num,
                )
            )
        return None

    def _unknown(self, request: Message) -> None:
        self.stats.unknown_identifiers += 1
        logger.info(
            "Unknown identifier %s",
            protocol.format_message_id(request.identifier),
            extra={"msg_id": request.identifier},
        )
