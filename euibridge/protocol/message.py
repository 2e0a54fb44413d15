"""Message model: header + identifier + payload."""

from __future__ import annotations

import msgspec

from . import framing, protocol, values
from .errors import ParseError, ParseErrorKind
from .header import Header, decode_header, encode_header
from .protocol import MessageType
from .values import TypedValue


class Message(msgspec.Struct, frozen=True, kw_only=True):
    """A single protocol message.

    ``header.id_len`` and ``header.data_len`` always describe ``identifier``
    and ``payload`` when the message is built with :meth:`build`.
    """

    header: Header
    identifier: bytes
    payload: bytes = b""

    @classmethod
    def build(
        cls,
        identifier: bytes,
        kind: MessageType = MessageType.CALLBACK,
        payload: bytes = b"",
        *,
        internal: bool = False,
        offset: bool = False,
        response: bool = False,
        ack_num: int = 0,
    ) -> "Message":
        header = Header(
            data_len=len(payload),
            type=kind,
            internal=internal,
            offset=offset,
            id_len=len(identifier),
            response=response,
            ack_num=ack_num,
        )
        return cls(header=header, identifier=bytes(identifier), payload=bytes(payload))

    @classmethod
    def from_value(
        cls,
        identifier: bytes,
        typed: TypedValue,
        *,
        internal: bool = False,
        offset: bool = False,
        response: bool = False,
        ack_num: int = 0,
    ) -> "Message":
        """Build a message carrying the encoded *typed* value."""
        return cls.build(
            identifier,
            typed.kind,
            values.encode(typed),
            internal=internal,
            offset=offset,
            response=response,
            ack_num=ack_num,
        )

    @classmethod
    def request(
        cls,
        identifier: bytes,
        typed: TypedValue | None = None,
        *,
        internal: bool = False,
        ack_num: int = 0,
    ) -> "Message":
        """Build a message with the response flag set.

        Without *typed* this is a query (or an internal control request).
        """
        if typed is None:
            return cls.build(identifier, internal=internal, response=True, ack_num=ack_num)
        return cls.from_value(identifier, typed, internal=internal, response=True, ack_num=ack_num)

    def reply(self, typed: TypedValue, *, offset: bool = False, identifier: bytes | None = None) -> "Message":
        """Build the reply to this request.

        The reply keeps the internal flag, clears the response flag and
        echoes the acknowledgement number.
        """
        return Message.from_value(
            self.identifier if identifier is None else identifier,
            typed,
            internal=self.header.internal,
            offset=offset,
            ack_num=self.header.ack_num,
        )

    @property
    def kind(self) -> MessageType:
        return self.header.type

    @property
    def internal(self) -> bool:
        return self.header.internal

    @property
    def is_request(self) -> bool:
        return self.header.response

    def value(self) -> TypedValue:
        """Decode the payload according to the header type."""
        return values.decode(self.header.type, self.payload)

    def to_bytes(self) -> bytes:
        return serialize_message(self)

    @classmethod
    def from_bytes(cls, body: bytes | bytearray | memoryview) -> "Message":
        return parse_message(body)


def parse_message(body: bytes | bytearray | memoryview) -> Message:
    """Parse a checksum-verified frame body into a :class:`Message`."""
    data = bytes(body)
    header, offset = decode_header(data)
    id_end = offset + header.id_len
    expected = id_end + header.data_len
    if len(data) < expected:
        raise ParseError(
            ParseErrorKind.TRUNCATED,
            f"Header announces {expected} bytes, body has {len(data)}",
        )
    if len(data) > expected:
        raise ParseError(
            ParseErrorKind.LENGTH_MISMATCH,
            f"Body has {len(data) - expected} trailing bytes",
        )
    identifier = data[offset:id_end]
    if not protocol.is_valid_message_id(identifier):
        raise ParseError(ParseErrorKind.INVALID_ID, f"Invalid message ID {identifier!r}")
    return Message(header=header, identifier=identifier, payload=data[id_end:])


def serialize_message(message: Message) -> bytes:
    """Serialize *message* into a frame body (inverse of :func:`parse_message`)."""
    if not protocol.is_valid_message_id(message.identifier):
        raise ParseError(ParseErrorKind.INVALID_ID, f"Invalid message ID {message.identifier!r}")
    if message.header.id_len != len(message.identifier):
        raise ParseError(
            ParseErrorKind.LENGTH_MISMATCH,
            f"Header id_len {message.header.id_len} does not match identifier of {len(message.identifier)} bytes",
        )
    if message.header.data_len != len(message.payload):
        raise ParseError(
            ParseErrorKind.LENGTH_MISMATCH,
            f"Header data_len {message.header.data_len} does not match payload of {len(message.payload)} bytes",
        )
    return encode_header(message.header) + message.identifier + message.payload


def encode_message(message: Message) -> bytes:
    """Serialize and frame *message* for the wire."""
    return framing.encode_frame(serialize_message(message))


def decode_message(encoded: bytes | bytearray | memoryview) -> Message:
    """Unframe one encoded packet and parse the message inside it."""
    return parse_message(framing.decode_frame(encoded))
