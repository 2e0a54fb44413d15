"""Three byte message header codec."""

from __future__ import annotations

from typing import Any

import msgspec
from construct import ConstructError

from . import protocol
from .errors import HeaderError, HeaderErrorKind
from .protocol import MessageType

_VALID_TYPES = frozenset(int(member) for member in MessageType)


class Header(msgspec.Struct, frozen=True, kw_only=True):
    """Decoded header fields.

    Attributes:
        data_len: Payload byte count (10-bit).
        type: Kind of the payload.
        internal: Protocol control message, not a user variable.
        offset: More items of the same exchange follow.
        id_len: Message identifier byte count (1..15).
        response: Sender expects a reply.
        ack_num: Acknowledgement correlator, 0 when unused.
    """

    data_len: int = 0
    type: MessageType = MessageType.CALLBACK
    internal: bool = False
    offset: bool = False
    id_len: int = 1
    response: bool = False
    ack_num: int = 0


def decode_header(data: bytes | bytearray | memoryview) -> tuple[Header, int]:
    """Decode the header at the start of *data*.

    Returns the header and the number of bytes consumed.
    """
    if len(data) < protocol.HEADER_SIZE:
        raise HeaderError(
            HeaderErrorKind.TRUNCATED,
            f"Header needs {protocol.HEADER_SIZE} bytes, got {len(data)}",
        )
    try:
        container: Any = protocol.HEADER_STRUCT.parse(bytes(data[: protocol.HEADER_SIZE]))
    except ConstructError as exc:
        raise HeaderError(HeaderErrorKind.TRUNCATED, f"Header parsing failed: {exc}") from exc

    if container.type not in _VALID_TYPES:
        raise HeaderError(HeaderErrorKind.INVALID_TYPE, f"Unknown message type {container.type}")
    if container.id_len == 0:
        raise HeaderError(HeaderErrorKind.INVALID_ID_LENGTH, "Message ID length must not be zero")

    header = Header(
        data_len=container.data_len,
        type=MessageType(container.type),
        internal=bool(container.internal),
        offset=bool(container.offset),
        id_len=container.id_len,
        response=bool(container.response),
        ack_num=container.ack_num,
    )
    return header, protocol.HEADER_SIZE


def encode_header(header: Header) -> bytes:
    if not 0 <= header.data_len <= protocol.MAX_PAYLOAD_SIZE:
        raise HeaderError(
            HeaderErrorKind.INVALID_DATA_LENGTH,
            f"Payload length {header.data_len} exceeds max {protocol.MAX_PAYLOAD_SIZE}",
        )
    if not 1 <= header.id_len <= protocol.MAX_MSG_ID_SIZE:
        raise HeaderError(
            HeaderErrorKind.INVALID_ID_LENGTH,
            f"Message ID length {header.id_len} outside 1..{protocol.MAX_MSG_ID_SIZE}",
        )
    if not 0 <= header.ack_num <= protocol.MAX_ACK_NUM:
        raise HeaderError(
            HeaderErrorKind.INVALID_ACK_NUM,
            f"Ack number {header.ack_num} outside 0..{protocol.MAX_ACK_NUM}",
        )
    if int(header.type) not in _VALID_TYPES:
        raise HeaderError(HeaderErrorKind.INVALID_TYPE, f"Unknown message type {header.type}")

    return protocol.HEADER_STRUCT.build(
        {
            "ack_num": header.ack_num,
            "response": header.response,
            "id_len": header.id_len,
            "offset": header.offset,
            "internal": header.internal,
            "type": int(header.type),
            "data_len": header.data_len,
        }
    )
