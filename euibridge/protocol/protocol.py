"""Wire constants for the ElectricUI binary protocol.

Frame layout (before COBS encoding)::

    [Header (3 bytes)] [Message ID (1-15 bytes)] [Payload (0-1023 bytes)] [CRC16 (2 bytes)]

The header packs its fields into a little-endian 16-bit word followed by a
control byte:

    word bits 0..9    data_len   payload byte count
    word bits 10..13  type       MessageType wire code
    word bit 14       internal   protocol control message
    word bit 15       offset     more items follow
    ctrl bits 0..3    id_len     message ID byte count
    ctrl bit 4        response   sender expects a reply
    ctrl bits 5..7    ack_num    acknowledgement correlator

The CRC is CRC-16/CCITT-FALSE over header + message ID + payload, stored
little-endian. The raw frame is COBS-encoded and terminated with 0x00.
"""

from __future__ import annotations

from enum import IntEnum
from typing import Final

from construct import (  # type: ignore
    BitsInteger,
    BitStruct,
    ByteSwapped,
    Flag,
    Int16ul,
)

# --- Frame Structure ---
HEADER_STRUCT: Final = ByteSwapped(
    BitStruct(
        "ack_num" / BitsInteger(3),
        "response" / Flag,
        "id_len" / BitsInteger(4),
        "offset" / Flag,
        "internal" / Flag,
        "type" / BitsInteger(4),
        "data_len" / BitsInteger(10),
    )
)
HEADER_SIZE: Final[int] = HEADER_STRUCT.sizeof()  # type: ignore
CRC_STRUCT: Final = Int16ul
CRC_SIZE: Final[int] = CRC_STRUCT.sizeof()  # type: ignore

# data_len is a 10-bit field
MAX_PAYLOAD_SIZE: Final[int] = 0x3FF
MAX_MSG_ID_SIZE: Final[int] = 15
MAX_ACK_NUM: Final[int] = 7

BASE_PACKET_SIZE: Final[int] = HEADER_SIZE + CRC_SIZE
MAX_PACKET_SIZE: Final[int] = BASE_PACKET_SIZE + MAX_MSG_ID_SIZE + MAX_PAYLOAD_SIZE
# COBS adds one code byte per 254 data bytes plus the leading code byte.
MAX_ENCODED_FRAME_SIZE: Final[int] = MAX_PACKET_SIZE + MAX_PACKET_SIZE // 254 + 1

FRAME_DELIMITER: Final[bytes] = bytes([0])

# --- CRC-16/CCITT-FALSE ---
CRC_INITIAL: Final[int] = 0xFFFF
CRC_POLYNOMIAL: Final[int] = 0x1021
CRC_CHECK_VALUE: Final[int] = 0x29B1

# --- Device defaults ---
DEFAULT_BAUDRATE: Final[int] = 115200
DEFAULT_BOARD_ID: Final[int] = 0xBEEF
DEFAULT_DEVICE_NAME: Final[bytes] = b"euibridge"
LIBRARY_VERSION: Final[int] = 3
UINT8_MAX: Final[int] = 0xFF
UINT16_MAX: Final[int] = 0xFFFF


class MessageType(IntEnum):
    """Payload kinds carried in the 4-bit header type field."""

    CALLBACK = 0
    CUSTOM = 1
    OFFSET_METADATA = 2
    BYTE = 3
    CHAR = 4
    INT8 = 5
    UINT8 = 6
    INT16 = 7
    UINT16 = 8
    INT32 = 9
    UINT32 = 10
    FLOAT = 11
    DOUBLE = 12


class MessageId:
    """Reserved message identifiers."""

    INTERNAL_LIB_VER: Final[bytes] = b"o"
    INTERNAL_BOARD_ID: Final[bytes] = b"i"
    INTERNAL_HEARTBEAT: Final[bytes] = b"h"
    # Announce writable IDs
    INTERNAL_AM: Final[bytes] = b"t"
    # Delimit writable ID
    INTERNAL_AM_LIST: Final[bytes] = b"u"
    # End of writable IDs
    INTERNAL_AM_END: Final[bytes] = b"v"
    # Send writable variables
    INTERNAL_AV: Final[bytes] = b"w"

    BOARD_NAME: Final[bytes] = b"name"


INTERNAL_IDS: Final[frozenset[bytes]] = frozenset(
    {
        MessageId.INTERNAL_LIB_VER,
        MessageId.INTERNAL_BOARD_ID,
        MessageId.INTERNAL_HEARTBEAT,
        MessageId.INTERNAL_AM,
        MessageId.INTERNAL_AM_LIST,
        MessageId.INTERNAL_AM_END,
        MessageId.INTERNAL_AV,
    }
)


def is_valid_message_id(identifier: bytes) -> bool:
    """Return True when *identifier* can be carried in a header."""
    if not identifier or len(identifier) > MAX_MSG_ID_SIZE:
        return False
    return identifier != b"\x00"


def format_message_id(identifier: bytes) -> str:
    """Render an identifier for logs: ASCII when printable, hex otherwise."""
    if identifier and all(32 <= byte < 127 for byte in identifier):
        return identifier.decode("ascii")
    return f"[{identifier.hex(' ').upper()}]"
