"""Tests for typed payload encoding and decoding."""

from __future__ import annotations

import struct

import pytest

from euibridge.protocol import values
from euibridge.protocol.errors import ValueCodecError, ValueErrorKind
from euibridge.protocol.protocol import MessageType
from euibridge.protocol.values import TypedValue


@pytest.mark.parametrize(
    ("kind", "value", "payload"),
    [
        (MessageType.INT8, -1, b"\xff"),
        (MessageType.UINT8, 200, b"\xc8"),
        (MessageType.INT16, -2, b"\xfe\xff"),
        (MessageType.UINT16, 0xBEEF, b"\xef\xbe"),
        (MessageType.INT32, -100000, struct.pack("<i", -100000)),
        (MessageType.UINT32, 0xDEADBEEF, b"\xef\xbe\xad\xde"),
        (MessageType.DOUBLE, 3.5, struct.pack("<d", 3.5)),
        (MessageType.FLOAT, 0.5, struct.pack("<f", 0.5)),
    ],
)
def test_scalar_encoding_is_little_endian(kind: MessageType, value: int | float, payload: bytes) -> None:
    assert values.encode(TypedValue(kind, value)) == payload
    assert values.decode(kind, payload) == TypedValue(kind, value)


def test_float_payload_from_known_frame() -> None:
    decoded = values.decode(MessageType.FLOAT, bytes([0x14, 0xAE, 0x29, 0x42]))

    assert decoded.kind is MessageType.FLOAT
    assert decoded.value == pytest.approx(42.42, rel=1e-6)


def test_numeric_array_decodes_to_tuple() -> None:
    assert values.decode(MessageType.UINT8, b"\x01\x02\x03").value == (1, 2, 3)
    assert values.decode(MessageType.INT16, b"\x01\x00\xff\xff").value == (1, -1)


def test_numeric_array_encodes_each_element() -> None:
    assert values.encode(TypedValue(MessageType.UINT16, (1, 2))) == b"\x01\x00\x02\x00"
    assert values.encode(TypedValue(MessageType.UINT8, [7, 8])) == b"\x07\x08"


def test_opaque_kinds_carry_raw_bytes() -> None:
    assert values.decode(MessageType.CHAR, b"hello").value == b"hello"
    assert values.decode(MessageType.BYTE, b"").value == b""
    assert values.encode(TypedValue(MessageType.CHAR, "héllo")) == "héllo".encode()
    assert values.encode(TypedValue(MessageType.CUSTOM, bytearray(b"\x00\x01"))) == b"\x00\x01"


def test_marker_kinds_carry_nothing() -> None:
    assert values.decode(MessageType.CALLBACK, b"") == TypedValue(MessageType.CALLBACK)
    assert values.encode(TypedValue(MessageType.CALLBACK)) == b""
    assert values.encode(TypedValue(MessageType.OFFSET_METADATA, b"")) == b""


@pytest.mark.parametrize(
    ("kind", "payload"),
    [
        (MessageType.UINT16, b"\x01"),
        (MessageType.UINT32, b""),
        (MessageType.DOUBLE, bytes(12)),
        (MessageType.CALLBACK, b"\x00"),
    ],
)
def test_decode_length_mismatch(kind: MessageType, payload: bytes) -> None:
    with pytest.raises(ValueCodecError) as excinfo:
        values.decode(kind, payload)
    assert excinfo.value.kind is ValueErrorKind.LENGTH_MISMATCH


@pytest.mark.parametrize(
    ("kind", "value"),
    [
        (MessageType.UINT8, 256),
        (MessageType.UINT8, -1),
        (MessageType.INT8, -129),
        (MessageType.UINT16, 0x10000),
        (MessageType.INT32, 2**31),
    ],
)
def test_encode_out_of_range(kind: MessageType, value: int) -> None:
    with pytest.raises(ValueCodecError) as excinfo:
        values.encode(TypedValue(kind, value))
    assert excinfo.value.kind is ValueErrorKind.OUT_OF_RANGE


@pytest.mark.parametrize(
    ("kind", "value"),
    [
        (MessageType.UINT8, 1.5),
        (MessageType.UINT8, True),
        (MessageType.INT16, "12"),
        (MessageType.CHAR, 12),
    ],
)
def test_encode_invalid_value(kind: MessageType, value: object) -> None:
    with pytest.raises(ValueCodecError) as excinfo:
        values.encode(TypedValue(kind, value))  # type: ignore[arg-type]
    assert excinfo.value.kind is ValueErrorKind.INVALID_VALUE


def test_encode_rejects_empty_array_and_marker_payload() -> None:
    with pytest.raises(ValueCodecError) as excinfo:
        values.encode(TypedValue(MessageType.UINT8, ()))
    assert excinfo.value.kind is ValueErrorKind.LENGTH_MISMATCH

    with pytest.raises(ValueCodecError):
        values.encode(TypedValue(MessageType.CALLBACK, b"\x01"))


def test_unknown_kind_code() -> None:
    with pytest.raises(ValueCodecError) as excinfo:
        values.decode(13, b"")
    assert excinfo.value.kind is ValueErrorKind.INVALID_VALUE


def test_wire_size_and_array_length() -> None:
    assert values.wire_size(MessageType.INT32) == 4
    assert values.wire_size(MessageType.DOUBLE) == 8
    assert values.wire_size(MessageType.CHAR) is None
    assert values.wire_size(MessageType.CALLBACK) == 0
    assert values.array_length(MessageType.UINT16, 6) == 3
    assert values.array_length(MessageType.BYTE, 5) == 5
    assert values.array_length(MessageType.CALLBACK, 0) == 0
