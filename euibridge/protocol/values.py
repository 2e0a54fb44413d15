"""Typed payload values and their little-endian wire encodings.

Numeric kinds are fixed width. A payload holding exactly one element decodes
to a scalar, a payload holding several whole elements decodes to a tuple.
Opaque kinds (``BYTE``, ``CHAR``, ``CUSTOM``) carry raw bytes of any length and
marker kinds (``CALLBACK``, ``OFFSET_METADATA``) carry nothing.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Final

import msgspec
from construct import (  # type: ignore
    Array,
    Construct,
    ConstructError,
    Float32l,
    Float64l,
    Int8sl,
    Int8ul,
    Int16sl,
    Int16ul,
    Int32sl,
    Int32ul,
)

from .errors import ValueCodecError, ValueErrorKind
from .protocol import MessageType

NUMERIC_FORMATS: Final[dict[MessageType, Construct[Any]]] = {
    MessageType.INT8: Int8sl,
    MessageType.UINT8: Int8ul,
    MessageType.INT16: Int16sl,
    MessageType.UINT16: Int16ul,
    MessageType.INT32: Int32sl,
    MessageType.UINT32: Int32ul,
    MessageType.FLOAT: Float32l,
    MessageType.DOUBLE: Float64l,
}

FLOAT_KINDS: Final[frozenset[MessageType]] = frozenset({MessageType.FLOAT, MessageType.DOUBLE})
OPAQUE_KINDS: Final[frozenset[MessageType]] = frozenset(
    {MessageType.BYTE, MessageType.CHAR, MessageType.CUSTOM}
)
MARKER_KINDS: Final[frozenset[MessageType]] = frozenset(
    {MessageType.CALLBACK, MessageType.OFFSET_METADATA}
)

Scalar = int | float
ValueData = Scalar | tuple[Scalar, ...] | bytes | None


class TypedValue(msgspec.Struct, frozen=True):
    """A payload value tagged with its kind."""

    kind: MessageType
    value: ValueData = None


def _coerce_kind(kind: MessageType | int) -> MessageType:
    try:
        return MessageType(kind)
    except ValueError as exc:
        raise ValueCodecError(ValueErrorKind.INVALID_VALUE, f"Unknown value kind {kind}") from exc


def is_numeric(kind: MessageType) -> bool:
    return kind in NUMERIC_FORMATS


def is_opaque(kind: MessageType) -> bool:
    return kind in OPAQUE_KINDS


def is_marker(kind: MessageType) -> bool:
    return kind in MARKER_KINDS


def wire_size(kind: MessageType | int) -> int | None:
    """Byte width of one element of *kind*; ``None`` for opaque kinds."""
    kind = _coerce_kind(kind)
    if kind in MARKER_KINDS:
        return 0
    fmt = NUMERIC_FORMATS.get(kind)
    if fmt is None:
        return None
    return fmt.sizeof()


def array_length(kind: MessageType | int, data_len: int) -> int:
    """Number of elements a payload of *data_len* bytes holds."""
    width = wire_size(kind)
    if width is None:
        return data_len
    if width == 0:
        return 0
    return data_len // width


def _check_numeric(kind: MessageType, item: Any) -> None:
    if isinstance(item, bool) or not isinstance(item, (int, float)):
        raise ValueCodecError(
            ValueErrorKind.INVALID_VALUE,
            f"{kind.name} value must be a number, got {type(item).__name__}",
        )
    if kind not in FLOAT_KINDS and not isinstance(item, int):
        raise ValueCodecError(
            ValueErrorKind.INVALID_VALUE,
            f"{kind.name} value must be an integer, got {item!r}",
        )


def encode(typed: TypedValue) -> bytes:
    """Encode *typed* into its payload bytes."""
    kind = _coerce_kind(typed.kind)
    value = typed.value

    if kind in MARKER_KINDS:
        if value not in (None, b""):
            raise ValueCodecError(ValueErrorKind.LENGTH_MISMATCH, f"{kind.name} carries no payload")
        return b""

    if kind in OPAQUE_KINDS:
        if isinstance(value, str):
            return value.encode("utf-8")
        if isinstance(value, (bytes, bytearray, memoryview)):
            return bytes(value)
        raise ValueCodecError(
            ValueErrorKind.INVALID_VALUE,
            f"{kind.name} value must be bytes, got {type(value).__name__}",
        )

    fmt = NUMERIC_FORMATS[kind]
    items: Sequence[Any]
    if isinstance(value, (tuple, list)):
        if not value:
            raise ValueCodecError(ValueErrorKind.LENGTH_MISMATCH, f"{kind.name} array must not be empty")
        items = value
    else:
        items = (value,)

    chunks: list[bytes] = []
    for item in items:
        _check_numeric(kind, item)
        try:
            chunks.append(fmt.build(item))
        except ConstructError as exc:
            raise ValueCodecError(
                ValueErrorKind.OUT_OF_RANGE,
                f"{item!r} does not fit in {kind.name}",
            ) from exc
    return b"".join(chunks)


def decode(kind: MessageType | int, data: bytes | bytearray | memoryview) -> TypedValue:
    """Decode *data* as a payload of *kind*."""
    kind = _coerce_kind(kind)
    payload = bytes(data)

    if kind in MARKER_KINDS:
        if payload:
            raise ValueCodecError(
                ValueErrorKind.LENGTH_MISMATCH,
                f"{kind.name} carries no payload, got {len(payload)} bytes",
            )
        return TypedValue(kind)

    if kind in OPAQUE_KINDS:
        return TypedValue(kind, payload)

    fmt = NUMERIC_FORMATS[kind]
    width = fmt.sizeof()
    if not payload or len(payload) % width:
        raise ValueCodecError(
            ValueErrorKind.LENGTH_MISMATCH,
            f"{kind.name} needs a multiple of {width} bytes, got {len(payload)}",
        )
    if len(payload) == width:
        return TypedValue(kind, fmt.parse(payload))
    return TypedValue(kind, tuple(Array(len(payload) // width, fmt).parse(payload)))
