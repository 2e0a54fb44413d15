"""Error taxonomy for the protocol engine.

Every decode-side error is recoverable: the offending frame or message is
discarded and processing continues with the next one.
"""

from __future__ import annotations

from enum import StrEnum


class FrameErrorKind(StrEnum):
    OVERSIZE = "oversize"
    MALFORMED = "malformed"
    TOO_SHORT = "too_short"
    CHECKSUM = "checksum"


class HeaderErrorKind(StrEnum):
    TRUNCATED = "truncated"
    INVALID_TYPE = "invalid_type"
    INVALID_ID_LENGTH = "invalid_id_length"
    INVALID_DATA_LENGTH = "invalid_data_length"
    INVALID_ACK_NUM = "invalid_ack_num"


class ParseErrorKind(StrEnum):
    TRUNCATED = "truncated"
    LENGTH_MISMATCH = "length_mismatch"
    INVALID_ID = "invalid_id"


class ValueErrorKind(StrEnum):
    LENGTH_MISMATCH = "length_mismatch"
    OUT_OF_RANGE = "out_of_range"
    INVALID_VALUE = "invalid_value"


class WriteErrorKind(StrEnum):
    READ_ONLY = "read_only"
    KIND_MISMATCH = "kind_mismatch"
    OUT_OF_RANGE = "out_of_range"
    UNKNOWN_VARIABLE = "unknown_variable"


class ProtocolError(ValueError):
    """Base class for all protocol engine errors."""

    kind: StrEnum

    def __init__(self, kind: StrEnum, message: str | None = None) -> None:
        super().__init__(message or str(kind))
        self.kind = kind


class FrameError(ProtocolError):
    """Malformed delimiting, invalid byte stuffing or oversize frame."""

    def __init__(self, kind: FrameErrorKind, message: str | None = None) -> None:
        super().__init__(kind, message)


class ChecksumError(FrameError):
    """Frame body does not match its trailing CRC."""

    def __init__(self, expected: int, received: int) -> None:
        super().__init__(
            FrameErrorKind.CHECKSUM,
            f"CRC mismatch: expected 0x{expected:04X}, got 0x{received:04X}",
        )
        self.expected = expected
        self.received = received


class HeaderError(ProtocolError):
    def __init__(self, kind: HeaderErrorKind, message: str | None = None) -> None:
        super().__init__(kind, message)


class ParseError(ProtocolError):
    def __init__(self, kind: ParseErrorKind, message: str | None = None) -> None:
        super().__init__(kind, message)


class ValueCodecError(ProtocolError):
    def __init__(self, kind: ValueErrorKind, message: str | None = None) -> None:
        super().__init__(kind, message)


class WriteError(ProtocolError):
    """Raised by a variable registry that rejects a write."""

    def __init__(self, kind: WriteErrorKind, message: str | None = None) -> None:
        super().__init__(kind, message)
