"""COBS framing with a trailing CRC-16 for the serial link.

Frame structure (on wire)::

    COBS( body || CRC16-LE(body) ) || 0x00

``0x00`` is reserved as the delimiter, so any stream position can be
resynchronised by scanning forward to the next zero byte.
"""

from __future__ import annotations

import logging
from binascii import crc_hqx
from collections.abc import Iterator

from cobs import cobs  # type: ignore[import]
from construct import ConstructError

from . import protocol
from .errors import ChecksumError, FrameError, FrameErrorKind

logger = logging.getLogger("euibridge.framing")

MAX_BODY_SIZE = protocol.MAX_PACKET_SIZE - protocol.CRC_SIZE


def crc16_ccitt(data: bytes | bytearray | memoryview, initial: int = protocol.CRC_INITIAL) -> int:
    """Return the CRC-16/CCITT-FALSE of *data* using ``binascii.crc_hqx``."""
    return crc_hqx(data, initial)


def encode_frame(body: bytes | bytearray | memoryview) -> bytes:
    """Append the checksum, COBS-encode and terminate *body* with the delimiter."""
    if len(body) > MAX_BODY_SIZE:
        raise FrameError(
            FrameErrorKind.OVERSIZE,
            f"Frame body too large ({len(body)} bytes); max is {MAX_BODY_SIZE}",
        )
    raw = bytes(body) + protocol.CRC_STRUCT.build(crc16_ccitt(body))
    return cobs.encode(raw) + protocol.FRAME_DELIMITER


def decode_frame(encoded: bytes | bytearray | memoryview) -> bytes:
    """Decode one COBS packet (with or without its delimiter) and verify the CRC.

    Returns the body without the checksum trailer.
    """
    packet = bytes(encoded)
    if packet.endswith(protocol.FRAME_DELIMITER):
        packet = packet[:-1]
    try:
        raw = cobs.decode(packet)
    except cobs.DecodeError as exc:
        raise FrameError(FrameErrorKind.MALFORMED, f"COBS decode failed: {exc}") from exc

    if len(raw) < protocol.CRC_SIZE:
        raise FrameError(
            FrameErrorKind.TOO_SHORT,
            f"Frame of {len(raw)} bytes cannot hold a {protocol.CRC_SIZE} byte checksum",
        )

    body = raw[: -protocol.CRC_SIZE]
    try:
        received = protocol.CRC_STRUCT.parse(raw[-protocol.CRC_SIZE :])
    except ConstructError as exc:
        raise FrameError(FrameErrorKind.MALFORMED, f"Failed to parse CRC: {exc}") from exc

    calculated = crc16_ccitt(body)
    if received != calculated:
        raise ChecksumError(calculated, received)
    return body


class FrameDecoder:
    """Incremental frame decoder over a fixed capacity buffer.

    ``feed`` yields, in stream order, the verified body of every complete
    frame or the :class:`FrameError` describing why a candidate was dropped.
    Bytes following the last delimiter stay buffered until the next call.
    The returned iterator must be consumed to process all of *data*.
    """

    def __init__(self, capacity: int = protocol.MAX_ENCODED_FRAME_SIZE) -> None:
        if capacity <= protocol.CRC_SIZE:
            raise ValueError("capacity must exceed the checksum size")
        self._buffer = bytearray(capacity)
        self._length = 0
        self._discarding = False
        self.count = 0
        self.invalid_count = 0

    @property
    def capacity(self) -> int:
        return len(self._buffer)

    @property
    def pending(self) -> int:
        """Number of buffered bytes belonging to an unterminated frame."""
        return self._length

    def reset(self) -> None:
        self._length = 0
        self._discarding = False

    def feed(self, data: bytes | bytearray | memoryview) -> Iterator[bytes | FrameError]:
        delimiter = protocol.FRAME_DELIMITER[0]
        for byte_value in bytes(data):
            if byte_value == delimiter:
                if self._discarding:
                    self.reset()
                    continue
                if self._length == 0:
                    continue
                yield self._complete()
                continue

            if self._discarding:
                continue

            if self._length >= len(self._buffer):
                self._discarding = True
                self._length = 0
                self.invalid_count += 1
                logger.warning("Frame exceeds %d bytes; discarding until next delimiter", len(self._buffer))
                yield FrameError(
                    FrameErrorKind.OVERSIZE,
                    f"Frame exceeds decoder capacity of {len(self._buffer)} bytes",
                )
                continue

            self._buffer[self._length] = byte_value
            self._length += 1

    def _complete(self) -> bytes | FrameError:
        encoded = bytes(self._buffer[: self._length])
        self._length = 0
        try:
            body = decode_frame(encoded)
        except FrameError as exc:
            self.invalid_count += 1
            return exc
        self.count += 1
        return body
