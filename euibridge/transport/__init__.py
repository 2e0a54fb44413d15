"""Byte transport boundary for the protocol engine.

The engine never owns a physical link. It reads from a :class:`ByteSource`
and writes to a :class:`ByteSink`; the host client talks to a
:class:`HostLink`. :class:`LoopbackLink` wires both sides together in memory.
"""

from __future__ import annotations

import asyncio
from typing import Protocol, runtime_checkable


@runtime_checkable
class ByteSource(Protocol):
    def read(self) -> bytes:
        """Return the bytes available now; ``b""`` when there are none."""
        ...


@runtime_checkable
class ByteSink(Protocol):
    def write(self, data: bytes) -> bool:
        """Accept all of *data* and return True, or accept nothing and return False."""
        ...


class AsyncByteSource(Protocol):
    async def receive(self) -> bytes: ...


class HostLink(Protocol):
    async def send(self, data: bytes) -> None: ...

    async def receive(self) -> bytes: ...


class LoopbackPipe:
    """One direction of an in-memory link.

    ``capacity`` bounds the number of unread bytes; a write that would exceed
    it is refused as "not ready".
    """

    def __init__(self, capacity: int | None = None) -> None:
        self.capacity = capacity
        self._buffer = bytearray()
        self._readable = asyncio.Event()
        self.refused = 0

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def write(self, data: bytes) -> bool:
        if self.capacity is not None and len(self._buffer) + len(data) > self.capacity:
            self.refused += 1
            return False
        self._buffer.extend(data)
        if self._buffer:
            self._readable.set()
        return True

    def read(self) -> bytes:
        data = bytes(self._buffer)
        self._buffer.clear()
        self._readable.clear()
        return data

    async def receive(self) -> bytes:
        while not self._buffer:
            await self._readable.wait()
        return self.read()

    async def send(self, data: bytes) -> None:
        while not self.write(data):
            await asyncio.sleep(0)


class LoopbackHostLink:
    """Host end of a :class:`LoopbackLink`."""

    def __init__(self, outbound: LoopbackPipe, inbound: LoopbackPipe) -> None:
        self._outbound = outbound
        self._inbound = inbound

    async def send(self, data: bytes) -> None:
        await self._outbound.send(data)

    async def receive(self) -> bytes:
        return await self._inbound.receive()


class LoopbackLink:
    """In-memory pair of pipes connecting a host to a target engine."""

    def __init__(self, target_capacity: int | None = None) -> None:
        self.host_to_target = LoopbackPipe()
        self.target_to_host = LoopbackPipe(capacity=target_capacity)
        self.host = LoopbackHostLink(self.host_to_target, self.target_to_host)

    @property
    def target_source(self) -> LoopbackPipe:
        return self.host_to_target

    @property
    def target_sink(self) -> LoopbackPipe:
        return self.target_to_host


__all__ = [
    "AsyncByteSource",
    "ByteSink",
    "ByteSource",
    "HostLink",
    "LoopbackHostLink",
    "LoopbackLink",
    "LoopbackPipe",
]
