"""Serial transport for euibridge (termios descriptor on the event loop).

:class:`SerialPort` is both the engine's byte sink and its async byte source.
Frames are written straight to the descriptor; whatever the driver does not
take stays in a bounded backlog that the loop flushes when the port becomes
writable. A frame is accepted whole or refused whole, so the engine can offer
it again after :meth:`SerialPort.drain`.
"""

from __future__ import annotations

import asyncio
import fcntl
import logging
import os
import termios
import tty
from typing import Final

from ..config.model import RuntimeConfig
from ..services.engine import TargetEngine

logger = logging.getLogger("euibridge.serial")

READ_CHUNK_SIZE: Final[int] = 256
DEFAULT_WRITE_LIMIT: Final[int] = 4096

SUPPORTED_BAUDRATES: Final[tuple[int, ...]] = (
    1200, 2400, 4800, 9600, 19200, 38400, 57600, 115200,
    230400, 460800, 500000, 921600, 1000000, 2000000,
)
BAUDRATE_MAP: Final[dict[int, int]] = {
    rate: getattr(termios, f"B{rate}") for rate in SUPPORTED_BAUDRATES if hasattr(termios, f"B{rate}")
}


class SerialException(OSError):
    """The serial device could not be opened, configured, read or written."""


def configure_serial_port(fd: int, baudrate: int, exclusive: bool = False) -> None:
    """Put *fd* in raw 8N1 mode at *baudrate* with non-blocking reads."""
    speed = BAUDRATE_MAP.get(baudrate)
    if speed is None:
        raise SerialException(f"Unsupported baudrate: {baudrate}")

    if exclusive:
        try:
            fcntl.ioctl(fd, termios.TIOCEXCL)
        except OSError:
            logger.debug("TIOCEXCL not available for this device")

    try:
        attrs = termios.tcgetattr(fd)
        tty.cfmakeraw(attrs)
        attrs[2] |= termios.CLOCAL | termios.CREAD
        attrs[4] = attrs[5] = speed
        attrs[6][termios.VMIN] = 0
        attrs[6][termios.VTIME] = 0
        termios.tcsetattr(fd, termios.TCSANOW, attrs)
        termios.tcflush(fd, termios.TCIOFLUSH)
    except termios.error as exc:
        raise SerialException(f"Failed to configure port: {exc}") from exc


class SerialPort:
    """Raw serial descriptor attached to the running event loop.

    ``write`` never blocks. While earlier bytes are still queued, a frame
    that would grow the backlog past ``write_limit`` is refused.
    """

    def __init__(self, fd: int, *, write_limit: int = DEFAULT_WRITE_LIMIT) -> None:
        self._loop = asyncio.get_running_loop()
        self._fd: int | None = fd
        self.write_limit = write_limit
        self._backlog = bytearray()
        self._drained = asyncio.Event()
        self._drained.set()
        self._read_waiter: asyncio.Future[None] | None = None
        self._error: OSError | None = None

    @classmethod
    def open(
        cls,
        path: str,
        baudrate: int,
        *,
        exclusive: bool = False,
        write_limit: int = DEFAULT_WRITE_LIMIT,
    ) -> "SerialPort":
        """Open and configure *path*; must be called with a running loop."""
        try:
            fd = os.open(path, os.O_RDWR | os.O_NOCTTY | os.O_NONBLOCK)
        except OSError as exc:
            raise SerialException(f"Could not open port {path}: {exc}") from exc
        try:
            configure_serial_port(fd, baudrate, exclusive=exclusive)
            port = cls(fd, write_limit=write_limit)
        except (SerialException, RuntimeError):
            os.close(fd)
            raise
        logger.info("Serial port %s open at %d baud", path, baudrate)
        return port

    @property
    def closed(self) -> bool:
        return self._fd is None

    @property
    def backlog(self) -> int:
        """Bytes accepted but not yet handed to the driver."""
        return len(self._backlog)

    def write(self, data: bytes) -> bool:
        fd = self._require_fd()
        if not data:
            return True
        if self._backlog:
            if len(self._backlog) + len(data) > self.write_limit:
                return False
            self._backlog.extend(data)
            return True

        try:
            written = os.write(fd, data)
        except BlockingIOError:
            written = 0
        except OSError as exc:
            raise SerialException(f"Serial write failed: {exc}") from exc
        if written < len(data):
            self._backlog.extend(data[written:])
            self._drained.clear()
            self._loop.add_writer(fd, self._flush)
        return True

    async def drain(self) -> None:
        """Wait until the backlog has been handed to the driver."""
        await self._drained.wait()
        if self._error is not None:
            raise SerialException(f"Serial write failed: {self._error}") from self._error

    async def receive(self) -> bytes:
        while True:
            fd = self._require_fd()
            try:
                data = os.read(fd, READ_CHUNK_SIZE)
            except BlockingIOError:
                await self._wait_readable(fd)
                continue
            except OSError as exc:
                raise SerialException(f"Serial read failed: {exc}") from exc
            if not data:
                raise SerialException("Serial port closed")
            return data

    def close(self) -> None:
        fd, self._fd = self._fd, None
        if fd is None:
            return
        self._loop.remove_reader(fd)
        self._loop.remove_writer(fd)
        self._backlog.clear()
        self._drained.set()
        if self._read_waiter is not None and not self._read_waiter.done():
            self._read_waiter.set_exception(SerialException("Serial port closed"))
        os.close(fd)

    async def _wait_readable(self, fd: int) -> None:
        ready: asyncio.Future[None] = self._loop.create_future()
        self._read_waiter = ready
        self._loop.add_reader(fd, lambda: ready.done() or ready.set_result(None))
        try:
            await ready
        finally:
            self._read_waiter = None
            if self._fd == fd:
                self._loop.remove_reader(fd)

    def _flush(self) -> None:
        fd = self._fd
        if fd is None:
            return
        try:
            written = os.write(fd, self._backlog)
        except BlockingIOError:
            return
        except OSError as exc:
            logger.error("Serial write failed: %s", exc)
            self._error = exc
            self._backlog.clear()
        else:
            del self._backlog[:written]
            if self._backlog:
                return
        self._loop.remove_writer(fd)
        self._drained.set()

    def _require_fd(self) -> int:
        if self._error is not None:
            raise SerialException(f"Serial write failed: {self._error}") from self._error
        if self._fd is None:
            raise SerialException("Serial port closed")
        return self._fd


class SerialTargetRunner:
    """Serve a :class:`TargetEngine` on the configured serial port until cancelled."""

    def __init__(self, engine: TargetEngine, config: RuntimeConfig) -> None:
        self.engine = engine
        self.config = config
        self.port: SerialPort | None = None

    async def run(self) -> None:
        self.port = SerialPort.open(self.config.serial_port, self.config.serial_baud, exclusive=True)
        try:
            await self.serve(self.port)
        finally:
            self.port.close()

    async def serve(self, port: SerialPort) -> None:
        while True:
            self.engine.receive(await port.receive())
            self.engine.pump(port)
            while self.engine.has_pending:
                await port.drain()
                self.engine.pump(port)


class SerialHostLink:
    """:class:`~euibridge.transport.HostLink` over a serial port."""

    def __init__(self, port: SerialPort) -> None:
        self.port = port

    @classmethod
    def open(cls, path: str, baudrate: int) -> "SerialHostLink":
        return cls(SerialPort.open(path, baudrate, exclusive=True))

    async def send(self, data: bytes) -> None:
        while not self.port.write(data):
            await self.port.drain()
        await self.port.drain()

    async def receive(self) -> bytes:
        return await self.port.receive()

    def close(self) -> None:
        self.port.close()


__all__ = [
    "BAUDRATE_MAP",
    "SerialException",
    "SerialHostLink",
    "SerialPort",
    "SerialTargetRunner",
    "configure_serial_port",
]
