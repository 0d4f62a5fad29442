"""Serial link implementation using pyserial-asyncio."""

from __future__ import annotations

import asyncio
import logging
from typing import cast

import serial
import serial_asyncio

from rfcgate.core.errors import TransportClosedError, TransportError, TransportOpenError, TransportWriteError
from rfcgate.transports.base import CloseCallback

LOGGER = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 19200
_RX_MAX = 16 * 1024
_CLOSED = object()


class _LineProtocol(asyncio.Protocol):
    def __init__(self, link: SerialPortLink) -> None:
        self._link = link
        self.rx = bytearray()

    def data_received(self, data: bytes) -> None:
        self.rx.extend(data)
        while True:
            idx = self.rx.find(b"\n")
            if idx < 0:
                break
            raw = bytes(self.rx[:idx])
            del self.rx[: idx + 1]
            line = raw.rstrip(b"\r").decode("ascii", errors="replace")
            if line:
                self._link._on_line(line)
        if len(self.rx) > _RX_MAX:
            LOGGER.warning("Receive buffer overflow on %s; dropping %d bytes", self._link.port, len(self.rx))
            self.rx.clear()

    def connection_lost(self, exc: Exception | None) -> None:
        self._link._on_connection_lost(exc)


class SerialPortLink:
    """CR/LF line framing over a serial port."""

    def __init__(self, port: str, baudrate: int = DEFAULT_BAUDRATE) -> None:
        self.port = port
        self.baudrate = baudrate
        self.on_close: CloseCallback | None = None
        self._transport: asyncio.Transport | None = None
        self._protocol: _LineProtocol | None = None
        self._lines: asyncio.Queue[object] | None = None
        self._closed: asyncio.Future[None] | None = None

    @property
    def is_open(self) -> bool:
        return self._transport is not None

    async def open(self) -> None:
        if self._transport is not None:
            return
        loop = asyncio.get_running_loop()
        self._lines = asyncio.Queue()
        try:
            transport, protocol = await serial_asyncio.create_serial_connection(
                loop,
                lambda: _LineProtocol(self),
                self.port,
                baudrate=self.baudrate,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            raise TransportOpenError(f"Could not open {self.port}: {exc}") from exc
        self._transport = transport
        self._protocol = protocol
        self._closed = loop.create_future()
        LOGGER.info("Opened %s at %d baud", self.port, self.baudrate)

    async def close(self) -> None:
        transport, closed = self._transport, self._closed
        if transport is None or closed is None:
            return
        LOGGER.info("Closing port %s", self.port)
        try:
            transport.close()
        except (serial.SerialException, OSError) as exc:
            raise TransportError(f"Could not close {self.port}: {exc}") from exc
        await closed

    async def write(self, data: bytes) -> None:
        transport = self._require_transport()
        try:
            transport.write(data)
        except (serial.SerialException, OSError) as exc:
            raise TransportWriteError(f"Write to {self.port} failed: {exc}") from exc

    async def flush(self) -> None:
        transport = self._require_transport()
        port = getattr(transport, "serial", None)
        try:
            if port is not None:
                port.reset_input_buffer()
        except (serial.SerialException, OSError) as exc:
            raise TransportWriteError(f"Flush of {self.port} failed: {exc}") from exc
        if self._protocol is not None:
            self._protocol.rx.clear()
        if self._lines is None:
            return
        while not self._lines.empty():
            stale = self._lines.get_nowait()
            LOGGER.debug("Discarding stale line on %s: %s", self.port, stale)

    async def readline(self) -> str:
        if self._lines is None:
            raise TransportClosedError(f"Port {self.port} is not open")
        item = await self._lines.get()
        if item is _CLOSED:
            # keep the marker for any later reader
            self._lines.put_nowait(_CLOSED)
            raise TransportClosedError(f"Port {self.port} was closed")
        return cast(str, item)

    def _require_transport(self) -> asyncio.Transport:
        if self._transport is None:
            raise TransportClosedError(f"Port {self.port} is not open")
        return self._transport

    def _on_line(self, line: str) -> None:
        if self._lines is not None:
            self._lines.put_nowait(line)

    def _on_connection_lost(self, exc: Exception | None) -> None:
        self._transport = None
        self._protocol = None
        if self._lines is not None:
            self._lines.put_nowait(_CLOSED)
        if self._closed is not None and not self._closed.done():
            self._closed.set_result(None)
        LOGGER.info("Port %s closed%s", self.port, f": {exc}" if exc else "")
        if self.on_close is not None:
            self.on_close(exc)


def open_serial_link(port: str, baudrate: int = DEFAULT_BAUDRATE) -> SerialPortLink:
    return SerialPortLink(port, baudrate)
