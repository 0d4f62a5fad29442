from __future__ import annotations

import asyncio

import pytest
import serial
import serial_asyncio

from rfcgate.core.errors import TransportClosedError, TransportOpenError
from rfcgate.transports.serial_link import SerialPortLink, _LineProtocol


def test_open_failure_raises_clean_error(monkeypatch: pytest.MonkeyPatch) -> None:
    async def fake_create(loop, protocol_factory, url, **kwargs):
        raise serial.SerialException("could not open port /dev/ttyUSB7")

    monkeypatch.setattr(serial_asyncio, "create_serial_connection", fake_create)

    link = SerialPortLink("/dev/ttyUSB7")
    with pytest.raises(TransportOpenError, match="Could not open /dev/ttyUSB7"):
        asyncio.run(link.open())
    assert not link.is_open


def test_line_framing_strips_terminators_and_skips_blank_lines() -> None:
    async def scenario():
        link = SerialPortLink("/dev/ttyUSB0")
        link._lines = asyncio.Queue()
        protocol = _LineProtocol(link)
        protocol.data_received(b"=VER,A7")
        protocol.data_received(b"40:1.0\r\n\r\nOK\r\nE,")
        lines = [await link.readline(), await link.readline()]
        return lines, bytes(protocol.rx)

    lines, pending = asyncio.run(scenario())
    assert lines == ["=VER,A740:1.0", "OK"]
    assert pending == b"E,"


def test_connection_lost_notifies_and_wakes_reader() -> None:
    closed = []

    async def scenario():
        link = SerialPortLink("/dev/ttyUSB0")
        link._lines = asyncio.Queue()
        link.on_close = closed.append
        protocol = _LineProtocol(link)
        reader = asyncio.ensure_future(link.readline())
        await asyncio.sleep(0)
        protocol.connection_lost(OSError("unplugged"))
        with pytest.raises(TransportClosedError):
            await reader
        with pytest.raises(TransportClosedError):
            await link.readline()

    asyncio.run(scenario())
    assert len(closed) == 1
    assert isinstance(closed[0], OSError)


def test_write_requires_open_port() -> None:
    link = SerialPortLink("/dev/ttyUSB0")
    with pytest.raises(TransportClosedError):
        asyncio.run(link.write(b"VER\r"))


class _FakeSerial:
    def __init__(self) -> None:
        self.resets = 0

    def reset_input_buffer(self) -> None:
        self.resets += 1


class _FakeTransport:
    def __init__(self) -> None:
        self.serial = _FakeSerial()


def test_flush_requires_open_port() -> None:
    link = SerialPortLink("/dev/ttyUSB0")
    with pytest.raises(TransportClosedError):
        asyncio.run(link.flush())


def test_flush_discards_stale_lines_and_partial_input() -> None:
    transport = _FakeTransport()

    async def scenario():
        link = SerialPortLink("/dev/ttyUSB0")
        link._transport = transport
        link._lines = asyncio.Queue()
        link._protocol = _LineProtocol(link)
        link._protocol.data_received(b"=VER,old\r\nOK\r\nE,")
        await link.flush()
        link._protocol.data_received(b"OK\r\n")
        return await link.readline(), bytes(link._protocol.rx)

    line, pending = asyncio.run(scenario())
    assert line == "OK"
    assert pending == b""
    assert transport.serial.resets == 1


def test_flush_before_line_queue_exists_is_a_no_op() -> None:
    link = SerialPortLink("/dev/ttyUSB0")
    link._transport = _FakeTransport()
    asyncio.run(link.flush())
