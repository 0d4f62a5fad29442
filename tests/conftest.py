from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from rfcgate.core.catalog_loader import load_catalogs
from rfcgate.core.config import GatewayConfig
from rfcgate.core.errors import TransportClosedError
from rfcgate.core.service import GatewayService

Replies = dict[str, Any]

A740_REPLIES: Replies = {
    "VER": ["=VER,A740:1.2.3", "OK"],
    "LOC": ["=LOC,12", "OK"],
    "IRP": ["=IRP,3", "OK"],
    "BRT": ["=BRT,7", "OK"],
    "PAT": ["=PAT,00FF", "OK"],
    "SN": ["=SN,X123", "OK"],
    "DC": ["=DC,50", "OK"],
    "SEG": ["=SEG,4,4,0,0,4,5", "OK"],
}


class FakeLink:
    """Scripted serial link: each written frame queues the reply lines listed for it.

    ``replies`` maps a full frame or a bare token to a list of lines, or to a
    callable taking the frame and returning lines. Frames without a reply
    stay unanswered.
    """

    def __init__(self, port: str, replies: Replies | None = None) -> None:
        self.port = port
        self.on_close: Callable[[Exception | None], None] | None = None
        self.replies: Replies = dict(replies or {})
        self.written: list[str] = []
        self.flushes = 0
        self.open_error: Exception | None = None
        self.close_error: Exception | None = None
        self.write_error: Exception | None = None
        self._lines: asyncio.Queue[str | None] | None = None
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    async def open(self) -> None:
        if self.open_error is not None:
            raise self.open_error
        self._lines = asyncio.Queue()
        self._open = True

    async def close(self) -> None:
        if self.close_error is not None:
            raise self.close_error
        if self._open:
            self._lost(None)

    async def write(self, data: bytes) -> None:
        if not self._open:
            raise TransportClosedError(f"Port {self.port} is not open")
        if self.write_error is not None:
            raise self.write_error
        assert data.endswith(b"\r")
        frame = data[:-1].decode("ascii")
        self.written.append(frame)
        reply = self.replies.get(frame, self.replies.get(frame.split(",", 1)[0]))
        if callable(reply):
            reply = reply(frame)
        for line in reply or ():
            self.push(line)

    async def flush(self) -> None:
        self.flushes += 1
        assert self._lines is not None
        while not self._lines.empty():
            self._lines.get_nowait()

    async def readline(self) -> str:
        assert self._lines is not None
        line = await self._lines.get()
        if line is None:
            self._lines.put_nowait(None)
            raise TransportClosedError(f"Port {self.port} was closed")
        return line

    def push(self, line: str) -> None:
        assert self._lines is not None
        self._lines.put_nowait(line)

    def drop(self, exc: Exception | None = None) -> None:
        """Simulate the device being unplugged."""
        self._lost(exc or OSError("device disconnected"))

    def _lost(self, exc: Exception | None) -> None:
        self._open = False
        if self._lines is not None:
            self._lines.put_nowait(None)
        if self.on_close is not None:
            self.on_close(exc)


class RecordingEvents:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, Any]]] = []

    def emit(self, event: str, payload: dict[str, Any]) -> None:
        self.events.append((event, payload))


async def no_sleep(delay: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture(autouse=True)
def isolated_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "cfg"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    monkeypatch.delenv("RFCGATE_CONFIG", raising=False)


@pytest.fixture
def make_link() -> Callable[..., FakeLink]:
    def factory(replies: Replies | None = None, port: str = "/dev/ttyUSB0") -> FakeLink:
        return FakeLink(port, replies)

    return factory


@pytest.fixture
def links() -> dict[str, FakeLink]:
    return {}


@pytest.fixture
def events() -> RecordingEvents:
    return RecordingEvents()


@pytest.fixture
def make_service(links: dict[str, FakeLink], events: RecordingEvents) -> Callable[..., GatewayService]:
    """Build a service whose ports are FakeLinks answering with ``replies``."""

    def factory(
        replies: Replies | None = None,
        *,
        open_error: Exception | None = None,
        **config: Any,
    ) -> GatewayService:
        def link_factory(port: str, baudrate: int) -> FakeLink:
            link = FakeLink(port, A740_REPLIES if replies is None else replies)
            link.open_error = open_error
            links[port] = link
            return link

        config.setdefault("command_timeout_s", 0.2)
        config.setdefault("bootloader_delay_s", 0)
        return GatewayService(
            config=GatewayConfig(**config),
            catalogs=load_catalogs(),
            link_factory=link_factory,
            events=events,
            sleep=no_sleep,
        )

    return factory


@pytest.fixture
def a740_replies() -> Replies:
    return dict(A740_REPLIES)
