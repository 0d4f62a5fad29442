"""Device sessions and the per-gateway session registry."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import Any

from rfcgate.core.catalog import COMMON_MODEL, CatalogSet, ErrorCatalog, SettingsCatalog
from rfcgate.core.errors import PortStateError, TransportError, UnsupportedModelError
from rfcgate.core.model import CommandMode
from rfcgate.core.protocol import CommandQueue
from rfcgate.transports.base import CloseCallback, SerialLink

LOGGER = logging.getLogger(__name__)


class DeviceSession:
    """One open port: its link, command queue, and the device's model catalogs."""

    def __init__(
        self,
        port: str,
        link: SerialLink,
        catalogs: CatalogSet,
        *,
        command_timeout_s: float = 15.0,
    ) -> None:
        self.port = port
        self.link = link
        self.catalogs = catalogs
        self.active = False
        self.version: str | None = None
        self.model: str | None = None
        # VER itself may fail, so common error codes are needed before the model is known.
        self.errors: ErrorCatalog = catalogs.errors_for_model(COMMON_MODEL)
        self.settings: SettingsCatalog | None = None
        self.queue = CommandQueue(link, lambda: self.errors, default_timeout_s=command_timeout_s)

    @property
    def on_close(self) -> CloseCallback | None:
        return self.link.on_close

    @on_close.setter
    def on_close(self, callback: CloseCallback | None) -> None:
        self.link.on_close = callback

    async def open(self) -> str:
        """Open the link and identify the device. Returns the version string."""
        await self.link.open()
        LOGGER.info("Port %s opened, asking for version", self.port)
        response = await self.send("VER")
        if not response:
            raise UnsupportedModelError(f"Device on {self.port} did not report a version")
        version = response[0]
        model = version.split(":", 1)[0]
        settings = self.catalogs.settings_for_model(model)
        errors = self.catalogs.errors_for_model(model)

        self.version, self.model = version, model
        self.settings, self.errors = settings, errors
        self.active = True
        LOGGER.info("Device on %s: version %s, model %s", self.port, version, model)
        return version

    async def send(
        self,
        token: str,
        args: Sequence[Any] = (),
        mode: CommandMode = CommandMode.SINGLE,
        timeout_s: float | None = None,
    ) -> Any:
        return await self.queue.submit(token, [str(a) for a in args], mode, timeout_s)

    async def close(self) -> TransportError | None:
        """Close the link. Never raises; returns the close error, if any."""
        self.active = False
        await self.queue.stop()
        try:
            await self.link.close()
        except TransportError as exc:
            LOGGER.warning("Closing %s failed: %s", self.port, exc)
            return exc
        return None

    def require_settings(self) -> SettingsCatalog:
        if self.settings is None:
            raise PortStateError(f"Port not active: {self.port}")
        return self.settings


class SessionRegistry:
    """Port name to session map; one session per port at a time."""

    def __init__(self) -> None:
        self._sessions: dict[str, DeviceSession] = {}

    def __contains__(self, port: object) -> bool:
        return port in self._sessions

    def __iter__(self) -> Iterator[str]:
        return iter(self._sessions)

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, port: str) -> DeviceSession | None:
        return self._sessions.get(port)

    def require_active(self, port: str) -> DeviceSession:
        session = self._sessions.get(port)
        if session is None:
            raise PortStateError(f"Port not opened: {port}")
        if not session.active:
            raise PortStateError(f"Port not active: {port}")
        return session

    def add(self, session: DeviceSession) -> None:
        if session.port in self._sessions:
            raise PortStateError(f"Session already registered for {session.port}")
        self._sessions[session.port] = session

    def discard(self, port: str, session: DeviceSession | None = None) -> DeviceSession | None:
        """Remove the port's session; with ``session`` given, only if it is that session."""
        current = self._sessions.get(port)
        if current is None or (session is not None and current is not session):
            return None
        del self._sessions[port]
        return current

    def restore(self, session: DeviceSession) -> None:
        self._sessions.setdefault(session.port, session)
