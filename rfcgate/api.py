"""Stable public API for building tooling on top of rfcgate.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping
from typing import Any

from rfcgate.core.config import GatewayConfig
from rfcgate.core.errors import (
    BatchError,
    CatalogLoadError,
    CatalogValidationError,
    ChecksumMismatchError,
    CommandTimeoutError,
    ConfigError,
    DeviceDiscoveryError,
    FirmwareFormatError,
    FirmwareUpdateError,
    LoginError,
    PortStateError,
    ProtocolError,
    ResponseFormatError,
    RfcgateError,
    TransportClosedError,
    TransportError,
    TransportOpenError,
    TransportWriteError,
    UnsupportedModelError,
    ValidationError,
)
from rfcgate.core.events import EventSink, ProgressStream
from rfcgate.core.firmware import ImageSource
from rfcgate.core.model import DetectedDevice, OpenResult, Progress, SerialPortInfo
from rfcgate.core.operations import Gateway
from rfcgate.core.service import GatewayService
from rfcgate.transports.base import LinkFactory

__all__ = [
    "RfcgateError",
    "BatchError",
    "CatalogLoadError",
    "CatalogValidationError",
    "ChecksumMismatchError",
    "CommandTimeoutError",
    "ConfigError",
    "DeviceDiscoveryError",
    "FirmwareFormatError",
    "FirmwareUpdateError",
    "LoginError",
    "PortStateError",
    "ProtocolError",
    "ResponseFormatError",
    "TransportError",
    "TransportClosedError",
    "TransportOpenError",
    "TransportWriteError",
    "UnsupportedModelError",
    "ValidationError",
    "DetectedDevice",
    "GatewayConfig",
    "OpenResult",
    "Progress",
    "SerialPortInfo",
    "Gateway",
    "Client",
]


class Client:
    """Public client for talking to RF Code devices on local serial ports.

    A `Client` instance wraps catalog loading, port discovery, per-port
    sessions, and firmware updates behind a stable API intended for
    third-party tools (GUI/TUI/services/scripts).
    """

    def __init__(
        self,
        *,
        config: GatewayConfig | None = None,
        link_factory: LinkFactory | None = None,
        events: EventSink | None = None,
    ) -> None:
        self._service = GatewayService(config=config, link_factory=link_factory, events=events)

    @property
    def load_warnings(self) -> tuple[str, ...]:
        return self._service.load_warnings

    @property
    def models(self) -> tuple[str, ...]:
        return self._service.catalogs.models

    def gateway(self) -> Gateway:
        """Operation router sharing this client's sessions."""
        return Gateway(self._service)

    def list_ports(self) -> list[SerialPortInfo]:
        return self._service.list_ports()

    def list_devices(self) -> list[DetectedDevice]:
        return self._service.list_devices()

    async def open_port(self, port: str, *, password: str | None = None) -> OpenResult:
        return await self._service.open_port(port, password)

    async def close_port(self, port: str) -> dict[str, Any]:
        return await self._service.close_port(port)

    async def login(self, port: str, password: str) -> None:
        await self._service.login(port, password)

    async def read_settings(self, port: str, *, for_save: bool = False) -> dict[str, Any]:
        return (await self._service.read_settings(port, for_save))["settings"]

    async def write_settings(self, port: str, settings: Mapping[str, Any]) -> dict[str, Any]:
        return (await self._service.write_settings(port, settings))["changed"]

    async def reset_settings(self, port: str) -> None:
        await self._service.reset_settings(port)

    async def diagnostics(self, port: str) -> dict[str, int | None]:
        return await self._service.diagnostics(port)

    async def update_firmware(self, port: str, image: ImageSource) -> AsyncIterator[Progress]:
        """Run a firmware update, yielding progress until it completes.

        Errors from the update are raised from the iterator once all progress
        reported before the failure has been yielded.
        """
        stream = ProgressStream()
        task = asyncio.ensure_future(self._service.update_firmware(port, image, progress=stream))
        task.add_done_callback(lambda _: stream.close())
        try:
            async for progress in stream:
                yield progress
        finally:
            if not task.done():
                task.cancel()
        task.result()
