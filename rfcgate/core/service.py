"""Service layer used by the operation router, CLI, and API clients."""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import asdict
from typing import Any

from serial.tools import list_ports

from rfcgate.core.catalog import CatalogSet
from rfcgate.core.catalog_loader import load_catalogs
from rfcgate.core.config import GatewayConfig, load_config
from rfcgate.core.device_match import recognized_devices
from rfcgate.core.errors import (
    BatchError,
    CommandTimeoutError,
    DeviceDiscoveryError,
    LoginError,
    PortStateError,
    ProtocolError,
    ResponseFormatError,
    RfcgateError,
    ValidationError,
)
from rfcgate.core.events import EventSink, LoggingEventSink, ProgressSink
from rfcgate.core.firmware import FirmwareUpdater, ImageSource
from rfcgate.core.model import (
    CalibrationStatus,
    CommandMode,
    DetectedDevice,
    InfraRedReading,
    OpenResult,
    SerialPortInfo,
    SettingDescriptor,
    format_args,
)
from rfcgate.core.session import DeviceSession, SessionRegistry
from rfcgate.transports.base import LinkFactory
from rfcgate.transports.serial_link import open_serial_link

LOGGER = logging.getLogger(__name__)

_DIAGNOSTIC_PATTERNS = {
    "flash_writes": re.compile(r"^flash writes = ([0-9]+)$", re.IGNORECASE),
    "uptime_seconds": re.compile(r"^seconds since reset = ([0-9]+)$", re.IGNORECASE),
    "adc_reading": re.compile(r"^ADC reading = ([0-9]+)$", re.IGNORECASE),
}
_CALIBRATION_VALUES_PER_BANK = 10
_IR_SLOTS = 8


class GatewayService:
    def __init__(
        self,
        *,
        config: GatewayConfig | None = None,
        catalogs: CatalogSet | None = None,
        link_factory: LinkFactory | None = None,
        events: EventSink | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or load_config()
        self.catalogs = catalogs or load_catalogs()
        self.load_warnings = self.catalogs.warnings
        self.registry = SessionRegistry()
        self.events = events or LoggingEventSink()
        self._link_factory = link_factory or open_serial_link
        self._sleep = sleep
        self._stopping: set[asyncio.Task[None]] = set()

    # universal

    def list_ports(self) -> list[SerialPortInfo]:
        return _discover_ports()

    def list_devices(self) -> list[DetectedDevice]:
        devices = recognized_devices(self.list_ports())
        LOGGER.info("Found connected devices: %s", devices)
        return devices

    # session lifecycle

    def session(self, port: str) -> DeviceSession:
        return self.registry.require_active(port)

    async def open_port(self, port: str, password: str | None = None) -> OpenResult:
        if not port:
            raise ValidationError("No port name provided")
        LOGGER.info("Will try to open the path: %s", port)

        already = False
        existing = self.registry.get(port)
        if existing is not None and existing.active:
            already = True
        elif existing is not None:
            raise PortStateError(f"Already opening port {port}")
        else:
            await self._open_session(port)

        if password:
            await self.login(port, password)

        session = self.registry.get(port)
        return OpenResult(
            port=port,
            version=session.version if session else None,
            model=session.model if session else None,
            state="already opened" if already else None,
            login=True if password else None,
        )

    async def _open_session(self, port: str) -> DeviceSession:
        session = DeviceSession(
            port,
            self._link_factory(port, self.config.baudrate),
            self.catalogs,
            command_timeout_s=self.config.command_timeout_s,
        )
        session.on_close = lambda exc: self._on_link_closed(session, exc)
        self.registry.add(session)
        try:
            await session.open()
        except BaseException:
            LOGGER.warning("Opening port %s failed, closing port", port)
            # unregister first so the link's close event is not broadcast
            self.registry.discard(port, session)
            await session.close()
            raise
        return session

    async def close_port(self, port: str) -> dict[str, Any]:
        session = self.registry.discard(port)
        if session is None:
            LOGGER.info("Port %s is not open; nothing to close", port)
            return {"state": "already closed"}
        error = await session.close()
        if error is not None:
            # keep the record so the caller can retry the close
            self.registry.restore(session)
            return {"state": "close failed", "detail": str(error)}
        return {"state": "closed"}

    def _on_link_closed(self, session: DeviceSession, exc: Exception | None) -> None:
        session.active = False
        if self.registry.discard(session.port, session) is None:
            return
        LOGGER.warning("Got close event for port %s - marking inactive", session.port)
        stopping = asyncio.get_running_loop().create_task(session.queue.stop())
        self._stopping.add(stopping)
        stopping.add_done_callback(self._stopping.discard)
        self.events.emit("close_port", {"port": session.port, "reason": "Port was closed"})

    # device commands

    async def device_version(self, port: str) -> list[str]:
        return await self.session(port).send("VER")

    async def login(self, port: str, password: str) -> None:
        try:
            await self.session(port).send("LOGIN", [password])
        except ProtocolError as exc:
            raise LoginError(f"Login failed: {exc}", code=exc.code, text=exc.text) from exc
        except CommandTimeoutError as exc:
            raise LoginError(f"Login failed: {exc}") from exc

    async def set_password(self, port: str, password: str) -> None:
        await self.session(port).send("PWD", [password])

    async def reset_settings(self, port: str) -> None:
        await self.session(port).send("INIT")

    async def leave_bootmode(self, port: str) -> str:
        # for a device stuck in its bootloader, answering E,01 to everything
        await self.session(port).send("RUNAPP")
        return "Now the device should reboot"

    async def read_settings(self, port: str, for_save: bool = False) -> dict[str, Any]:
        session = self.session(port)
        catalog = session.require_settings()
        result: dict[str, Any] = {}

        async def query(key: str, descriptor: SettingDescriptor) -> None:
            try:
                response = await session.send(descriptor.command)
                result[key] = _format_read_value(key, descriptor, response, for_save)
            except (RfcgateError, TypeError, ValueError) as exc:
                LOGGER.warning("Reading %s failed: %s", key, exc)
                result[f"{key}__error"] = str(exc)
                result["error"] = str(exc)

        await asyncio.gather(
            *(
                query(key, descriptor)
                for key, descriptor in catalog.items()
                if not (for_save and descriptor.read_only)
            )
        )
        return {"settings": result}

    async def write_settings(self, port: str, settings: Any) -> dict[str, Any]:
        if not isinstance(settings, Mapping):
            raise ValidationError("Settings should be a mapping")
        session = self.session(port)
        catalog = session.require_settings()
        results: dict[str, Any] = {}
        failed: list[str] = []

        async def write(key: str, value: Any) -> None:
            try:
                descriptor = catalog.writable(key)
                args = _write_args(key, descriptor, value)
                await session.send(descriptor.command, args)
            except (RfcgateError, TypeError, ValueError) as exc:
                LOGGER.warning("Writing %s failed: %s", key, exc)
                results[key] = False
                results[f"{key}__error"] = getattr(exc, "text", None) or str(exc)
                code = getattr(exc, "code", None)
                if code is not None:
                    results[f"{key}__code"] = code
                failed.append(key)
            else:
                results[key] = True

        await asyncio.gather(*(write(key, value) for key, value in settings.items()))
        if failed:
            raise BatchError("Failed to set some value(s)", {"changed": results})
        return {"changed": results}

    async def diagnostics(self, port: str) -> dict[str, int | None]:
        lines = await self.session(port).send("DIAG", mode=CommandMode.RAW)
        return parse_diagnostics(lines)

    async def update_firmware(
        self,
        port: str,
        image: ImageSource,
        progress: ProgressSink | None = None,
    ) -> str:
        updater = FirmwareUpdater(
            self.session(port),
            flash_start=self.config.flash_start,
            flash_end=self.config.flash_end,
            bootloader_delay_s=self.config.bootloader_delay_s,
            progress=progress,
            sleep=self._sleep,
        )
        return await updater.run(image)

    # A740 only; other models answer E,01
    async def calibration_start(self, port: str) -> None:
        await self.session(port).send("CAL", [1])

    async def calibration_status(self, port: str) -> dict[str, Any]:
        response = await self.session(port).send("CAL")
        return asdict(parse_calibration(response or []))

    # A750 only
    async def read_infrared(self, port: str) -> dict[str, Any]:
        responses = await self.session(port).send("RIR", mode=CommandMode.MULTIPLE)
        return {"results": [asdict(parse_infrared(fields)) for fields in responses]}


def _format_read_value(key: str, descriptor: SettingDescriptor, response: Any, for_save: bool) -> Any:
    values = list(response or [])
    if len(values) != len(descriptor.read_arg_types):
        raise ResponseFormatError(f"Wrong args count for key {key}: {values}")
    values = [formatter(value) for formatter, value in zip(descriptor.read_arg_types, values)]
    if for_save and descriptor.convert_for_write:
        values = descriptor.convert_for_write(values)
    if len(values) == 1:
        return values[0]
    return values


def _write_args(key: str, descriptor: SettingDescriptor, value: Any) -> tuple[str, ...]:
    if isinstance(value, (list, tuple)):
        values = list(value)
    elif isinstance(value, Mapping):
        raise ValidationError(f"Invalid parameter type for '{key}': expected a value or a list")
    else:
        values = [value]

    validators = descriptor.write_arg_types or ()
    if len(values) != len(validators):
        raise ValidationError(f"Expected {len(validators)} value(s) for '{key}', got {len(values)}")
    return format_args([validate(v) for validate, v in zip(validators, values)])


def parse_diagnostics(lines: list[str]) -> dict[str, int | None]:
    pending = dict(_DIAGNOSTIC_PATTERNS)
    result: dict[str, int | None] = {key: None for key in pending}
    for line in lines:
        for key, pattern in list(pending.items()):
            match = pattern.match(line)
            if match:
                del pending[key]
                result[key] = int(match.group(1))
    return result


def parse_calibration(values: list[str]) -> CalibrationStatus:
    if not values:
        return CalibrationStatus(calibration_running=True)
    if len(values) % _CALIBRATION_VALUES_PER_BANK:
        raise ResponseFormatError(f"Wrong values count: {len(values)}")
    banks_count = len(values) // _CALIBRATION_VALUES_PER_BANK
    banks = [values[i::banks_count] for i in range(banks_count)]
    return CalibrationStatus(calibration_running=False, banks_count=banks_count, banks=banks)


def parse_infrared(fields: list[str]) -> InfraRedReading:
    try:
        rxslot, protocol, location, teamstatus = (int(f) for f in fields[:4])
    except ValueError as exc:
        raise ResponseFormatError(f"Bad RIR response: {fields}") from exc
    peers_seen = teamstatus & 0xFF
    return InfraRedReading(
        rxslot=rxslot,
        protocol=protocol,
        location=location,
        teamstatus=teamstatus,
        peers_seen_mask=peers_seen,
        peers_seen_slots=tuple(i for i in range(_IR_SLOTS) if peers_seen & (1 << i)),
        hopcount=(teamstatus >> 8) & 0x1F,
        timeslot=(teamstatus >> 13) & 0x07,
    )


def _hex_id(value: int | None) -> str | None:
    return f"0x{value:04x}" if value is not None else None


def _discover_ports() -> list[SerialPortInfo]:
    try:
        ports = list_ports.comports()
    except OSError as exc:
        raise DeviceDiscoveryError(f"Unable to get the list of ports: {exc}") from exc
    return [
        SerialPortInfo(
            device=port.device,
            manufacturer=port.manufacturer,
            serial_number=port.serial_number,
            vendor_id=_hex_id(port.vid),
            product_id=_hex_id(port.pid),
        )
        for port in ports
    ]
