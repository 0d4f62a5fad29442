"""Core data models used across catalogs, protocol, session, and CLI."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

Validator = Callable[[Any], Any]
Conversion = Callable[[list[Any]], list[Any]]


class CommandMode(str, Enum):
    SINGLE = "single"
    MULTIPLE = "multiple"
    RAW = "raw"


@dataclass(frozen=True)
class Command:
    token: str
    args: tuple[str, ...] = ()
    mode: CommandMode = CommandMode.SINGLE
    timeout_s: float = 15.0

    def frame(self) -> str:
        """Return the wire frame without its trailing carriage return."""
        if not self.args:
            return self.token
        return ",".join((self.token, *self.args))


@dataclass(frozen=True)
class SettingDescriptor:
    command: str
    write_arg_types: tuple[Validator, ...] | None
    read_arg_types: tuple[Validator, ...]
    convert_for_write: Conversion | None = None

    @property
    def read_only(self) -> bool:
        return not self.write_arg_types


@dataclass(frozen=True)
class FirmwareRecord:
    byte_count: int
    address: int
    type: int
    data: bytes


@dataclass(frozen=True)
class Progress:
    value: int
    max: int
    step: str


@dataclass(frozen=True)
class SerialPortInfo:
    device: str
    manufacturer: str | None = None
    serial_number: str | None = None
    vendor_id: str | None = None
    product_id: str | None = None


@dataclass(frozen=True)
class DetectedDevice:
    port: str
    manufacturer: str | None
    vendor_id: str | None
    product_id: str | None
    model: str | None


@dataclass(frozen=True)
class OpenResult:
    port: str
    version: str | None
    model: str | None
    state: str | None = None
    login: bool | None = None

    def as_payload(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "model": self.model,
            "state": self.state,
            "login": self.login,
        }


@dataclass(frozen=True)
class InfraRedReading:
    rxslot: int
    protocol: int
    location: int
    teamstatus: int
    peers_seen_mask: int
    peers_seen_slots: tuple[int, ...]
    hopcount: int
    timeslot: int


@dataclass
class CalibrationStatus:
    calibration_running: bool
    banks_count: int = 0
    banks: list[list[str]] = field(default_factory=list)


def format_arg(value: Any) -> str:
    """Render a validated setting value as a frame argument."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_args(values: Sequence[Any]) -> tuple[str, ...]:
    return tuple(format_arg(v) for v in values)
