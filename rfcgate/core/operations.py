"""Operation routing for remote clients.

Every operation is registered once with its capability tag and an ordered
parameter schema. ``Gateway.dispatch`` validates arguments against that
schema, runs the service method, and shapes the outcome into a payload:

    {"success": True, ...result fields}
    {"success": False, "error": message, "code": device code, ...partial data}
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from rfcgate.core.errors import BatchError, FirmwareUpdateError, LoginError, ProtocolError, RfcgateError, ValidationError
from rfcgate.core.events import ProgressSink
from rfcgate.core.model import DetectedDevice, OpenResult, SerialPortInfo
from rfcgate.core.service import GatewayService

LOGGER = logging.getLogger(__name__)


class Capability(str, Enum):
    UNIVERSAL = "universal"
    SERIAL = "serial"
    SHORT_RANGE = "short_range"


def _port_name(value: Any) -> str:
    if not value or not isinstance(value, str):
        raise ValidationError("No port name provided")
    return value


def _text(value: Any) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"String expected, got {value!r}")
    if not value.isascii() or "," in value or "\r" in value or "\n" in value:
        raise ValidationError("Value must be ASCII without commas or line breaks")
    return value


def _flag(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    raise ValidationError(f"Boolean expected, got {value!r}")


def _mapping(value: Any) -> Mapping[str, Any]:
    if not isinstance(value, Mapping):
        raise ValidationError("Settings should be a mapping")
    return value


def _image_path(value: Any) -> Path:
    if not isinstance(value, str) or not value:
        raise ValidationError("No firmware file name provided")
    path = Path(value)
    if not path.is_file():
        raise ValidationError(f"Firmware file not found: {value}")
    return path


@dataclass(frozen=True)
class Param:
    name: str
    check: Callable[[Any], Any]
    required: bool = True


@dataclass(frozen=True)
class Operation:
    name: str
    method: str
    capability: Capability
    params: tuple[Param, ...] = ()
    requires_active_port: bool = True
    reports_progress: bool = False

    def bind(self, args: Mapping[str, Any]) -> dict[str, Any]:
        kwargs: dict[str, Any] = {}
        for param in self.params:
            value = args.get(param.name)
            if value is None:
                if param.required:
                    if param.name == "port":
                        raise ValidationError("No port name provided")
                    raise ValidationError(f"Missing argument '{param.name}'")
                continue
            kwargs[param.name] = param.check(value)
        return kwargs


PORT = Param("port", _port_name)
_SERIAL = Capability.SERIAL

OPERATIONS: dict[str, Operation] = {
    op.name: op
    for op in (
        Operation("list_ports", "list_ports", Capability.UNIVERSAL, requires_active_port=False),
        Operation("list_devices", "list_devices", Capability.UNIVERSAL, requires_active_port=False),
        Operation(
            "open_port",
            "open_port",
            _SERIAL,
            (PORT, Param("password", _text, required=False)),
            requires_active_port=False,
        ),
        Operation("close_port", "close_port", _SERIAL, (PORT,), requires_active_port=False),
        Operation("device_version", "device_version", _SERIAL, (PORT,)),
        Operation("login", "login", _SERIAL, (PORT, Param("password", _text))),
        Operation("set_password", "set_password", _SERIAL, (PORT, Param("password", _text))),
        Operation("read_settings", "read_settings", _SERIAL, (PORT, Param("for_save", _flag, required=False))),
        Operation("write_settings", "write_settings", _SERIAL, (PORT, Param("settings", _mapping))),
        Operation("reset_settings", "reset_settings", _SERIAL, (PORT,)),
        Operation("diagnostics", "diagnostics", _SERIAL, (PORT,)),
        Operation(
            "update_firmware",
            "update_firmware",
            _SERIAL,
            (PORT, Param("image", _image_path)),
            reports_progress=True,
        ),
        Operation("leave_bootmode", "leave_bootmode", _SERIAL, (PORT,)),
        Operation("calibration_start", "calibration_start", _SERIAL, (PORT,)),
        Operation("calibration_status", "calibration_status", _SERIAL, (PORT,)),
        Operation("read_infrared", "read_infrared", _SERIAL, (PORT,)),
    )
}


def _result_payload(result: Any) -> dict[str, Any]:
    if isinstance(result, OpenResult):
        return result.as_payload()
    if isinstance(result, list) and result and isinstance(result[0], (SerialPortInfo, DetectedDevice)):
        return {"result": [vars(item) for item in result]}
    if isinstance(result, Mapping):
        return dict(result)
    return {"result": result}


def _failure_payload(exc: RfcgateError) -> dict[str, Any]:
    payload: dict[str, Any] = dict(exc.data) if isinstance(exc, BatchError) else {}
    payload["success"] = False
    payload["error"] = str(exc)
    if isinstance(exc, (ProtocolError, LoginError)) and exc.code is not None:
        payload["code"] = exc.code
        if exc.text:
            payload["error"] = exc.text
    if isinstance(exc, ProtocolError) and exc.result is not None:
        payload["result"] = exc.result
    if isinstance(exc, FirmwareUpdateError):
        payload["step"] = exc.step
        payload["suggest_retry"] = exc.retryable
    return payload


class Gateway:
    """Dispatches named operations from remote clients onto a ``GatewayService``."""

    def __init__(self, service: GatewayService | None = None) -> None:
        self.service = service or GatewayService()

    @staticmethod
    def operations() -> list[str]:
        return list(OPERATIONS)

    async def dispatch(
        self,
        name: str,
        args: Mapping[str, Any] | None = None,
        *,
        progress: ProgressSink | None = None,
    ) -> dict[str, Any]:
        args = args or {}
        LOGGER.info(">>> %s %s", name, {k: v for k, v in args.items() if k != "password"})
        try:
            operation = OPERATIONS.get(name)
            if operation is None:
                raise ValidationError(f"Unknown command '{name}'")
            kwargs = operation.bind(args)
            if operation.requires_active_port:
                self.service.session(kwargs["port"])
            if operation.reports_progress:
                kwargs["progress"] = progress

            result = getattr(self.service, operation.method)(**kwargs)
            if inspect.isawaitable(result):
                result = await result
        except RfcgateError as exc:
            LOGGER.warning("%s failed: %s", name, exc)
            payload = _failure_payload(exc)
        else:
            payload = _result_payload(result)
            payload["success"] = True

        # echo the port so clients can match responses to requests
        if isinstance(args.get("port"), str):
            payload["port"] = args["port"]
        LOGGER.info("<<< %s %s", name, payload)
        return payload
