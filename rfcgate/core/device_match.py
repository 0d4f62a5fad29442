"""Serial-port-to-device recognition for RF Code hardware."""

from __future__ import annotations

import re

from rfcgate.core.model import DetectedDevice, SerialPortInfo

# USB descriptors report either "RF Code, Inc." or "RF_Code__Inc."
_MANUFACTURER_RE = re.compile(r"^RF.Code..Inc.")
_SERIAL_MODEL_RE = re.compile(r"^RF.Code..Inc..([A-Z0-9]+)$")


def _manufacturer_match(port: SerialPortInfo) -> bool:
    return bool(_MANUFACTURER_RE.match(port.manufacturer or ""))


def _model_from_serial(port: SerialPortInfo) -> str | None:
    match = _SERIAL_MODEL_RE.match(port.serial_number or "")
    return match.group(1) if match else None


def match_device(port: SerialPortInfo) -> DetectedDevice | None:
    model = _model_from_serial(port)
    if not _manufacturer_match(port) and model is None:
        return None
    return DetectedDevice(
        port=port.device,
        manufacturer=port.manufacturer,
        vendor_id=port.vendor_id,
        product_id=port.product_id,
        model=model,
    )


def recognized_devices(ports: list[SerialPortInfo]) -> list[DetectedDevice]:
    devices: list[DetectedDevice] = []
    for port in ports:
        device = match_device(port)
        if device is not None:
            devices.append(device)
    return devices
