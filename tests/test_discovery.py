from __future__ import annotations

from types import SimpleNamespace

import pytest

from rfcgate.core import service as service_module
from rfcgate.core.errors import DeviceDiscoveryError


def _comport(device: str, manufacturer=None, serial_number=None, vid=None, pid=None) -> SimpleNamespace:
    return SimpleNamespace(device=device, manufacturer=manufacturer, serial_number=serial_number, vid=vid, pid=pid)


def test_list_ports_reports_usb_ids(monkeypatch: pytest.MonkeyPatch, make_service) -> None:
    monkeypatch.setattr(
        service_module.list_ports,
        "comports",
        lambda: [
            _comport("/dev/ttyUSB0", "RF Code, Inc.", "RF_Code__Inc._A740", 0x0403, 0x6001),
            _comport("/dev/ttyS0"),
        ],
    )

    ports = make_service().list_ports()
    assert [p.device for p in ports] == ["/dev/ttyUSB0", "/dev/ttyS0"]
    assert ports[0].vendor_id == "0x0403"
    assert ports[0].product_id == "0x6001"
    assert ports[1].vendor_id is None


def test_list_devices_filters_rf_code_hardware(monkeypatch: pytest.MonkeyPatch, make_service) -> None:
    monkeypatch.setattr(
        service_module.list_ports,
        "comports",
        lambda: [
            _comport("/dev/ttyUSB0", "RF Code, Inc.", "RF_Code__Inc._A740", 0x0403, 0x6001),
            _comport("/dev/ttyS0"),
        ],
    )

    devices = make_service().list_devices()
    assert len(devices) == 1
    assert devices[0].model == "A740"


def test_enumeration_failure_raises(monkeypatch: pytest.MonkeyPatch, make_service) -> None:
    def fail():
        raise OSError("permission denied")

    monkeypatch.setattr(service_module.list_ports, "comports", fail)

    with pytest.raises(DeviceDiscoveryError, match="Unable to get the list of ports"):
        make_service().list_ports()
