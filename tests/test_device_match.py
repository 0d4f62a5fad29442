from rfcgate.core.device_match import match_device, recognized_devices
from rfcgate.core.model import SerialPortInfo


def _port(device: str, manufacturer: str | None = None, serial_number: str | None = None) -> SerialPortInfo:
    return SerialPortInfo(
        device=device,
        manufacturer=manufacturer,
        serial_number=serial_number,
        vendor_id="0x0403",
        product_id="0x6001",
    )


def test_manufacturer_and_serial_model_match() -> None:
    device = match_device(_port("/dev/ttyUSB0", "RF Code, Inc.", "RF_Code__Inc._A740"))
    assert device is not None
    assert device.port == "/dev/ttyUSB0"
    assert device.model == "A740"
    assert device.vendor_id == "0x0403"


def test_manufacturer_only_match_has_no_model() -> None:
    device = match_device(_port("/dev/ttyUSB1", "RF_Code__Inc.", "FT12345"))
    assert device is not None
    assert device.model is None


def test_serial_number_alone_is_enough() -> None:
    device = match_device(_port("COM4", "FTDI", "RF Code, Inc. A750"))
    assert device is not None
    assert device.model == "A750"


def test_unrelated_ports_are_ignored() -> None:
    ports = [
        _port("/dev/ttyS0"),
        _port("/dev/ttyACM0", "Arduino LLC", "8573531303135"),
        _port("/dev/ttyUSB0", "RF Code, Inc.", "RF_Code__Inc._A740"),
    ]
    assert [d.port for d in recognized_devices(ports)] == ["/dev/ttyUSB0"]
