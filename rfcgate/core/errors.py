"""Domain-specific errors for rfcgate."""

from __future__ import annotations

from typing import Any


class RfcgateError(Exception):
    """Base error for rfcgate."""


class ValidationError(RfcgateError):
    """Raised when caller input is malformed, before any device I/O."""


class PortStateError(ValidationError):
    """Raised when a port is not in the state an operation requires."""


class CatalogLoadError(RfcgateError):
    """Raised when reading catalog sources fails."""


class CatalogValidationError(RfcgateError):
    """Raised when a catalog file does not conform to schema or semantics."""


class ConfigError(RfcgateError):
    """Raised when the gateway configuration file is unreadable or invalid."""


class UnsupportedModelError(RfcgateError):
    """Raised when no catalog exists for a device model."""


class DeviceDiscoveryError(RfcgateError):
    """Raised when serial port enumeration fails."""


class ResponseFormatError(RfcgateError):
    """Raised when a device reply has an unexpected shape."""


class TransportError(RfcgateError):
    """Base transport error."""


class TransportOpenError(TransportError):
    """Raised when the serial port cannot be opened."""


class TransportWriteError(TransportError):
    """Raised when writing or flushing the serial port fails."""


class TransportClosedError(TransportError):
    """Raised when the link is used after it was closed or dropped."""


class CommandTimeoutError(RfcgateError):
    """Raised when no terminal line arrives before the command deadline."""


class ProtocolError(RfcgateError):
    """Raised when the device answers a command with ``E,<code>``."""

    def __init__(self, code: int, text: str, result: Any = None) -> None:
        super().__init__(f"Error {code}: {text}")
        self.code = code
        self.text = text
        self.result = result


class LoginError(RfcgateError):
    """Raised when the LOGIN command is rejected or does not complete."""

    def __init__(self, message: str, code: int | None = None, text: str | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.text = text


class BatchError(RfcgateError):
    """Raised when some keys of a batch operation failed.

    ``data`` carries the complete per-key outcome so partial success stays
    observable.
    """

    def __init__(self, message: str, data: dict[str, Any]) -> None:
        super().__init__(message)
        self.data = data


class FirmwareUpdateError(RfcgateError):
    """Raised when a firmware update phase fails.

    ``retryable`` tells the caller the whole update may be restarted safely.
    """

    def __init__(self, message: str, *, step: str | None = None, retryable: bool = False) -> None:
        super().__init__(f"{step} :: {message}" if step else message)
        self.step = step
        self.retryable = retryable


class FirmwareFormatError(FirmwareUpdateError):
    """Raised when a firmware image line cannot be decoded or fails its checksum."""


class ChecksumMismatchError(FirmwareUpdateError):
    """Raised when the device-reported flash checksum differs from the expected one."""

    def __init__(self, expected: int, reported: str | None, *, step: str | None = None) -> None:
        super().__init__(
            f"Checksum mismatch: device reported {reported}, expected {expected:04X}",
            step=step,
            retryable=True,
        )
        self.expected = expected
        self.reported = reported
