"""Firmware update over the device bootloader.

Sequence: BOOTM, settle, EAPP, PROG per data record, CHKAPP, write the 0xC0DE
finalizer at the top of application flash, CHKAPP again, RUNAPP.

The device computes its checksum over the whole application flash, so bytes
never programmed count as erased flash (0xFF) in the expected value.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, TextIO, Union

from rfcgate.core.errors import (
    ChecksumMismatchError,
    CommandTimeoutError,
    FirmwareFormatError,
    FirmwareUpdateError,
    ProtocolError,
    TransportError,
)
from rfcgate.core.events import ProgressSink
from rfcgate.core.model import FirmwareRecord, Progress

if TYPE_CHECKING:
    from rfcgate.core.session import DeviceSession

LOGGER = logging.getLogger(__name__)

ImageSource = Union[str, "os.PathLike[str]", TextIO]

RECORD_DATA = 0
RECORD_END = 1
FINALIZER = b"\xc0\xde"
ALREADY_IN_BOOTLOADER = 1
_RECORD_MIN_LENGTH = 11
_HEX_DIGITS_RE = re.compile(r"^[0-9A-Fa-f]+$")

# progress units outside the image itself:
# prepare, BOOTM, 7 for the settle delay, EAPP / checksum, finalizer (2), checksum, RUNAPP
PROGRESS_HEAD = 10
PROGRESS_TAIL = 5

STEP_PREPARE = "Preparing firmware image"
STEP_BOOTLOADER = "Entering bootloader mode"
STEP_WAIT = "Waiting for the bootloader"
STEP_ERASE = "Erasing flash memory"
STEP_UPLOAD = "Uploading firmware data"
STEP_VALIDATE = "Validating checksum"
STEP_FINALIZE = "Finalizing flash memory"
STEP_REBOOT = "Rebooting device"
STEP_DONE = "Firmware upgrade succeeded, please reopen port"

_DEVICE_ERRORS = (ProtocolError, CommandTimeoutError, TransportError)


def parse_record(line: str, line_no: int = 0) -> FirmwareRecord | None:
    """Decode one image line; returns None for lines that are not records."""
    line = line.strip()
    if not line or line[0] != ":" or len(line) < _RECORD_MIN_LENGTH:
        return None

    if not _HEX_DIGITS_RE.match(line[1:]) or len(line) % 2 == 0:
        raise FirmwareFormatError(f"Incorrect HEX line {line_no}: {line!r}")
    raw = bytes.fromhex(line[1:])

    if sum(raw) & 0xFF:
        raise FirmwareFormatError(f"Wrong line checksum {sum(raw) & 0xFF:#04x} at line {line_no}")

    record = FirmwareRecord(
        byte_count=raw[0],
        address=int.from_bytes(raw[1:3], "big"),
        type=raw[3],
        data=raw[4:-1],
    )
    if record.byte_count != len(record.data):
        raise FirmwareFormatError(
            f"Wrong data bytes count at line {line_no}: declared {record.byte_count}, got {len(record.data)}"
        )
    return record


def expected_checksum(checksum: int, bytes_sent: int, flash_size: int) -> int:
    total = checksum
    if bytes_sent < flash_size:
        total += 0xFF * (flash_size - bytes_sent)
    else:
        LOGGER.warning("Flashed %d bytes into %d bytes of flash", bytes_sent, flash_size)
    return total & 0xFFFF


@contextmanager
def _open_image(image: ImageSource) -> Iterator[tuple[TextIO, int]]:
    if isinstance(image, (str, os.PathLike)):
        path = Path(image)
        try:
            size = path.stat().st_size
            handle = path.open("r", encoding="ascii", errors="replace", newline="")
        except OSError as exc:
            raise FirmwareUpdateError(f"Could not open firmware image {path}: {exc}", step=STEP_PREPARE) from exc
        with handle:
            yield handle, size
        return

    try:
        seekable = bool(getattr(image, "seekable", None) and image.seekable())
        if not seekable:
            LOGGER.info("Firmware image stream is not seekable, image size unknown")
            size = 0
        else:
            start = image.tell()
            size = image.seek(0, os.SEEK_END) - start
            image.seek(start)
    except (OSError, ValueError) as exc:
        raise FirmwareUpdateError(f"Could not read firmware image: {exc}", step=STEP_PREPARE) from exc
    yield image, size


class FirmwareUpdater:
    def __init__(
        self,
        session: DeviceSession,
        *,
        flash_start: int,
        flash_end: int,
        bootloader_delay_s: float = 1.0,
        progress: ProgressSink | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.session = session
        self.flash_start = flash_start
        self.flash_end = flash_end
        self.bootloader_delay_s = bootloader_delay_s
        self._progress = progress
        self._sleep = sleep
        self.checksum = 0
        self.bytes_sent = 0
        self.progress_max = PROGRESS_HEAD + PROGRESS_TAIL

    @property
    def flash_size(self) -> int:
        return self.flash_end - self.flash_start

    def _report(self, value: int, step: str) -> None:
        LOGGER.info("Progress %d of %d, step %s", value, self.progress_max, step)
        if self._progress is not None:
            self._progress(Progress(value=value, max=self.progress_max, step=step))

    async def run(self, image: ImageSource) -> str:
        self.checksum = 0
        self.bytes_sent = 0
        with _open_image(image) as (handle, size):
            self.progress_max = size + PROGRESS_HEAD + PROGRESS_TAIL
            self._report(0, STEP_PREPARE)

            self._report(1, STEP_BOOTLOADER)
            await self._enter_bootloader()

            # The bootloader answers E,01 to everything until it has finished starting.
            self._report(2, STEP_WAIT)
            await self._sleep(self.bootloader_delay_s)

            self._report(9, STEP_ERASE)
            await self._command("EAPP", step="erase flash")

            await self._stream_records(handle)

        self._report(self.progress_max - 5, STEP_VALIDATE)
        await self._validate_checksum()

        self._report(self.progress_max - 4, STEP_FINALIZE)
        await self._send_chunk(self.flash_end - len(FINALIZER), FINALIZER)

        self._report(self.progress_max - 2, STEP_VALIDATE)
        await self._validate_checksum()

        self._report(self.progress_max - 1, STEP_REBOOT)
        await self._command("RUNAPP", step="reboot")
        self._report(self.progress_max, STEP_DONE)
        return STEP_DONE

    async def _enter_bootloader(self) -> None:
        try:
            await self.session.send("BOOTM")
        except ProtocolError as exc:
            if exc.code != ALREADY_IN_BOOTLOADER:
                raise FirmwareUpdateError(str(exc), step="enter bootloader") from exc
            LOGGER.info("Device on %s is already in bootloader mode", self.session.port)
        except (CommandTimeoutError, TransportError) as exc:
            raise FirmwareUpdateError(str(exc), step="enter bootloader") from exc

    async def _command(self, token: str, *, step: str) -> None:
        try:
            await self.session.send(token)
        except _DEVICE_ERRORS as exc:
            raise FirmwareUpdateError(str(exc), step=step) from exc

    async def _stream_records(self, handle: TextIO) -> None:
        filepos = 0
        for line_no, line in enumerate(handle, start=1):
            self._report(PROGRESS_HEAD + filepos, STEP_UPLOAD)
            filepos += len(line)
            if PROGRESS_HEAD + filepos > self.progress_max - PROGRESS_TAIL:
                self.progress_max = PROGRESS_HEAD + filepos + PROGRESS_TAIL

            record = parse_record(line, line_no)
            if record is None:
                if line.strip():
                    LOGGER.info("Skipping unrecognized line %d: %r", line_no, line.strip())
                continue
            if record.type == RECORD_DATA:
                await self._send_chunk(record.address, record.data)
            elif record.type == RECORD_END:
                return
            else:
                LOGGER.warning("Skipping unsupported record type %d at line %d", record.type, line_no)

        raise FirmwareFormatError("Unexpected end of firmware file", step=STEP_UPLOAD)

    async def _send_chunk(self, address: int, data: bytes) -> None:
        LOGGER.debug("Sending chunk at address %#06x", address)
        try:
            await self.session.send("PROG", [f"{address:04X}", f"{len(data):02X}", data.hex().upper()])
        except _DEVICE_ERRORS as exc:
            raise FirmwareUpdateError(str(exc), step=f"send chunk {address:#06x}", retryable=True) from exc
        self.checksum = (self.checksum + sum(data)) & 0xFFFF
        self.bytes_sent += len(data)

    async def _validate_checksum(self) -> None:
        expected = expected_checksum(self.checksum, self.bytes_sent, self.flash_size)
        try:
            value = await self.session.send("CHKAPP")
        except _DEVICE_ERRORS as exc:
            raise FirmwareUpdateError(str(exc), step="validate checksum", retryable=True) from exc

        reported = value[0] if value else None
        try:
            matches = reported is not None and int(reported, 16) == expected
        except ValueError:
            matches = False
        if not matches:
            LOGGER.warning("Checksum mismatch: %s != %04X", reported, expected)
            raise ChecksumMismatchError(expected, reported, step="validate checksum")
