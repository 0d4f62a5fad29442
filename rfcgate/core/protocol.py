"""Lightning line protocol: command queue and response correlation.

One command is in flight per link. A command is written as
``TOKEN[,arg,...]\\r`` and resolved by the device's reply lines:

    =TOKEN[,field,...]   zero or more payload lines
    OK                   success
    E,<code>             failure with a numeric error code

Lines that match nothing are logged and ignored.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Sequence
from typing import Any

from rfcgate.core.catalog import ErrorCatalog
from rfcgate.core.errors import CommandTimeoutError, ProtocolError
from rfcgate.core.model import Command, CommandMode
from rfcgate.transports.base import SerialLink

LOGGER = logging.getLogger(__name__)

_ERROR_RE = re.compile(r"^E,(\d+)$")


class ResponseCorrelator:
    """Accumulates reply lines for one in-flight command."""

    def __init__(self, command: Command, errors: ErrorCatalog) -> None:
        self.command = command
        self.errors = errors
        self.done = False
        self.error: ProtocolError | None = None
        self.result: Any = [] if command.mode in (CommandMode.MULTIPLE, CommandMode.RAW) else None
        self._response_re = re.compile(rf"^={re.escape(command.token)}(,(.*))?$", re.IGNORECASE)

    def feed(self, line: str) -> bool:
        """Consume one line; return True once the command reached a terminal line."""
        if line == "OK":
            self.done = True
            return True

        error = _ERROR_RE.match(line)
        if error:
            code = int(error.group(1))
            self.error = ProtocolError(code, self.errors.message(code), self.result)
            self.done = True
            return True

        if self.command.mode is CommandMode.RAW:
            self.result.append(line)
            return False

        response = self._response_re.match(line)
        if response:
            payload = response.group(2)
            fields = payload.split(",") if payload is not None else []
            if self.command.mode is CommandMode.MULTIPLE:
                self.result.append(fields)
            else:
                if self.result is not None:
                    LOGGER.warning("Got more than one %s response in single mode; overwriting", self.command.token)
                self.result = fields
            return False

        LOGGER.warning("Got unexpected line while waiting for %s: %r", self.command.token, line)
        return False

    def outcome(self) -> Any:
        if self.error is not None:
            raise self.error
        return self.result


class CommandQueue:
    """Serializes commands on one link with a single worker task.

    Commands run strictly in submission order; a command's completion, be it
    success, device error, or timeout, always precedes the next dispatch.
    """

    def __init__(
        self,
        link: SerialLink,
        errors: Callable[[], ErrorCatalog],
        *,
        default_timeout_s: float = 15.0,
    ) -> None:
        self._link = link
        self._errors = errors
        self.default_timeout_s = default_timeout_s
        self._pending: asyncio.Queue[tuple[Command, asyncio.Future[Any]]] | None = None
        self._worker: asyncio.Task[None] | None = None

    async def submit(
        self,
        token: str,
        args: Sequence[str] = (),
        mode: CommandMode = CommandMode.SINGLE,
        timeout_s: float | None = None,
    ) -> Any:
        command = Command(
            token=token,
            args=tuple(str(a) for a in args),
            mode=mode,
            timeout_s=self.default_timeout_s if timeout_s is None else timeout_s,
        )
        loop = asyncio.get_running_loop()
        if self._pending is None:
            self._pending = asyncio.Queue()
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._run(self._pending), name=f"rfcgate-queue-{self._link.port}")
        future: asyncio.Future[Any] = loop.create_future()
        self._pending.put_nowait((command, future))
        return await future

    async def stop(self) -> None:
        """Stop the worker and fail every command still waiting for dispatch."""
        worker, self._worker = self._worker, None
        if worker is not None:
            worker.cancel()
            try:
                await worker
            except asyncio.CancelledError:
                pass
        if self._pending is not None:
            while not self._pending.empty():
                command, future = self._pending.get_nowait()
                if not future.done():
                    future.set_exception(CommandTimeoutError(f"Command {command.token} cancelled: queue stopped"))

    async def _run(self, pending: asyncio.Queue[tuple[Command, asyncio.Future[Any]]]) -> None:
        while True:
            command, future = await pending.get()
            if future.done():
                continue
            try:
                result = await self._execute(command)
            except asyncio.CancelledError:
                if not future.done():
                    future.set_exception(CommandTimeoutError(f"Command {command.token} cancelled: queue stopped"))
                raise
            except Exception as exc:
                if not future.done():
                    future.set_exception(exc)
            else:
                if not future.done():
                    future.set_result(result)

    async def _execute(self, command: Command) -> Any:
        correlator = ResponseCorrelator(command, self._errors())

        await self._link.flush()
        frame = command.frame()
        LOGGER.debug("--> %s", frame)
        await self._link.write(frame.encode("ascii") + b"\r")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + command.timeout_s
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                line = await asyncio.wait_for(self._link.readline(), timeout=remaining)
            except asyncio.TimeoutError:
                break
            LOGGER.debug("<-- %s", line)
            if correlator.feed(line):
                return correlator.outcome()

        LOGGER.warning("Command %s timed out after %.1fs", command.token, command.timeout_s)
        raise CommandTimeoutError(f"Command {command.token} timed out")
