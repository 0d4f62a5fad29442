"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import typer

from rfcgate.core.errors import BatchError, RfcgateError
from rfcgate.core.model import Progress
from rfcgate.core.service import GatewayService

T = TypeVar("T")

app = typer.Typer(help="Configure and update RF Code devices over local serial ports")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log protocol traffic"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _build_service() -> GatewayService:
    service = GatewayService()
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _with_port(
    service: GatewayService,
    port: str,
    action: Callable[[], Awaitable[T]],
    password: str | None = None,
) -> T:
    async def session() -> T:
        opened = await service.open_port(port, password)
        typer.echo(f"{port}: {opened.version}", err=True)
        try:
            return await action()
        finally:
            await service.close_port(port)

    return asyncio.run(session())


def _parse_assignment(item: str) -> tuple[str, Any]:
    key, sep, raw = item.partition("=")
    if not sep or not key:
        raise typer.BadParameter(f"Expected KEY=VALUE, got {item!r}")
    values = raw.split(",")
    return key, values[0] if len(values) == 1 else values


def _echo_settings(settings: dict[str, Any]) -> None:
    for key, value in sorted(settings.items()):
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        typer.echo(f"  {key}: {value}")


@app.command("ports")
def list_ports() -> None:
    """List local serial ports."""
    try:
        service = _build_service()
        ports = service.list_ports()
        if not ports:
            typer.echo("No serial ports found")
            return
        for port in ports:
            typer.echo(f"{port.device} {port.manufacturer or '-'} {port.serial_number or '-'}")
    except RfcgateError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("devices")
def list_devices() -> None:
    """List serial ports with a recognized RF Code device."""
    try:
        service = _build_service()
        devices = service.list_devices()
        if not devices:
            typer.echo("No RF Code devices found")
            return
        for device in devices:
            typer.echo(f"{device.port} -> {device.model or '<unknown model>'}")
    except RfcgateError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("info")
def info(
    port: str,
    password: str | None = typer.Option(None, "--password", help="Log in after opening"),
) -> None:
    """Open PORT and print the device version and model."""
    try:
        service = _build_service()

        async def session() -> None:
            result = await service.open_port(port, password)
            try:
                typer.echo(f"Port: {result.port}")
                typer.echo(f"Version: {result.version}")
                typer.echo(f"Model: {result.model}")
            finally:
                await service.close_port(port)

        asyncio.run(session())
    except RfcgateError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("settings")
def read_settings(
    port: str,
    for_save: bool = typer.Option(False, "--for-save", help="Only writable settings, in write form"),
    password: str | None = typer.Option(None, "--password", help="Log in after opening"),
) -> None:
    """Read every setting of the device on PORT."""
    try:
        service = _build_service()
        result = _with_port(service, port, lambda: service.read_settings(port, for_save), password)
        _echo_settings(result["settings"])
    except RfcgateError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("set")
def write_settings(
    port: str,
    assignments: list[str] = typer.Argument(..., help="KEY=VALUE; comma-separate multiple values"),
    password: str | None = typer.Option(None, "--password", help="Log in after opening"),
) -> None:
    """Write settings to the device on PORT."""
    settings = dict(_parse_assignment(item) for item in assignments)
    try:
        service = _build_service()
        result = _with_port(service, port, lambda: service.write_settings(port, settings), password)
        _echo_settings(result["changed"])
    except BatchError as exc:
        _echo_settings(exc.data["changed"])
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    except RfcgateError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("diag")
def diagnostics(port: str) -> None:
    """Print diagnostic counters of the device on PORT."""
    try:
        service = _build_service()
        result = _with_port(service, port, lambda: service.diagnostics(port))
        for key, value in result.items():
            typer.echo(f"  {key}: {'-' if value is None else value}")
    except RfcgateError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("flash")
def update_firmware(
    port: str,
    image: str = typer.Argument(..., help="Intel HEX firmware image"),
    password: str | None = typer.Option(None, "--password", help="Log in after opening"),
) -> None:
    """Upload a firmware image to the device on PORT."""
    last_step: list[str] = []

    def report(progress: Progress) -> None:
        if not last_step or last_step[-1] != progress.step:
            last_step.append(progress.step)
            typer.echo(f"[{progress.value}/{progress.max}] {progress.step}")

    try:
        service = _build_service()
        _with_port(service, port, lambda: service.update_firmware(port, image, progress=report), password)
    except RfcgateError as exc:
        typer.echo(f"Error: {exc}", err=True)
        if getattr(exc, "retryable", False):
            typer.echo("The update can be retried", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
