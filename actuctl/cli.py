"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

import typer

from actuctl.core.catalog import DeviceCatalog, load_catalog
from actuctl.core.config import Settings, load_settings
from actuctl.core.device_manager import DeviceManager
from actuctl.core.errors import ActuctlError
from actuctl.core.events import DeviceAdded, DeviceRemoved, DeviceWarning, ManagerError
from actuctl.core.model import DeviceIdentifier, DeviceInfo
from actuctl.protocols.demo import DemoSimulator
from actuctl.protocols.lovense import LovenseSimulator
from actuctl.server.server import ProtocolServer
from actuctl.transports.base import CommunicationManager
from actuctl.transports.ble_gatt import BLEManager
from actuctl.transports.loopback import LoopbackDevice, LoopbackManager
from actuctl.transports.serial_port import SerialManager
from actuctl.transports.tcp_server import TCPDeviceManager

app = typer.Typer(help="Hardware actuator control and command routing")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@app.callback()
def main(
    ctx: typer.Context,
    verbose: int = typer.Option(0, "--verbose", "-v", count=True, help="-v for info, -vv for debug"),
    config: Path | None = typer.Option(None, "--config", help="Settings file (YAML)"),
) -> None:
    level = {0: logging.WARNING, 1: logging.INFO}.get(verbose, logging.DEBUG)
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    ctx.obj = config


def _build_catalog() -> DeviceCatalog:
    catalog = load_catalog()
    for warning in catalog.warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return catalog


def _build_settings(ctx: typer.Context) -> Settings:
    return load_settings(ctx.obj)


def _simulated_managers() -> list[CommunicationManager]:
    devices = [
        LoopbackDevice(
            DeviceIdentifier(address="SIM-0001", name="Demo-1000", transport="loopback"),
            responder=DemoSimulator(),
        ),
        LoopbackDevice(
            DeviceIdentifier(address="SIM-0002", name="Demo-2000", transport="loopback"),
            responder=DemoSimulator(sensors={1: 87}),
        ),
        LoopbackDevice(
            DeviceIdentifier(address="SIM-0003", name="LVS-Nora", transport="ble"),
            responder=LovenseSimulator(model="A"),
        ),
    ]
    return [LoopbackManager(devices, name="simulator")]


def _hardware_managers(settings: Settings) -> list[CommunicationManager]:
    return [
        BLEManager(),
        SerialManager(poll_interval_s=settings.serial_poll_interval_s),
        TCPDeviceManager(),
    ]


def _describe_device(info: DeviceInfo) -> str:
    return f"[{info.session_id}] {info.name} ({info.family}) {info.identifier.address}"


@app.command("catalog")
def list_catalog() -> None:
    """List device configurations and their features."""
    try:
        catalog = _build_catalog()
        if not catalog.entries:
            typer.echo("No device configurations loaded")
            raise typer.Exit(code=1)

        for entry in sorted(catalog.entries.values(), key=lambda e: e.id):
            typer.echo(f"{entry.id}: {entry.name} [{entry.protocol} over {entry.transport.type}]")
            for index, feature in enumerate(entry.features):
                detail = feature.describe(index)
                if "sensor" in detail:
                    low, high = detail["range"]
                    typer.echo(f"  {index}: {detail['kind']} {detail['sensor']} {low}..{high}")
                else:
                    typer.echo(f"  {index}: {detail['kind']} {detail['actuator']} steps={detail['steps']}")
    except ActuctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("match")
def match_device(
    name: str,
    address: str = typer.Option("", "--address", help="Device address or port"),
    transport: str = typer.Option("ble", "--transport", help="Transport type the device was found on"),
) -> None:
    """Show which device configuration a discovered device resolves to."""
    try:
        catalog = _build_catalog()
        identifier = DeviceIdentifier(address=address, name=name, transport=transport)
        candidates = catalog.candidates(identifier)
        entry = catalog.resolve(identifier)
        typer.echo(f"{name} -> {entry.id} ({entry.name})")
        if len(candidates) > 1:
            ids = ", ".join(c.id for c in candidates)
            typer.echo(f"Ambiguous: {ids}; resolved on connect by probing the device")
    except ActuctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


async def _scan(
    catalog: DeviceCatalog,
    settings: Settings,
    managers: list[CommunicationManager],
    seconds: float,
) -> None:
    async with DeviceManager(catalog, managers, settings=settings) as devices:
        events = devices.subscribe()
        await devices.start_scanning()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            try:
                event = await asyncio.wait_for(events.get(), timeout=remaining)
            except asyncio.TimeoutError:
                break
            if isinstance(event, DeviceAdded):
                typer.echo(f"+ {_describe_device(event.device)}")
            elif isinstance(event, DeviceRemoved):
                typer.echo(f"- [{event.session_id}]")
            elif isinstance(event, ManagerError):
                typer.echo(f"Warning: {event.manager}: {event.message}", err=True)
            elif isinstance(event, DeviceWarning):
                typer.echo(f"Warning: device {event.session_id}: {event.message}", err=True)


@app.command("scan")
def scan(
    ctx: typer.Context,
    seconds: float = typer.Option(5.0, "--seconds", help="How long to scan"),
    simulate: bool = typer.Option(False, "--simulate", help="Use simulated devices instead of hardware"),
) -> None:
    """Scan for devices and print them as they connect and disconnect."""
    try:
        settings = _build_settings(ctx)
        catalog = _build_catalog()
        managers = _simulated_managers() if simulate else _hardware_managers(settings)
        asyncio.run(_scan(catalog, settings, managers, seconds))
    except ActuctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


async def _serve(
    catalog: DeviceCatalog,
    settings: Settings,
    managers: list[CommunicationManager],
    host: str,
    port: int,
    scan_on_start: bool,
) -> None:
    async with DeviceManager(catalog, managers, settings=settings) as devices:
        server = ProtocolServer(devices, settings)
        if scan_on_start:
            await devices.start_scanning()
        listener = await server.serve_tcp(host, port)
        typer.echo(f"Serving {settings.server_name} on {host}:{port}")
        async with listener:
            await listener.serve_forever()


@app.command("serve")
def serve(
    ctx: typer.Context,
    host: str = typer.Option("127.0.0.1", "--host", help="Address to listen on"),
    port: int = typer.Option(12345, "--port", help="TCP port for client sessions"),
    simulate: bool = typer.Option(False, "--simulate", help="Use simulated devices instead of hardware"),
    scan_on_start: bool = typer.Option(True, "--scan/--no-scan", help="Start scanning before clients connect"),
) -> None:
    """Run the message protocol server over TCP until interrupted."""
    try:
        settings = _build_settings(ctx)
        catalog = _build_catalog()
        managers = _simulated_managers() if simulate else _hardware_managers(settings)
        asyncio.run(_serve(catalog, settings, managers, host, port, scan_on_start))
    except KeyboardInterrupt:
        typer.echo("Stopped")
    except OSError as exc:
        typer.echo(f"Error: cannot listen on {host}:{port}: {exc}", err=True)
        raise typer.Exit(code=1) from None
    except ActuctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
