"""Thin CLI wrapper over :class:`lioncloud.Client`."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import sys
from collections.abc import Coroutine
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

import typer

from lioncloud._constants import DEFAULT_POLL_INTERVAL, THINGS_PATH
from lioncloud.client import Client
from lioncloud.commands import Command, apply_command, command_from_mapping
from lioncloud.errors import LionCloudError
from lioncloud.models import DeviceSnapshot

T = TypeVar("T")

app = typer.Typer(help="Control La Marzocco espresso machines.", invoke_without_command=True)

_USERNAME_OPTION = typer.Option(
    ..., "--username", "-u", prompt=True, envvar="LIONCLOUD_USERNAME", help="Account email"
)
_PASSWORD_OPTION = typer.Option(
    ...,
    "--password",
    "-p",
    prompt=True,
    hide_input=True,
    envvar="LIONCLOUD_PASSWORD",
    help="Account password",
)


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Control La Marzocco espresso machines."""
    _configure_logging("debug" if verbose else "warning")
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )


def _print_json(obj: object) -> None:
    """Print JSON: syntax-highlighted when stdout is a TTY, compact otherwise."""
    if sys.stdout.isatty():
        try:
            from rich.console import Console
            from rich.syntax import Syntax

            Console().print(Syntax(json.dumps(obj, indent=2), "json"))
        except ImportError:
            typer.echo(json.dumps(obj, indent=2))
    else:
        typer.echo(json.dumps(obj))


def _format_status(status: DeviceSnapshot) -> list[str]:
    lines = [
        f"  Mode: {status.mode.display_name}",
        f"  Power: {'on' if status.machine_on else 'standby'}",
    ]
    for label, weight in (("Dose 1", status.dose1), ("Dose 2", status.dose2)):
        if weight is not None:
            lines.append(f"  {label}: {weight:.1f} g")
    if status.boiler is not None:
        if status.boiler.ready:
            lines.append("  Boiler: ready")
        elif status.boiler.remaining_seconds is not None:
            lines.append(f"  Boiler: heating ({status.boiler.remaining_seconds}s left)")
        else:
            lines.append("  Boiler: heating")
    if status.scale is not None:
        scale = "connected" if status.scale.connected else "disconnected"
        if status.scale.battery_level is not None:
            scale += f", battery {status.scale.battery_level}%"
        lines.append(f"  Scale: {scale}")
    return lines


def _run(coro: Coroutine[Any, Any, T]) -> T:
    """Run *coro*, turning client errors into a clean exit."""
    try:
        return asyncio.run(coro)
    except LionCloudError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None


async def _connected(username: str, password: str) -> Client:
    client = Client(username, password)
    await client.connect()
    return client


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.command()
def status(
    username: str = _USERNAME_OPTION,
    password: str = _PASSWORD_OPTION,
    as_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show the current machine status."""
    client = _run(_connected(username, password))
    snapshot = client.get_status()
    if as_json:
        _print_json(snapshot.to_dict())
        return
    title = f"{snapshot.model or 'Machine'} (SN: {snapshot.serial})"
    typer.echo(typer.style(title, bold=True) if sys.stdout.isatty() else title)
    for line in _format_status(snapshot):
        typer.echo(line)


@app.command("set", context_settings={"help_option_names": ["-h", "--help"]})
def set_setting(
    setting: str = typer.Argument(..., help="mode | dose1 | dose2 | power | backflush"),
    value: str | None = typer.Argument(None, help="Value to set"),
    username: str = _USERNAME_OPTION,
    password: str = _PASSWORD_OPTION,
) -> None:
    """Change a machine setting.

    \b
    Settings:
      mode           dose1 | dose2 | continuous
      dose1, dose2   weight in grams (5-100)
      power          on | off
      backflush      start a cleaning cycle (no value)
    """
    try:
        cmd = command_from_mapping(_setting_to_mapping(setting, value))
    except ValueError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None

    typer.echo(f"Setting {setting}...")
    serial = _run(_set_async(username, password, cmd))
    typer.echo(f"Command sent to {serial}.")


async def _set_async(username: str, password: str, cmd: Command) -> str:
    client = await _connected(username, password)
    await apply_command(client, cmd)
    return client.serial


def _setting_to_mapping(setting: str, value: str | None) -> dict[str, object]:
    """Turn ``set`` arguments into a command object."""
    if setting == "backflush":
        return {"backflush": True}
    if setting not in ("mode", "dose1", "dose2", "power"):
        raise ValueError(
            f"Unknown setting '{setting}'. Available: mode, dose1, dose2, power, backflush"
        )
    if value is None:
        raise ValueError(f"Setting '{setting}' expects a value.")
    if setting == "mode":
        return {"mode": value}
    if setting == "power":
        if value not in ("on", "off"):
            raise ValueError(f"Invalid value '{value}' for power. Expected: on | off")
        return {"power": value == "on"}
    try:
        return {setting: float(value)}
    except ValueError:
        raise ValueError(f"Invalid weight '{value}'. Expected a number.") from None


@app.command()
def watch(
    username: str = _USERNAME_OPTION,
    password: str = _PASSWORD_OPTION,
    interval: float = typer.Option(
        DEFAULT_POLL_INTERVAL, "--interval", "-i", help="Polling interval in seconds"
    ),
) -> None:
    """Poll the machine and print every status change.

    Press Ctrl+C to stop.
    """
    with contextlib.suppress(KeyboardInterrupt):
        _run(_watch_async(username, password, interval))


async def _watch_async(username: str, password: str, interval: float) -> None:
    """Async implementation of the watch command."""
    client = await _connected(username, password)
    is_tty = sys.stdout.isatty()
    typer.echo(f"Watching {client.serial} every {interval:g}s... (Ctrl+C to stop)")

    def on_change(snapshot: DeviceSnapshot) -> None:
        ts = datetime.now().strftime("%H:%M:%S")
        header = f"[{ts}] {snapshot.serial}"
        typer.echo(typer.style(header, bold=True) if is_tty else header)
        for line in _format_status(snapshot):
            typer.echo(line)

    client.register_status_change_callback(on_change)
    on_change(client.get_status())
    poller = client.start_polling(interval)
    try:
        await poller.wait()
    finally:
        await poller.stop()


@app.command()
def debug(
    username: str = _USERNAME_OPTION,
    password: str = _PASSWORD_OPTION,
) -> None:
    """Dump raw API responses for troubleshooting."""
    asyncio.run(_debug_async(Client(username, password)))


async def _debug_async(client: Client) -> None:
    """Async implementation of the debug command."""
    typer.echo(f"=== GET {THINGS_PATH} ===")
    try:
        resp = await client.executor.execute("GET", THINGS_PATH)
        typer.echo(f"Status: {resp.status}")
        _print_json(resp.json())
    except LionCloudError as e:
        typer.echo(f"Error: {e}")
        return

    try:
        await client.fetch_device_identity()
    except LionCloudError as e:
        typer.echo(f"\n(!) {e}")
        return

    typer.echo(f"\n=== GET {THINGS_PATH}/{client.serial}/dashboard ===")
    try:
        _print_json(await client.fetch_dashboard())
    except LionCloudError as e:
        typer.echo(f"Error: {e}")


@app.command()
def bridge(
    config_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="JSON config"),
) -> None:
    """Run the MQTT bridge described by CONFIG_FILE."""
    from lioncloud.bridge import run_bridge
    from lioncloud.config import load_config

    try:
        config = load_config(config_file)
    except LionCloudError as e:
        typer.echo(str(e), err=True)
        raise typer.Exit(1) from None
    _configure_logging(config.loglevel)

    try:
        asyncio.run(run_bridge(config))
    except KeyboardInterrupt:
        pass
    except LionCloudError as e:
        typer.echo(f"Bridge stopped: {e}", err=True)
        raise typer.Exit(1) from None
