"""
main.py — fern-obs command-line entrypoint.

Two kinds of process share this CLI:
  daemon            long-running bridge, writes the state file
  everything else   one-shot commands, each its own OBS connection

CLI:
  fern-obs daemon [--host H] [--port P] [--password S] [--no-stats] ...
  fern-obs start-recording | rec
  fern-obs stop-recording  | stop-rec
  fern-obs toggle-pause    | pause
  fern-obs start-streaming | stream
  fern-obs stop-streaming  | stop-stream
  fern-obs scene "Gaming"
  fern-obs status [--json]
  fern-obs init-config     write a default obs.yaml

Exit codes: 0 ok, 1 daemon fatal, 3 connection, 4 auth, 5 timeout,
6 protocol, 7 request rejected by OBS.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from fern_obs import __version__
from fern_obs.commands import Command, CommandRunner
from fern_obs.config import Settings, default_config_path, get_settings, reload_settings
from fern_obs.core.errors import FernObsError
from fern_obs.daemon import DaemonSupervisor
from fern_obs.state.models import ObsState

console = Console()
err_console = Console(stderr=True)
app = typer.Typer(name="fern-obs", help="OBS WebSocket bridge for Fern Shell", no_args_is_help=True)


def setup_logging(level: str = "info") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )


def _override_obs(settings: Settings, host: Optional[str], port: Optional[int], password: Optional[str]) -> None:
    updates = {k: v for k, v in {"host": host, "port": port, "password": password}.items() if v is not None}
    if updates:
        settings.obs = settings.obs.model_copy(update=updates)


@app.callback()
def main(
    host: Optional[str] = typer.Option(None, "--host", help="OBS WebSocket host [env: OBS_HOST]"),
    port: Optional[int] = typer.Option(None, "--port", help="OBS WebSocket port [env: OBS_PORT]"),
    password: Optional[str] = typer.Option(None, "--password", help="OBS WebSocket password [env: OBS_PASSWORD]"),
    timeout: Optional[int] = typer.Option(None, "--timeout", help="Request timeout in milliseconds"),
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="Path to obs.yaml"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="debug, info, warning, error"),
):
    """OBS WebSocket bridge for Fern Shell."""
    settings = reload_settings(config)
    _override_obs(settings, host, port, password)
    if timeout is not None:
        settings.obs = settings.obs.model_copy(update={"request_timeout_ms": timeout})
    if log_level:
        settings.log_level = log_level
    setup_logging(settings.log_level)


# ──────────────────────────────────────────────────────────────────────────────
# Daemon
# ──────────────────────────────────────────────────────────────────────────────

@app.command()
def daemon(
    host: Optional[str] = typer.Option(None, "--host", help="OBS WebSocket host"),
    port: Optional[int] = typer.Option(None, "--port", help="OBS WebSocket port"),
    password: Optional[str] = typer.Option(None, "--password", help="OBS WebSocket password"),
    stats_interval: Optional[int] = typer.Option(None, "--stats-interval", help="Stats poll interval (ms)"),
    reconnect_interval: Optional[int] = typer.Option(None, "--reconnect-interval", help="First reconnect delay (ms)"),
    reconnect_max_interval: Optional[int] = typer.Option(None, "--reconnect-max-interval", help="Reconnect delay cap (ms)"),
    max_reconnects: Optional[int] = typer.Option(None, "--max-reconnects", help="Give up after N failed attempts (0 = never)"),
    no_stats: bool = typer.Option(False, "--no-stats", help="Disable stats collection"),
    auth_fail_fast: bool = typer.Option(False, "--auth-fail-fast", help="Exit when OBS rejects the password"),
    state_file: Optional[Path] = typer.Option(None, "--state-file", help="State file path"),
):
    """
    Start the OBS bridge daemon.

    Maintains a persistent connection to OBS and writes state updates
    to $XDG_STATE_HOME/fern/obs-state.json.
    """
    settings = get_settings()
    _override_obs(settings, host, port, password)
    updates = {
        "stats_interval_ms": stats_interval,
        "reconnect_interval_ms": reconnect_interval,
        "reconnect_max_interval_ms": reconnect_max_interval,
        "max_reconnects": max_reconnects,
        "state_file": state_file,
        "stats": False if no_stats else None,
        "auth_fail_fast": True if auth_fail_fast else None,
    }
    settings.daemon = settings.daemon.model_copy(update={k: v for k, v in updates.items() if v is not None})

    err_console.rule(f"[bold blue]fern-obs v{__version__}[/bold blue]")
    supervisor = DaemonSupervisor(settings)
    code = asyncio.run(supervisor.run())
    if code:
        raise typer.Exit(code)


# ──────────────────────────────────────────────────────────────────────────────
# One-shot commands
# ──────────────────────────────────────────────────────────────────────────────

def _run_command(command: Command, argument: Optional[str] = None, as_json: bool = False) -> None:
    settings = get_settings()
    runner = CommandRunner(settings.obs)
    try:
        result = asyncio.run(runner.run(command, argument))
    except FernObsError as e:
        err_console.print(f"[red]✗[/red] {e}")
        raise typer.Exit(e.exit_code)

    if result.state is not None:
        if as_json:
            typer.echo(result.state.to_json(indent=2))
        else:
            _print_status(result.state)
    else:
        console.print(f"[green]✓[/green] {result.message}")


def _print_status(state: ObsState) -> None:
    table = Table(title="OBS Status", show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    table.add_row("Connected", "[green]yes[/green]" if state.connected else "[red]no[/red]")
    if state.current_scene:
        table.add_row("Scene", state.current_scene)

    rec = state.recording
    recording = "active" if rec.active else "inactive"
    if rec.paused:
        recording += " (paused)"
    if rec.active and rec.timecode:
        recording += f"  {rec.timecode}"
    table.add_row("Recording", recording)

    stream = state.streaming
    streaming = "active" if stream.active else "inactive"
    if stream.reconnecting:
        streaming += " (reconnecting)"
    if stream.active and stream.timecode:
        streaming += f"  {stream.timecode}"
    table.add_row("Streaming", streaming)

    if state.stats:
        s = state.stats
        table.add_row("CPU", f"{s.cpu_usage:.1f}%")
        table.add_row("FPS", f"{s.active_fps:.1f}")
        table.add_row("Render drops", f"{s.render_drop_percent:.2f}%")
        table.add_row("Output drops", f"{s.output_drop_percent:.2f}%")

    if state.scenes:
        table.add_row("Scenes", ", ".join(state.scenes))
    console.print(table)


@app.command("start-recording")
def start_recording():
    """Start recording (alias: rec)."""
    _run_command(Command.START_RECORDING)


@app.command("stop-recording")
def stop_recording():
    """Stop recording (alias: stop-rec)."""
    _run_command(Command.STOP_RECORDING)


@app.command("toggle-pause")
def toggle_pause():
    """Pause or resume the current recording (alias: pause)."""
    _run_command(Command.TOGGLE_PAUSE)


@app.command("start-streaming")
def start_streaming():
    """Start streaming (alias: stream)."""
    _run_command(Command.START_STREAMING)


@app.command("stop-streaming")
def stop_streaming():
    """Stop streaming (alias: stop-stream)."""
    _run_command(Command.STOP_STREAMING)


@app.command("scene")
def scene(name: str = typer.Argument(..., help="Name of the scene to switch to")):
    """Switch the program scene."""
    _run_command(Command.SCENE, name)


@app.command("status")
def status(as_json: bool = typer.Option(False, "--json", help="Output as JSON")):
    """Print the current OBS status."""
    _run_command(Command.STATUS, as_json=as_json)


app.command("rec", hidden=True)(start_recording)
app.command("stop-rec", hidden=True)(stop_recording)
app.command("pause", hidden=True)(toggle_pause)
app.command("stream", hidden=True)(start_streaming)
app.command("stop-stream", hidden=True)(stop_streaming)


@app.command("init-config")
def init_config(
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Defaults to $XDG_CONFIG_HOME/fern/obs.yaml"),
):
    """Generate a default obs.yaml."""
    path = output or default_config_path()
    Settings.load(path).to_yaml(path)
    console.print(f"[green]✓[/green] Config written to [bold]{path}[/bold]")


if __name__ == "__main__":
    app()
