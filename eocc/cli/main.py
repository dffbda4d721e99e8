#!/usr/bin/env python3
"""
Command-line interface for eocc-monitor.

Provides commands to run the queue drain loop and inspect monitor state.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import signal
from datetime import datetime
from pathlib import Path

import typer

from eocc.cli.logger import CLILogger
from eocc.config.base import BaseMonitorSettings
from eocc.config.monitor import MonitorSettings, settings
from eocc.exceptions import MonitorError
from eocc.schemas.events import HookEvent
from eocc.schemas.state import Session, StateSnapshot
from eocc.services.monitor import MonitorService
from eocc.storage.snapshot import SnapshotFileStorage

app = typer.Typer(
    name='eocc',
    help='Monitor Claude Code sessions from hook events',
    add_completion=False,
)

HOME_OPTION_HELP = 'Monitor home directory (default: $EOCC_HOME_DIR or ~/.eocc)'


def _resolve_settings(home: Path | None) -> BaseMonitorSettings:
    """Explicit --home wins over the environment-configured singleton."""
    if home is not None:
        return MonitorSettings(HOME_DIR=home)
    return settings


# ==============================================================================
# Commands
# ==============================================================================


@app.command()
def watch(
    home: Path | None = typer.Option(None, '--home', help=HOME_OPTION_HELP),
    verbose: bool = typer.Option(False, '--verbose', '-v', help='Verbose output'),
) -> None:
    """Drain the event queue continuously until Ctrl-C.

    Prints one line per state change. Only one watcher may run per home directory.
    """
    try:
        asyncio.run(_watch_async(_resolve_settings(home), verbose))
    except MonitorError as e:
        typer.secho(f'Error: {e}', fg=typer.colors.RED, err=True)
        raise typer.Exit(1)


@app.command()
def drain(
    home: Path | None = typer.Option(None, '--home', help=HOME_OPTION_HELP),
    verbose: bool = typer.Option(False, '--verbose', '-v', help='Verbose output'),
) -> None:
    """Run a single drain cycle and exit.

    Do not use while `eocc watch` is running on the same home directory.
    """
    try:
        asyncio.run(_drain_async(_resolve_settings(home), verbose))
    except MonitorError as e:
        typer.secho(f'Error: {e}', fg=typer.colors.RED, err=True)
        raise typer.Exit(1)


@app.command()
def status(
    home: Path | None = typer.Option(None, '--home', help=HOME_OPTION_HELP),
    as_json: bool = typer.Option(False, '--json', help='Print the raw snapshot as JSON'),
) -> None:
    """Show sessions from the last persisted snapshot."""
    snapshot = _load_snapshot(_resolve_settings(home))

    if as_json:
        typer.echo(json.dumps(snapshot.model_dump(mode='json', by_alias=True), indent=2, ensure_ascii=False))
        return

    typer.secho(snapshot.tooltip, bold=True)
    if not snapshot.sessions:
        return
    typer.echo()
    for session in snapshot.sessions:
        typer.echo(_format_session(session))


@app.command()
def events(
    home: Path | None = typer.Option(None, '--home', help=HOME_OPTION_HELP),
    limit: int | None = typer.Option(None, '--limit', '-n', min=1, help='Number of events (default: 10)'),
) -> None:
    """Show the most recent events, newest first."""
    resolved = _resolve_settings(home)
    snapshot = _load_snapshot(resolved)

    recent = snapshot.recent_events(limit or resolved.RECENT_EVENTS_LIMIT)
    if not recent:
        typer.echo('No events recorded yet.')
        return
    for event in recent:
        typer.echo(_format_event(event))


@app.command()
def paths(home: Path | None = typer.Option(None, '--home', help=HOME_OPTION_HELP)) -> None:
    """Show where the queue, processing files and runtime state live."""
    resolved = _resolve_settings(home)
    typer.echo(f'Queue:         {resolved.events_file}')
    typer.echo(f'Processing:    {resolved.log_dir / "events.processing.*.jsonl"}')
    typer.echo(f'Runtime state: {resolved.runtime_state_file}')
    typer.echo(f'Consumer lock: {resolved.lock_file}')


# ==============================================================================
# Async implementations
# ==============================================================================


async def _watch_async(resolved: BaseMonitorSettings, verbose: bool) -> None:
    """Async implementation of watch command."""
    logger = CLILogger(verbose=verbose)
    monitor = MonitorService.from_settings(resolved, log=logger)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Stop between cycles instead of cancelling mid-file
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    monitor.store.subscribe(_print_update)

    with monitor.claim_queue():
        await monitor.start()
        typer.secho(monitor.store.snapshot().tooltip, bold=True)
        typer.echo(f'Watching {resolved.events_file} (Ctrl-C to stop)')

        await monitor.drain.run(stop_event)
    typer.echo('Stopped.')


async def _drain_async(resolved: BaseMonitorSettings, verbose: bool) -> None:
    """Async implementation of drain command."""
    logger = CLILogger(verbose=verbose)
    monitor = MonitorService.from_settings(resolved, log=logger)

    with monitor.claim_queue():
        recovered = await monitor.start()
        result = await monitor.drain.drain_once()
        if not result.aborted:
            result = result.merge(await monitor.drain.flush())

    if recovered.files_processed:
        typer.echo(
            f'Recovered {recovered.files_processed} file(s): {recovered.events_applied} event(s) applied'
        )
    color = typer.colors.RED if result.aborted else typer.colors.GREEN
    typer.secho(
        f'{"✗ Aborted" if result.aborted else "✓ Drained"}: {result.files_processed} file(s), '
        f'{result.events_applied} event(s) applied, {result.lines_skipped} line(s) skipped',
        fg=color,
    )
    typer.echo(monitor.store.snapshot().tooltip)
    if result.aborted:
        raise typer.Exit(1)


# ==============================================================================
# Output helpers
# ==============================================================================


def _load_snapshot(resolved: BaseMonitorSettings) -> StateSnapshot:
    storage = SnapshotFileStorage(resolved.runtime_state_file)
    try:
        snapshot = storage.load()
    except MonitorError as e:
        typer.secho(f'Error: {e}', fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    return snapshot or StateSnapshot()


def _print_update(snapshot: StateSnapshot) -> None:
    now = datetime.now().strftime('%H:%M:%S')
    latest = snapshot.events[-1] if snapshot.events else None
    suffix = f' | {latest.kind} {latest.project_name}' if latest else ''
    typer.echo(f'[{now}] {snapshot.tooltip}{suffix}')


def _format_session(session: Session) -> str:
    line = f'{session.emoji} {session.project_name or session.key:<24} {session.status:<18} {session.last_event}'
    if session.waiting_for:
        line += f'\n     waiting for: {session.waiting_for}'
    return line


def _format_event(event: HookEvent) -> str:
    detail = ''
    if event.kind == 'notification':
        detail = event.notification_type
    elif event.matcher:
        detail = event.matcher
    if event.tool_name:
        detail = f'{detail} {event.tool_name}'.strip()
    return f'{event.timestamp}  {event.kind:<18} {event.project_name:<20} {detail}'.rstrip()


def main() -> None:
    """Entry point for CLI."""
    app()


if __name__ == '__main__':
    main()
