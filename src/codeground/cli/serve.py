"""codeground serve: keep known repositories indexed until interrupted."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from codeground.cli.common import load_services

console = Console()


def _wait_for_interrupt() -> None:
    threading.Event().wait()


def serve_cmd(
    interval: Annotated[
        float | None,
        typer.Option("--interval", min=1, help="Seconds between update runs. Default from config."),
    ] = None,
    initial_delay: Annotated[
        float | None,
        typer.Option("--initial-delay", min=0, help="Seconds before the first run."),
    ] = None,
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", hidden=True, help="Directory holding codeground.yaml."),
    ] = None,
) -> None:
    """Run recurring ingestion of the known repositories (Ctrl+C to stop)."""
    services = load_services(project_dir)
    cfg = services.config.scheduler
    interval = cfg.update_interval if interval is None else interval
    initial_delay = cfg.initial_delay if initial_delay is None else initial_delay

    services.scheduler.start_recurring(initial_delay=initial_delay, interval=interval)
    console.print(
        f"[bold]codeground serve[/]: updating {services.known.path} every {interval:g}s "
        f"(first run in {initial_delay:g}s). Press Ctrl+C to stop."
    )
    try:
        _wait_for_interrupt()
    except KeyboardInterrupt:
        console.print("\n[dim]Stopping…[/]")
    finally:
        services.close()
