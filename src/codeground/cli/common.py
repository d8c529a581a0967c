"""Shared start-up for CLI commands: config → logging → services."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from codeground.cli.errors import err_config
from codeground.config import ConfigError, load_config
from codeground.log import configure_logging
from codeground.services import Services, build_services

console = Console()


def load_services(project_dir: Path | None = None, log_level: str | None = None) -> Services:
    """Load the merged config for *project_dir* and build the services.

    Exits with status 1 and an actionable message on invalid configuration.
    """
    try:
        cfg = load_config(project_dir)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1)

    configure_logging(log_level or cfg.logging.level)
    return build_services(cfg, base_dir=project_dir)
