"""codeground status: vector index health and per-repository point counts."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from codeground.cli.common import load_services
from codeground.errors import InvalidReference
from codeground.services import Services

console = Console()


def status_cmd(
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", hidden=True, help="Directory holding codeground.yaml."),
    ] = None,
) -> None:
    """Show vector index health, models and indexed repositories."""
    services = load_services(project_dir)
    try:
        health = services.index.health()
        _show_index_panel(services, health)
        if health["mode"] == "sqlite":
            _show_repositories_table(services)
    finally:
        services.close()

    if not health["healthy"]:
        raise typer.Exit(1)


# ---------------------------------------------------------------------------
# Renderers
# ---------------------------------------------------------------------------


def _show_index_panel(services: Services, health: dict) -> None:
    cfg = services.config
    if health["healthy"]:
        state = "[green]✓ connected[/]"
    elif health["mode"] == "mock":
        state = "[yellow]⚠ mock mode (nothing is persisted)[/]"
    else:
        state = "[red]✗ unavailable[/]"

    lines = [
        f"Index:       {state}",
        f"Location:    {escape(health['location'] or '-')}",
        f"Embedding:   {cfg.embedding.model} ({cfg.embedding.dimensions} dims)"
        + (" [yellow]mock[/]" if services.embedder.is_mock else ""),
        f"Generation:  {cfg.generation.model}",
    ]
    for name, count in (health.get("collections") or {}).items():
        lines.append(f"Collection:  {name}  [bold]{count:,}[/] points")
    if health.get("error"):
        lines.append(f"Error:       [red]{escape(str(health['error']))}[/]")

    console.print(Panel("\n".join(lines), title="[bold]Vector index[/]", expand=False))


def _show_repositories_table(services: Services) -> None:
    urls = services.known.load()
    if not urls:
        console.print("[dim]No known repositories.[/]")
        return

    collection = services.config.vector_db.code_collection
    table = Table(show_header=True, header_style="bold", title="Repositories")
    table.add_column("Repository", style="bold")
    table.add_column("Points", justify="right")
    table.add_column("Last commit", style="dim")

    for url in urls:
        try:
            ref = services.store.resolve(url)
        except InvalidReference:
            table.add_row(escape(url), "[red]invalid URL[/]", "")
            continue
        points = services.index.count(collection, {"owner": ref.owner, "repo": ref.repo})
        commit = services.store.latest_commit(ref)
        last = f"{commit['hash'][:8]} {commit['date'][:10]}" if commit else "not cloned"
        table.add_row(ref.full_name, f"{points:,}" if points else "[yellow]0[/]", last)

    console.print(table)
