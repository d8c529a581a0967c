"""codeground repos CLI commands.

Commands:
  codeground repos list           show known repositories and their point counts
  codeground repos add <url>      add a repository to the known list
  codeground repos remove <url>   remove it (and, with --purge, its points and clone)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from codeground.cli.common import load_services
from codeground.cli.errors import err_invalid_url, err_repo_not_known
from codeground.errors import InvalidReference
from codeground.repos.urls import normalize_repository_url

console = Console()

repos_app = typer.Typer(
    name="repos",
    help="Manage the known-repository list (list, add, remove).",
    add_completion=False,
)

_ProjectDir = Annotated[
    Path | None,
    typer.Option("--project-dir", hidden=True, help="Directory holding codeground.yaml."),
]


@repos_app.command("list")
def repos_list_cmd(project_dir: _ProjectDir = None) -> None:
    """List known repositories with their indexed point counts."""
    services = load_services(project_dir)
    try:
        urls = services.known.load()
        if not urls:
            console.print(
                "[yellow]No known repositories.[/]\n"
                "  Add one:  codeground repos add https://github.com/<owner>/<repo>"
            )
            raise typer.Exit(0)

        table = Table(title="Known repositories", show_header=True, header_style="bold")
        table.add_column("Repository", style="bold")
        table.add_column("Clone")
        table.add_column("Points", justify="right")

        collection = services.config.vector_db.code_collection
        for url in urls:
            try:
                ref = services.store.resolve(url)
            except InvalidReference:
                table.add_row(url, "[red]invalid URL[/]", "-")
                continue
            cloned = "[green]✓[/]" if ref.is_cloned else "[dim]–[/]"
            points = services.index.count(collection, {"owner": ref.owner, "repo": ref.repo})
            table.add_row(ref.url, cloned, f"{points:,}")
        console.print(table)
        console.print(f"\n  {len(urls)} repositor{'y' if len(urls) == 1 else 'ies'}")
    finally:
        services.close()


@repos_app.command("add")
def repos_add_cmd(
    url: Annotated[str, typer.Argument(help="Repository URL or owner/repo shorthand.")],
    project_dir: _ProjectDir = None,
) -> None:
    """Add a repository to the known list."""
    services = load_services(project_dir)
    try:
        added = services.known.add(url)
    except InvalidReference:
        console.print(err_invalid_url(url))
        raise typer.Exit(1)
    finally:
        services.close()

    normalized = normalize_repository_url(url)
    if added:
        console.print(f"[green]✓[/] Added {normalized}")
        console.print("  Run:  codeground ingest  to index it.")
    else:
        console.print(f"[dim]Already known: {normalized}[/]")


@repos_app.command("remove")
def repos_remove_cmd(
    url: Annotated[str, typer.Argument(help="Repository URL to remove.")],
    purge: Annotated[
        bool,
        typer.Option("--purge", help="Also delete its indexed points and local clone."),
    ] = False,
    project_dir: _ProjectDir = None,
) -> None:
    """Remove a repository from the known list."""
    services = load_services(project_dir)
    try:
        removed = services.known.remove(url)
        if not removed and not purge:
            console.print(err_repo_not_known(url))
            raise typer.Exit(0)
        if removed:
            console.print(f"[green]✓[/] Removed {url} from the repository list")

        if purge:
            try:
                ref = services.store.resolve(url)
            except InvalidReference:
                console.print(err_invalid_url(url))
                raise typer.Exit(1)
            collection = services.config.vector_db.code_collection
            scope = {"owner": ref.owner, "repo": ref.repo}
            points = services.index.count(collection, scope)
            services.index.delete_by_filter(collection, scope)
            had_clone = services.store.remove_clone(ref)
            console.print(
                f"  {points:,} point(s) deleted"
                + (f", clone {ref.local_path} removed" if had_clone else "")
            )
    finally:
        services.close()
