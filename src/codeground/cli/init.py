"""codeground init: scaffold a project directory.

Creates:
  codeground.yaml               project config with commented defaults
  data/known-repositories.txt   empty repository list
  ~/.codeground/config.yaml     global model config (created once, mode 0o600)
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console

from codeground.cli.errors import err_invalid_url
from codeground.config import ensure_global_config
from codeground.errors import InvalidReference
from codeground.repos.known import KnownRepositories
from codeground.repos.urls import normalize_repository_url

console = Console()

_DEFAULT_PROJECT_DIR = Path(".")

_PROJECT_YAML = """\
# codeground project configuration.
# API keys are read from the environment (OPENAI_API_KEY, GIT_TOKEN, ...).

storage:
  repos_dir: data/repositories
  repo_list: data/known-repositories.txt

vector_db:
  locations: [data/vectors.db]

scheduler:
  concurrency: 2
  stage_timeout: 300
  batch_size: 50
  incremental: true

retrieval:
  limit: 3
  min_similarity: 0.65
{default_repository}"""


def init_cmd(
    project_dir: Annotated[
        Path,
        typer.Argument(help="Directory to initialize. Defaults to current directory."),
    ] = _DEFAULT_PROJECT_DIR,
    repo: Annotated[
        list[str] | None,
        typer.Option("--repo", "-r", help="Repository to add to the list (repeatable)."),
    ] = None,
    global_config: Annotated[
        Path | None,
        typer.Option("--global-config", hidden=True, help="Override global config path (for testing)."),
    ] = None,
) -> None:
    """Initialize a codeground project directory."""
    project_dir = project_dir.resolve()
    project_dir.mkdir(parents=True, exist_ok=True)
    repos = repo or []

    try:
        normalized = [normalize_repository_url(r) for r in repos]
    except InvalidReference as exc:
        console.print(err_invalid_url(exc.url))
        raise typer.Exit(1)

    console.print(f"\n[bold]Creating scaffold in {project_dir} …[/]\n")

    config_path = project_dir / "codeground.yaml"
    if config_path.exists():
        console.print("  [dim]–[/] codeground.yaml (exists, kept)")
    else:
        default_line = f"  default_repository: {normalized[0]}\n" if normalized else ""
        config_path.write_text(
            _PROJECT_YAML.format(default_repository=default_line), encoding="utf-8"
        )
        console.print("  [green]✓[/] codeground.yaml")

    known = KnownRepositories(project_dir / "data" / "known-repositories.txt")
    known.save([*known.load(), *normalized])
    console.print(f"  [green]✓[/] data/known-repositories.txt ({len(known.load())} repositories)")

    global_path = ensure_global_config(global_config)
    console.print(f"  [green]✓[/] {global_path}")

    console.print("\n[bold]Next:[/]  codeground ingest")
