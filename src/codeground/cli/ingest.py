"""codeground ingest: clone, parse, chunk, embed and index repositories.

Without URL arguments every repository of the known-repository list is
updated; with URLs only those are processed.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from codeground.cli.common import load_services
from codeground.cli.errors import (
    err_index_unavailable,
    err_invalid_url,
    warn_mock_index,
    warn_no_repositories,
)
from codeground.errors import VectorDBUnavailable
from codeground.pipeline.jobs import JobStatus, RunReport
from codeground.repos.urls import is_repository_url

console = Console()

_STATUS_STYLE = {
    JobStatus.DONE: "[green]✓ done[/]",
    JobStatus.FAILED: "[red]✗ failed[/]",
    JobStatus.TIMED_OUT: "[yellow]⏱ timed out[/]",
}


def ingest_cmd(
    urls: Annotated[
        list[str] | None,
        typer.Argument(help="Repository URLs. Defaults to every known repository."),
    ] = None,
    full: Annotated[
        bool | None,
        typer.Option(
            "--full/--incremental",
            help="Full: delete the repository's points first. Default from config.",
        ),
    ] = None,
    fail_fast: Annotated[
        bool | None,
        typer.Option(
            "--fail-fast/--tolerant",
            help="Abort a repository on its first failed batch. Default from config.",
        ),
    ] = None,
    concurrency: Annotated[
        int | None,
        typer.Option("--concurrency", "-c", min=1, help="Repositories processed in parallel."),
    ] = None,
    max_wait: Annotated[
        float | None,
        typer.Option("--max-wait", help="Seconds to wait for the run before reporting."),
    ] = None,
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", hidden=True, help="Directory holding codeground.yaml."),
    ] = None,
) -> None:
    """Ingest repositories into the vector index."""
    targets = urls or []
    for url in targets:
        if not is_repository_url(url):
            console.print(err_invalid_url(url))
            raise typer.Exit(1)

    services = load_services(project_dir)
    if concurrency is not None:
        services.scheduler.cfg.concurrency = concurrency

    if not targets:
        targets = services.known.load()
        if not targets:
            console.print(warn_no_repositories())
            raise typer.Exit(0)

    options: dict[str, Any] = {}
    if full is not None:
        options["incremental"] = not full
    if fail_fast is not None:
        options["fail_fast"] = fail_fast

    noun = "repository" if len(targets) == 1 else "repositories"
    try:
        services.index.initialize()
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            prog.add_task(f"Ingesting {len(targets)} {noun}…", total=None)
            report = services.scheduler.update_all(max_wait=max_wait, urls=targets, **options)
        mock = services.index.is_mock
    except VectorDBUnavailable as exc:
        console.print(err_index_unavailable(str(exc)))
        raise typer.Exit(1)
    finally:
        services.close()

    _print_report(report)
    if mock:
        console.print(f"\n{warn_mock_index()}")
    if report.timed_out or report.failed:
        raise typer.Exit(1)


def _print_report(report: RunReport) -> None:
    if report.skipped:
        console.print("[yellow]An update run is already in progress; nothing started.[/]")
        return

    table = Table(title="Ingestion", show_header=True, header_style="bold")
    table.add_column("Repository", style="bold")
    table.add_column("Status")
    table.add_column("Units", justify="right")
    table.add_column("Chunks", justify="right")
    table.add_column("Points", justify="right")
    table.add_column("Failed batches", justify="right")
    table.add_column("Stale removed", justify="right")

    for result in report.results:
        name = f"{result.owner}/{result.repo}" if result.owner else result.repository_url
        table.add_row(
            name,
            _STATUS_STYLE.get(result.status, result.status.value),
            str(result.units),
            str(result.chunks),
            str(result.points_stored),
            str(result.failed_batches),
            str(result.deleted_stale),
        )
    console.print(table)

    for result in report.results:
        if result.error:
            console.print(f"  [red]✗[/] {escape(result.repository_url)}: {escape(result.error)}")
        if result.fallback_embeddings:
            console.print(
                f"  [yellow]⚠[/] {escape(result.repository_url)}: "
                f"{result.fallback_embeddings} mock embedding(s) after provider errors"
            )

    console.print(f"\n  {report.succeeded}/{len(report.results)} succeeded")
    if report.timed_out:
        console.print(
            f"  [yellow]⚠ Timed out waiting; {report.pending} job(s) still pending.[/]"
        )
