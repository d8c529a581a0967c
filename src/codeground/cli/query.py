"""codeground query / ask: retrieve code context for a question.

  codeground query  prints the enhanced prompt (no LLM call)
  codeground ask    sends the enhanced prompt to the generation model
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.markup import escape

from codeground.cli.common import load_services
from codeground.cli.errors import err_completion, err_invalid_url
from codeground.rag.llm_client import (
    CompletionError,
    complete,
    create_system_prompt,
    development_answer,
    has_api_key,
)
from codeground.rag.retriever import EnhancedQuestion
from codeground.repos.urls import is_repository_url
from codeground.services import Services

console = Console()


def query_cmd(
    question: Annotated[str, typer.Argument(help="Question to ground in repository code.")],
    repo: Annotated[
        str | None,
        typer.Option("--repo", "-r", help="Repository URL. Detected from the question if omitted."),
    ] = None,
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", min=1, help="Maximum code snippets."),
    ] = None,
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", hidden=True, help="Directory holding codeground.yaml."),
    ] = None,
) -> None:
    """Print the question enhanced with relevant code snippets."""
    services = load_services(project_dir)
    try:
        enhanced = _enhance(services, question, repo, limit)
    finally:
        services.close()

    typer.echo(enhanced.text)
    _print_summary(enhanced)


def ask_cmd(
    question: Annotated[str, typer.Argument(help="Question to answer.")],
    repo: Annotated[
        str | None,
        typer.Option("--repo", "-r", help="Repository URL. Detected from the question if omitted."),
    ] = None,
    project_dir: Annotated[
        Path | None,
        typer.Option("--project-dir", hidden=True, help="Directory holding codeground.yaml."),
    ] = None,
) -> None:
    """Answer a question with the generation model, grounded in repository code."""
    services = load_services(project_dir)
    try:
        enhanced = _enhance(services, question, repo, None)
    finally:
        services.close()

    gen = services.config.generation
    if not has_api_key(gen.model):
        console.print("[yellow]⚠[/] No API key for the generation model; answering in development mode.")
        typer.echo(development_answer(question))
        _print_summary(enhanced)
        return

    try:
        completion = complete(
            create_system_prompt(enhanced.using_repo_context),
            enhanced.text,
            model=gen.model,
            temperature=gen.temperature,
            max_tokens=gen.max_tokens,
            num_retries=gen.num_retries,
        )
    except CompletionError as exc:
        console.print(err_completion(type(exc).__name__, escape(str(exc))))
        raise typer.Exit(1)

    typer.echo(completion.text)
    _print_summary(enhanced)
    if completion.usage:
        console.print(
            f"  [dim]{completion.model} · {completion.usage.get('total_tokens', 0):,} tokens · "
            f"{completion.duration_ms} ms[/]"
        )


def _enhance(
    services: Services, question: str, repo: str | None, limit: int | None
) -> EnhancedQuestion:
    if repo is not None and not is_repository_url(repo):
        console.print(err_invalid_url(repo))
        raise typer.Exit(1)
    url = services.retriever.repository_for(question, repo)
    if url is None:
        console.print("[dim]No repository referenced; using the question as-is.[/]")
        return EnhancedQuestion.unchanged(question)
    return services.retriever.enhance(question, url, limit)


def _print_summary(enhanced: EnhancedQuestion) -> None:
    if not enhanced.using_repo_context:
        console.print("\n  [dim]No repository context added.[/]")
        return
    paths = ", ".join(escape(str(hit.payload.get("path", ""))) for hit in enhanced.snippets)
    console.print(
        f"\n  [dim]{len(enhanced.snippets)} snippet(s) from {enhanced.repository} "
        f"(~{enhanced.context_tokens:,} tokens): {paths}[/]"
    )
