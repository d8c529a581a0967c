"""codeground CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from codeground.cli.ingest import ingest_cmd
from codeground.cli.init import init_cmd
from codeground.cli.query import ask_cmd, query_cmd
from codeground.cli.repos import repos_app
from codeground.cli.serve import serve_cmd
from codeground.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("codeground")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"codeground {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="codeground",
    help=(
        "codeground: ground chatbot answers in repository code.\n\n"
        "  codeground ingest  Clone, parse, chunk, embed and index repositories.\n"
        "  codeground ask     Answer a question using the indexed code."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
) -> None:
    """codeground: ground chatbot answers in repository code."""


app.command("init")(init_cmd)
app.command("ingest")(ingest_cmd)
app.command("query")(query_cmd)
app.command("ask")(ask_cmd)
app.command("status")(status_cmd)
app.command("serve")(serve_cmd)
app.add_typer(repos_app, name="repos")


@app.command("version")
def version_cmd() -> None:
    """Show the installed codeground version."""
    typer.echo(f"codeground {_installed_version()}")


if __name__ == "__main__":
    app()
