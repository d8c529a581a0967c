"""codeground rich error messages: actionable feedback.

Every error shown to the user must contain:
  1. What went wrong (clear cause)
  2. The exact action the user should take to fix it

Usage:
    from codeground.cli.errors import err_invalid_url
    console.print(err_invalid_url(url))
    raise typer.Exit(1)
"""

from __future__ import annotations

from codeground.rag.llm_client import provider_env_var


def err_invalid_url(url: str) -> str:
    """*url* is not a GitHub, GitLab or Bitbucket repository reference."""
    return (
        f"[red]Error:[/] Not a repository URL: '{url}'\n"
        "  Use https://github.com/<owner>/<repo>, git@github.com:<owner>/<repo>.git\n"
        "  or the shorthand <owner>/<repo>."
    )


def err_config(message: str) -> str:
    """A config layer holds an invalid value."""
    return (
        f"[red]Error:[/] Invalid configuration.\n"
        f"  {message}\n"
        "  Fix codeground.yaml, ~/.codeground/config.yaml or the CODEGROUND_* variable."
    )


def err_no_api_key(model: str) -> str:
    """No API key for *model*'s provider.

    Example:
        No API key for 'openai/gpt-4o-mini'. Set:  export OPENAI_API_KEY=sk-...
    """
    env_var = provider_env_var(model) or "API_KEY"
    return (
        f"[red]Error:[/] No API key for '{model}'.\n"
        f"  Set:  export {env_var}=sk-..."
    )


def err_completion(kind: str, message: str) -> str:
    """The chat completion provider rejected or failed the request."""
    hints = {
        "RateLimited": "Wait a moment and retry.",
        "AuthError": "Check that the API key is valid for this model.",
        "InvalidRequest": "Check generation.model and generation.max_tokens in codeground.yaml.",
        "TransientError": "The provider is unreachable or overloaded; retry later.",
    }
    return (
        f"[red]Error:[/] Completion failed ({kind}).\n"
        f"  {message}\n"
        f"  {hints.get(kind, 'Retry later.')}"
    )


def err_index_unavailable(message: str) -> str:
    """No vector index location could be opened and mock mode is off."""
    return (
        f"[red]Error:[/] Vector index unavailable.\n"
        f"  {message}\n"
        "  Check vector_db.locations (or CODEGROUND_VECTOR_DB), or set vector_db.allow_mock: true."
    )


def err_repo_not_known(url: str) -> str:
    return (
        f"[yellow]Not in the repository list:[/] '{url}'\n"
        "  Run:  codeground repos list  to see known repositories."
    )


def warn_no_repositories() -> str:
    """Known-repository list is empty."""
    return (
        "[yellow]No repositories to ingest.[/]\n"
        "  Add one:  codeground repos add https://github.com/<owner>/<repo>\n"
        "  or pass URLs:  codeground ingest <url> ..."
    )


def warn_mock_index() -> str:
    """Index fell back to mock mode; nothing was persisted."""
    return (
        "[yellow]⚠[/] Vector index is in mock mode: no points were stored.\n"
        "  Check vector_db.locations and that the sqlite-vec extension loads."
    )
