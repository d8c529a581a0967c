"""Tests for codeground query and ask."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from codeground.cli.main import app
from codeground.db.index import VectorIndex
from codeground.db.models import EmbeddingPoint
from codeground.ingest.embedder import Embedder, EmbeddingConfig
from codeground.rag.llm_client import Completion, RateLimited

runner = CliRunner()

QUESTION = "How does login work in github.com/acme/site?"


@pytest.fixture
def indexed(cli_config):
    """One point for acme/site whose vector matches QUESTION exactly."""
    vector = Embedder(EmbeddingConfig(dimensions=8, mock=True)).embed(QUESTION)
    index = VectorIndex(cli_config.vector_db.locations, dimensions=8, retry_delay=0.0)
    try:
        index.upsert(
            "code_embeddings",
            [
                EmbeddingPoint(
                    id="login",
                    vector=vector,
                    payload={
                        "owner": "acme",
                        "repo": "site",
                        "path": "src/auth.js",
                        "type": "function",
                        "name": "login",
                        "content": "function login(user) {\n  return session.start(user);\n}",
                        "startLine": 4,
                        "endLine": 6,
                    },
                )
            ],
        )
    finally:
        index.close()
    return cli_config


# ---------------------------------------------------------------------------
# query
# ---------------------------------------------------------------------------


def test_query_adds_code_context(indexed) -> None:
    result = runner.invoke(app, ["query", QUESTION])

    assert result.exit_code == 0, result.output
    assert "RELEVANT CODE SEGMENTS FROM acme/site" in result.output
    assert "session.start(user)" in result.output
    assert "src/auth.js" in result.output


def test_query_explicit_repo_without_points(indexed) -> None:
    result = runner.invoke(app, ["query", "How does login work?", "--repo", "acme/other"])
    assert result.exit_code == 0
    assert "RELEVANT CODE SEGMENTS" not in result.output
    assert "No repository context added" in result.output


def test_query_without_repository_reference(cli_config) -> None:
    result = runner.invoke(app, ["query", "What is a monad?"])
    assert result.exit_code == 0
    assert "What is a monad?" in result.output
    assert "No repository referenced" in result.output


def test_query_invalid_repo_exits_1(cli_config) -> None:
    result = runner.invoke(app, ["query", "anything", "--repo", "https://example.com/a/b"])
    assert result.exit_code == 1
    assert "Not a repository URL" in result.output


# ---------------------------------------------------------------------------
# ask
# ---------------------------------------------------------------------------


def test_ask_without_api_key_uses_development_mode(indexed) -> None:
    result = runner.invoke(app, ["ask", QUESTION])
    assert result.exit_code == 0
    assert "[DEVELOPMENT MODE]" in result.output
    assert "No API key" in result.output


def test_ask_sends_enhanced_question(indexed, monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    answer = Completion(
        text="login() starts a session.",
        model="openai/gpt-4o-mini",
        usage={"total_tokens": 321},
        duration_ms=12,
    )
    with patch("codeground.cli.query.complete", return_value=answer) as mock_complete:
        result = runner.invoke(app, ["ask", QUESTION])

    assert result.exit_code == 0, result.output
    assert "login() starts a session." in result.output
    assert "321 tokens" in result.output
    system_prompt, user_prompt = mock_complete.call_args.args
    assert "code snippets" in system_prompt
    assert user_prompt.startswith(QUESTION)
    assert "RELEVANT CODE SEGMENTS FROM acme/site" in user_prompt
    assert mock_complete.call_args.kwargs["model"] == "openai/gpt-4o-mini"


def test_ask_completion_error_exits_1(cli_config, monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    with patch("codeground.cli.query.complete", side_effect=RateLimited("too many requests")):
        result = runner.invoke(app, ["ask", "What is a monad?"])

    assert result.exit_code == 1
    assert "RateLimited" in result.output
    assert "too many requests" in result.output
