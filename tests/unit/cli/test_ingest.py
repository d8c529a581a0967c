"""Tests for codeground ingest."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

from typer.testing import CliRunner

from codeground.cli.main import app
from codeground.config import EmbeddingCfg, VectorDbCfg
from codeground.db.index import VectorIndex
from codeground.errors import CloneFailure

runner = CliRunner()

SITE_URL = "https://github.com/acme/site"

UTIL_JS = """\
export function formatDate(date) {
  return date.toISOString().slice(0, 10);
}

export function slugify(text) {
  return text.toLowerCase().replace(/\\s+/g, "-");
}
"""


def _clone_site(cfg, git_repo_factory) -> Path:
    """Pre-create the local clone so no network access is needed."""
    repos_dir = Path(cfg.storage.repos_dir)
    return git_repo_factory(
        str((repos_dir / "acme" / "site").relative_to(repos_dir.parent)), {"src/util.js": UTIL_JS}
    )


def _point_count(cfg) -> int:
    index = VectorIndex(cfg.vector_db.locations, dimensions=8, retry_delay=0.0)
    try:
        return index.count("code_embeddings", {"owner": "acme", "repo": "site"})
    finally:
        index.close()


def _unreachable_location(tmp_path: Path) -> str:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    return str(blocker / "vectors.db")


# ---------------------------------------------------------------------------
# Argument handling
# ---------------------------------------------------------------------------


def test_ingest_invalid_url_exits_1(cli_config) -> None:
    result = runner.invoke(app, ["ingest", "https://example.com/x/y"])
    assert result.exit_code == 1
    assert "Not a repository URL" in result.output


def test_ingest_without_repositories_warns(cli_config) -> None:
    result = runner.invoke(app, ["ingest"])
    assert result.exit_code == 0
    assert "No repositories to ingest" in result.output


# ---------------------------------------------------------------------------
# Runs
# ---------------------------------------------------------------------------


def test_ingest_explicit_url_indexes_points(cli_config, git_repo_factory) -> None:
    _clone_site(cli_config, git_repo_factory)

    result = runner.invoke(app, ["ingest", SITE_URL])

    assert result.exit_code == 0, result.output
    assert "acme/site" in result.output
    assert "1/1 succeeded" in result.output
    assert _point_count(cli_config) > 0


def test_ingest_known_list_and_rerun_is_idempotent(cli_config, git_repo_factory) -> None:
    _clone_site(cli_config, git_repo_factory)
    runner.invoke(app, ["repos", "add", "acme/site"])

    first = runner.invoke(app, ["ingest"])
    count = _point_count(cli_config)
    second = runner.invoke(app, ["ingest", "--full"])

    assert first.exit_code == 0, first.output
    assert second.exit_code == 0, second.output
    assert count > 0
    assert _point_count(cli_config) == count


def test_ingest_clone_failure_exits_1(cli_config) -> None:
    with patch(
        "codeground.repos.store.RepositoryStore.clone_or_update",
        side_effect=CloneFailure("git clone failed for https://github.com/acme/site.git"),
    ):
        result = runner.invoke(app, ["ingest", SITE_URL])

    assert result.exit_code == 1
    assert "git clone failed" in result.output
    assert "0/1 succeeded" in result.output


def test_ingest_index_unavailable_exits_1(cli_config, tmp_path) -> None:
    cli_config.vector_db = VectorDbCfg(
        locations=[_unreachable_location(tmp_path)], retry_delay=0.0, max_retries=1, allow_mock=False
    )
    result = runner.invoke(app, ["ingest", SITE_URL])
    assert result.exit_code == 1
    assert "Vector index unavailable" in result.output


def test_ingest_mock_index_warns(cli_config, git_repo_factory, tmp_path) -> None:
    _clone_site(cli_config, git_repo_factory)
    cli_config.vector_db = VectorDbCfg(
        locations=[_unreachable_location(tmp_path)], retry_delay=0.0, max_retries=1
    )

    result = runner.invoke(app, ["ingest", SITE_URL])

    assert result.exit_code == 0, result.output
    assert "mock mode" in result.output


def test_ingest_reports_embedding_fallbacks(cli_config, git_repo_factory, monkeypatch) -> None:
    _clone_site(cli_config, git_repo_factory)
    cli_config.embedding = EmbeddingCfg(dimensions=8, mock=False)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")

    with patch("codeground.ingest.embedder.litellm.embedding", side_effect=RuntimeError("down")):
        result = runner.invoke(app, ["ingest", SITE_URL])

    assert result.exit_code == 0, result.output
    assert "3 mock embedding(s) after provider errors" in result.output
