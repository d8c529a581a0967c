"""Shared pytest fixtures."""

from __future__ import annotations

import os
import subprocess
from pathlib import Path

import pytest

from codeground.db.index import VectorIndex
from codeground.ingest.embedder import Embedder, EmbeddingConfig

DIMS = 8


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """No provider keys, git token or CODEGROUND_* overrides leak into tests."""
    for name in ("OPENAI_API_KEY", "ANTHROPIC_API_KEY", "GIT_TOKEN"):
        monkeypatch.delenv(name, raising=False)
    for name in list(os.environ):
        if name.startswith("CODEGROUND_"):
            monkeypatch.delenv(name, raising=False)


@pytest.fixture
def index():
    """In-memory vector index with small vectors, closed after test."""
    idx = VectorIndex(":memory:", dimensions=DIMS, retry_delay=0.0, sleep=lambda _: None)
    yield idx
    idx.close()


@pytest.fixture
def embedder():
    """Deterministic mock embedder matching the index dimensions."""
    return Embedder(EmbeddingConfig(dimensions=DIMS, mock=True))


def run_git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", "-C", str(repo), *args], check=True, capture_output=True, text=True
    )
    return result.stdout


def make_git_repo(path: Path, files: dict[str, str]) -> Path:
    """Create a git repository at *path* with *files* committed on ``main``."""
    path.mkdir(parents=True, exist_ok=True)
    subprocess.run(["git", "init", str(path)], check=True, capture_output=True)
    run_git(path, "checkout", "-q", "-B", "main")
    run_git(path, "config", "user.email", "test@test.com")
    run_git(path, "config", "user.name", "Test")
    run_git(path, "config", "commit.gpgsign", "false")
    for rel, content in files.items():
        target = path / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    run_git(path, "add", ".")
    run_git(path, "commit", "-q", "-m", "Initial commit")
    return path


@pytest.fixture
def git_repo_factory(tmp_path):
    def _factory(name: str = "origin", files: dict[str, str] | None = None) -> Path:
        return make_git_repo(tmp_path / name, files or {"README.md": "# Demo\n"})

    return _factory
