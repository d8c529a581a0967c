"""Fixtures for CLI tests: a project config rooted in tmp_path."""

from __future__ import annotations

import pytest

from codeground.config import (
    CodegroundConfig,
    EmbeddingCfg,
    SchedulerCfg,
    StorageCfg,
    VectorDbCfg,
)


@pytest.fixture
def cli_config(tmp_path, monkeypatch) -> CodegroundConfig:
    """Config every command loads: mock embeddings and a file index under tmp_path."""
    cfg = CodegroundConfig(
        storage=StorageCfg(
            repos_dir=str(tmp_path / "repos"),
            repo_list=str(tmp_path / "known.txt"),
        ),
        embedding=EmbeddingCfg(dimensions=8, mock=True),
        vector_db=VectorDbCfg(locations=[str(tmp_path / "vectors.db")], retry_delay=0.0),
        scheduler=SchedulerCfg(max_wait=60.0, git_timeout=30.0),
    )
    monkeypatch.setattr("codeground.cli.common.load_config", lambda *args, **kwargs: cfg)
    return cfg
