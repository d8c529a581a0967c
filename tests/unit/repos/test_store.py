"""Tests for RepositoryStore: resolution, clone, pull and commit inspection."""

from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from codeground.errors import CloneFailure, InvalidReference
from codeground.repos.store import RepositoryRef, RepositoryStore, _inject_token, _sanitise_url


def _local_ref(store: RepositoryStore, origin: Path) -> RepositoryRef:
    """A ref whose clone URL points at a local repository."""
    ref = store.resolve("https://github.com/acme/site")
    ref.clone_url = str(origin)
    return ref


def _commit(repo: Path, name: str, content: str, message: str) -> None:
    (repo / name).write_text(content, encoding="utf-8")
    subprocess.run(["git", "-C", str(repo), "add", "."], check=True, capture_output=True)
    subprocess.run(
        ["git", "-C", str(repo), "commit", "-q", "-m", message], check=True, capture_output=True
    )


# ---------------------------------------------------------------------------
# resolve
# ---------------------------------------------------------------------------


def test_resolve_builds_ref(tmp_path: Path) -> None:
    store = RepositoryStore(tmp_path / "repos")
    ref = store.resolve("git@github.com:Acme/Site.git")

    assert ref.url == "https://github.com/Acme/Site"
    assert ref.owner == "Acme"
    assert ref.repo == "Site"
    assert ref.full_name == "Acme/Site"
    assert ref.local_path == tmp_path / "repos" / "Acme" / "Site"
    assert ref.clone_url == "https://github.com/Acme/Site.git"
    assert ref.is_cloned is False
    assert not (tmp_path / "repos").exists()


def test_hyphenated_names_get_separate_clones(tmp_path: Path) -> None:
    store = RepositoryStore(tmp_path / "repos")
    first = store.resolve("https://github.com/a-b/c")
    second = store.resolve("https://github.com/a/b-c")

    assert first.local_path != second.local_path
    assert first.local_path == tmp_path / "repos" / "a-b" / "c"
    assert second.local_path == tmp_path / "repos" / "a" / "b-c"


def test_resolve_invalid_raises(tmp_path: Path) -> None:
    with pytest.raises(InvalidReference):
        RepositoryStore(tmp_path).resolve("ftp://example.com/x")


# ---------------------------------------------------------------------------
# clone_or_update
# ---------------------------------------------------------------------------


def test_clone_from_local_origin(tmp_path: Path, git_repo_factory) -> None:
    origin = git_repo_factory("origin", {"index.js": "function a() {}\n"})
    store = RepositoryStore(tmp_path / "repos")
    ref = _local_ref(store, origin)

    store.clone_or_update(ref)

    assert ref.is_cloned
    assert (ref.local_path / "index.js").read_text(encoding="utf-8") == "function a() {}\n"


def test_update_pulls_new_commits(tmp_path: Path, git_repo_factory) -> None:
    origin = git_repo_factory("origin")
    store = RepositoryStore(tmp_path / "repos")
    ref = _local_ref(store, origin)
    store.clone_or_update(ref)

    _commit(origin, "new.py", "def added():\n    pass\n", "Add new.py")
    store.clone_or_update(ref)

    assert (ref.local_path / "new.py").exists()
    assert store.latest_commit(ref)["message"] == "Add new.py"


def test_update_falls_back_to_secondary_branch(tmp_path: Path, git_repo_factory) -> None:
    origin = git_repo_factory("origin")
    subprocess.run(
        ["git", "-C", str(origin), "branch", "-m", "main", "master"], check=True, capture_output=True
    )
    store = RepositoryStore(tmp_path / "repos")
    ref = _local_ref(store, origin)
    store.clone_or_update(ref)

    _commit(origin, "later.txt", "x\n", "Later")
    store.clone_or_update(ref)

    assert (ref.local_path / "later.txt").exists()


def test_update_failure_keeps_snapshot(tmp_path: Path, git_repo_factory) -> None:
    # A repository without a remote: fetch fails, the snapshot stays.
    store = RepositoryStore(tmp_path)
    git_repo_factory("acme/site", {"keep.md": "still here\n"})
    ref = store.resolve("https://github.com/acme/site")

    store.clone_or_update(ref)

    assert (ref.local_path / "keep.md").read_text(encoding="utf-8") == "still here\n"


def test_clone_failure_removes_partial_directory(tmp_path: Path) -> None:
    store = RepositoryStore(tmp_path / "repos")
    ref = _local_ref(store, tmp_path / "does-not-exist")

    with pytest.raises(CloneFailure):
        store.clone_or_update(ref)

    assert not ref.local_path.exists()


def test_clone_replaces_partial_directory(tmp_path: Path, git_repo_factory) -> None:
    origin = git_repo_factory("origin")
    store = RepositoryStore(tmp_path / "repos")
    ref = _local_ref(store, origin)
    ref.local_path.mkdir(parents=True)
    (ref.local_path / "junk.txt").write_text("partial", encoding="utf-8")

    store.clone_or_update(ref)

    assert ref.is_cloned
    assert not (ref.local_path / "junk.txt").exists()


def test_clone_timeout_is_clone_failure(tmp_path: Path) -> None:
    store = RepositoryStore(tmp_path / "repos", git_timeout=1)
    ref = store.resolve("https://github.com/acme/site")
    with patch(
        "codeground.repos.store.subprocess.run",
        side_effect=subprocess.TimeoutExpired(cmd="git", timeout=1),
    ):
        with pytest.raises(CloneFailure, match="timed out"):
            store.clone_or_update(ref)


def test_git_runs_without_shell_and_without_prompt(tmp_path: Path) -> None:
    store = RepositoryStore(tmp_path / "repos", git_timeout=7)
    ref = store.resolve("https://github.com/acme/site")
    with patch("codeground.repos.store.subprocess.run") as run:
        store.clone_or_update(ref)

    kwargs = run.call_args.kwargs
    assert kwargs["shell"] is False
    assert kwargs["timeout"] == 7
    assert kwargs["env"]["GIT_TERMINAL_PROMPT"] == "0"


# ---------------------------------------------------------------------------
# Inspection and removal
# ---------------------------------------------------------------------------


def test_latest_commit_fields(tmp_path: Path, git_repo_factory) -> None:
    git_repo_factory("acme/site")
    store = RepositoryStore(tmp_path)
    commit = store.latest_commit(store.resolve("acme/site"))

    assert commit is not None
    assert len(commit["hash"]) == 40
    assert commit["message"] == "Initial commit"
    assert commit["author"] == "Test"
    assert commit["date"]


def test_latest_commit_none_when_not_cloned(tmp_path: Path) -> None:
    store = RepositoryStore(tmp_path)
    assert store.latest_commit(store.resolve("acme/site")) is None


def test_remove_clone(tmp_path: Path, git_repo_factory) -> None:
    git_repo_factory("acme/site")
    store = RepositoryStore(tmp_path)
    ref = store.resolve("acme/site")

    assert store.remove_clone(ref) is True
    assert not ref.local_path.exists()
    assert not (tmp_path / "acme").exists()
    assert store.remove_clone(ref) is False


def test_remove_clone_keeps_sibling_clones(tmp_path: Path, git_repo_factory) -> None:
    git_repo_factory("acme/site")
    sibling = git_repo_factory("acme/tool")
    store = RepositoryStore(tmp_path)

    assert store.remove_clone(store.resolve("acme/site")) is True
    assert (sibling / ".git").exists()


# ---------------------------------------------------------------------------
# Credentials
# ---------------------------------------------------------------------------


def test_inject_token_only_for_https(monkeypatch) -> None:
    monkeypatch.setenv("GIT_TOKEN", "ghp_secret")
    assert _inject_token("https://github.com/a/b.git") == "https://ghp_secret@github.com/a/b.git"
    assert _inject_token("/local/path") == "/local/path"


def test_inject_token_without_env_is_noop() -> None:
    assert _inject_token("https://github.com/a/b.git") == "https://github.com/a/b.git"


def test_sanitise_url_hides_credentials() -> None:
    text = "fatal: could not read https://ghp_secret@github.com/a/b.git"
    assert "ghp_secret" not in _sanitise_url(text)
    assert "https://***@github.com/a/b.git" in _sanitise_url(text)
