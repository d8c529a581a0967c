"""Local clones of remote repositories.

Security requirements:
- shell=False always (no command injection).
- GIT_TOKEN injected into the HTTPS clone URL in-memory; never logged,
  never in error output.
- Every git call has a timeout and runs with GIT_TERMINAL_PROMPT=0 so a
  credential prompt cannot hang a worker.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
import subprocess
import threading
import urllib.parse
from dataclasses import dataclass
from pathlib import Path

from codeground.errors import CloneFailure, PullFailure
from codeground.repos.urls import parse_repository_url

logger = logging.getLogger(__name__)

_CRED_RE = re.compile(r"(https?://)([^@/]+@)", re.IGNORECASE)


def _sanitise_url(text: str) -> str:
    """Remove embedded credentials from URLs in *text*."""
    return _CRED_RE.sub(r"\1***@", text)


@dataclass
class RepositoryRef:
    """A repository and its local clone location.

    Identity is ``(owner, repo)``; ``local_path`` never changes for the
    lifetime of the clone. Clones live at ``<repos_dir>/<owner>/<repo>``, so
    ``a-b/c`` and ``a/b-c`` never share a directory.
    """

    url: str
    owner: str
    repo: str
    local_path: Path
    clone_url: str
    host: str = "github.com"

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    @property
    def is_cloned(self) -> bool:
        return (self.local_path / ".git").exists()


class RepositoryStore:
    """Resolve repository URLs and keep their local clones current."""

    def __init__(
        self,
        repos_dir: Path | str,
        *,
        git_timeout: float = 120.0,
        primary_branch: str = "main",
        secondary_branch: str = "master",
    ) -> None:
        self.repos_dir = Path(repos_dir)
        self.git_timeout = git_timeout
        self.primary_branch = primary_branch
        self.secondary_branch = secondary_branch
        self._locks: dict[tuple[str, str], threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(self, url: str) -> RepositoryRef:
        """Return the RepositoryRef for *url* without touching the filesystem.

        Raises:
            InvalidReference: If *url* is not on a recognised host.
        """
        parsed = parse_repository_url(url)
        return RepositoryRef(
            url=parsed.url,
            owner=parsed.owner,
            repo=parsed.repo,
            local_path=self.repos_dir / parsed.owner / parsed.repo,
            clone_url=f"{parsed.url}.git",
            host=parsed.host,
        )

    # ------------------------------------------------------------------
    # Clone / update
    # ------------------------------------------------------------------

    def clone_or_update(self, ref: RepositoryRef) -> RepositoryRef:
        """Clone *ref* if there is no local clone, otherwise fetch and pull.

        Pull failures are logged and the existing snapshot is kept.

        Raises:
            CloneFailure: If a fresh clone fails; the partial directory is removed.
        """
        with self._lock_for(ref):
            if ref.is_cloned:
                self._update(ref)
            else:
                self._clone(ref)
        return ref

    def _clone(self, ref: RepositoryRef) -> None:
        if ref.local_path.exists():
            logger.warning("Removing partial clone at %s", ref.local_path)
            shutil.rmtree(ref.local_path, ignore_errors=True)
        ref.local_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info("Cloning %s into %s", ref.full_name, ref.local_path)
        try:
            self._git(["clone", "--", _inject_token(ref.clone_url), str(ref.local_path)])
        except subprocess.CalledProcessError as exc:
            shutil.rmtree(ref.local_path, ignore_errors=True)
            raise CloneFailure(
                f"git clone failed for {_sanitise_url(ref.clone_url)}: "
                f"{_sanitise_url((exc.stderr or '').strip())}"
            ) from None
        except subprocess.TimeoutExpired:
            shutil.rmtree(ref.local_path, ignore_errors=True)
            raise CloneFailure(
                f"git clone timed out after {self.git_timeout:g}s for "
                f"{_sanitise_url(ref.clone_url)}"
            ) from None
        except OSError as exc:
            shutil.rmtree(ref.local_path, ignore_errors=True)
            raise CloneFailure(f"Could not run git: {exc}") from None

    def _update(self, ref: RepositoryRef) -> None:
        try:
            self._pull(ref)
        except PullFailure as exc:
            logger.warning("Keeping previous snapshot of %s: %s", ref.full_name, exc)

    def _pull(self, ref: RepositoryRef) -> None:
        """Fetch, then pull the primary branch, falling back to the secondary.

        Raises:
            PullFailure: If fetch fails or neither branch can be pulled.
        """
        cwd = ref.local_path
        try:
            self._git(["fetch", "--quiet"], cwd=cwd)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as exc:
            raise PullFailure(f"git fetch failed: {_describe(exc)}") from None

        errors: list[str] = []
        for branch in (self.primary_branch, self.secondary_branch):
            try:
                self._git(["pull", "--quiet", "origin", branch], cwd=cwd)
                logger.info("Updated %s from origin/%s", ref.full_name, branch)
                return
            except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as exc:
                errors.append(f"{branch}: {_describe(exc)}")
        raise PullFailure("git pull failed (" + "; ".join(errors) + ")")

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def latest_commit(self, ref: RepositoryRef) -> dict[str, str] | None:
        """Return hash, date, message and author of HEAD, or None."""
        if not ref.is_cloned:
            return None
        try:
            out = self._git(
                ["log", "-1", "--format=%H%x1f%cI%x1f%s%x1f%an"], cwd=ref.local_path
            )
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError):
            return None
        parts = out.strip().split("\x1f")
        if len(parts) != 4:
            return None
        return dict(zip(("hash", "date", "message", "author"), parts))

    def remove_clone(self, ref: RepositoryRef) -> bool:
        """Delete the local clone of *ref*. Returns False if there was none."""
        with self._lock_for(ref):
            if not ref.local_path.exists():
                return False
            shutil.rmtree(ref.local_path, ignore_errors=True)
            owner_dir = ref.local_path.parent
            if owner_dir != self.repos_dir and not any(owner_dir.iterdir()):
                owner_dir.rmdir()
            return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _git(self, args: list[str], cwd: Path | None = None) -> str:
        env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            shell=False,
            check=True,
            capture_output=True,
            text=True,
            timeout=self.git_timeout,
            env=env,
        )
        return result.stdout

    def _lock_for(self, ref: RepositoryRef) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault((ref.owner, ref.repo), threading.Lock())


def _inject_token(url: str) -> str:
    """Inject GIT_TOKEN into an HTTPS/HTTP URL for private repo access.

    The modified URL is only passed to git and never logged.
    """
    token = os.environ.get("GIT_TOKEN", "")
    if not token or not url.startswith(("https://", "http://")):
        return url
    parsed = urllib.parse.urlparse(url)
    return parsed._replace(netloc=f"{token}@{parsed.netloc}").geturl()


def _describe(exc: BaseException) -> str:
    if isinstance(exc, subprocess.CalledProcessError):
        return _sanitise_url((exc.stderr or "").strip()) or f"exit status {exc.returncode}"
    if isinstance(exc, subprocess.TimeoutExpired):
        return f"timed out after {exc.timeout:g}s"
    return str(exc)
