"""Known-repository list: the input of every scheduled update run.

File format: one repository URL per line; blank lines and lines starting
with ``#`` are ignored. Saving de-duplicates and writes a header comment.
"""

from __future__ import annotations

import logging
from pathlib import Path

from codeground.errors import InvalidReference
from codeground.repos.urls import normalize_repository_url

logger = logging.getLogger(__name__)

_HEADER = (
    "# Repositories ingested by codeground, one URL per line.\n"
    "# Lines starting with '#' are ignored.\n"
)


class KnownRepositories:
    """Read and write the known-repository list file."""

    def __init__(self, path: Path | str, defaults: list[str] | None = None) -> None:
        self.path = Path(path)
        self.defaults = list(defaults or [])

    def load(self) -> list[str]:
        """Return the listed URLs, creating the file from defaults if missing."""
        if not self.path.exists():
            logger.info("No repository list at %s; writing %d default(s)", self.path, len(self.defaults))
            self.save(self.defaults)
            return _dedup(self.defaults)

        urls = []
        for line in self.path.read_text(encoding="utf-8").splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                urls.append(line)
        return _dedup(urls)

    def save(self, urls: list[str]) -> list[str]:
        """Write *urls* (de-duplicated, order kept) and return what was written."""
        unique = _dedup(u.strip() for u in urls if u and u.strip())
        self.path.parent.mkdir(parents=True, exist_ok=True)
        body = "\n".join(unique)
        self.path.write_text(_HEADER + body + ("\n" if body else ""), encoding="utf-8")
        logger.debug("Saved %d repositories to %s", len(unique), self.path)
        return unique

    def add(self, url: str) -> bool:
        """Add *url* in normalised form. Returns False if it was already listed.

        Raises:
            InvalidReference: If *url* is not a recognised repository URL.
        """
        normalized = normalize_repository_url(url)
        current = self.load()
        if normalized in {_normalize_or_self(u) for u in current}:
            return False
        self.save([*current, normalized])
        return True

    def remove(self, url: str) -> bool:
        """Remove every entry equal to *url* after normalisation."""
        normalized = _normalize_or_self(url)
        current = self.load()
        kept = [u for u in current if _normalize_or_self(u) != normalized]
        if len(kept) == len(current):
            return False
        self.save(kept)
        return True


def _normalize_or_self(url: str) -> str:
    try:
        return normalize_repository_url(url)
    except InvalidReference:
        return url.strip()


def _dedup(urls) -> list[str]:
    seen: dict[str, None] = {}
    for url in urls:
        seen.setdefault(url, None)
    return list(seen)
