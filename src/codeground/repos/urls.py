"""Repository URL parsing, normalisation and detection in free text."""

from __future__ import annotations

import re
from dataclasses import dataclass

from codeground.errors import InvalidReference

KNOWN_HOSTS: tuple[str, ...] = ("github.com", "gitlab.com", "bitbucket.org")

_HOST_RE = "(" + "|".join(re.escape(host) for host in KNOWN_HOSTS) + ")"
_NAME = r"[A-Za-z0-9_.-]+"

_HTTP_RE = re.compile(
    rf"^(?:https?://)?(?:www\.)?{_HOST_RE}/({_NAME})/({_NAME})(?:[/?#].*)?$",
    re.IGNORECASE,
)
_SSH_RE = re.compile(rf"^git@{_HOST_RE}:({_NAME})/({_NAME})/?$", re.IGNORECASE)
_SHORTHAND_RE = re.compile(rf"^({_NAME})/({_NAME})$")
_IN_TEXT_RE = re.compile(
    rf"(?:https?://)?(?:www\.)?{_HOST_RE}/({_NAME})/({_NAME})",
    re.IGNORECASE,
)

# Phrases that refer to the site's own repository.
DEFAULT_REPOSITORY_KEYWORDS: tuple[str, ...] = (
    "portfolio",
    "this project",
    "this app",
    "this website",
)


@dataclass(frozen=True)
class ParsedUrl:
    host: str
    owner: str
    repo: str

    @property
    def url(self) -> str:
        return f"https://{self.host}/{self.owner}/{self.repo}"


def _clean_repo(name: str) -> str:
    name = name.rstrip(".")
    if name.lower().endswith(".git"):
        name = name[:-4]
    return name


def parse_repository_url(url: str) -> ParsedUrl:
    """Split *url* into host, owner and repo.

    Accepts ``https://``/``http://`` URLs (with or without ``www.``), bare
    ``host/owner/repo``, ``git@host:owner/repo.git`` and ``owner/repo``
    shorthand, which is taken to mean GitHub.

    Raises:
        InvalidReference: If *url* matches none of the recognised patterns.
    """
    text = (url or "").strip().rstrip("/")
    for pattern in (_HTTP_RE, _SSH_RE):
        match = pattern.match(text)
        if match:
            host, owner, repo = match.groups()
            repo = _clean_repo(repo)
            if repo:
                return ParsedUrl(host=host.lower(), owner=owner, repo=repo)
    match = _SHORTHAND_RE.match(text)
    if match and "." not in match.group(1):
        repo = _clean_repo(match.group(2))
        if repo:
            return ParsedUrl(host="github.com", owner=match.group(1), repo=repo)
    raise InvalidReference(url)


def normalize_repository_url(url: str) -> str:
    """Return the canonical ``https://host/owner/repo`` form of *url*."""
    return parse_repository_url(url).url


def is_repository_url(url: str) -> bool:
    try:
        parse_repository_url(url)
    except InvalidReference:
        return False
    return True


def extract_repository_url(question: str, default_url: str | None = None) -> str | None:
    """Find the repository a question is about.

    The first recognised repository URL in *question* wins. Otherwise, if the
    question mentions the site itself ("this project", "portfolio", ...),
    *default_url* is returned. Returns None when neither applies.
    """
    if not question:
        return None

    for match in _IN_TEXT_RE.finditer(question):
        host, owner, repo = match.groups()
        repo = _clean_repo(repo)
        if repo:
            return ParsedUrl(host=host.lower(), owner=owner, repo=repo).url

    lowered = question.lower()
    if default_url and any(keyword in lowered for keyword in DEFAULT_REPOSITORY_KEYWORDS):
        return normalize_repository_url(default_url)
    return None
