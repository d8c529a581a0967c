"""Which repository files are parsed, and in what order."""

from __future__ import annotations

import re
from pathlib import PurePosixPath

INCLUDE_EXTENSIONS: frozenset[str] = frozenset(
    [
        # JavaScript / TypeScript
        ".js", ".jsx", ".ts", ".tsx", ".mjs", ".cjs",
        # Python
        ".py",
        # Web
        ".html", ".css", ".scss", ".less",
        # Configuration
        ".json", ".yml", ".yaml",
        # Documentation
        ".md", ".mdx",
    ]
)

EXCLUDE_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\.min\.js$"),
    re.compile(r"\.bundle\.js$"),
    re.compile(r"\.(?:test|spec)\.[jt]sx?$"),
    re.compile(r"\.d\.ts$"),
    re.compile(r"(?:^|/)node_modules/"),
    re.compile(r"(?:^|/)\.git/"),
    re.compile(r"(?:^|/)build/"),
    re.compile(r"(?:^|/)dist/"),
    re.compile(r"(?:^|/)public/assets/"),
    re.compile(r"(?:^|/)\.[^/]+"),  # hidden files and directories
    re.compile(r"(?:^|/)(?:package-lock\.json|yarn\.lock)$"),
)

# Directories walked past entirely.
SKIP_DIRECTORIES: frozenset[str] = frozenset(
    ["node_modules", "dist", "build", "__pycache__", "venv", "coverage"]
)

PRIORITY_DIRECTORIES: tuple[str, ...] = (
    "src",
    "app/src",
    "api",
    "components",
    "services",
    "hooks",
    "utils",
    "contexts",
)

_TEST_RE = re.compile(r"(?:^|/)tests?[/_]|(?:^|/)test_|\.test\.|\.spec\.|_test\.py$")


def should_include(rel_path: str) -> bool:
    """True if the repository-relative POSIX *rel_path* should be parsed."""
    suffix = PurePosixPath(rel_path).suffix.lower()
    if suffix not in INCLUDE_EXTENSIONS:
        return False
    return not any(pattern.search(rel_path) for pattern in EXCLUDE_PATTERNS)


def file_priority(rel_path: str) -> float:
    """Score a repository-relative path; higher is parsed (and ranked) first.

    Base 1; +2 under a source directory; -1 for tests; -0.5 for JSON/YAML
    config; +1 for files at most one directory deep.
    """
    path = "/" + rel_path.lstrip("/")
    priority = 1.0

    for directory in PRIORITY_DIRECTORIES:
        if f"/{directory}/" in path:
            priority += 2
            break

    if _TEST_RE.search(rel_path):
        priority -= 1

    if PurePosixPath(rel_path).suffix.lower() in (".json", ".yml", ".yaml"):
        priority -= 0.5

    if len(PurePosixPath(rel_path).parts) <= 2:
        priority += 1

    return priority
