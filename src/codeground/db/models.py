"""Domain models shared by the ingest pipeline and the vector index."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Any

UNIT_TYPES: frozenset[str] = frozenset(
    ["file", "function", "arrow_function", "class", "method", "component", "section", "css_rule"]
)


@dataclass
class CodeUnit:
    """A semantic unit of a source file, or a bounded piece of one.

    ``path`` is repository-relative with POSIX separators; lines are 1-based
    and inclusive. Sliding-window pieces carry a ``<type>_segment`` type.
    Any other type outside ``UNIT_TYPES`` raises ValueError.
    """

    type: str
    name: str
    content: str
    path: str
    start_line: int
    end_line: int
    importance: float = 0.0
    is_part: bool = False
    part_index: int | None = None
    part_of: str | None = None
    is_large: bool = False

    def __post_init__(self) -> None:
        base = self.type.removesuffix("_segment")
        if base not in UNIT_TYPES:
            raise ValueError(f"Unknown code unit type '{self.type}'")

    @property
    def line_count(self) -> int:
        return self.content.count("\n") + 1


@dataclass
class EmbeddingPoint:
    id: str
    vector: list[float]
    payload: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_unit(
        cls,
        owner: str,
        repo: str,
        unit: CodeUnit,
        vector: list[float],
        last_updated: str,
    ) -> EmbeddingPoint:
        """Build the stored point for *unit* with its deterministic ID."""
        return cls(
            id=point_id(owner, repo, unit),
            vector=vector,
            payload={
                "owner": owner,
                "repo": repo,
                "path": unit.path,
                "type": unit.type,
                "name": unit.name,
                "content": unit.content,
                "startLine": unit.start_line,
                "endLine": unit.end_line,
                "importance": unit.importance,
                "isPart": unit.is_part,
                "partIndex": unit.part_index,
                "partOf": unit.part_of,
                "lastUpdated": last_updated,
            },
        )


@dataclass
class SearchHit:
    id: str
    score: float
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def is_mock(self) -> bool:
        return bool(self.payload.get("mock"))


def point_id_key(owner: str, repo: str, unit: CodeUnit) -> str:
    """Return the string hashed into a point ID.

    Format: ``<owner>/<repo>-<path>-<type>-<name>-lines<start>-<end>``
    """
    return (
        f"{owner}/{repo}-{unit.path}-{unit.type}-{unit.name}"
        f"-lines{unit.start_line}-{unit.end_line}"
    )


def point_id(owner: str, repo: str, unit: CodeUnit) -> str:
    """MD5 hex digest of :func:`point_id_key`; stable across runs."""
    return hashlib.md5(point_id_key(owner, repo, unit).encode("utf-8")).hexdigest()
