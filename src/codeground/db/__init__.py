"""Codeground vector index layer."""

from codeground.db.connection import Database
from codeground.db.index import VectorIndex
from codeground.db.migrations import MIGRATIONS, run_migrations
from codeground.db.models import CodeUnit, EmbeddingPoint, SearchHit, point_id

__all__ = [
    "CodeUnit",
    "Database",
    "EmbeddingPoint",
    "MIGRATIONS",
    "SearchHit",
    "VectorIndex",
    "point_id",
    "run_migrations",
]
