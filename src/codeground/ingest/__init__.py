"""Codeground ingest pipeline: file filters, unit parser, chunker, embedder."""

from codeground.ingest.chunker import SemanticChunker
from codeground.ingest.embedder import Embedder, EmbeddingConfig
from codeground.ingest.parser import UnitParser

__all__ = [
    "Embedder",
    "EmbeddingConfig",
    "SemanticChunker",
    "UnitParser",
]
