"""Start-up wiring: build every component once from a CodegroundConfig.

There are no module-level singletons; the CLI (or any host) calls
build_services() and passes the resulting objects around.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from codeground.config import CodegroundConfig
from codeground.db.index import VectorIndex
from codeground.ingest.chunker import SemanticChunker
from codeground.ingest.embedder import Embedder, EmbeddingConfig
from codeground.ingest.parser import UnitParser
from codeground.pipeline.processor import RepositoryProcessor
from codeground.pipeline.scheduler import IngestionScheduler
from codeground.rag.retriever import Retriever
from codeground.repos.known import KnownRepositories
from codeground.repos.store import RepositoryStore


@dataclass
class Services:
    config: CodegroundConfig
    store: RepositoryStore
    known: KnownRepositories
    parser: UnitParser
    chunker: SemanticChunker
    embedder: Embedder
    index: VectorIndex
    processor: RepositoryProcessor
    scheduler: IngestionScheduler
    retriever: Retriever

    def close(self) -> None:
        self.scheduler.stop()
        self.index.close()


def build_services(cfg: CodegroundConfig, base_dir: Path | None = None) -> Services:
    """Construct the grounding subsystem described by *cfg*.

    Relative storage paths and index locations are resolved against
    *base_dir* (default: current directory). Nothing is opened or cloned here;
    the vector index connects lazily on first use.
    """
    base = base_dir if base_dir is not None else Path.cwd()

    store = RepositoryStore(
        _resolve(base, cfg.storage.repos_dir),
        git_timeout=cfg.scheduler.git_timeout,
        primary_branch=cfg.scheduler.primary_branch,
        secondary_branch=cfg.scheduler.secondary_branch,
    )
    known = KnownRepositories(_resolve(base, cfg.storage.repo_list), cfg.storage.default_repos)
    parser = UnitParser()
    chunker = SemanticChunker(cfg.chunking.max_chunk_size, cfg.chunking.overlap)
    embedder = Embedder(
        EmbeddingConfig(
            model=cfg.embedding.model,
            dimensions=cfg.embedding.dimensions,
            max_chars=cfg.embedding.max_chars,
            mock=cfg.embedding.mock,
            num_retries=cfg.embedding.num_retries,
        )
    )
    index = VectorIndex(
        [_location(base, loc) for loc in cfg.vector_db.locations],
        dimensions=cfg.embedding.dimensions,
        collections=cfg.vector_db.collections,
        max_retries=cfg.vector_db.max_retries,
        retry_delay=cfg.vector_db.retry_delay,
        allow_mock=cfg.vector_db.allow_mock,
    )
    collection = cfg.vector_db.code_collection
    processor = RepositoryProcessor(
        store, parser, chunker, embedder, index, cfg.scheduler, collection=collection
    )
    scheduler = IngestionScheduler(processor, known, cfg.scheduler)
    retriever = Retriever(index, embedder, cfg.retrieval, collection=collection)

    return Services(
        config=cfg,
        store=store,
        known=known,
        parser=parser,
        chunker=chunker,
        embedder=embedder,
        index=index,
        processor=processor,
        scheduler=scheduler,
        retriever=retriever,
    )


def _resolve(base: Path, path: str) -> Path:
    p = Path(path).expanduser()
    return p if p.is_absolute() else base / p


def _location(base: Path, location: str) -> str:
    if location == ":memory:":
        return location
    return str(_resolve(base, location))
