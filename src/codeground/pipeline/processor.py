"""Single-repository ingestion: clone → parse → chunk → embed → store.

Stages and their deadlines (``stage_timeout`` = T):

  clone/update   T
  parse          T
  chunk          T / 2
  index init     init_timeout
  per batch      embed T / 2, upsert upsert_timeout

A timeout in the first four stages ends the job as ``timed_out``. A timeout
inside a batch counts as a failed batch, handled by the fail-fast/tolerant
policy like any other batch failure.
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone

from codeground.config import SchedulerCfg
from codeground.db.index import VectorIndex
from codeground.db.models import CodeUnit, EmbeddingPoint
from codeground.errors import BatchFailure, CodegroundError, IndexWriteFailure, StageTimeout
from codeground.ingest.chunker import SemanticChunker
from codeground.ingest.embedder import Embedder
from codeground.ingest.parser import UnitParser
from codeground.pipeline.jobs import IngestionJob, JobResult, JobStatus
from codeground.pipeline.timeouts import with_timeout
from codeground.repos.store import RepositoryRef, RepositoryStore

logger = logging.getLogger(__name__)


class RepositoryProcessor:
    """Run the ingestion stages for one repository at a time.

    Stateless between calls; one instance is shared by all scheduler workers.
    """

    def __init__(
        self,
        store: RepositoryStore,
        parser: UnitParser,
        chunker: SemanticChunker,
        embedder: Embedder,
        index: VectorIndex,
        cfg: SchedulerCfg | None = None,
        collection: str = "code_embeddings",
    ) -> None:
        self.store = store
        self.parser = parser
        self.chunker = chunker
        self.embedder = embedder
        self.index = index
        self.cfg = cfg or SchedulerCfg()
        self.collection = collection

    def process(
        self,
        url: str,
        job: IngestionJob | None = None,
        *,
        incremental: bool | None = None,
        fail_fast: bool | None = None,
    ) -> JobResult:
        """Ingest *url* and return the job result. Never raises.

        Args:
            url: Repository URL in any accepted form.
            job: Job to drive through its states; a fresh one when omitted.
            incremental: Override ``cfg.incremental`` for this run.
            fail_fast: Override ``cfg.fail_fast`` for this run.
        """
        job = job or IngestionJob(repository_url=url)
        if job.status is JobStatus.QUEUED:
            job.start()
        result = JobResult(job_id=job.id, repository_url=url, status=JobStatus.RUNNING)
        incremental = self.cfg.incremental if incremental is None else incremental
        fail_fast = self.cfg.fail_fast if fail_fast is None else fail_fast

        try:
            self._run(url, result, incremental=incremental, fail_fast=fail_fast)
        except StageTimeout as exc:
            return self._finish(job, result, JobStatus.TIMED_OUT, str(exc))
        except CodegroundError as exc:
            return self._finish(job, result, JobStatus.FAILED, str(exc))
        except Exception as exc:  # a worker must survive any job
            logger.exception("Unexpected error while processing %s", url)
            return self._finish(job, result, JobStatus.FAILED, f"{type(exc).__name__}: {exc}")
        return self._finish(job, result, JobStatus.DONE)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _run(self, url: str, result: JobResult, *, incremental: bool, fail_fast: bool) -> None:
        timeout = self.cfg.stage_timeout

        ref = self.store.resolve(url)
        result.owner, result.repo = ref.owner, ref.repo
        logger.info("Processing %s (%s mode)", ref.full_name, "incremental" if incremental else "full")

        self._timed(result, "clone", lambda: self.store.clone_or_update(ref), timeout)
        result.commit = self.store.latest_commit(ref)

        units = self._timed(
            result, "parse", lambda: self.parser.parse_repository(ref.local_path), timeout
        )
        result.units = len(units)

        chunks = self._timed(result, "chunk", lambda: self.chunker.chunk(units), timeout / 2)
        result.chunks = len(chunks)
        logger.info("%s: %d units → %d chunks", ref.full_name, len(units), len(chunks))

        self._timed(result, "index", self.index.initialize, self.cfg.init_timeout)

        scope = {"owner": ref.owner, "repo": ref.repo}
        if not incremental and not self.index.delete_by_filter(self.collection, scope):
            raise IndexWriteFailure(
                f"Could not clear existing points of {ref.full_name} before a full re-ingest"
            )

        produced: set[str] = set()
        started = time.monotonic()
        batch_size = max(1, self.cfg.batch_size)
        total = (len(chunks) + batch_size - 1) // batch_size
        for batch_index, start in enumerate(range(0, len(chunks), batch_size)):
            batch = chunks[start : start + batch_size]
            logger.debug("%s: batch %d/%d", ref.full_name, batch_index + 1, total)
            try:
                ids, fallbacks = self._store_batch(ref, batch, batch_index)
            except BatchFailure as exc:
                result.failed_batches += 1
                logger.warning("%s: %s", ref.full_name, exc)
                if fail_fast:
                    raise
                continue
            produced.update(ids)
            result.points_stored += len(ids)
            result.fallback_embeddings += fallbacks
        result.timings["store"] = round(time.monotonic() - started, 3)

        if incremental and self.cfg.reconcile and result.failed_batches == 0:
            result.deleted_stale = self._reconcile(ref, scope, produced)

    def _store_batch(
        self, ref: RepositoryRef, batch: list[CodeUnit], batch_index: int
    ) -> tuple[list[str], int]:
        """Embed and upsert one batch; return the stored point IDs and the fallback count.

        Raises:
            BatchFailure: If embedding times out or the upsert fails.
        """
        texts = [unit.content for unit in batch]
        try:
            vectors, fallbacks = with_timeout(
                lambda: self.embedder.embed_batch_with_fallbacks(texts),
                self.cfg.stage_timeout / 2,
                "embed",
            )
        except StageTimeout as exc:
            raise BatchFailure(batch_index, str(exc)) from None

        now = datetime.now(timezone.utc).isoformat()
        points = [
            EmbeddingPoint.from_unit(ref.owner, ref.repo, unit, vector, now)
            for unit, vector in zip(batch, vectors)
        ]
        try:
            stored = with_timeout(
                lambda: self.index.upsert(self.collection, points),
                self.cfg.upsert_timeout,
                "upsert",
            )
        except StageTimeout as exc:
            raise BatchFailure(batch_index, str(exc)) from None
        if not stored:
            raise BatchFailure(batch_index, "vector index rejected the upsert")
        return [p.id for p in points], fallbacks

    def _reconcile(self, ref: RepositoryRef, scope: dict[str, str], produced: set[str]) -> int:
        """Delete this repository's points that the current run did not produce."""
        if self.index.is_mock:
            return 0
        stale = self.index.list_ids(self.collection, scope) - produced
        if not stale:
            return 0
        if not self.index.delete_ids(self.collection, sorted(stale)):
            logger.warning("%s: could not delete %d stale point(s)", ref.full_name, len(stale))
            return 0
        logger.info("%s: deleted %d stale point(s)", ref.full_name, len(stale))
        return len(stale)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _timed(result: JobResult, stage: str, fn, seconds: float):
        started = time.monotonic()
        try:
            return with_timeout(fn, seconds, stage)
        finally:
            result.timings[stage] = round(time.monotonic() - started, 3)

    @staticmethod
    def _finish(
        job: IngestionJob, result: JobResult, status: JobStatus, error: str | None = None
    ) -> JobResult:
        if job.status is JobStatus.RUNNING:
            job.transition(status, error)
        result.status = status
        result.error = error
        if error:
            logger.warning("Job %s for %s %s: %s", job.id, result.repository_url, status.value, error)
        else:
            logger.info(
                "Job %s for %s done: %d point(s) stored, %d failed batch(es), "
                "%d stale removed, %d fallback embedding(s)",
                job.id, result.repository_url, result.points_stored,
                result.failed_batches, result.deleted_stale, result.fallback_embeddings,
            )
        return result
