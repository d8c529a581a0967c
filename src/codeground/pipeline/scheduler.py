"""Supervised background ingestion with bounded concurrency.

One IngestionScheduler is built at start-up and owns all scheduling state:

  queue         FIFO of queued IngestionJobs
  active_jobs   job id → running IngestionJob
  results       finished JobResults, in completion order
  is_processing True while update_all() runs; a second call is skipped

Worker threads pop jobs while the queue is non-empty; the number of workers
is the concurrency ceiling. cancel_all() bumps a generation counter: workers
of an older generation stop taking jobs, drop whatever they finish and no
longer count toward the ceiling.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Any

from codeground.config import SchedulerCfg
from codeground.pipeline.jobs import IngestionJob, JobResult, RunReport
from codeground.pipeline.processor import RepositoryProcessor
from codeground.repos.known import KnownRepositories

logger = logging.getLogger(__name__)


class IngestionScheduler:
    def __init__(
        self,
        processor: RepositoryProcessor,
        known_repos: KnownRepositories | None = None,
        cfg: SchedulerCfg | None = None,
    ) -> None:
        self.processor = processor
        self.known_repos = known_repos
        self.cfg = cfg or SchedulerCfg()

        self.queue: deque[IngestionJob] = deque()
        self.active_jobs: dict[str, IngestionJob] = {}
        self.results: list[JobResult] = []
        self.is_processing = False

        self._lock = threading.Lock()
        self._generation = 0
        self._workers: dict[threading.Thread, int] = {}
        self._stop = threading.Event()
        self._recurring: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Queueing
    # ------------------------------------------------------------------

    def enqueue(self, url: str) -> IngestionJob:
        job = IngestionJob(repository_url=url)
        with self._lock:
            self.queue.append(job)
        logger.debug("Queued %s as job %s", url, job.id)
        return job

    def process_repository(self, url: str, **options: Any) -> JobResult:
        """Process *url* on the calling thread, tracked like a worker job.

        *options* (``incremental``, ``fail_fast``) are passed to the processor.
        """
        job = IngestionJob(repository_url=url)
        with self._lock:
            self.active_jobs[job.id] = job
            generation = self._generation
        result = self.processor.process(url, job, **options)
        self._record(job, result, generation)
        return result

    # ------------------------------------------------------------------
    # Workers
    # ------------------------------------------------------------------

    def start_workers(self, n: int | None = None, **options: Any) -> int:
        """Top the worker pool up to *n* threads (default ``concurrency``).

        Returns the number of threads started. Workers exit when the queue is
        empty.
        """
        ceiling = max(1, n if n is not None else self.cfg.concurrency)
        with self._lock:
            generation = self._generation
            current = sum(1 for g in self._workers.values() if g == generation)
            wanted = min(ceiling - current, len(self.queue))
            started = []
            for _ in range(max(0, wanted)):
                thread = threading.Thread(
                    target=self._work,
                    args=(generation, options),
                    name=f"ingest-worker-{current + len(started) + 1}",
                    daemon=True,
                )
                started.append(thread)
            for thread in started:
                self._workers[thread] = generation
        for thread in started:
            thread.start()
        return len(started)

    def _work(self, generation: int, options: dict[str, Any]) -> None:
        while True:
            with self._lock:
                if generation != self._generation or not self.queue:
                    self._workers.pop(threading.current_thread(), None)
                    return
                job = self.queue.popleft()
                self.active_jobs[job.id] = job
            result = self.processor.process(job.repository_url, job, **options)
            self._record(job, result, generation)

    def _record(self, job: IngestionJob, result: JobResult, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                logger.info("Discarding result of cancelled job %s", job.id)
                return
            self.active_jobs.pop(job.id, None)
            self.results.append(result)

    def wait(self, max_wait: float | None = None, poll_interval: float = 0.1) -> bool:
        """Block until the queue and the active set are empty.

        Returns False when *max_wait* (default ``cfg.max_wait``) elapses first.
        """
        max_wait = self.cfg.max_wait if max_wait is None else max_wait
        deadline = time.monotonic() + max_wait
        while True:
            with self._lock:
                if not self.queue and not self.active_jobs:
                    return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(poll_interval)

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def update_all(
        self,
        max_wait: float | None = None,
        urls: list[str] | None = None,
        **options: Any,
    ) -> RunReport:
        """Ingest every known repository (or *urls*) and wait for the run.

        Returns a report with the results of this run, the number of jobs
        still queued or running, and whether the wait timed out. A call made
        while another run is in progress returns a report with ``skipped``.
        """
        with self._lock:
            if self.is_processing:
                logger.warning("Update already in progress; skipping")
                return RunReport(skipped=True)
            self.is_processing = True

        try:
            if urls is None:
                urls = self.known_repos.load() if self.known_repos is not None else []
            if not urls:
                logger.info("No repositories to update")
                return RunReport()

            job_ids = {self.enqueue(url).id for url in urls}
            logger.info("Updating %d repositories", len(job_ids))
            self.start_workers(**options)
            finished = self.wait(max_wait)

            with self._lock:
                results = [r for r in self.results if r.job_id in job_ids]
                pending = sum(1 for j in self.queue if j.id in job_ids) + sum(
                    1 for jid in self.active_jobs if jid in job_ids
                )
            if not finished:
                logger.warning("Update run timed out with %d job(s) still pending", pending)
            return RunReport(results=results, pending=pending, timed_out=not finished)
        finally:
            with self._lock:
                self.is_processing = False

    def cancel_all(self) -> int:
        """Drop queued jobs and stop tracking running ones.

        Running jobs are not interrupted; their results are discarded.
        Returns the number of jobs dropped.
        """
        with self._lock:
            dropped = len(self.queue) + len(self.active_jobs)
            self._generation += 1
            self.queue.clear()
            self.active_jobs.clear()
        if dropped:
            logger.info("Cancelled %d job(s)", dropped)
        return dropped

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "queued": len(self.queue),
                "active": len(self.active_jobs),
                "completed": len(self.results),
                "is_processing": self.is_processing,
            }

    # ------------------------------------------------------------------
    # Recurring updates
    # ------------------------------------------------------------------

    def start_recurring(
        self, initial_delay: float | None = None, interval: float | None = None
    ) -> None:
        """Run update_all() after *initial_delay*, then every *interval* seconds."""
        initial_delay = self.cfg.initial_delay if initial_delay is None else initial_delay
        interval = self.cfg.update_interval if interval is None else interval
        if self._recurring is not None and self._recurring.is_alive():
            return
        self._stop.clear()
        self._recurring = threading.Thread(
            target=self._recur,
            args=(initial_delay, interval),
            name="ingest-recurring",
            daemon=True,
        )
        self._recurring.start()
        logger.info(
            "Recurring updates every %gs (first in %gs)", interval, initial_delay
        )

    def _recur(self, initial_delay: float, interval: float) -> None:
        if self._stop.wait(initial_delay):
            return
        while True:
            if self.is_processing:
                logger.info("Previous update still running; skipping this tick")
            else:
                try:
                    report = self.update_all()
                    logger.info(
                        "Update run finished: %d ok, %d failed, %d pending",
                        report.succeeded, report.failed, report.pending,
                    )
                except Exception:  # keep the loop alive for the next tick
                    logger.exception("Update run failed")
            if self._stop.wait(interval):
                return

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the recurring loop and cancel outstanding work."""
        self._stop.set()
        self.cancel_all()
        if self._recurring is not None:
            self._recurring.join(timeout=timeout)
            self._recurring = None
