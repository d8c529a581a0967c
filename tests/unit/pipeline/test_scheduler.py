"""Tests for IngestionScheduler: bounded workers, runs, cancellation, recurrence."""

from __future__ import annotations

import threading
import time
from unittest.mock import MagicMock

import pytest

from codeground.config import SchedulerCfg
from codeground.pipeline.jobs import JobResult, JobStatus
from codeground.pipeline.scheduler import IngestionScheduler
from codeground.repos.known import KnownRepositories


class FakeProcessor:
    """Records calls and tracks how many jobs run at once.

    Jobs block on *gate* when given; URLs containing ``fail`` fail.
    """

    def __init__(self, gate: threading.Event | None = None, delay: float = 0.0) -> None:
        self.gate = gate
        self.delay = delay
        self.calls: list[tuple[str, dict]] = []
        self.active = 0
        self.max_active = 0
        self.started = threading.Event()
        self._lock = threading.Lock()

    def process(self, url, job=None, **options):
        job.start()
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            self.calls.append((url, options))
        self.started.set()
        if self.gate is not None:
            self.gate.wait(5)
        time.sleep(self.delay)
        with self._lock:
            self.active -= 1
        status = JobStatus.FAILED if "fail" in url else JobStatus.DONE
        job.transition(status, "failed" if status is JobStatus.FAILED else None)
        return JobResult(job_id=job.id, repository_url=url, status=status)


def _urls(n: int) -> list[str]:
    return [f"https://github.com/acme/repo{i}" for i in range(n)]


def _wait_for(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def gate():
    event = threading.Event()
    yield event
    event.set()


# ---------------------------------------------------------------------------
# update_all
# ---------------------------------------------------------------------------


def test_update_all_processes_every_url_within_concurrency():
    processor = FakeProcessor(delay=0.02)
    scheduler = IngestionScheduler(processor, cfg=SchedulerCfg(concurrency=2))

    report = scheduler.update_all(max_wait=5, urls=_urls(6))

    assert len(report.results) == 6
    assert report.succeeded == 6
    assert report.pending == 0
    assert report.timed_out is False
    assert sorted(url for url, _ in processor.calls) == sorted(_urls(6))
    assert processor.max_active <= 2
    assert scheduler.is_processing is False


def test_update_all_reads_known_repositories(tmp_path):
    known = KnownRepositories(tmp_path / "known.txt")
    known.save(_urls(2))
    processor = FakeProcessor()
    scheduler = IngestionScheduler(processor, known_repos=known)

    report = scheduler.update_all(max_wait=5)

    assert {r.repository_url for r in report.results} == set(_urls(2))


def test_update_all_without_repositories():
    scheduler = IngestionScheduler(FakeProcessor())
    report = scheduler.update_all(max_wait=1)
    assert report.results == []
    assert report.skipped is False


def test_update_all_reports_failures():
    scheduler = IngestionScheduler(FakeProcessor())
    report = scheduler.update_all(
        max_wait=5, urls=["https://github.com/acme/ok", "https://github.com/acme/fail"]
    )
    assert report.succeeded == 1
    assert report.failed == 1


def test_update_all_passes_options_to_processor():
    processor = FakeProcessor()
    scheduler = IngestionScheduler(processor)

    scheduler.update_all(max_wait=5, urls=_urls(1), incremental=False, fail_fast=True)

    assert processor.calls[0][1] == {"incremental": False, "fail_fast": True}


def test_concurrent_update_all_is_skipped(gate):
    processor = FakeProcessor(gate=gate)
    scheduler = IngestionScheduler(processor)
    reports = []
    runner = threading.Thread(target=lambda: reports.append(scheduler.update_all(max_wait=5, urls=_urls(1))))
    runner.start()
    assert processor.started.wait(3)

    second = scheduler.update_all(max_wait=1, urls=_urls(1))

    gate.set()
    runner.join(5)
    assert second.skipped is True
    assert second.results == []
    assert len(reports[0].results) == 1
    assert len(processor.calls) == 1


def test_update_all_times_out_with_pending_jobs(gate):
    processor = FakeProcessor(gate=gate)
    scheduler = IngestionScheduler(processor, cfg=SchedulerCfg(concurrency=1))

    report = scheduler.update_all(max_wait=0.2, urls=_urls(2))

    assert report.timed_out is True
    assert report.pending == 2
    assert report.results == []
    assert scheduler.is_processing is False


def test_results_only_cover_this_run():
    scheduler = IngestionScheduler(FakeProcessor())
    scheduler.update_all(max_wait=5, urls=_urls(2))
    report = scheduler.update_all(max_wait=5, urls=_urls(1))
    assert len(report.results) == 1
    assert len(scheduler.results) == 3


# ---------------------------------------------------------------------------
# Workers and cancellation
# ---------------------------------------------------------------------------


def test_start_workers_respects_ceiling(gate):
    processor = FakeProcessor(gate=gate)
    scheduler = IngestionScheduler(processor)
    for url in _urls(5):
        scheduler.enqueue(url)

    assert scheduler.start_workers(2) == 2
    assert scheduler.start_workers(2) == 0
    assert _wait_for(lambda: processor.active == 2)

    gate.set()
    assert scheduler.wait(max_wait=5)
    assert len(scheduler.results) == 5
    assert processor.max_active == 2


def test_start_workers_with_empty_queue():
    assert IngestionScheduler(FakeProcessor()).start_workers(3) == 0


def test_cancel_all_drops_queue_and_discards_running_results(gate):
    processor = FakeProcessor(gate=gate)
    scheduler = IngestionScheduler(processor)
    for url in _urls(3):
        scheduler.enqueue(url)
    scheduler.start_workers(1)
    assert processor.started.wait(3)

    dropped = scheduler.cancel_all()
    gate.set()
    assert _wait_for(lambda: processor.active == 0)
    time.sleep(0.05)

    assert dropped == 3
    assert scheduler.snapshot() == {
        "queued": 0,
        "active": 0,
        "completed": 0,
        "is_processing": False,
    }
    assert len(processor.calls) == 1


def test_update_all_after_cancel_with_job_in_flight(gate):
    processor = FakeProcessor(gate=gate)
    scheduler = IngestionScheduler(processor, cfg=SchedulerCfg(concurrency=1))
    scheduler.enqueue(_urls(1)[0])
    scheduler.start_workers()
    assert processor.started.wait(3)
    scheduler.cancel_all()

    release = threading.Timer(0.3, gate.set)
    release.start()
    try:
        report = scheduler.update_all(max_wait=5, urls=["https://github.com/acme/next"])
    finally:
        release.cancel()

    assert report.timed_out is False
    assert report.pending == 0
    assert [r.repository_url for r in report.results] == ["https://github.com/acme/next"]


def test_finished_workers_leave_the_pool():
    scheduler = IngestionScheduler(FakeProcessor(), cfg=SchedulerCfg(concurrency=1))
    scheduler.update_all(max_wait=5, urls=_urls(1))
    assert _wait_for(lambda: not scheduler._workers)


def test_process_repository_records_result():
    scheduler = IngestionScheduler(FakeProcessor())
    result = scheduler.process_repository(_urls(1)[0], incremental=True)

    assert result.ok
    assert scheduler.results == [result]
    assert scheduler.active_jobs == {}


def test_wait_returns_true_when_idle():
    assert IngestionScheduler(FakeProcessor()).wait(max_wait=0)


# ---------------------------------------------------------------------------
# Recurring updates
# ---------------------------------------------------------------------------


def test_recurring_runs_repeat_until_stopped(tmp_path):
    known = KnownRepositories(tmp_path / "known.txt")
    known.save(_urls(1))
    processor = FakeProcessor()
    scheduler = IngestionScheduler(processor, known_repos=known)

    scheduler.start_recurring(initial_delay=0, interval=0.05)
    try:
        assert _wait_for(lambda: len(processor.calls) >= 2)
    finally:
        scheduler.stop()

    assert scheduler._recurring is None
    calls = len(processor.calls)
    time.sleep(0.15)
    assert len(processor.calls) == calls


def test_recurring_loop_survives_failed_run():
    known = MagicMock()
    known.load.side_effect = [RuntimeError("disk gone"), _urls(1), _urls(1), _urls(1)]
    processor = FakeProcessor()
    scheduler = IngestionScheduler(processor, known_repos=known)

    scheduler.start_recurring(initial_delay=0, interval=0.05)
    try:
        assert _wait_for(lambda: len(processor.calls) >= 1)
    finally:
        scheduler.stop()

    assert scheduler.is_processing is False


def test_stop_before_initial_delay_never_runs(tmp_path):
    known = KnownRepositories(tmp_path / "known.txt")
    known.save(_urls(1))
    processor = FakeProcessor()
    scheduler = IngestionScheduler(processor, known_repos=known)

    scheduler.start_recurring(initial_delay=10, interval=10)
    scheduler.stop()

    assert processor.calls == []
