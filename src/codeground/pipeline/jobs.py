"""Ingestion job records and their state machine."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({JobStatus.DONE, JobStatus.FAILED, JobStatus.TIMED_OUT})

_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: _TERMINAL,
    JobStatus.DONE: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.TIMED_OUT: frozenset(),
}


@dataclass
class IngestionJob:
    """One repository ingestion: ``queued → running → done | failed | timed_out``."""

    repository_url: str
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    status: JobStatus = JobStatus.QUEUED
    start_time: float | None = None
    end_time: float | None = None
    error: str | None = None

    def transition(self, status: JobStatus, error: str | None = None) -> None:
        """Move to *status*.

        Raises:
            ValueError: If the transition is not allowed from the current state.
        """
        if status not in _TRANSITIONS[self.status]:
            raise ValueError(
                f"Illegal job transition {self.status.value} → {status.value} for {self.id}"
            )
        self.status = status
        if status is JobStatus.RUNNING:
            self.start_time = time.time()
        else:
            self.end_time = time.time()
            self.error = error

    def start(self) -> None:
        self.transition(JobStatus.RUNNING)

    @property
    def duration(self) -> float | None:
        if self.start_time is None:
            return None
        return (self.end_time or time.time()) - self.start_time


@dataclass
class JobResult:
    """Outcome of processing one repository."""

    job_id: str
    repository_url: str
    status: JobStatus
    owner: str | None = None
    repo: str | None = None
    units: int = 0
    chunks: int = 0
    points_stored: int = 0
    failed_batches: int = 0
    deleted_stale: int = 0
    fallback_embeddings: int = 0
    commit: dict[str, str] | None = None
    error: str | None = None
    timings: dict[str, float] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status is JobStatus.DONE


@dataclass
class RunReport:
    """Summary of one update_all() run."""

    results: list[JobResult] = field(default_factory=list)
    pending: int = 0
    timed_out: bool = False
    skipped: bool = False

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.ok)
