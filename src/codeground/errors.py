"""Error taxonomy for the grounding pipeline.

Fatal to a single ingestion job:
  InvalidReference, CloneFailure, StageTimeout, IndexWriteFailure
Recovered inside the pipeline:
  PullFailure (stale clone kept), ParseFailure (file skipped),
  EmbeddingFailure (mock vector), VectorDBUnavailable (mock mode)

None of these escape the public entry points of the processor, scheduler or
retriever; they are turned into job results or an unchanged question.
"""

from __future__ import annotations


class CodegroundError(Exception):
    """Base class for every error raised by codeground."""


class InvalidReference(CodegroundError):
    """A repository URL did not match any recognised host pattern."""

    def __init__(self, url: str) -> None:
        super().__init__(f"Not a recognised repository URL: {url!r}")
        self.url = url


class CloneFailure(CodegroundError):
    """git clone failed; the partial clone directory has been removed."""


class PullFailure(CodegroundError):
    """git fetch/pull failed on an existing clone."""


class ParseFailure(CodegroundError):
    """A single file could not be read or parsed."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Could not parse {path}: {reason}")
        self.path = path
        self.reason = reason


class EmbeddingFailure(CodegroundError):
    """The embedding provider failed or returned an unusable vector."""


class VectorDBUnavailable(CodegroundError):
    """No vector index location could be opened and mock mode is disabled."""


class StageTimeout(CodegroundError):
    """A pipeline stage exceeded its deadline."""

    def __init__(self, stage: str, seconds: float) -> None:
        super().__init__(f"Stage '{stage}' timed out after {seconds:g}s")
        self.stage = stage
        self.seconds = seconds


class BatchFailure(CodegroundError):
    """An embed+store batch could not be written to the vector index."""

    def __init__(self, batch_index: int, reason: str) -> None:
        super().__init__(f"Batch {batch_index} failed: {reason}")
        self.batch_index = batch_index
        self.reason = reason


class IndexWriteFailure(CodegroundError):
    """The vector index refused a write that the job cannot continue without."""
