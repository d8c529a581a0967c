"""Text → vector via LiteLLM, with a deterministic offline fallback.

The mock embedding seeds ``random.Random`` with a 32-bit rolling hash of the
text and L2-normalises the result, so identical text always yields an
identical vector. It only keeps offline and test runs deterministic; it says
nothing about semantic similarity.

Provider errors never propagate: a failed call (single or batch) degrades to
the mock path and increments ``fallback_count``.
"""

from __future__ import annotations

import logging
import math
import os
import random
import threading
from dataclasses import dataclass

import litellm

from codeground.errors import EmbeddingFailure
from codeground.rag.llm_client import provider_env_var

logger = logging.getLogger(__name__)


@dataclass
class EmbeddingConfig:
    """Configuration for embedding generation."""

    model: str = "openai/text-embedding-3-small"
    dimensions: int = 1536
    max_chars: int = 8_000
    mock: bool = False
    num_retries: int = 2


def string_hash(text: str) -> int:
    """32-bit signed rolling hash over UTF-16 code units (``h = h * 31 + c``)."""
    data = text.encode("utf-16-le")
    h = 0
    for i in range(0, len(data), 2):
        h = (h * 31 + (data[i] | data[i + 1] << 8)) & 0xFFFFFFFF
    return h - (1 << 32) if h & 0x80000000 else h


def mock_embedding(text: str, dimensions: int = 1536) -> list[float]:
    """Deterministic unit-length pseudo-embedding of *text*."""
    rng = random.Random(string_hash(text))
    vector = [rng.uniform(-1.0, 1.0) for _ in range(dimensions)]
    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0.0:
        return [1.0 / math.sqrt(dimensions)] * dimensions
    return [v / norm for v in vector]


class Embedder:
    """Embed text with the configured LiteLLM model.

    Falls back to :func:`mock_embedding` when mock mode is configured, when
    the provider's API key is missing, or when the provider call fails.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self._fallbacks = 0
        self._lock = threading.Lock()
        self._warned_no_key = False

    @property
    def fallback_count(self) -> int:
        return self._fallbacks

    @property
    def is_mock(self) -> bool:
        """True when every call will be served by the mock generator."""
        return self.config.mock or not self._has_api_key()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def embed(self, text: str) -> list[float]:
        """Return the embedding of *text* (truncated to ``max_chars``)."""
        text = self._truncate(text)
        if self._use_mock():
            return mock_embedding(text, self.config.dimensions)
        try:
            return self._call_provider([text])[0]
        except EmbeddingFailure as exc:
            self._record_fallback(1, exc)
            return mock_embedding(text, self.config.dimensions)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed *texts* with one provider call; on failure every item is mocked."""
        return self.embed_batch_with_fallbacks(texts)[0]

    def embed_batch_with_fallbacks(self, texts: list[str]) -> tuple[list[list[float]], int]:
        """Like :meth:`embed_batch`, also returning how many vectors are fallbacks.

        Only provider failures count; configured mock mode does not.
        """
        if not texts:
            return [], 0
        truncated = [self._truncate(t) for t in texts]
        if self._use_mock():
            return [mock_embedding(t, self.config.dimensions) for t in truncated], 0
        try:
            return self._call_provider(truncated), 0
        except EmbeddingFailure as exc:
            self._record_fallback(len(truncated), exc)
            return [mock_embedding(t, self.config.dimensions) for t in truncated], len(truncated)

    # ------------------------------------------------------------------
    # Provider
    # ------------------------------------------------------------------

    def _call_provider(self, texts: list[str]) -> list[list[float]]:
        """Call litellm.embedding() and validate the returned vectors.

        Raises:
            EmbeddingFailure: On any provider error or malformed response.
        """
        try:
            response = litellm.embedding(
                model=self.config.model,
                input=texts,
                num_retries=self.config.num_retries,
            )
            vectors = [list(item["embedding"]) for item in response.data]
        except Exception as exc:  # provider errors are downgraded to mock vectors
            raise EmbeddingFailure(f"{type(exc).__name__}: {exc}") from exc

        if len(vectors) != len(texts):
            raise EmbeddingFailure(
                f"Provider returned {len(vectors)} vectors for {len(texts)} inputs"
            )
        for vector in vectors:
            if len(vector) != self.config.dimensions:
                raise EmbeddingFailure(
                    f"Provider returned dimension {len(vector)}, "
                    f"expected {self.config.dimensions}"
                )
        return vectors

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _truncate(self, text: str) -> str:
        text = text or ""
        return text[: self.config.max_chars]

    def _use_mock(self) -> bool:
        if self.config.mock:
            return True
        if not self._has_api_key():
            if not self._warned_no_key:
                self._warned_no_key = True
                logger.warning(
                    "No API key for embedding model %s; using deterministic mock embeddings",
                    self.config.model,
                )
            return True
        return False

    def _has_api_key(self) -> bool:
        env_var = provider_env_var(self.config.model)
        return env_var is None or bool(os.getenv(env_var))

    def _record_fallback(self, count: int, exc: Exception) -> None:
        with self._lock:
            self._fallbacks += count
        logger.warning("Embedding failed for %d text(s), using mock vectors: %s", count, exc)
