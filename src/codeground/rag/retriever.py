"""Question-time retrieval: ground a question in indexed repository code.

Pipeline for enhance():
  1. Resolve the repository URL to owner/repo; skip if nothing is indexed.
  2. Embed the question and fetch ``limit × 2`` nearest chunks of that repo.
  3. Drop candidates under ``min_similarity`` and mock-labelled hits.
  4. Diversity pass: at most one chunk per file until ``limit`` is reached.
  5. Second pass: another chunk from an already-used file only when it
     scores at least ``min_similarity + diversity_margin``.
  6. Trim to the token budget left after the reserve and the question.

Any failure returns the question unchanged with ``using_repo_context=False``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from codeground.config import RetrievalCfg
from codeground.db.index import VectorIndex
from codeground.db.models import SearchHit
from codeground.ingest.embedder import Embedder
from codeground.rag.budget import estimate_tokens, format_snippet, limit_snippets_to_token_budget
from codeground.repos.urls import extract_repository_url, parse_repository_url

logger = logging.getLogger(__name__)


@dataclass
class EnhancedQuestion:
    """A question, optionally extended with retrieved code snippets.

    Attributes:
        question: The question as asked.
        text: The prompt to send; equals *question* when no context was added.
        using_repo_context: True when at least one snippet was added.
        repository: ``owner/repo`` the snippets came from.
        snippets: The hits included, best first.
        context_tokens: Estimated tokens of the added context.
    """

    question: str
    text: str
    using_repo_context: bool = False
    repository: str | None = None
    snippets: list[SearchHit] = field(default_factory=list)
    context_tokens: int = 0

    @classmethod
    def unchanged(cls, question: str) -> EnhancedQuestion:
        return cls(question=question, text=question)


class Retriever:
    def __init__(
        self,
        index: VectorIndex,
        embedder: Embedder,
        cfg: RetrievalCfg | None = None,
        collection: str = "code_embeddings",
    ) -> None:
        self.index = index
        self.embedder = embedder
        self.cfg = cfg or RetrievalCfg()
        self.collection = collection

    def enhance(
        self, question: str, repository_url: str | None, limit: int | None = None
    ) -> EnhancedQuestion:
        """Return *question* extended with the most relevant code of the repository."""
        if not question or not repository_url:
            return EnhancedQuestion.unchanged(question)
        try:
            return self._enhance(question, repository_url, limit or self.cfg.limit)
        except Exception:  # retrieval must never break the chat path
            logger.exception("Could not enhance question with code from %s", repository_url)
            return EnhancedQuestion.unchanged(question)

    def repository_for(self, question: str, explicit: str | None = None) -> str | None:
        """Pick the repository a question is about.

        An explicit URL wins; otherwise a URL mentioned in the question, then the
        configured default repository when the question refers to "this project".
        """
        if explicit:
            return explicit
        return extract_repository_url(question, self.cfg.default_repository)

    def is_repository_indexed(self, repository_url: str) -> bool:
        parsed = parse_repository_url(repository_url)
        return self.index.count(self.collection, {"owner": parsed.owner, "repo": parsed.repo}) > 0

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _enhance(self, question: str, repository_url: str, limit: int) -> EnhancedQuestion:
        parsed = parse_repository_url(repository_url)
        scope = {"owner": parsed.owner, "repo": parsed.repo}
        full_name = f"{parsed.owner}/{parsed.repo}"

        if self.index.count(self.collection, scope) == 0:
            logger.info("Repository %s is not indexed yet", full_name)
            return EnhancedQuestion.unchanged(question)

        vector = self.embedder.embed(question)
        candidates = self.index.search(self.collection, vector, scope, limit * 2)
        selected = self.select(candidates, limit)
        if not selected:
            logger.info("No code from %s clears similarity %.2f", full_name, self.cfg.min_similarity)
            return EnhancedQuestion.unchanged(question)

        available = self.cfg.token_budget - self.cfg.reserved_tokens - estimate_tokens(question)
        snippets = limit_snippets_to_token_budget(selected, available)
        if not snippets:
            return EnhancedQuestion.unchanged(question)

        context = f"\n\nRELEVANT CODE SEGMENTS FROM {full_name}:\n\n" + "".join(
            format_snippet(i, hit.payload) for i, hit in enumerate(snippets, start=1)
        )
        logger.info("Added %d code segment(s) from %s", len(snippets), full_name)
        return EnhancedQuestion(
            question=question,
            text=f"{question}\n{context}",
            using_repo_context=True,
            repository=full_name,
            snippets=snippets,
            context_tokens=estimate_tokens(context),
        )

    def select(self, candidates: list[SearchHit], limit: int) -> list[SearchHit]:
        """Apply the similarity threshold and the per-file diversity rule.

        *candidates* must be sorted by score, best first.
        """
        relevant = [
            hit for hit in candidates
            if not hit.is_mock and hit.score >= self.cfg.min_similarity
        ]

        selected: list[SearchHit] = []
        seen_paths: set[str] = set()
        for hit in relevant:
            if len(selected) >= limit:
                break
            path = hit.payload.get("path")
            if path not in seen_paths:
                selected.append(hit)
                seen_paths.add(path)

        strong = self.cfg.min_similarity + self.cfg.diversity_margin
        chosen = {hit.id for hit in selected}
        for hit in relevant:
            if len(selected) >= limit:
                break
            if hit.id not in chosen and hit.score >= strong:
                selected.append(hit)
                chosen.add(hit.id)

        selected.sort(key=lambda h: h.score, reverse=True)
        return selected
