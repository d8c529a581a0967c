"""Tests for Retriever: selection rules and question enhancement."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from codeground.config import RetrievalCfg
from codeground.db.index import _mock_hits
from codeground.db.models import EmbeddingPoint, SearchHit
from codeground.rag.budget import format_snippet
from codeground.rag.retriever import EnhancedQuestion, Retriever

COLLECTION = "code_embeddings"
REPO_URL = "https://github.com/acme/site"
QUESTION = "How does login work?"


def _hit(pid: str, score: float, path: str, **payload) -> SearchHit:
    return SearchHit(id=pid, score=score, payload={"path": path, "type": "function", "name": pid, **payload})


def _point(pid: str, vector, repo: str = "site", **payload) -> EmbeddingPoint:
    base = {
        "owner": "acme",
        "repo": repo,
        "path": "src/auth.js",
        "type": "function",
        "name": "login",
        "content": "function login(user) {\n  return session.start(user);\n}",
        "startLine": 4,
        "endLine": 6,
    }
    base.update(payload)
    return EmbeddingPoint(id=pid, vector=list(vector), payload=base)


@pytest.fixture
def retriever(index, embedder) -> Retriever:
    return Retriever(index, embedder, RetrievalCfg(), collection=COLLECTION)


# ---------------------------------------------------------------------------
# select()
# ---------------------------------------------------------------------------


def test_select_threshold_diversity_and_strong_second_pass(retriever):
    candidates = [
        _hit("mock", 0.99, "mock/path/file0.js", mock=True),
        _hit("a", 0.95, "x.js"),
        _hit("b", 0.80, "x.js"),
        _hit("c", 0.70, "y.js"),
        _hit("d", 0.60, "z.js"),
    ]
    assert [h.id for h in retriever.select(candidates, 3)] == ["a", "b", "c"]


def test_select_skips_weak_second_chunk_from_same_file(retriever):
    candidates = [_hit("a", 0.95, "x.js"), _hit("b", 0.70, "x.js"), _hit("c", 0.68, "y.js")]
    assert [h.id for h in retriever.select(candidates, 3)] == ["a", "c"]


def test_select_prefers_distinct_files(retriever):
    candidates = [_hit("a", 0.95, "x.js"), _hit("b", 0.90, "x.js"), _hit("c", 0.70, "y.js")]
    assert [h.id for h in retriever.select(candidates, 2)] == ["a", "c"]


def test_select_respects_limit(retriever):
    candidates = [_hit(str(i), 0.9 - i * 0.01, f"{i}.js") for i in range(6)]
    assert len(retriever.select(candidates, 3)) == 3


def test_select_nothing_relevant(retriever):
    assert retriever.select([_hit("a", 0.5, "x.js")], 3) == []


# ---------------------------------------------------------------------------
# enhance()
# ---------------------------------------------------------------------------


def test_enhance_adds_relevant_code(retriever, index, embedder):
    qvec = embedder.embed(QUESTION)
    index.upsert(
        COLLECTION,
        [
            _point("login", qvec),
            _point("far", [-v for v in qvec], path="src/far.js", name="far"),
            _point("elsewhere", qvec, repo="other", path="src/other.js"),
        ],
    )

    enhanced = retriever.enhance(QUESTION, REPO_URL)

    assert enhanced.using_repo_context is True
    assert enhanced.repository == "acme/site"
    assert [h.id for h in enhanced.snippets] == ["login"]
    expected_context = "\n\nRELEVANT CODE SEGMENTS FROM acme/site:\n\n" + format_snippet(
        1, enhanced.snippets[0].payload
    )
    assert enhanced.text == f"{QUESTION}\n{expected_context}"
    assert "Lines: 4-6" in enhanced.text
    assert enhanced.context_tokens > 0


def test_enhance_unchanged_without_repository(retriever):
    enhanced = retriever.enhance(QUESTION, None)
    assert enhanced == EnhancedQuestion.unchanged(QUESTION)
    assert enhanced.text == QUESTION
    assert enhanced.using_repo_context is False


def test_enhance_unchanged_when_not_indexed(retriever):
    enhanced = retriever.enhance(QUESTION, REPO_URL)
    assert enhanced.text == QUESTION
    assert not enhanced.using_repo_context


def test_enhance_unchanged_when_nothing_clears_threshold(retriever, index, embedder):
    qvec = embedder.embed(QUESTION)
    index.upsert(COLLECTION, [_point("far", [-v for v in qvec])])

    enhanced = retriever.enhance(QUESTION, REPO_URL)

    assert enhanced.text == QUESTION
    assert not enhanced.using_repo_context


def test_enhance_truncates_to_token_budget(index, embedder):
    qvec = embedder.embed(QUESTION)
    index.upsert(COLLECTION, [_point("big", qvec, content="x" * 8000)])
    retriever = Retriever(index, embedder, RetrievalCfg(token_budget=700, reserved_tokens=500))

    enhanced = retriever.enhance(QUESTION, REPO_URL)

    (snippet,) = enhanced.snippets
    assert snippet.payload["isTruncated"] is True
    assert len(enhanced.text) < 8000


def test_enhance_ignores_mock_hits():
    index = MagicMock()
    index.count.return_value = 10
    index.search.return_value = _mock_hits({"owner": "acme", "repo": "site"}, 6)
    embedder = MagicMock()
    embedder.embed.return_value = [0.0] * 8

    enhanced = Retriever(index, embedder).enhance(QUESTION, REPO_URL)

    assert enhanced.text == QUESTION
    assert index.search.call_args.args[3] == 6  # limit × 2


def test_enhance_failure_returns_question_unchanged():
    index = MagicMock()
    index.count.return_value = 3
    embedder = MagicMock()
    embedder.embed.side_effect = RuntimeError("provider down")

    enhanced = Retriever(index, embedder).enhance(QUESTION, REPO_URL)

    assert enhanced.text == QUESTION
    assert enhanced.using_repo_context is False


def test_enhance_invalid_repository_returns_unchanged(retriever):
    assert retriever.enhance(QUESTION, "https://example.com/x/y").text == QUESTION


# ---------------------------------------------------------------------------
# Repository resolution
# ---------------------------------------------------------------------------


def test_repository_for_prefers_explicit(index, embedder):
    retriever = Retriever(index, embedder, RetrievalCfg(default_repository="https://github.com/me/site"))
    assert retriever.repository_for("about this project", "https://github.com/x/y") == "https://github.com/x/y"
    assert (
        retriever.repository_for("explain github.com/acme/tool please")
        == "https://github.com/acme/tool"
    )
    assert retriever.repository_for("How is this project built?") == "https://github.com/me/site"
    assert retriever.repository_for("What is a monad?") is None


def test_is_repository_indexed(retriever, index, embedder):
    assert retriever.is_repository_indexed(REPO_URL) is False
    index.upsert(COLLECTION, [_point("p", embedder.embed("x"))])
    assert retriever.is_repository_indexed(REPO_URL) is True
