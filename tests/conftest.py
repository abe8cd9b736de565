"""Shared fixtures: candidate factories and in-memory fakes for external services."""

from contextlib import contextmanager
from typing import List, Optional
from unittest.mock import MagicMock

import pytest

from ragchat.core.types import Candidate, Chunk, RankedCandidate
from ragchat.embeddings.provider import local_embedding
from ragchat.generation.answerer import AnswerSynthesizer
from ragchat.generation.openai_client import LLMResponse
from ragchat.pipeline.chat_pipeline import ChatPipeline, PipelineContext, PipelineOptions
from ragchat.rerank.llm_reranker import LLMReranker
from ragchat.storage.session_store import SessionStore


def make_chunk(
    chunk_id: str,
    content: str = "some content",
    title: str = "Title",
    heading: Optional[str] = None,
    slug: Optional[str] = None,
    document_id: int = 1,
    chunk_index: int = 0,
) -> Chunk:
    return Chunk(
        chunk_id=chunk_id,
        document_id=document_id,
        content=content,
        heading=heading,
        chunk_index=chunk_index,
        title=title,
        slug=slug or f"Web/{title.replace(' ', '_')}",
        source=f"{title.lower().replace(' ', '_')}/index.md",
    )


def make_candidate(chunk_id: str, distance: float, **kw) -> Candidate:
    return Candidate(chunk=make_chunk(chunk_id, **kw), distance=distance)


def make_ranked(chunk_id: str, hybrid: float, rerank: Optional[float] = None, **kw) -> RankedCandidate:
    return RankedCandidate(
        chunk=make_chunk(chunk_id, **kw),
        distance=0.1,
        bm25_score=1.0,
        bm25_norm=0.5,
        vec_sim=0.5,
        hybrid_score=hybrid,
        rerank_score=rerank,
    )


class FakeLLM:
    """Returns queued replies in order; an Exception in the queue is raised instead."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: List[tuple] = []

    def generate(self, system_prompt: str, user_prompt: str, timeout=None) -> LLMResponse:
        self.calls.append((system_prompt, user_prompt, timeout))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return LLMResponse(text=reply)


class FakeVectorStore:
    """Stands in for PGVectorStore: counts connection checkouts/releases."""

    def __init__(self, candidates=None, error: Optional[Exception] = None):
        self.candidates = list(candidates or [])
        self.error = error
        self.checked_out = 0
        self.released = 0
        self.queries = 0

    @contextmanager
    def connect(self):
        self.checked_out += 1
        try:
            yield MagicMock(name="conn")
        finally:
            self.released += 1

    def nearest_chunks(self, conn, query_embedding, limit=10, budget=None):
        self.queries += 1
        if self.error is not None:
            raise self.error
        return self.candidates[:limit]


@pytest.fixture
def closure_candidates() -> List[Candidate]:
    return [
        make_candidate(
            "closures::0",
            0.38,
            title="Closures",
            heading="Lexical scoping",
            content="A closure is the combination of a function bundled together with references to its lexical environment.",
            document_id=1,
        ),
        make_candidate(
            "css-grid::0",
            0.40,
            title="CSS Grid",
            content="The grid layout module lays out items in rows and columns.",
            document_id=2,
        ),
    ]


@pytest.fixture
def embedder():
    emb = MagicMock(name="embedder")
    emb.embed_one.side_effect = lambda text, budget=None: (local_embedding(text, 8), False)
    return emb


@pytest.fixture
def sessions():
    store = MagicMock(spec=SessionStore)
    store.save_exchange.return_value = "11111111-1111-1111-1111-111111111111"
    return store


@pytest.fixture
def make_pipeline(embedder, sessions):
    def _make(store: FakeVectorStore, llm=None, **options) -> ChatPipeline:
        ctx = PipelineContext(
            store=store,
            embedder=embedder,
            reranker=LLMReranker(llm),
            synthesizer=AnswerSynthesizer(llm),
            sessions=sessions,
            options=PipelineOptions(**options),
        )
        return ChatPipeline(ctx)

    return _make
