from __future__ import annotations

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Optional

from ragchat.core.deadline import RequestBudget
from ragchat.core.errors import NoCandidates, PersistenceFailure, RequestCancelled, ValidationError
from ragchat.core.types import AssistantMessage, ChatResult, MessageMetadata
from ragchat.embeddings.provider import EmbeddingProvider
from ragchat.generation.answerer import AnswerSynthesizer
from ragchat.generation.citations import build_citations
from ragchat.indexing.pgvector_store import PGVectorStore
from ragchat.rerank.llm_reranker import LLMReranker
from ragchat.retrieval.hybrid import hybrid_rank
from ragchat.storage.session_store import SessionStore

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    VALIDATE = "validate"
    EMBED = "embed"
    RETRIEVE = "retrieve"
    RANK = "rank"
    RERANK = "rerank"
    SYNTHESIZE = "synthesize"
    BUILD_CITATIONS = "build_citations"
    PERSIST = "persist"
    RESPOND = "respond"


def validate_question(raw: Any, max_length: int = 2000) -> str:
    question = raw.strip() if isinstance(raw, str) else ""
    if not question:
        raise ValidationError("Question is required")
    if len(question) > max_length:
        raise ValidationError("Question is too long")
    return question


@dataclass(frozen=True)
class PipelineOptions:
    retrieval_limit: int = 10
    alpha: float = 0.6
    rerank_top_n: int = 5
    max_question_length: int = 2000
    citation_base_url: str = "https://developer.mozilla.org/en-US/docs/"
    citation_excerpt_chars: int = 280
    request_timeout_seconds: float = 60.0
    llm_model: str = "gpt-4o-mini"
    retrieval_only_label: str = "rag-retrieval-only"


@dataclass
class PipelineContext:
    """Every external-service handle one request needs."""

    store: PGVectorStore
    embedder: EmbeddingProvider
    reranker: LLMReranker
    synthesizer: AnswerSynthesizer
    sessions: SessionStore
    options: PipelineOptions


class ChatPipeline:
    """
    Validate -> Embed -> Retrieve -> Rank -> Rerank -> Synthesize ->
    BuildCitations -> Persist -> Respond.

    Strictly sequential per request. Every stage is fatal on error except
    Rerank (degrades inside the reranker) and Persist (the computed answer is
    still returned, flagged `persisted=False`).
    """

    def __init__(self, context: PipelineContext):
        self.ctx = context

    @contextmanager
    def _stage(self, stage: Stage, budget: RequestBudget) -> Iterator[None]:
        budget.check()
        t0 = time.perf_counter()
        try:
            yield
        except (NoCandidates, RequestCancelled) as e:
            logger.info(f"Pipeline stopped at stage={stage.value}: {e}")
            raise
        except Exception:
            logger.error(f"Pipeline failed at stage={stage.value}", exc_info=True)
            raise
        else:
            logger.debug(f"stage={stage.value} took {(time.perf_counter() - t0) * 1000:.1f}ms")

    def answer(
        self,
        question: Any,
        session_id: Optional[str] = None,
        new_session: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> ChatResult:
        opts = self.ctx.options

        # No I/O and no pooled connection before the question is known to be valid
        question = validate_question(question, opts.max_question_length)

        started = time.monotonic()
        asked_at = datetime.now(timezone.utc)
        budget = RequestBudget(opts.request_timeout_seconds, cancel_event=cancel_event)

        with self.ctx.store.connect() as conn:
            with self._stage(Stage.EMBED, budget):
                vector, degraded = self.ctx.embedder.embed_one(question, budget=budget)
                if degraded:
                    logger.warning("Question embedded with the local fallback; semantic ranking is degraded")

            with self._stage(Stage.RETRIEVE, budget):
                candidates = self.ctx.store.nearest_chunks(conn, vector, limit=opts.retrieval_limit, budget=budget)
                if not candidates:
                    raise NoCandidates("No relevant content found to answer this question.")

            with self._stage(Stage.RANK, budget):
                shortlist = hybrid_rank(question, candidates, alpha=opts.alpha)[: opts.rerank_top_n]

            with self._stage(Stage.RERANK, budget):
                final = self.ctx.reranker.rerank(question, shortlist, budget=budget)

            with self._stage(Stage.SYNTHESIZE, budget):
                synthesis = self.ctx.synthesizer.synthesize(question, final, budget=budget)

            with self._stage(Stage.BUILD_CITATIONS, budget):
                citations = build_citations(final, opts.citation_base_url, opts.citation_excerpt_chars)

            processing_ms = int((time.monotonic() - started) * 1000)
            message = AssistantMessage(
                id=str(uuid.uuid4()),
                content=synthesis.text,
                timestamp=datetime.now(timezone.utc),
                citations=citations,
                metadata=MessageMetadata(
                    model=opts.llm_model if synthesis.used_generation else opts.retrieval_only_label,
                    processing_time_ms=processing_ms,
                    confidence=0.8 if citations else 0.5,
                ),
            )

            # The answer exists now; a failed write must not throw it away.
            persisted = True
            resolved_session = session_id
            try:
                resolved_session = self.ctx.sessions.save_exchange(
                    conn,
                    session_id=session_id,
                    new_session=new_session,
                    question=question,
                    asked_at=asked_at,
                    answer=message,
                    citations=citations,
                )
            except PersistenceFailure:
                logger.error(f"Pipeline failed at stage={Stage.PERSIST.value}; returning unsaved answer", exc_info=True)
                persisted = False

        logger.info(
            f"Answered question in {processing_ms}ms "
            f"(candidates={len(candidates)}, citations={len(citations)}, "
            f"generated={synthesis.used_generation}, embedding_degraded={degraded}, persisted={persisted})"
        )
        return ChatResult(message=message, citations=citations, session_id=resolved_session, persisted=persisted)
