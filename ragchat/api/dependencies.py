"""Wiring: one process-wide pipeline context built from settings."""

import threading
from typing import Optional

from ragchat.core.config import Settings, get_settings
from ragchat.embeddings.provider import EmbeddingProvider
from ragchat.generation.answerer import AnswerSynthesizer
from ragchat.generation.openai_client import OpenAILLM
from ragchat.indexing.pgvector_store import PGVectorStore
from ragchat.pipeline.chat_pipeline import ChatPipeline, PipelineContext, PipelineOptions
from ragchat.rerank.llm_reranker import LLMReranker
from ragchat.storage.session_store import SessionStore


def build_context(settings: Settings) -> PipelineContext:
    llm = (
        OpenAILLM(api_key=settings.openai_api_key, model=settings.llm_model, base_url=settings.llm_base_url)
        if settings.generation_enabled
        else None
    )
    return PipelineContext(
        store=PGVectorStore(settings.pg_dsn),
        embedder=EmbeddingProvider(
            api_key=settings.embedding_api_key,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
            base_url=settings.embedding_base_url,
        ),
        reranker=LLMReranker(llm, snippet_chars=settings.rerank_snippet_chars),
        synthesizer=AnswerSynthesizer(llm, snippet_chars=settings.context_snippet_chars),
        sessions=SessionStore(settings.citation_base_url, excerpt_chars=settings.citation_excerpt_chars),
        options=PipelineOptions(
            retrieval_limit=settings.retrieval_limit,
            alpha=settings.hybrid_alpha,
            rerank_top_n=settings.rerank_top_n,
            max_question_length=settings.max_question_length,
            citation_base_url=settings.citation_base_url,
            citation_excerpt_chars=settings.citation_excerpt_chars,
            request_timeout_seconds=settings.request_timeout_seconds,
            llm_model=settings.llm_model,
            retrieval_only_label=settings.retrieval_only_label,
        ),
    )


_context: Optional[PipelineContext] = None
_context_lock = threading.Lock()


def get_pipeline_context() -> PipelineContext:
    # Sync dependencies run on threadpool workers; only one of them may build the engine pool
    global _context
    if _context is None:
        with _context_lock:
            if _context is None:
                _context = build_context(get_settings())
    return _context


def close_pipeline_context() -> None:
    global _context
    with _context_lock:
        ctx, _context = _context, None
    if ctx is not None:
        ctx.store.engine.dispose()


def get_pipeline() -> ChatPipeline:
    return ChatPipeline(get_pipeline_context())


def get_vector_store() -> PGVectorStore:
    return get_pipeline_context().store


def get_session_store() -> SessionStore:
    return get_pipeline_context().sessions
