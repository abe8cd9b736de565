from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Postgres / pgvector
    pg_dsn: str = Field(..., alias="DATABASE_URL")  # postgres:// URLs are mapped to the psycopg driver

    # Embeddings (Voyage-compatible /embeddings endpoint)
    embedding_api_key: str = Field(..., alias="VOYAGE_API_KEY")
    embedding_base_url: str = Field("https://api.voyageai.com/v1", alias="VOYAGE_BASE_URL")
    embedding_model: str = Field("voyage-3-large", alias="VOYAGE_EMBEDDING_MODEL")
    embedding_dimensions: int = Field(1536, alias="EMBEDDING_DIMENSIONS")  # must match the pgvector column

    # LLM (OpenAI). No key means no generative capability.
    openai_api_key: Optional[str] = Field(None, alias="OPENAI_API_KEY")
    llm_model: str = Field("gpt-4o-mini", alias="OPENAI_MODEL")
    llm_base_url: Optional[str] = Field(None, alias="OPENAI_BASE_URL")
    retrieval_only_label: str = Field("rag-retrieval-only", alias="RETRIEVAL_ONLY_LABEL")

    # Retrieval / ranking parameters
    retrieval_limit: int = Field(10, alias="RETRIEVAL_LIMIT")
    hybrid_alpha: float = Field(0.6, alias="HYBRID_ALPHA", ge=0.0, le=1.0)  # weight for BM25
    rerank_top_n: int = Field(5, alias="RERANK_TOP_N")

    # Prompt / citation sizes
    max_question_length: int = Field(2000, alias="MAX_QUESTION_LENGTH")
    context_snippet_chars: int = Field(800, alias="CONTEXT_SNIPPET_CHARS")
    rerank_snippet_chars: int = Field(600, alias="RERANK_SNIPPET_CHARS")
    citation_excerpt_chars: int = Field(280, alias="CITATION_EXCERPT_CHARS")
    citation_base_url: str = Field("https://developer.mozilla.org/en-US/docs/", alias="CITATION_BASE_URL")

    # Per-request deadline shared by every network call
    request_timeout_seconds: float = Field(60.0, alias="REQUEST_TIMEOUT_SECONDS")

    @property
    def generation_enabled(self) -> bool:
        return bool(self.openai_api_key)


@lru_cache
def get_settings() -> Settings:
    return Settings()
