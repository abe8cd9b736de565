from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass(frozen=True)
class Chunk:
    chunk_id: str
    document_id: int
    content: str
    heading: Optional[str]
    chunk_index: int
    title: str
    slug: str
    source: str


@dataclass(frozen=True)
class Candidate:
    chunk: Chunk
    distance: float             # pgvector distance: smaller is closer


@dataclass(frozen=True)
class RankedCandidate:
    chunk: Chunk
    distance: float
    bm25_score: float
    bm25_norm: float
    vec_sim: float
    hybrid_score: float
    rerank_score: Optional[float] = None

    @property
    def final_score(self) -> float:
        return self.rerank_score if self.rerank_score is not None else self.hybrid_score


@dataclass(frozen=True)
class Citation:
    id: str
    url: str
    article_title: str
    excerpt: str
    relevance_score: float
    trust_level: str = "direct"


@dataclass(frozen=True)
class EmbeddingResult:
    vectors: List[List[float]]
    degraded: bool = False      # True when the local fallback produced the vectors


@dataclass(frozen=True)
class Synthesis:
    text: str
    used_generation: bool


@dataclass(frozen=True)
class MessageMetadata:
    model: str
    processing_time_ms: int
    confidence: float


@dataclass(frozen=True)
class AssistantMessage:
    id: str
    content: str
    timestamp: datetime
    citations: List[Citation]
    metadata: MessageMetadata
    role: str = "assistant"


@dataclass(frozen=True)
class ChatResult:
    message: AssistantMessage
    citations: List[Citation]
    session_id: Optional[str]
    persisted: bool


@dataclass(frozen=True)
class StoredMessage:
    id: str
    role: str
    content: str
    created_at: datetime
    citations: List[Citation] = field(default_factory=list)


@dataclass(frozen=True)
class SessionSummary:
    id: str
    title: str
    created_at: datetime
    updated_at: datetime
