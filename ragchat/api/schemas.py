from __future__ import annotations
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ragchat.core.types import ChatResult, Citation, SessionSummary, StoredMessage


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChatRequest(_CamelModel):
    # Left loose on purpose so blank/oversized questions get the pipeline's own messages
    question: Optional[Any] = None
    session_id: Optional[str] = Field(None, alias="sessionId")
    new_session: bool = Field(False, alias="newSession")


class CitationOut(_CamelModel):
    id: str
    url: str
    article_title: str = Field(..., alias="articleTitle")
    excerpt: str
    trust_level: str = Field("direct", alias="trustLevel")
    relevance_score: float = Field(..., alias="relevanceScore")

    @classmethod
    def from_citation(cls, c: Citation) -> "CitationOut":
        return cls(
            id=c.id,
            url=c.url,
            article_title=c.article_title,
            excerpt=c.excerpt,
            trust_level=c.trust_level,
            relevance_score=c.relevance_score,
        )


class MessageMetadataOut(_CamelModel):
    model: str
    processing_time: int = Field(..., alias="processingTime")
    confidence: float


class AssistantMessageOut(_CamelModel):
    id: str
    role: str = "assistant"
    content: str
    timestamp: datetime
    citations: List[CitationOut]
    metadata: MessageMetadataOut


class ChatResponse(_CamelModel):
    message: AssistantMessageOut
    citations: List[CitationOut]
    session_id: Optional[str] = Field(None, alias="sessionId")
    persisted: bool = True

    @classmethod
    def from_result(cls, result: ChatResult) -> "ChatResponse":
        citations = [CitationOut.from_citation(c) for c in result.citations]
        m = result.message
        return cls(
            message=AssistantMessageOut(
                id=m.id,
                role=m.role,
                content=m.content,
                timestamp=m.timestamp,
                citations=citations,
                metadata=MessageMetadataOut(
                    model=m.metadata.model,
                    processing_time=m.metadata.processing_time_ms,
                    confidence=m.metadata.confidence,
                ),
            ),
            citations=citations,
            session_id=result.session_id,
            persisted=result.persisted,
        )


class ErrorResponse(BaseModel):
    error: str


class SessionOut(_CamelModel):
    id: str
    title: str
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")

    @classmethod
    def from_summary(cls, s: SessionSummary) -> "SessionOut":
        return cls(id=s.id, title=s.title, created_at=s.created_at, updated_at=s.updated_at)


class SessionListResponse(BaseModel):
    sessions: List[SessionOut]


class StoredMessageOut(_CamelModel):
    id: str
    role: str
    content: str
    created_at: datetime = Field(..., alias="createdAt")
    citations: List[CitationOut]

    @classmethod
    def from_message(cls, m: StoredMessage) -> "StoredMessageOut":
        return cls(
            id=m.id,
            role=m.role,
            content=m.content,
            created_at=m.created_at,
            citations=[CitationOut.from_citation(c) for c in m.citations],
        )


class SessionDetailResponse(BaseModel):
    session: SessionOut
    messages: List[StoredMessageOut]
