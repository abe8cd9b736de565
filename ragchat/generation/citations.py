from __future__ import annotations
import re
from typing import List, Sequence

from ragchat.core.types import Citation, RankedCandidate


_WS_RE = re.compile(r"\s+")


def collapse_whitespace(text: str) -> str:
    return _WS_RE.sub(" ", text or "")


def normalize_snippet(text: str, limit: int) -> str:
    return collapse_whitespace(text)[:limit]


def canonical_url(slug: str, base_url: str) -> str:
    return base_url.rstrip("/") + "/" + (slug or "").lstrip("/")


def build_citations(
    candidates: Sequence[RankedCandidate],
    base_url: str,
    excerpt_chars: int = 280,
) -> List[Citation]:
    """One citation per candidate, in final rank order.

    Chunks from the same document are not merged: two chunks of one article
    yield two citations.
    """
    return [
        Citation(
            id=c.chunk.chunk_id,
            url=canonical_url(c.chunk.slug, base_url),
            article_title=c.chunk.title,
            excerpt=normalize_snippet(c.chunk.content, excerpt_chars),
            trust_level="direct",
            relevance_score=c.final_score,
        )
        for c in candidates
    ]
