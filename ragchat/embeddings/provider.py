from __future__ import annotations

import hashlib
import logging
from typing import List, Optional, Sequence, Tuple

import requests

from ragchat.core.deadline import RequestBudget, remaining_or
from ragchat.core.errors import DeadlineExceeded, UpstreamUnavailable
from ragchat.core.types import EmbeddingResult

logger = logging.getLogger(__name__)

# Rate limited (429) or payment required (402): answer with local vectors instead.
FALLBACK_STATUSES = frozenset({429, 402})


def local_embedding(text: str, dimensions: int) -> List[float]:
    """Deterministic stand-in embedding: sha256 bytes cycled to `dimensions`, mapped to [-1, 1]."""
    digest = hashlib.sha256((text or "").encode("utf-8")).digest()
    return [(digest[i % len(digest)] / 255) * 2 - 1 for i in range(dimensions)]


def fit_dimensions(vector: Sequence[float], dimensions: int) -> List[float]:
    # The pgvector column has a fixed size.
    if len(vector) >= dimensions:
        return [float(x) for x in vector[:dimensions]]
    return [float(x) for x in vector] + [0.0] * (dimensions - len(vector))


class EmbeddingProvider:
    def __init__(
        self,
        api_key: str,
        model: str,
        dimensions: int,
        base_url: str = "https://api.voyageai.com/v1",
        session: Optional[requests.Session] = None,
        default_timeout: float = 30.0,
    ):
        self.api_key = api_key
        self.model = model
        self.dimensions = dimensions
        self.url = base_url.rstrip("/") + "/embeddings"
        self.session = session or requests.Session()
        self.default_timeout = default_timeout

    def embed(self, texts: List[str], budget: Optional[RequestBudget] = None) -> EmbeddingResult:
        """Embed a batch with one service call; local fallback on 429/402."""
        try:
            resp = self.session.post(
                self.url,
                json={"model": self.model, "input": texts},
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=remaining_or(budget, self.default_timeout),
            )
        except requests.Timeout as e:
            raise DeadlineExceeded("embedding request timed out") from e
        except requests.RequestException as e:
            raise UpstreamUnavailable(f"embedding request failed: {e}") from e

        if resp.status_code in FALLBACK_STATUSES:
            logger.warning(
                f"Embedding request failed with {resp.status_code}; "
                f"falling back to local deterministic embeddings. Response: {resp.text[:500]}"
            )
            return EmbeddingResult(
                vectors=[local_embedding(t, self.dimensions) for t in texts],
                degraded=True,
            )

        if not resp.ok:
            raise UpstreamUnavailable(
                f"embedding request failed: {resp.status_code} {resp.reason} - {resp.text[:500]}"
            )

        try:
            payload = resp.json()
        except ValueError as e:
            raise UpstreamUnavailable("embedding response is not JSON") from e

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise UpstreamUnavailable("embedding response missing data array")

        vectors: List[List[float]] = []
        for i, item in enumerate(data):
            emb = item.get("embedding") if isinstance(item, dict) else None
            if not isinstance(emb, list):
                raise UpstreamUnavailable(f"embedding at index {i} is missing or invalid")
            vectors.append(fit_dimensions(emb, self.dimensions))

        return EmbeddingResult(vectors=vectors, degraded=False)

    def embed_one(self, text: str, budget: Optional[RequestBudget] = None) -> Tuple[List[float], bool]:
        result = self.embed([text], budget=budget)
        if not result.vectors:
            raise UpstreamUnavailable("embedding service returned no vectors")
        return result.vectors[0], result.degraded
