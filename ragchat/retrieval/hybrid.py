from __future__ import annotations

import math
import re
from typing import Dict, List, Sequence

from rank_bm25 import BM25Okapi

from ragchat.core.types import Candidate, RankedCandidate


_NON_ALNUM_RE = re.compile(r"[^a-z0-9\s]")


def tokenize(text: str) -> List[str]:
    return _NON_ALNUM_RE.sub(" ", (text or "").lower()).split()


class ShortlistBM25(BM25Okapi):
    """
    Okapi BM25 over the retrieved shortlist only (no global index).

    rank_bm25's Okapi idf can go negative and gets clamped with epsilon;
    here idf(t) = ln(1 + (N - df + 0.5) / (df + 0.5)), which is always > 0.
    """

    def _calc_idf(self, nd: Dict[str, int]) -> None:
        for word, freq in nd.items():
            self.idf[word] = math.log(1 + (self.corpus_size - freq + 0.5) / (freq + 0.5))


def bm25_scores(query: str, docs: Sequence[str], k1: float = 1.5, b: float = 0.75) -> List[float]:
    if not docs:
        return []

    corpus = [tokenize(d) for d in docs]
    if not any(corpus):
        return [0.0] * len(docs)

    # Each distinct query term counts once
    q_terms = list(dict.fromkeys(tokenize(query)))
    if not q_terms:
        return [0.0] * len(docs)

    bm25 = ShortlistBM25(corpus, k1=k1, b=b)
    return [float(s) for s in bm25.get_scores(q_terms)]


def normalize(values: Sequence[float]) -> List[float]:
    """Min-max to [0, 1]. A constant (or non-finite) range maps every value to 0.5."""
    if not values:
        return []
    lo, hi = min(values), max(values)
    if not math.isfinite(lo) or not math.isfinite(hi) or hi == lo:
        return [0.5] * len(values)
    span = hi - lo
    return [(v - lo) / span for v in values]


def candidate_text(candidate: Candidate) -> str:
    ch = candidate.chunk
    return " ".join([ch.title or "", ch.heading or "", ch.content or ""]).strip()


def hybrid_rank(query: str, candidates: Sequence[Candidate], alpha: float = 0.6) -> List[RankedCandidate]:
    """
    Blend lexical and vector relevance for an already-retrieved shortlist.

        hybrid = alpha * norm(bm25) + (1 - alpha) * (1 - norm(distance))

    Sorted by hybrid score descending. The sort is stable, so ties keep the
    retrieval (distance) order.
    """
    if not 0.0 <= alpha <= 1.0:
        raise ValueError(f"alpha must be within [0, 1], got {alpha}")
    if not candidates:
        return []

    raw_bm25 = bm25_scores(query, [candidate_text(c) for c in candidates])
    bm25_norm = normalize(raw_bm25)
    vec_sim = [1.0 - d for d in normalize([c.distance for c in candidates])]

    ranked = [
        RankedCandidate(
            chunk=c.chunk,
            distance=c.distance,
            bm25_score=raw_bm25[i],
            bm25_norm=bm25_norm[i],
            vec_sim=vec_sim[i],
            hybrid_score=alpha * bm25_norm[i] + (1.0 - alpha) * vec_sim[i],
        )
        for i, c in enumerate(candidates)
    ]
    ranked.sort(key=lambda r: r.hybrid_score, reverse=True)
    return ranked
