from __future__ import annotations

import dataclasses
import json
import logging
import math
from typing import Any, Dict, List, Optional, Sequence

from ragchat.core.deadline import RequestBudget, remaining_or
from ragchat.core.errors import RerankDegraded, UpstreamUnavailable
from ragchat.core.types import RankedCandidate
from ragchat.generation.openai_client import OpenAILLM
from ragchat.generation.prompting import RERANK_SYSTEM_PROMPT, build_rerank_prompt

logger = logging.getLogger(__name__)


def _balanced_end(text: str, start: int) -> Optional[int]:
    """Index of the `]` closing the `[` at `start`, ignoring brackets inside JSON strings."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth == 0:
                return i
    return None


def extract_json_array(text: str) -> Optional[List[Any]]:
    """First balanced `[...]` in free text that parses as a JSON list."""
    pos = text.find("[")
    while pos != -1:
        end = _balanced_end(text, pos)
        if end is not None:
            try:
                parsed = json.loads(text[pos : end + 1])
            except ValueError:
                parsed = None
            if isinstance(parsed, list):
                return parsed
        pos = text.find("[", pos + 1)
    return None


def _finite_score(value: Any) -> Optional[float]:
    # json.loads lets NaN and Infinity through; those ids keep their hybrid score
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        score = float(value)
    except OverflowError:
        return None
    return score if math.isfinite(score) else None


def parse_rerank_scores(text: str) -> Dict[str, float]:
    arr = extract_json_array(text or "")
    if arr is None:
        raise RerankDegraded("no JSON array in re-rank reply")

    scores: Dict[str, float] = {}
    for item in arr:
        if not isinstance(item, dict):
            continue
        cid, score = item.get("id"), _finite_score(item.get("score"))
        if isinstance(cid, str) and score is not None:
            scores[cid] = score

    if not scores:
        raise RerankDegraded("re-rank reply contained no usable scores")
    return scores


def _pass_through(candidates: Sequence[RankedCandidate]) -> List[RankedCandidate]:
    return [dataclasses.replace(c, rerank_score=c.hybrid_score) for c in candidates]


class LLMReranker:
    """Second-pass relevance scoring of the hybrid shortlist by a generative model.

    Failure here never fails the request: missing ids keep their hybrid score
    and an unusable reply degrades the whole batch to hybrid order.
    """

    def __init__(self, llm: Optional[OpenAILLM], snippet_chars: int = 600):
        self.llm = llm
        self.snippet_chars = snippet_chars

    def rerank(
        self,
        query: str,
        candidates: Sequence[RankedCandidate],
        budget: Optional[RequestBudget] = None,
    ) -> List[RankedCandidate]:
        if not candidates:
            return []
        if self.llm is None:
            return _pass_through(candidates)

        prompt = build_rerank_prompt(query, candidates, self.snippet_chars)
        try:
            resp = self.llm.generate(RERANK_SYSTEM_PROMPT, prompt, timeout=remaining_or(budget, None))
            scores = parse_rerank_scores(resp.text)
        except (UpstreamUnavailable, RerankDegraded) as e:
            logger.warning(f"Re-ranking degraded to hybrid scores: {e}")
            return _pass_through(candidates)

        missing = [c.chunk.chunk_id for c in candidates if c.chunk.chunk_id not in scores]
        if missing:
            logger.info(f"Re-rank reply skipped {len(missing)} chunk(s); keeping hybrid score for {missing}")

        reranked = [
            dataclasses.replace(c, rerank_score=scores.get(c.chunk.chunk_id, c.hybrid_score))
            for c in candidates
        ]
        reranked.sort(key=lambda c: c.final_score, reverse=True)
        return reranked
