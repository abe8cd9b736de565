from __future__ import annotations
import logging
from typing import Optional, Sequence

from ragchat.core.deadline import RequestBudget, remaining_or
from ragchat.core.types import RankedCandidate, Synthesis
from ragchat.generation.openai_client import OpenAILLM
from ragchat.generation.prompting import ANSWER_SYSTEM_PROMPT, build_answer_prompt

logger = logging.getLogger(__name__)

NO_CONTEXT_ANSWER = "No relevant chunks found to answer this question."


class AnswerSynthesizer:
    def __init__(self, llm: Optional[OpenAILLM], snippet_chars: int = 800):
        self.llm = llm
        self.snippet_chars = snippet_chars

    def synthesize(
        self,
        query: str,
        candidates: Sequence[RankedCandidate],
        budget: Optional[RequestBudget] = None,
    ) -> Synthesis:
        # Retrieval-only mode: hand back the best passage as-is
        if self.llm is None:
            logger.info("No LLM configured; answering with the top chunk verbatim")
            text = candidates[0].chunk.content if candidates else NO_CONTEXT_ANSWER
            return Synthesis(text=text or NO_CONTEXT_ANSWER, used_generation=False)

        user_prompt = build_answer_prompt(query, candidates, self.snippet_chars)
        # Errors propagate: a failed synthesis fails the request.
        resp = self.llm.generate(ANSWER_SYSTEM_PROMPT, user_prompt, timeout=remaining_or(budget, None))
        return Synthesis(text=(resp.text or "").strip(), used_generation=True)
