from __future__ import annotations
from dataclasses import dataclass
from typing import Optional

import openai
from openai import OpenAI

from ragchat.core.errors import DeadlineExceeded, UpstreamUnavailable


@dataclass
class LLMResponse:
    text: str


class OpenAILLM:
    def __init__(self, api_key: str, model: str, base_url: Optional[str] = None):
        # Retries are off: every call already runs against the request deadline.
        self.client = OpenAI(api_key=api_key, base_url=base_url, max_retries=0)
        self.model = model

    def generate(self, system_prompt: str, user_prompt: str, timeout: Optional[float] = None) -> LLMResponse:
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0.0,
                timeout=timeout,
            )
        except openai.APITimeoutError as e:
            raise DeadlineExceeded("LLM call timed out") from e
        except openai.APIError as e:
            raise UpstreamUnavailable(f"LLM call failed: {e.__class__.__name__}") from e

        if not resp.choices:
            raise UpstreamUnavailable("LLM returned no choices")
        return LLMResponse(text=resp.choices[0].message.content or "")
