from __future__ import annotations
from typing import List, Sequence

from ragchat.core.types import RankedCandidate
from ragchat.generation.citations import normalize_snippet


ANSWER_SYSTEM_PROMPT = """You are an assistant that answers questions using the reference documentation as the primary source when possible.

You are given several relevant document chunks (the CONTEXT). Rules:
1) Prefer to ground your answer in the CONTEXT and cite concepts that clearly appear there.
2) If the CONTEXT does not fully answer the question, you may rely on broader general knowledge to give a helpful answer.
3) Never invent source URLs or quotes that are not present in the CONTEXT.
"""


RERANK_SYSTEM_PROMPT = """You are a specialized re-ranking model. Your task is to rank document chunks by how useful they are for answering the given question.

Consider semantic relevance, specificity, and how directly each chunk helps answer the question.
Return a JSON array of objects of the form {"id": string, "score": number} where a higher score means more relevant.
Only use chunk ids that are provided. Do not invent new ids.
"""


def build_context_block(candidates: Sequence[RankedCandidate], snippet_chars: int = 800) -> str:
    blocks: List[str] = []
    for i, c in enumerate(candidates, start=1):
        ch = c.chunk
        lines = [
            f"Document {i}:",
            f"Title: {ch.title}",
            f"Source: {ch.source} (chunk #{ch.chunk_index})",
        ]
        if ch.heading:
            lines.append(f"Heading: {ch.heading}")
        lines.append("")
        lines.append(normalize_snippet(ch.content, snippet_chars))
        blocks.append("\n".join(lines))
    return "\n\n---\n\n".join(blocks)


def build_answer_prompt(query: str, candidates: Sequence[RankedCandidate], snippet_chars: int = 800) -> str:
    return f"""CONTEXT:
{build_context_block(candidates, snippet_chars)}

QUESTION:
{query}
"""


def build_rerank_prompt(query: str, candidates: Sequence[RankedCandidate], snippet_chars: int = 600) -> str:
    blocks: List[str] = []
    for i, c in enumerate(candidates, start=1):
        ch = c.chunk
        lines = [f"Chunk {i} (id: {ch.chunk_id}):", f"Title: {ch.title}"]
        if ch.heading:
            lines.append(f"Heading: {ch.heading}")
        lines.append(f"Source: {ch.source} (chunk #{ch.chunk_index})")
        lines.append("")
        lines.append(normalize_snippet(ch.content, snippet_chars))
        blocks.append("\n".join(lines))

    chunks_block = "\n\n---\n\n".join(blocks)
    return f"""Question: {query}

Chunks:
{chunks_block}
"""
