# =============================================================================
# Answer Synthesis — Grounded Generation with Numbered Sources
# =============================================================================
#
# Retrieved chunks are presented to the chat model as [1], [2], ... with
# file and page, so the answer can cite them. With no chunks the model is
# still asked, and told that no project documents matched.
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass

from grooshub.rag.retriever import RetrievedChunk
from grooshub.services.llm import LLMProvider
from grooshub.services.quota import UsageMeter

logger = logging.getLogger(__name__)

GROUNDED_SYSTEM = (
    "You are GroosHub's assistant for real-estate development projects. "
    "Answer the user's question using the provided context from the "
    "project's documents.\n\n"
    "Rules:\n"
    "- Base your answer on the provided context\n"
    "- Cite sources using [1], [2], etc. matching the numbered sources\n"
    "- Quote exact values (heights, areas, distances) with their units\n"
    "- If the answer is not in the context, say that the project documents "
    "do not contain this information\n"
    "- Answer in the language of the question"
)

UNGROUNDED_SYSTEM = (
    "You are GroosHub's assistant for real-estate development projects. "
    "No passages from the project's documents matched this question. "
    "Answer from general knowledge, say so, and keep it concise. "
    "Answer in the language of the question."
)


@dataclass
class SynthesisResult:
    answer: str
    model: str
    input_tokens: int
    output_tokens: int


def format_sources(chunks: list[RetrievedChunk]) -> str:
    """
    Number chunks for citation.

    Example:
        [1] (bouwbesluit.pdf, page 12):
        De vrije hoogte van een verblijfsgebied is ten minste 2,6 m...
    """
    sections = []
    for i, chunk in enumerate(chunks, 1):
        location = chunk.source_file
        if chunk.page_number:
            location += f", page {chunk.page_number}"
        sections.append(f"[{i}] ({location}):\n{chunk.chunk_text}")
    return "\n\n---\n\n".join(sections)


async def synthesize(
    question: str,
    chunks: list[RetrievedChunk],
    llm: LLMProvider,
    meter: UsageMeter | None = None,
) -> SynthesisResult:
    if chunks:
        system = GROUNDED_SYSTEM
        user_message = (
            f"Question: {question}\n\n"
            f"Context ({len(chunks)} sources):\n\n{format_sources(chunks)}"
        )
    else:
        system = UNGROUNDED_SYSTEM
        user_message = question

    request = {"messages": [{"role": "user", "content": user_message}], "system": system}
    if meter is not None:
        response = await meter.complete(llm, **request)
    else:
        response = await llm.complete(**request)

    logger.info(
        "Synthesized answer: model=%s, sources=%d, tokens=%d+%d",
        response.model, len(chunks), response.input_tokens, response.output_tokens,
    )
    return SynthesisResult(
        answer=response.content,
        model=response.model,
        input_tokens=response.input_tokens,
        output_tokens=response.output_tokens,
    )
