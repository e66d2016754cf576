# =============================================================================
# RAG Orchestrator — LangGraph Pipeline
# =============================================================================
#
# GRAPH TOPOLOGY:
#
#   START ──▶ classify ──┬──▶ retrieve ──▶ synthesize ──▶ END
#                        ├──▶ agent ─────────────────────▶ END
#                        └──▶ synthesize (no context) ───▶ END
#
# classify decides whether the question is about the project's documents
# (cheap model, fail-safe) and whether the project has any chunks at all.
# mode="retrieve" runs one retrieval then synthesis; mode="agent" lets the
# document agent drive retrieval and returns its answer as-is.
#
# The AsyncSession, LLM provider and usage meter travel in the state. They
# are not serialisable; the graph has no checkpointer.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any

from langgraph.graph import END, START, StateGraph
from sqlalchemy.ext.asyncio import AsyncSession
from typing_extensions import TypedDict

from grooshub.config import settings
from grooshub.rag.agent import AgentResult, run_agent
from grooshub.rag.classifier import QueryClassification, classify_query
from grooshub.rag.retriever import (
    RetrievedChunk,
    count_project_chunks,
    find_relevant_content,
)
from grooshub.rag.synthesis import format_sources, synthesize
from grooshub.services.llm import LLMProvider, create_provider
from grooshub.services.quota import UsageMeter

logger = logging.getLogger(__name__)


class RagState(TypedDict, total=False):
    """State flowing through the graph; nodes return partial updates."""

    # --- Input ---
    question: str
    project_id: uuid.UUID
    session: AsyncSession
    mode: str  # "retrieve" or "agent"
    model_id: str
    top_k: int
    similarity_threshold: float
    llm_override: LLMProvider | None
    meter: UsageMeter | None

    # --- Intermediate ---
    classification: QueryClassification
    has_documents: bool
    chunks: list[RetrievedChunk]
    agent_result: AgentResult | None

    # --- Output ---
    answer: str
    sources: list[dict[str, Any]]
    model: str
    confidence: str | None
    reasoning: str | None
    input_tokens: int
    output_tokens: int


# ---------------------------------------------------------------------------
# Node Functions
# ---------------------------------------------------------------------------


def _llm(state: RagState) -> LLMProvider:
    return state.get("llm_override") or create_provider(
        state.get("model_id") or settings.default_chat_model
    )


async def classify_node(state: RagState) -> dict:
    classification = await classify_query(state["question"], meter=state.get("meter"))
    has_documents = False
    if classification.is_document_related:
        has_documents = await count_project_chunks(
            state["session"], state["project_id"],
        ) > 0
    return {"classification": classification, "has_documents": has_documents}


def route_after_classify(state: RagState) -> str:
    if not (state["classification"].is_document_related and state["has_documents"]):
        logger.info("Skipping retrieval (document_related=%s, has_documents=%s)",
                    state["classification"].is_document_related, state["has_documents"])
        return "synthesize"
    return "agent" if state.get("mode") == "agent" else "retrieve"


async def retrieve_node(state: RagState) -> dict:
    chunks = await find_relevant_content(
        state["session"],
        state["project_id"],
        state["question"],
        top_k=state.get("top_k") or settings.retrieval_top_k,
        similarity_threshold=state.get(
            "similarity_threshold", settings.retrieval_similarity_threshold,
        ),
        use_hybrid_search=True,
        meter=state.get("meter"),
    )
    return {"chunks": chunks}


async def agent_node(state: RagState) -> dict:
    result = await run_agent(
        state["session"],
        state["project_id"],
        state["question"],
        llm=state.get("llm_override"),
        meter=state.get("meter"),
    )
    return {
        "agent_result": result,
        "chunks": result.sources,
        "answer": result.answer,
        "sources": [c.to_dict() for c in result.sources],
        "model": settings.agent_model,
        "confidence": result.confidence,
        "reasoning": result.reasoning,
        "input_tokens": result.input_tokens,
        "output_tokens": result.output_tokens,
    }


async def synthesize_node(state: RagState) -> dict:
    chunks = state.get("chunks") or []
    result = await synthesize(state["question"], chunks, _llm(state), meter=state.get("meter"))
    return {
        "answer": result.answer,
        "sources": [c.to_dict() for c in chunks],
        "model": result.model,
        "confidence": None,
        "input_tokens": result.input_tokens,
        "output_tokens": result.output_tokens,
    }


# ---------------------------------------------------------------------------
# Graph Assembly — compiled once at import
# ---------------------------------------------------------------------------

_builder = StateGraph(RagState)
_builder.add_node("classify", classify_node)
_builder.add_node("retrieve", retrieve_node)
_builder.add_node("agent", agent_node)
_builder.add_node("synthesize", synthesize_node)

_builder.add_edge(START, "classify")
_builder.add_conditional_edges(
    "classify",
    route_after_classify,
    {"retrieve": "retrieve", "agent": "agent", "synthesize": "synthesize"},
)
_builder.add_edge("retrieve", "synthesize")
_builder.add_edge("agent", END)
_builder.add_edge("synthesize", END)

graph = _builder.compile()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


async def answer_question(
    session: AsyncSession,
    project_id: uuid.UUID,
    question: str,
    model_id: str | None = None,
    mode: str = "retrieve",
    llm: LLMProvider | None = None,
    meter: UsageMeter | None = None,
) -> RagState:
    """Run the graph and return its final state. A meter counts every vendor call."""
    initial: RagState = {
        "question": question,
        "project_id": project_id,
        "session": session,
        "mode": mode,
        "model_id": model_id or settings.default_chat_model,
    }
    if llm is not None:
        initial["llm_override"] = llm
    if meter is not None:
        initial["meter"] = meter

    logger.info("RAG question for project %s (mode=%s): %s", project_id, mode, question[:80])
    result = await graph.ainvoke(initial)
    logger.info(
        "RAG answer complete: model=%s, sources=%d",
        result.get("model", "n/a"), len(result.get("sources") or []),
    )
    return result


@dataclass
class RagContext:
    classification: QueryClassification
    chunks: list[RetrievedChunk]
    system_block: str | None


async def build_rag_context(
    session: AsyncSession,
    project_id: uuid.UUID,
    query: str,
    meter: UsageMeter | None = None,
) -> RagContext:
    """
    Classify a chat message and, when relevant, retrieve project context.

    `system_block` is ready to append to the chat system prompt, or None
    when nothing should be injected.
    """
    classification = await classify_query(query, meter=meter)
    if not classification.is_document_related:
        return RagContext(classification, [], None)

    if await count_project_chunks(session, project_id) == 0:
        return RagContext(classification, [], None)

    chunks = await find_relevant_content(
        session,
        project_id,
        query,
        top_k=settings.retrieval_top_k,
        similarity_threshold=settings.retrieval_similarity_threshold,
        meter=meter,
    )
    if not chunks:
        return RagContext(classification, [], None)

    block = (
        "Relevant passages from the project's documents. Cite them as "
        "[1], [2], etc. when you use them:\n\n" + format_sources(chunks)
    )
    return RagContext(classification, chunks, block)
