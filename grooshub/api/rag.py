# =============================================================================
# RAG API — Classification, Retrieval & Question Answering
# =============================================================================
#
#   POST /api/rag/classify-query             is a message about the documents?
#   POST /api/projects/{id}/rag/retrieve     chunks for a query
#   GET  /api/projects/{id}/rag/retrieve     chunk/token/file statistics
#   POST /api/projects/{id}/rag/ask          full pipeline (retrieve or agent)
#
# Error handling:
#   - Missing API key / configuration → 503
#   - Vendor or database failures     → 502
#   - Empty project                   → 200 with no chunks
#   - Exhausted quota                 → 429
#
# Every LLM and embedding call is metered separately through a UsageMeter,
# under the provider that serves it.
# =============================================================================

from __future__ import annotations

import logging
import time
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from grooshub.api.deps import get_current_user, get_project_member
from grooshub.config import settings
from grooshub.db.engine import get_async_session
from grooshub.db.models import ProjectMember, User
from grooshub.errors import GroosHubError
from grooshub.models.requests import AskRequest, ClassifyQueryRequest, RetrieveRequest
from grooshub.models.responses import (
    AgentStepResponse,
    AskResponse,
    ClassificationResponse,
    RagStatsResponse,
    RetrieveResponse,
    SearchParams,
    SourceChunk,
)
from grooshub.rag.classifier import classify_query
from grooshub.rag.orchestrator import answer_question
from grooshub.rag.retriever import count_project_chunks, find_relevant_content, get_project_rag_stats
from grooshub.services.quota import UsageMeter

logger = logging.getLogger(__name__)

router = APIRouter(tags=["RAG"])


def _upstream_error(e: Exception, what: str) -> HTTPException:
    if isinstance(e, ValueError):
        logger.error("Configuration error during %s: %s", what, e)
        return HTTPException(status_code=503, detail=f"Service configuration error: {e}")
    logger.exception("%s failed: %s", what, e)
    return HTTPException(status_code=502, detail=f"{what} failed: {e}")


@router.post("/api/rag/classify-query", response_model=ClassificationResponse)
async def classify_query_endpoint(
    request: ClassifyQueryRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> ClassificationResponse:
    meter = UsageMeter(session, "rag_classify", user_id=user.id)
    classification = await classify_query(request.query, meter=meter)
    return ClassificationResponse(**classification.to_dict())


@router.post("/api/projects/{project_id}/rag/retrieve", response_model=RetrieveResponse)
async def retrieve(
    project_id: uuid.UUID,
    request: RetrieveRequest,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> RetrieveResponse:
    params = SearchParams(
        top_k=request.top_k,
        similarity_threshold=request.similarity_threshold,
        use_hybrid_search=request.use_hybrid_search,
    )
    start = time.monotonic()

    if await count_project_chunks(session, project_id) == 0:
        return RetrieveResponse(
            query=request.query,
            chunks=[],
            total_chunks=0,
            retrieval_time_ms=int((time.monotonic() - start) * 1000),
            search_params=params,
            message="No processed documents in this project yet.",
        )

    try:
        chunks = await find_relevant_content(
            session,
            project_id,
            request.query,
            top_k=request.top_k,
            similarity_threshold=request.similarity_threshold,
            use_hybrid_search=request.use_hybrid_search,
            meter=UsageMeter(session, "rag_retrieve", user_id=member.user_id),
        )
    except GroosHubError:
        raise
    except Exception as e:
        raise _upstream_error(e, "Retrieval") from e

    elapsed_ms = int((time.monotonic() - start) * 1000)
    logger.info(
        "Retrieved %d chunks for project %s in %dms", len(chunks), project_id, elapsed_ms,
    )

    return RetrieveResponse(
        query=request.query,
        chunks=[SourceChunk(**c.to_dict()) for c in chunks],
        total_chunks=len(chunks),
        retrieval_time_ms=elapsed_ms,
        search_params=params,
    )


@router.get("/api/projects/{project_id}/rag/retrieve", response_model=RagStatsResponse)
async def rag_stats(
    project_id: uuid.UUID,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> RagStatsResponse:
    stats = await get_project_rag_stats(session, project_id)
    return RagStatsResponse(project_id=project_id, **stats)


@router.post("/api/projects/{project_id}/rag/ask", response_model=AskResponse)
async def ask(
    project_id: uuid.UUID,
    request: AskRequest,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> AskResponse:
    model_id = request.model_id or settings.default_chat_model
    meter = UsageMeter(session, "rag_ask", user_id=member.user_id)

    start = time.monotonic()
    try:
        result = await answer_question(
            session, project_id, request.question,
            model_id=model_id, mode=request.mode, meter=meter,
        )
    except GroosHubError:
        raise
    except Exception as e:
        raise _upstream_error(e, "Question answering") from e

    latency_ms = int((time.monotonic() - start) * 1000)

    agent_result = result.get("agent_result")
    steps = [
        AgentStepResponse(
            step_number=s.step_number,
            thought=s.thought,
            action=s.action,
            action_input=s.action_input,
            observation=s.observation,
        )
        for s in (agent_result.steps if agent_result else [])
    ]

    return AskResponse(
        answer=result.get("answer", ""),
        sources=[SourceChunk(**s) for s in result.get("sources") or []],
        model=result.get("model", model_id),
        mode=request.mode,
        is_document_related=result["classification"].is_document_related,
        confidence=result.get("confidence"),
        reasoning=result.get("reasoning"),
        steps=steps,
        input_tokens=result.get("input_tokens", 0),
        output_tokens=result.get("output_tokens", 0),
        latency_ms=latency_ms,
    )
