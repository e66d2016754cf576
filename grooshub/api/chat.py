# =============================================================================
# Chat API — Streaming LLM Chat with Optional Project RAG
# =============================================================================
#
# ENDPOINTS:
#   POST /api/chat — stream a model reply as plain text
#   GET  /api/chat — health/config check for the chat service
#
# FLOW (POST):
#   1. Rate limit (chat_message) and validate the model ID
#   2. Enforce the provider's monthly quota
#   3. Resolve/create the persisted chat when chat_id is given
#   4. With project_id: classify the last user message and inject
#      retrieved document context into the system prompt
#   5. Truncate history and stream the reply
#   6. After the stream: persist the assistant message, record usage
#
# The request session is committed before streaming starts. Everything
# that happens after the first byte uses its own session.
# =============================================================================

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncIterator
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from grooshub.api.deps import get_current_user, rate_limit
from grooshub.config import settings
from grooshub.db.engine import async_session_factory, get_async_session
from grooshub.db.models import Chat, ChatMessage, User
from grooshub.db.projects import get_membership
from grooshub.models.requests import ChatRequest
from grooshub.rag.orchestrator import build_rag_context
from grooshub.services.llm import LLMProvider, TokenUsage, create_provider, truncate_messages
from grooshub.services.model_registry import DEFAULT_MODEL, MODEL_REGISTRY, provider_for_model
from grooshub.services.quota import UsageMeter, enforce_quota, record_usage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["Chat"])

CHAT_SYSTEM = (
    "You are GroosHub's assistant for real-estate and urban development "
    "professionals in the Netherlands. Be precise, cite sources when you are "
    "given any, and answer in the language of the user."
)

STREAM_ERROR_MARKER = "\n\n[Error: the response was interrupted]"


def chat_title(content: str, max_length: int = 60) -> str:
    """First line of the first user message, shortened for a chat title."""
    line = content.strip().splitlines()[0] if content.strip() else "New chat"
    return line if len(line) <= max_length else line[: max_length - 3].rstrip() + "..."


async def _resolve_chat(
    session: AsyncSession,
    chat_id: uuid.UUID,
    user: User,
    project_id: uuid.UUID | None,
    model_id: str,
    first_message: str,
) -> Chat:
    chat = await session.get(Chat, chat_id)
    if chat is None:
        chat = Chat(
            id=chat_id,
            user_id=user.id,
            project_id=project_id,
            title=chat_title(first_message),
            model_id=model_id,
        )
        session.add(chat)
        await session.flush()
        return chat
    if chat.user_id != user.id:
        raise HTTPException(status_code=404, detail="Chat not found")
    chat.model_id = model_id
    return chat


@router.post(
    "",
    summary="Stream a chat completion",
    response_class=StreamingResponse,
    dependencies=[Depends(rate_limit("chat_message"))],
)
async def chat_endpoint(
    request: ChatRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> StreamingResponse:
    model_id = request.resolved_model_id(settings.default_chat_model)
    provider_name = provider_for_model(model_id)

    await enforce_quota(session, provider_name, "chat", user_id=user.id)

    messages = [m.model_dump() for m in request.messages]
    last_user_message = messages[-1]["content"]

    system = CHAT_SYSTEM
    if request.project_id is not None:
        if await get_membership(session, request.project_id, user.id) is None:
            raise HTTPException(status_code=404, detail="Project not found")
        try:
            context = await build_rag_context(
                session, request.project_id, last_user_message,
                meter=UsageMeter(session, "chat_rag", user_id=user.id),
            )
        except Exception as e:
            # Chat still works without document context
            logger.warning("RAG context failed for project %s: %s", request.project_id, e)
        else:
            if context.system_block:
                system = f"{system}\n\n{context.system_block}"
                logger.info(
                    "Injected %d chunks into chat context", len(context.chunks),
                )

    chat_id: uuid.UUID | None = None
    if request.chat_id is not None:
        chat = await _resolve_chat(
            session, request.chat_id, user, request.project_id, model_id, last_user_message,
        )
        chat_id = chat.id
        session.add(ChatMessage(chat_id=chat.id, role="user", content=last_user_message))
        chat.last_message_at = datetime.now(timezone.utc)

    try:
        llm = create_provider(model_id)
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise HTTPException(status_code=503, detail=f"Service configuration error: {e}") from e

    await session.commit()

    return StreamingResponse(
        _stream_reply(
            llm,
            truncate_messages(messages),
            system=system,
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            chat_id=chat_id,
            user_id=user.id,
        ),
        media_type="text/plain; charset=utf-8",
    )


async def _stream_reply(
    llm: LLMProvider,
    messages: list[dict[str, str]],
    system: str,
    temperature: float | None,
    max_tokens: int | None,
    chat_id: uuid.UUID | None,
    user_id: int,
) -> AsyncIterator[str]:
    usage = TokenUsage()
    parts: list[str] = []
    start = time.monotonic()
    error: str | None = None

    try:
        async for delta in llm.stream(
            messages,
            system=system,
            temperature=temperature,
            max_tokens=max_tokens,
            usage=usage,
        ):
            parts.append(delta)
            yield delta
    except Exception as e:
        logger.exception("Chat stream failed (model=%s): %s", llm.model_id, e)
        error = str(e)
        yield STREAM_ERROR_MARKER

    elapsed_ms = int((time.monotonic() - start) * 1000)
    content = "".join(parts)

    if chat_id is not None and content:
        await _save_assistant_message(chat_id, content, llm.model_id, usage)

    await record_usage(
        llm.provider,
        "chat",
        "error" if error else "success",
        user_id=user_id,
        model_id=llm.model_id,
        input_tokens=usage.input_tokens,
        output_tokens=usage.output_tokens,
        response_time_ms=elapsed_ms,
        error_message=error,
    )


async def _save_assistant_message(
    chat_id: uuid.UUID, content: str, model_id: str, usage: TokenUsage,
) -> None:
    try:
        async with async_session_factory() as session:
            session.add(ChatMessage(
                chat_id=chat_id,
                role="assistant",
                content=content,
                model_id=model_id,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
            ))
            chat = await session.get(Chat, chat_id)
            if chat is not None:
                chat.last_message_at = datetime.now(timezone.utc)
            await session.commit()
    except Exception as e:
        logger.error("Failed to save assistant message for chat %s: %s", chat_id, e)


@router.get("", summary="Chat service health")
async def chat_health() -> dict:
    return {
        "status": "ok",
        "default_model": settings.default_chat_model or DEFAULT_MODEL,
        "models": sorted(MODEL_REGISTRY),
        "providers": {
            "openai": bool(settings.openai_api_key),
            "anthropic": bool(settings.anthropic_api_key),
            "xai": bool(settings.xai_api_key),
        },
    }
