# =============================================================================
# Chats API — Persisted Conversations
# =============================================================================
#
#   GET    /api/chats              — the user's chats, newest first
#   POST   /api/chats              — create an empty chat
#   GET    /api/chats/{id}         — chat with messages
#   PATCH  /api/chats/{id}         — rename
#   DELETE /api/chats/{id}         — delete with messages
#   GET    /api/chats/{id}/usage   — token totals and estimated cost
#
# Chats are private to their owner; other users get 404.
# =============================================================================

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from grooshub.api.deps import get_current_user
from grooshub.db.engine import get_async_session
from grooshub.db.models import Chat, ChatMessage, User
from grooshub.db.projects import get_membership
from grooshub.models.requests import ChatCreateRequest, ChatUpdateRequest
from grooshub.models.responses import (
    ChatDetailResponse,
    ChatResponse,
    ChatUsageResponse,
    MessageResponse,
)
from grooshub.services.model_registry import estimate_cost, get_model

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chats", tags=["Chats"])


async def _get_owned_chat(session: AsyncSession, chat_id: uuid.UUID, user: User) -> Chat:
    chat = await session.get(Chat, chat_id)
    if chat is None or chat.user_id != user.id:
        raise HTTPException(status_code=404, detail="Chat not found")
    return chat


@router.get("", response_model=list[ChatResponse])
async def list_chats(
    project_id: uuid.UUID | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> list[Chat]:
    stmt = select(Chat).where(Chat.user_id == user.id)
    if project_id is not None:
        stmt = stmt.where(Chat.project_id == project_id)
    stmt = stmt.order_by(
        func.coalesce(Chat.last_message_at, Chat.created_at).desc(),
    ).limit(limit).offset(offset)
    result = await session.execute(stmt)
    return list(result.scalars().all())


@router.post("", response_model=ChatResponse, status_code=201)
async def create_chat(
    request: ChatCreateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> Chat:
    if request.model_id is not None:
        get_model(request.model_id)
    if request.project_id is not None:
        if await get_membership(session, request.project_id, user.id) is None:
            raise HTTPException(status_code=404, detail="Project not found")

    chat = Chat(
        user_id=user.id,
        project_id=request.project_id,
        title=request.title,
        model_id=request.model_id,
    )
    session.add(chat)
    await session.flush()
    await session.refresh(chat)
    return chat


@router.get("/{chat_id}", response_model=ChatDetailResponse)
async def get_chat(
    chat_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> Chat:
    return await _get_owned_chat(session, chat_id, user)


@router.patch("/{chat_id}", response_model=ChatResponse)
async def rename_chat(
    chat_id: uuid.UUID,
    request: ChatUpdateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> Chat:
    chat = await _get_owned_chat(session, chat_id, user)
    chat.title = request.title
    await session.flush()
    await session.refresh(chat)
    return chat


@router.delete("/{chat_id}", response_model=MessageResponse)
async def delete_chat(
    chat_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> MessageResponse:
    chat = await _get_owned_chat(session, chat_id, user)
    await session.delete(chat)
    logger.info("Deleted chat %s", chat_id)
    return MessageResponse(message="Chat deleted")


@router.get("/{chat_id}/usage", response_model=ChatUsageResponse)
async def chat_usage(
    chat_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> ChatUsageResponse:
    await _get_owned_chat(session, chat_id, user)

    result = await session.execute(
        select(
            ChatMessage.model_id,
            func.count(ChatMessage.id),
            func.coalesce(func.sum(ChatMessage.input_tokens), 0),
            func.coalesce(func.sum(ChatMessage.output_tokens), 0),
        )
        .where(ChatMessage.chat_id == chat_id)
        .group_by(ChatMessage.model_id)
    )

    message_count = input_tokens = output_tokens = 0
    cost: float | None = None
    for model_id, count, tokens_in, tokens_out in result.all():
        message_count += count
        input_tokens += tokens_in
        output_tokens += tokens_out
        if model_id:
            model_cost = estimate_cost(model_id, tokens_in, tokens_out)
            if model_cost is not None:
                cost = (cost or 0.0) + model_cost

    return ChatUsageResponse(
        chat_id=chat_id,
        message_count=message_count,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        estimated_cost=round(cost, 6) if cost is not None else None,
    )
