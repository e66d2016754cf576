# =============================================================================
# Invitations API — Accept / Decline by Token
# =============================================================================
#
#   POST /api/invitations/{token}/accept
#   POST /api/invitations/{token}/decline
#
# The token in the URL is the raw secret from the invitation link; only
# its hash is stored. Validation rules live in grooshub.db.projects.
# =============================================================================

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from grooshub.api.deps import get_current_user
from grooshub.db.engine import get_async_session
from grooshub.db.models import InvitationStatus, ProjectInvitation, User
from grooshub.db.projects import accept_invitation, check_invitation
from grooshub.models.responses import InvitationAcceptResponse, MessageResponse
from grooshub.services.auth import hash_secret

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/invitations", tags=["Invitations"])


@router.post("/{token}/accept", response_model=InvitationAcceptResponse)
async def accept(
    token: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> InvitationAcceptResponse:
    member, already_member = await accept_invitation(session, token, user)
    return InvitationAcceptResponse(
        project_id=member.project_id,
        role=member.role.value,
        already_member=already_member,
    )


@router.post("/{token}/decline", response_model=MessageResponse)
async def decline(
    token: str,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> MessageResponse:
    result = await session.execute(
        select(ProjectInvitation).where(ProjectInvitation.token_hash == hash_secret(token))
    )
    invitation = check_invitation(result.scalar_one_or_none(), user)
    invitation.status = InvitationStatus.DECLINED
    invitation.responded_at = datetime.now(timezone.utc)
    return MessageResponse(message="Invitation declined")
