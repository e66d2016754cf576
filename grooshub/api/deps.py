# =============================================================================
# API Dependencies — Authentication, Project Access, Rate Limiting
# =============================================================================
#
# 1. get_current_user()      — Bearer API key → User (401 / 403)
# 2. get_project_member()    — active membership in {project_id} (404)
# 3. require_permission(p)   — membership holding permission p (403)
# 4. rate_limit(action)      — per-user sliding-window limit (429)
#
# Project-scoped lookups return 404 for non-members so that project IDs
# do not reveal whether a project exists.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

from fastapi import Depends, HTTPException, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from grooshub.db.engine import get_async_session
from grooshub.db.models import ApiKey, ProjectMember, User
from grooshub.db.projects import get_membership, has_permission
from grooshub.services.auth import hash_secret
from grooshub.services.rate_limiter import check_rate_limit

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    session: AsyncSession = Depends(get_async_session),
) -> User:
    """
    Resolve the calling user from `Authorization: Bearer <key>`.

    Raises:
        HTTPException 401: Missing or unknown key
        HTTPException 403: Key is inactive or expired
    """
    if credentials is None:
        raise HTTPException(
            status_code=401,
            detail="Missing API key. Provide 'Authorization: Bearer <key>' header.",
            headers={"WWW-Authenticate": "Bearer"},
        )

    result = await session.execute(
        select(ApiKey).where(ApiKey.key_hash == hash_secret(credentials.credentials))
    )
    api_key = result.scalar_one_or_none()

    if api_key is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid API key.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if not api_key.is_active:
        raise HTTPException(status_code=403, detail="API key has been deactivated.")
    if api_key.expires_at and api_key.expires_at < datetime.now(timezone.utc):
        raise HTTPException(status_code=403, detail="API key has expired.")

    api_key.last_used_at = datetime.now(timezone.utc)

    # Read by the audit middleware
    request.state.user_id = api_key.user_id
    return api_key.user


async def get_project_member(
    project_id: uuid.UUID,
    request: Request,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> ProjectMember:
    member = await get_membership(session, project_id, user.id)
    if member is None:
        raise HTTPException(status_code=404, detail="Project not found")
    request.state.audit_project_id = project_id
    return member


def require_permission(permission: str) -> Callable:
    """Dependency factory: the caller's membership must grant `permission`."""

    async def _dependency(member: ProjectMember = Depends(get_project_member)) -> ProjectMember:
        if not has_permission(member, permission):
            raise HTTPException(
                status_code=403,
                detail=f"You do not have the '{permission}' permission on this project.",
            )
        return member

    return _dependency


def rate_limit(action: str) -> Callable:
    """Dependency factory applying the per-user limit for `action`."""

    async def _dependency(
        response: Response,
        user: User = Depends(get_current_user),
    ) -> None:
        status = await check_rate_limit(user.id, action)
        for name, value in status.headers().items():
            response.headers[name] = value

    return _dependency
