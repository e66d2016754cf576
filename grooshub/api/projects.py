# =============================================================================
# Projects API — Projects, Members & Invitations
# =============================================================================
#
# PROJECTS
#   GET    /api/projects                      ?deleted=true lists the trash
#   POST   /api/projects                      rate limited (project_create)
#   GET    /api/projects/{id}
#   PATCH  /api/projects/{id}                 can_edit
#   DELETE /api/projects/{id}                 can_delete, soft delete
#   POST   /api/projects/{id}/restore         can_delete
#   POST   /api/projects/{id}/pin             toggles is_pinned
#   GET    /api/projects/{id}/stats
#
# MEMBERS
#   GET    /api/projects/{id}/members
#   PATCH  /api/projects/{id}/members/{uid}   can_manage_members
#   DELETE /api/projects/{id}/members/{uid}   can_manage_members, or self
#
# INVITATIONS
#   POST   /api/projects/{id}/invitations     can_manage_members
#   GET    /api/projects/{id}/invitations     can_manage_members
#   DELETE /api/projects/{id}/invitations/{invitation_id}
# =============================================================================

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from grooshub.api.deps import get_current_user, get_project_member, rate_limit, require_permission
from grooshub.config import settings
from grooshub.db.engine import get_async_session
from grooshub.db.models import (
    InvitationStatus,
    MemberRole,
    Project,
    ProjectInvitation,
    ProjectMember,
    User,
)
from grooshub.db.projects import (
    create_project,
    get_membership,
    get_project_stats,
    has_permission,
    list_members,
    list_user_projects,
    permissions_for_role,
)
from grooshub.models.requests import (
    InvitationCreateRequest,
    MemberUpdateRequest,
    ProjectCreateRequest,
    ProjectUpdateRequest,
)
from grooshub.models.responses import (
    InvitationCreatedResponse,
    InvitationResponse,
    MemberResponse,
    MessageResponse,
    ProjectResponse,
    ProjectStatsResponse,
)
from grooshub.services.auth import generate_invitation_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects", tags=["Projects"])


async def _project(session: AsyncSession, project_id: uuid.UUID) -> Project:
    project = await session.get(Project, project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@router.get("", response_model=list[ProjectResponse])
async def list_projects(
    deleted: bool = Query(default=False, description="List soft-deleted projects instead"),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> list[Project]:
    return await list_user_projects(session, user.id, deleted=deleted)


@router.post(
    "",
    response_model=ProjectResponse,
    status_code=201,
    dependencies=[Depends(rate_limit("project_create"))],
)
async def create_project_endpoint(
    request: ProjectCreateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> Project:
    project = await create_project(
        session, user, request.name, request.description, request.project_number,
    )
    await session.refresh(project)
    return project


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: uuid.UUID,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> Project:
    project = await _project(session, project_id)
    project.last_accessed_at = datetime.now(timezone.utc)
    return project


@router.patch("/{project_id}", response_model=ProjectResponse)
async def update_project(
    project_id: uuid.UUID,
    request: ProjectUpdateRequest,
    member: ProjectMember = Depends(require_permission("can_edit")),
    session: AsyncSession = Depends(get_async_session),
) -> Project:
    project = await _project(session, project_id)
    for field, value in request.model_dump(exclude_unset=True).items():
        setattr(project, field, value)
    await session.flush()
    await session.refresh(project)
    return project


@router.delete("/{project_id}", response_model=MessageResponse)
async def delete_project(
    project_id: uuid.UUID,
    member: ProjectMember = Depends(require_permission("can_delete")),
    session: AsyncSession = Depends(get_async_session),
) -> MessageResponse:
    project = await _project(session, project_id)
    project.deleted_at = datetime.now(timezone.utc)
    logger.info("Soft-deleted project %s", project_id)
    return MessageResponse(message="Project moved to trash")


@router.post("/{project_id}/restore", response_model=ProjectResponse)
async def restore_project(
    project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> Project:
    member = await get_membership(session, project_id, user.id, include_deleted=True)
    if member is None:
        raise HTTPException(status_code=404, detail="Project not found")
    if not has_permission(member, "can_delete"):
        raise HTTPException(status_code=403, detail="Only project owners can restore a project.")

    project = await _project(session, project_id)
    if project.deleted_at is None:
        raise HTTPException(status_code=400, detail="Project is not deleted")
    project.deleted_at = None
    await session.flush()
    await session.refresh(project)
    return project


@router.post("/{project_id}/pin", response_model=ProjectResponse)
async def toggle_pin(
    project_id: uuid.UUID,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> Project:
    project = await _project(session, project_id)
    project.is_pinned = not project.is_pinned
    await session.flush()
    await session.refresh(project)
    return project


@router.get("/{project_id}/stats", response_model=ProjectStatsResponse)
async def project_stats(
    project_id: uuid.UUID,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> ProjectStatsResponse:
    stats = await get_project_stats(session, project_id)
    return ProjectStatsResponse(project_id=project_id, **stats)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@router.get("/{project_id}/members", response_model=list[MemberResponse])
async def get_members(
    project_id: uuid.UUID,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> list[MemberResponse]:
    return [
        MemberResponse(
            user_id=m.user_id,
            email=u.email,
            name=u.name,
            role=m.role.value,
            permissions=m.permissions or {},
            joined_at=m.joined_at,
        )
        for m, u in await list_members(session, project_id)
    ]


async def _target_member(session: AsyncSession, project_id: uuid.UUID, user_id: int) -> ProjectMember:
    target = await get_membership(session, project_id, user_id)
    if target is None:
        raise HTTPException(status_code=404, detail="Member not found")
    if target.role == MemberRole.CREATOR:
        raise HTTPException(status_code=403, detail="The project creator cannot be changed or removed.")
    return target


@router.patch("/{project_id}/members/{user_id}", response_model=MessageResponse)
async def update_member_role(
    project_id: uuid.UUID,
    user_id: int,
    request: MemberUpdateRequest,
    member: ProjectMember = Depends(require_permission("can_manage_members")),
    session: AsyncSession = Depends(get_async_session),
) -> MessageResponse:
    target = await _target_member(session, project_id, user_id)
    target.role = request.role
    target.permissions = permissions_for_role(request.role)
    return MessageResponse(message=f"Role updated to {request.role.value}")


@router.delete("/{project_id}/members/{user_id}", response_model=MessageResponse)
async def remove_member(
    project_id: uuid.UUID,
    user_id: int,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> MessageResponse:
    leaving = member.user_id == user_id
    if not leaving and not has_permission(member, "can_manage_members"):
        raise HTTPException(
            status_code=403,
            detail="You do not have the 'can_manage_members' permission on this project.",
        )
    target = await _target_member(session, project_id, user_id)
    target.left_at = datetime.now(timezone.utc)
    return MessageResponse(message="Left project" if leaving else "Member removed")


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


@router.post(
    "/{project_id}/invitations",
    response_model=InvitationCreatedResponse,
    status_code=201,
)
async def create_invitation(
    project_id: uuid.UUID,
    request: InvitationCreateRequest,
    member: ProjectMember = Depends(require_permission("can_manage_members")),
    session: AsyncSession = Depends(get_async_session),
) -> InvitationCreatedResponse:
    raw_token, token_hash = generate_invitation_token()
    invitation = ProjectInvitation(
        project_id=project_id,
        email=request.email.strip().lower(),
        role=request.role,
        token_hash=token_hash,
        status=InvitationStatus.PENDING,
        invited_by_user_id=member.user_id,
        expires_at=datetime.now(timezone.utc) + timedelta(days=settings.invitation_expiry_days),
    )
    session.add(invitation)
    await session.flush()
    await session.refresh(invitation)

    logger.info("Invited %s to project %s as %s", invitation.email, project_id, request.role.value)
    return InvitationCreatedResponse(
        id=invitation.id,
        project_id=project_id,
        email=invitation.email,
        role=invitation.role.value,
        status=invitation.status.value,
        expires_at=invitation.expires_at,
        created_at=invitation.created_at,
        token=raw_token,
    )


@router.get("/{project_id}/invitations", response_model=list[InvitationResponse])
async def list_invitations(
    project_id: uuid.UUID,
    member: ProjectMember = Depends(require_permission("can_manage_members")),
    session: AsyncSession = Depends(get_async_session),
) -> list[ProjectInvitation]:
    result = await session.execute(
        select(ProjectInvitation)
        .where(
            ProjectInvitation.project_id == project_id,
            ProjectInvitation.status == InvitationStatus.PENDING,
        )
        .order_by(ProjectInvitation.created_at.desc())
    )
    return list(result.scalars().all())


@router.delete("/{project_id}/invitations/{invitation_id}", response_model=MessageResponse)
async def revoke_invitation(
    project_id: uuid.UUID,
    invitation_id: uuid.UUID,
    member: ProjectMember = Depends(require_permission("can_manage_members")),
    session: AsyncSession = Depends(get_async_session),
) -> MessageResponse:
    invitation = await session.get(ProjectInvitation, invitation_id)
    if invitation is None or invitation.project_id != project_id:
        raise HTTPException(status_code=404, detail="Invitation not found")
    await session.delete(invitation)
    return MessageResponse(message="Invitation revoked")
