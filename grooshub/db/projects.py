# =============================================================================
# Project Queries — Membership, Permissions, Invitations, Statistics
# =============================================================================
#
# A project is visible to a user only through an active membership row
# (left_at IS NULL) on a project that is not soft-deleted. Everything
# project-scoped in the API resolves access through get_membership().
#
# ROLE → PERMISSIONS:
#   creator  all five permissions
#   admin    all except can_delete
#   member   can_edit, can_manage_files
#   viewer   none
# =============================================================================

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from grooshub.db.models import (
    Chat,
    InvitationStatus,
    LcaSnapshot,
    LocationSnapshot,
    MemberRole,
    Project,
    ProjectDocChunk,
    ProjectFile,
    ProjectInvitation,
    ProjectMember,
    User,
)
from grooshub.errors import ForbiddenError, NotFoundError
from grooshub.services.auth import hash_secret

logger = logging.getLogger(__name__)

PERMISSION_KEYS = (
    "can_edit",
    "can_delete",
    "can_manage_members",
    "can_manage_files",
    "can_view_analytics",
)

_ROLE_GRANTS: dict[MemberRole, set[str]] = {
    MemberRole.CREATOR: set(PERMISSION_KEYS),
    MemberRole.ADMIN: set(PERMISSION_KEYS) - {"can_delete"},
    MemberRole.MEMBER: {"can_edit", "can_manage_files"},
    MemberRole.VIEWER: set(),
}


def permissions_for_role(role: MemberRole) -> dict[str, bool]:
    grants = _ROLE_GRANTS[role]
    return {key: key in grants for key in PERMISSION_KEYS}


def has_permission(member: ProjectMember, permission: str) -> bool:
    return bool((member.permissions or {}).get(permission, False))


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------


async def get_membership(
    session: AsyncSession,
    project_id: uuid.UUID,
    user_id: int,
    include_deleted: bool = False,
) -> ProjectMember | None:
    """Active membership of a user in a project, or None."""
    stmt = (
        select(ProjectMember)
        .join(Project, Project.id == ProjectMember.project_id)
        .where(
            ProjectMember.project_id == project_id,
            ProjectMember.user_id == user_id,
            ProjectMember.left_at.is_(None),
        )
    )
    if not include_deleted:
        stmt = stmt.where(Project.deleted_at.is_(None))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_user_projects(
    session: AsyncSession,
    user_id: int,
    deleted: bool = False,
) -> list[Project]:
    """Projects the user belongs to; pinned first, then most recently updated."""
    stmt = (
        select(Project)
        .join(ProjectMember, ProjectMember.project_id == Project.id)
        .where(
            ProjectMember.user_id == user_id,
            ProjectMember.left_at.is_(None),
            Project.deleted_at.is_not(None) if deleted else Project.deleted_at.is_(None),
        )
        .order_by(Project.is_pinned.desc(), Project.updated_at.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def create_project(
    session: AsyncSession,
    user: User,
    name: str,
    description: str | None = None,
    project_number: str | None = None,
) -> Project:
    """Create a project with the user as its creator member."""
    project = Project(
        name=name,
        description=description,
        project_number=project_number,
        org_id=user.org_id,
        created_by_user_id=user.id,
    )
    session.add(project)
    await session.flush()
    session.add(ProjectMember(
        project_id=project.id,
        user_id=user.id,
        role=MemberRole.CREATOR,
        permissions=permissions_for_role(MemberRole.CREATOR),
    ))
    await session.flush()
    logger.info("Created project %s for user %d", project.id, user.id)
    return project


async def list_members(session: AsyncSession, project_id: uuid.UUID) -> list[tuple[ProjectMember, User]]:
    result = await session.execute(
        select(ProjectMember, User)
        .join(User, User.id == ProjectMember.user_id)
        .where(ProjectMember.project_id == project_id, ProjectMember.left_at.is_(None))
        .order_by(ProjectMember.joined_at)
    )
    return [(member, user) for member, user in result.all()]


async def get_project_stats(session: AsyncSession, project_id: uuid.UUID) -> dict:
    async def count(stmt) -> int:
        return int((await session.execute(stmt)).scalar_one() or 0)

    return {
        "member_count": await count(
            select(func.count(ProjectMember.id)).where(
                ProjectMember.project_id == project_id, ProjectMember.left_at.is_(None),
            )
        ),
        "file_count": await count(
            select(func.count(ProjectFile.id)).where(
                ProjectFile.project_id == project_id, ProjectFile.deleted_at.is_(None),
            )
        ),
        "chunk_count": await count(
            select(func.count(ProjectDocChunk.id)).where(ProjectDocChunk.project_id == project_id)
        ),
        "chat_count": await count(
            select(func.count(Chat.id)).where(Chat.project_id == project_id)
        ),
        "location_snapshot_count": await count(
            select(func.count(LocationSnapshot.id)).where(LocationSnapshot.project_id == project_id)
        ),
        "lca_snapshot_count": await count(
            select(func.count(LcaSnapshot.id)).where(LcaSnapshot.project_id == project_id)
        ),
    }


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


def check_invitation(
    invitation: ProjectInvitation | None,
    user: User,
    now: datetime | None = None,
) -> ProjectInvitation:
    """
    Validate an invitation for acceptance by `user`.

    Raises:
        NotFoundError: missing, no longer pending, or expired.
        ForbiddenError: invited email or organization does not match.
    """
    now = now or datetime.now(timezone.utc)
    if invitation is None or invitation.status != InvitationStatus.PENDING:
        raise NotFoundError("Invitation not found or no longer valid")
    if invitation.expires_at < now:
        raise NotFoundError("Invitation has expired")
    if invitation.email.strip().lower() != user.email.strip().lower():
        raise ForbiddenError("This invitation was sent to a different email address")
    project_org = invitation.project.org_id if invitation.project else None
    if project_org is not None and user.org_id != project_org:
        raise ForbiddenError("This invitation belongs to a different organization")
    return invitation


async def accept_invitation(
    session: AsyncSession,
    raw_token: str,
    user: User,
) -> tuple[ProjectMember, bool]:
    """
    Accept an invitation. Returns (membership, already_member).

    An existing active member still gets the invitation marked accepted.
    """
    result = await session.execute(
        select(ProjectInvitation).where(ProjectInvitation.token_hash == hash_secret(raw_token))
    )
    invitation = check_invitation(result.scalar_one_or_none(), user)

    now = datetime.now(timezone.utc)
    invitation.status = InvitationStatus.ACCEPTED
    invitation.responded_at = now

    existing = await get_membership(session, invitation.project_id, user.id)
    if existing is not None:
        await session.flush()
        return existing, True

    member = ProjectMember(
        project_id=invitation.project_id,
        user_id=user.id,
        role=invitation.role,
        permissions=permissions_for_role(invitation.role),
        invited_by_user_id=invitation.invited_by_user_id,
    )
    session.add(member)
    await session.flush()
    logger.info(
        "User %d joined project %s as %s", user.id, invitation.project_id, invitation.role.value,
    )
    return member, False
