# =============================================================================
# Unit Tests — Project Invitations, Snapshot Versions & Domain Errors
# =============================================================================
#
# Invitation validation is a pure function over the invitation row and the
# accepting user, so it is tested with lightweight fakes.
# =============================================================================

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from grooshub.db.models import InvitationStatus, LcaSnapshot, LocationSnapshot, MemberRole
from grooshub.db.projects import accept_invitation, check_invitation
from grooshub.db.snapshots import next_version, set_active
from grooshub.errors import ForbiddenError, NotFoundError, QuotaExceededError, UnknownModelError

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _run(coro):
    return asyncio.run(coro)


@dataclass
class FakeProject:
    org_id: int | None = None


@dataclass
class FakeUser:
    id: int = 3
    email: str = "anna@example.com"
    org_id: int | None = None


@dataclass
class FakeInvitation:
    project_id: str = "p-1"
    email: str = "anna@example.com"
    role: MemberRole = MemberRole.MEMBER
    status: InvitationStatus = InvitationStatus.PENDING
    expires_at: datetime = NOW + timedelta(days=7)
    invited_by_user_id: int = 1
    responded_at: datetime | None = None
    project: FakeProject = field(default_factory=FakeProject)


class TestCheckInvitation:
    """Tests for check_invitation."""

    def test_valid_invitation_passes(self):
        invitation = FakeInvitation()
        assert check_invitation(invitation, FakeUser(), now=NOW) is invitation

    def test_missing_invitation_is_not_found(self):
        with pytest.raises(NotFoundError):
            check_invitation(None, FakeUser(), now=NOW)

    def test_already_accepted_is_not_found(self):
        with pytest.raises(NotFoundError):
            check_invitation(
                FakeInvitation(status=InvitationStatus.ACCEPTED), FakeUser(), now=NOW,
            )

    def test_expired_invitation(self):
        invitation = FakeInvitation(expires_at=NOW - timedelta(seconds=1))
        with pytest.raises(NotFoundError) as exc_info:
            check_invitation(invitation, FakeUser(), now=NOW)
        assert "expired" in exc_info.value.message

    def test_email_match_ignores_case(self):
        invitation = FakeInvitation(email="Anna@Example.COM")
        assert check_invitation(invitation, FakeUser(), now=NOW) is invitation

    def test_other_email_is_forbidden(self):
        with pytest.raises(ForbiddenError):
            check_invitation(FakeInvitation(email="bob@example.com"), FakeUser(), now=NOW)

    def test_other_organization_is_forbidden(self):
        invitation = FakeInvitation(project=FakeProject(org_id=10))
        with pytest.raises(ForbiddenError):
            check_invitation(invitation, FakeUser(org_id=11), now=NOW)

    def test_same_organization_passes(self):
        invitation = FakeInvitation(project=FakeProject(org_id=10))
        assert check_invitation(invitation, FakeUser(org_id=10), now=NOW) is invitation


class TestAcceptInvitation:
    """Tests for accept_invitation with a mocked session."""

    def _session(self, invitation) -> MagicMock:
        session = MagicMock()
        result = MagicMock()
        result.scalar_one_or_none.return_value = invitation
        session.execute = AsyncMock(return_value=result)
        session.flush = AsyncMock()
        return session

    def test_new_member_gets_role_permissions(self):
        invitation = FakeInvitation(
            role=MemberRole.ADMIN, expires_at=datetime.now(timezone.utc) + timedelta(days=1),
        )
        session = self._session(invitation)

        with patch("grooshub.db.projects.get_membership", new_callable=AsyncMock, return_value=None):
            member, already = _run(accept_invitation(session, "raw-token", FakeUser()))

        assert already is False
        assert member.role == MemberRole.ADMIN
        assert member.permissions["can_manage_members"] is True
        assert member.permissions["can_delete"] is False
        assert invitation.status == InvitationStatus.ACCEPTED
        assert invitation.responded_at is not None
        session.add.assert_called_once()

    def test_existing_member_still_marks_accepted(self):
        invitation = FakeInvitation(expires_at=datetime.now(timezone.utc) + timedelta(days=1))
        session = self._session(invitation)
        existing = MagicMock()

        with patch("grooshub.db.projects.get_membership", new_callable=AsyncMock, return_value=existing):
            member, already = _run(accept_invitation(session, "raw-token", FakeUser()))

        assert member is existing
        assert already is True
        assert invitation.status == InvitationStatus.ACCEPTED
        session.add.assert_not_called()


class TestSnapshotVersions:
    """Versions count up per project and exactly one snapshot ends up active."""

    def _session(self, max_version: int) -> MagicMock:
        session = MagicMock()
        result = MagicMock()
        result.scalar_one.return_value = max_version
        session.execute = AsyncMock(return_value=result)
        return session

    def test_next_version_follows_highest(self):
        session = self._session(3)
        assert _run(next_version(session, LocationSnapshot, uuid.uuid4())) == 4

    def test_first_version_is_one(self):
        session = self._session(0)
        assert _run(next_version(session, LcaSnapshot, uuid.uuid4())) == 1

    def test_set_active_clears_others_before_activating(self):
        project_id, snapshot_id = uuid.uuid4(), uuid.uuid4()
        session = self._session(0)
        _run(set_active(session, LocationSnapshot, project_id, snapshot_id))

        clear, activate = [c.args[0] for c in session.execute.await_args_list]
        clear_params = clear.compile().params
        activate_params = activate.compile().params

        assert clear_params["is_active"] is False
        assert "!=" in str(clear)
        assert activate_params["is_active"] is True
        assert snapshot_id in activate_params.values()
        assert project_id in clear_params.values()


class TestErrors:
    """Tests for the domain error envelope."""

    def test_to_dict_without_details(self):
        assert NotFoundError("Chat not found").to_dict() == {
            "error": "not_found", "message": "Chat not found",
        }

    def test_unknown_model(self):
        error = UnknownModelError("gpt-99")
        assert error.status_code == 400
        assert error.message == "Invalid model ID: gpt-99"

    def test_quota_exceeded_carries_details(self):
        error = QuotaExceededError("places_text_search", 1000, details={"quota_status": {"remaining": 0}})
        body = error.to_dict()
        assert error.status_code == 429
        assert body["error"] == "quota_exceeded"
        assert body["details"]["quota_status"]["remaining"] == 0
