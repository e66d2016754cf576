# =============================================================================
# Unit Tests — Authentication, Project Permissions & Rate Limiting
# =============================================================================
#
# Tests auth components without requiring Redis, a database, or a running API.
# Uses mocking for external dependencies (Redis, DB sessions).
#
# Test groups:
#   1. Key / token generation & hashing (pure functions)
#   2. Auth dependency (get_current_user)
#   3. Role permissions & permission dependency
#   4. Rate limiter (check_rate_limit) and its dependency
# =============================================================================

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException, Response

from grooshub.db.models import MemberRole
from grooshub.services.auth import generate_api_key, generate_invitation_token, hash_secret


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


# ---------------------------------------------------------------------------
# 1. Key Generation & Hashing
# ---------------------------------------------------------------------------


class TestKeyGeneration:
    """Tests for API key and invitation token generation."""

    def test_key_format_has_prefix(self):
        raw_key, prefix, key_hash = generate_api_key()
        assert raw_key.startswith("gh-")

    def test_key_length(self):
        """Generated key is 'gh-' + 64 hex chars = 67 chars total."""
        raw_key, _, _ = generate_api_key()
        assert len(raw_key) == 67

    def test_prefix_is_first_8_chars(self):
        raw_key, prefix, _ = generate_api_key()
        assert prefix == raw_key[:8]

    def test_hash_matches_raw_key(self):
        raw_key, _, key_hash = generate_api_key()
        assert key_hash == hash_secret(raw_key)
        assert len(key_hash) == 64
        int(key_hash, 16)

    def test_keys_are_unique(self):
        raw1, _, hash1 = generate_api_key()
        raw2, _, hash2 = generate_api_key()
        assert raw1 != raw2
        assert hash1 != hash2

    def test_invitation_token_hash(self):
        raw_token, token_hash = generate_invitation_token()
        assert token_hash == hash_secret(raw_token)
        assert raw_token != token_hash

    def test_hash_is_deterministic(self):
        assert hash_secret("gh-abc123") == hash_secret("gh-abc123")
        assert hash_secret("gh-key1") != hash_secret("gh-key2")


# ---------------------------------------------------------------------------
# Helpers — lightweight fakes for dependency tests
# ---------------------------------------------------------------------------


@dataclass
class FakeUser:
    """Lightweight stand-in for the User ORM model."""

    id: int = 7
    email: str = "dev@example.com"
    name: str = "Dev"
    org_id: int | None = None


@dataclass
class FakeApiKey:
    """Lightweight stand-in for the ApiKey ORM model."""

    id: int = 1
    user_id: int = 7
    key_prefix: str = "gh-test0"
    is_active: bool = True
    expires_at: datetime | None = None
    last_used_at: datetime | None = None
    user: FakeUser = field(default_factory=FakeUser)


@dataclass
class FakeMember:
    """Stand-in for ProjectMember."""

    user_id: int = 7
    role: MemberRole = MemberRole.MEMBER
    permissions: dict | None = None


@dataclass
class FakeCredentials:
    """Stand-in for HTTPAuthorizationCredentials."""

    credentials: str = "gh-testkey"


class FakeRequestState:
    """Writable request.state."""

    pass


class FakeRequest:
    """Minimal Request stand-in."""

    def __init__(self):
        self.state = FakeRequestState()


def _session_returning(value) -> AsyncMock:
    mock_session = AsyncMock()
    mock_result = MagicMock()
    mock_result.scalar_one_or_none.return_value = value
    mock_session.execute.return_value = mock_result
    return mock_session


# ---------------------------------------------------------------------------
# 2. Auth Dependency (get_current_user)
# ---------------------------------------------------------------------------


class TestGetCurrentUser:
    """Tests for the get_current_user dependency."""

    def test_missing_credentials_raises_401(self):
        from grooshub.api.deps import get_current_user

        with pytest.raises(HTTPException) as exc_info:
            _run(get_current_user(
                request=FakeRequest(),
                credentials=None,
                session=AsyncMock(),
            ))
        assert exc_info.value.status_code == 401

    def test_invalid_key_raises_401(self):
        from grooshub.api.deps import get_current_user

        with pytest.raises(HTTPException) as exc_info:
            _run(get_current_user(
                request=FakeRequest(),
                credentials=FakeCredentials(),
                session=_session_returning(None),
            ))
        assert exc_info.value.status_code == 401

    def test_inactive_key_raises_403(self):
        from grooshub.api.deps import get_current_user

        with pytest.raises(HTTPException) as exc_info:
            _run(get_current_user(
                request=FakeRequest(),
                credentials=FakeCredentials(),
                session=_session_returning(FakeApiKey(is_active=False)),
            ))
        assert exc_info.value.status_code == 403
        assert "deactivated" in exc_info.value.detail

    def test_expired_key_raises_403(self):
        from grooshub.api.deps import get_current_user

        fake_key = FakeApiKey(expires_at=datetime.now(timezone.utc) - timedelta(hours=1))
        with pytest.raises(HTTPException) as exc_info:
            _run(get_current_user(
                request=FakeRequest(),
                credentials=FakeCredentials(),
                session=_session_returning(fake_key),
            ))
        assert exc_info.value.status_code == 403
        assert "expired" in exc_info.value.detail

    def test_valid_key_returns_user(self):
        """A valid key resolves to its user and stamps last_used_at."""
        from grooshub.api.deps import get_current_user

        fake_key = FakeApiKey()
        request = FakeRequest()
        user = _run(get_current_user(
            request=request,
            credentials=FakeCredentials(),
            session=_session_returning(fake_key),
        ))

        assert user is fake_key.user
        assert fake_key.last_used_at is not None
        assert request.state.user_id == 7


# ---------------------------------------------------------------------------
# 3. Role Permissions
# ---------------------------------------------------------------------------


class TestRolePermissions:
    """Tests for role → permission mapping and the permission dependency."""

    def test_creator_has_everything(self):
        from grooshub.db.projects import PERMISSION_KEYS, permissions_for_role

        perms = permissions_for_role(MemberRole.CREATOR)
        assert all(perms[key] for key in PERMISSION_KEYS)

    def test_admin_cannot_delete(self):
        from grooshub.db.projects import permissions_for_role

        perms = permissions_for_role(MemberRole.ADMIN)
        assert perms["can_delete"] is False
        assert perms["can_manage_members"] is True

    def test_member_can_edit_and_manage_files(self):
        from grooshub.db.projects import permissions_for_role

        perms = permissions_for_role(MemberRole.MEMBER)
        assert perms["can_edit"] is True
        assert perms["can_manage_files"] is True
        assert perms["can_manage_members"] is False

    def test_viewer_has_nothing(self):
        from grooshub.db.projects import permissions_for_role

        assert not any(permissions_for_role(MemberRole.VIEWER).values())

    def test_has_permission_handles_missing_map(self):
        from grooshub.db.projects import has_permission

        assert has_permission(FakeMember(permissions=None), "can_edit") is False
        assert has_permission(FakeMember(permissions={"can_edit": True}), "can_edit") is True

    def test_require_permission_denies_with_403(self):
        from grooshub.api.deps import require_permission
        from grooshub.db.projects import permissions_for_role

        dependency = require_permission("can_delete")
        member = FakeMember(permissions=permissions_for_role(MemberRole.ADMIN))
        with pytest.raises(HTTPException) as exc_info:
            _run(dependency(member=member))
        assert exc_info.value.status_code == 403
        assert "can_delete" in exc_info.value.detail

    def test_require_permission_returns_member(self):
        from grooshub.api.deps import require_permission
        from grooshub.db.projects import permissions_for_role

        dependency = require_permission("can_edit")
        member = FakeMember(permissions=permissions_for_role(MemberRole.MEMBER))
        assert _run(dependency(member=member)) is member

    def test_non_member_gets_404(self):
        from grooshub.api.deps import get_project_member

        with patch("grooshub.api.deps.get_membership", new_callable=AsyncMock, return_value=None):
            with pytest.raises(HTTPException) as exc_info:
                _run(get_project_member(
                    project_id="00000000-0000-0000-0000-000000000001",
                    request=FakeRequest(),
                    user=FakeUser(),
                    session=AsyncMock(),
                ))
        assert exc_info.value.status_code == 404


# ---------------------------------------------------------------------------
# 4. Rate Limiter
# ---------------------------------------------------------------------------


def _mock_redis(zcard: int) -> MagicMock:
    mock_pipe = MagicMock()
    mock_pipe.execute = AsyncMock(return_value=[None, zcard, None, None])
    mock_redis = MagicMock()
    mock_redis.pipeline.return_value = mock_pipe
    return mock_redis


class TestRateLimiter:
    """Tests for the Redis-based sliding-window rate limiter."""

    def test_under_limit_passes(self):
        from grooshub.services.rate_limiter import action_limit, check_rate_limit

        with patch(
            "grooshub.services.rate_limiter._get_rate_limit_redis",
            return_value=_mock_redis(5),
        ):
            status = _run(check_rate_limit(7, "chat_message"))

        limit = action_limit("chat_message")
        assert status.limit == limit
        assert status.remaining == limit - 6

    def test_over_limit_raises_429(self):
        from grooshub.services.rate_limiter import action_limit, check_rate_limit

        limit = action_limit("project_create")
        with patch(
            "grooshub.services.rate_limiter._get_rate_limit_redis",
            return_value=_mock_redis(limit),
        ):
            with pytest.raises(HTTPException) as exc_info:
                _run(check_rate_limit(7, "project_create"))

        assert exc_info.value.status_code == 429
        assert exc_info.value.headers["Retry-After"] == "60"
        assert exc_info.value.headers["X-RateLimit-Remaining"] == "0"

    def test_redis_failure_allows_request(self):
        """If Redis is down, the request is allowed (fail-open)."""
        from grooshub.services.rate_limiter import check_rate_limit

        with patch(
            "grooshub.services.rate_limiter._get_rate_limit_redis",
            side_effect=ConnectionError("Redis unavailable"),
        ):
            status = _run(check_rate_limit(7, "file_upload"))
        assert status.remaining == status.limit

    def test_unknown_action_uses_default_limit(self):
        from grooshub.services.rate_limiter import action_limit

        assert action_limit("something_else") == action_limit("api_default")

    def test_dependency_sets_headers(self):
        from grooshub.api.deps import rate_limit
        from grooshub.services.rate_limiter import RateLimitStatus

        response = Response()
        status = RateLimitStatus(limit=30, remaining=29, reset_at=1700000000)
        with patch("grooshub.api.deps.check_rate_limit", new_callable=AsyncMock, return_value=status):
            _run(rate_limit("chat_message")(response=response, user=FakeUser()))

        assert response.headers["X-RateLimit-Limit"] == "30"
        assert response.headers["X-RateLimit-Remaining"] == "29"
        assert response.headers["X-RateLimit-Reset"] == "1700000000"
