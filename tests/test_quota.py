# =============================================================================
# Unit Tests — Monthly API Quotas
# =============================================================================
#
# Settings are patched per test so limits do not depend on the environment.
# The database is replaced with AsyncMock sessions.
# =============================================================================

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from grooshub.errors import QuotaExceededError
from grooshub.services.llm import LLMResponse
from grooshub.services.quota import (
    UsageMeter,
    check_quota,
    current_year_month,
    enforce_quota,
    evaluate_quota,
    get_usage_stats,
)


def _run(coro):
    return asyncio.run(coro)


def _settings(limit: int) -> MagicMock:
    mock_settings = MagicMock()
    mock_settings.quota_places_text_search_monthly = limit
    mock_settings.quota_openai_monthly = limit
    mock_settings.quota_warning_threshold = 0.8
    return mock_settings


def _session_counting(used: int) -> AsyncMock:
    session = AsyncMock()
    result = MagicMock()
    result.scalar_one.return_value = used
    session.execute.return_value = result
    return session


class TestEvaluateQuota:
    """Tests for the pure quota decision."""

    def test_unlimited_service(self):
        with patch("grooshub.services.quota.settings", _settings(0)):
            check = evaluate_quota("places_text_search", used=5000)
        assert check.allowed is True
        assert check.remaining is None
        assert check.limit == 0

    def test_under_limit(self):
        with patch("grooshub.services.quota.settings", _settings(100)):
            check = evaluate_quota("places_text_search", used=10)
        assert check.allowed is True
        assert check.remaining == 90
        assert check.message is None

    def test_warning_threshold_sets_message(self):
        with patch("grooshub.services.quota.settings", _settings(100)):
            check = evaluate_quota("places_text_search", used=85)
        assert check.allowed is True
        assert "Approaching" in check.message

    def test_exhausted(self):
        with patch("grooshub.services.quota.settings", _settings(100)):
            check = evaluate_quota("places_text_search", used=100)
        assert check.allowed is False
        assert check.remaining == 0

    def test_batch_must_fit(self):
        """Several calls at once are denied when fewer remain."""
        with patch("grooshub.services.quota.settings", _settings(100)):
            check = evaluate_quota("places_text_search", used=98, request_count=3)
        assert check.allowed is False
        assert check.remaining == 2

    def test_to_status_rounds_percent(self):
        with patch("grooshub.services.quota.settings", _settings(3)):
            status = evaluate_quota("places_text_search", used=1).to_status()
        assert status == {"limit": 3, "remaining": 2, "used": 1, "percent_used": 33.3}


class TestCheckQuota:
    """Tests for the async check and enforcement."""

    def test_counts_from_database(self):
        with patch("grooshub.services.quota.settings", _settings(10)):
            check = _run(check_quota(_session_counting(4), "openai"))
        assert check.used == 4
        assert check.remaining == 6

    def test_database_failure_allows_request(self):
        session = AsyncMock()
        session.execute.side_effect = RuntimeError("connection reset")
        with patch("grooshub.services.quota.settings", _settings(10)):
            check = _run(check_quota(session, "openai"))
        assert check.allowed is True
        assert check.message == "Quota check unavailable"

    def test_enforce_records_and_raises(self):
        record = AsyncMock()
        with (
            patch("grooshub.services.quota.settings", _settings(10)),
            patch("grooshub.services.quota.record_usage", record),
        ):
            with pytest.raises(QuotaExceededError) as exc_info:
                _run(enforce_quota(_session_counting(10), "places_text_search", "text_search", user_id=3))

        assert exc_info.value.details["quota_status"]["remaining"] == 0
        record.assert_awaited_once()
        assert record.await_args.args[2] == "quota_exceeded"

    def test_enforce_passes_under_limit(self):
        record = AsyncMock()
        with (
            patch("grooshub.services.quota.settings", _settings(10)),
            patch("grooshub.services.quota.record_usage", record),
        ):
            check = _run(enforce_quota(_session_counting(2), "places_text_search", "text_search"))
        assert check.allowed is True
        record.assert_not_awaited()


def test_current_year_month_format():
    assert current_year_month(datetime(2026, 1, 31, 23, 59, tzinfo=timezone.utc)) == "2026-01"


def _all_limits(limit: int) -> MagicMock:
    mock_settings = _settings(limit)
    mock_settings.quota_anthropic_monthly = limit
    mock_settings.quota_xai_monthly = limit
    mock_settings.quota_embeddings_monthly = 0
    mock_settings.quota_places_nearby_search_monthly = limit
    return mock_settings


class TestUsageStats:
    def test_groups_rows_by_service_and_status(self):
        session = AsyncMock()
        result = MagicMock()
        result.all.return_value = [
            ("openai", "success", 4),
            ("openai", "error", 1),
            ("places_text_search", "quota_exceeded", 2),
        ]
        session.execute.return_value = result

        with patch("grooshub.services.quota.settings", _all_limits(10)):
            stats = _run(get_usage_stats(session))

        assert stats["current_month"] == current_year_month()
        openai = stats["services"]["openai"]
        assert openai["used"] == 4
        assert openai["remaining"] == 6
        assert openai["errors"] == 1
        assert stats["services"]["places_text_search"]["quota_exceeded"] == 2
        # unlimited and unused services are still listed
        assert stats["services"]["embeddings"]["remaining"] is None
        assert stats["services"]["anthropic"]["used"] == 0


class FakeProvider:
    provider = "anthropic"
    model_id = "claude-haiku-4.5"

    def __init__(self, error: Exception | None = None):
        self.error = error
        self.calls = 0

    async def complete(self, messages, system=None, temperature=None, max_tokens=None):
        self.calls += 1
        if self.error:
            raise self.error
        return LLMResponse(content="ok", model=self.model_id, input_tokens=12, output_tokens=3)


class TestUsageMeter:
    """Each metered call is checked against, and counted under, its own service."""

    def _meter(self) -> UsageMeter:
        return UsageMeter(AsyncMock(), "rag_ask", user_id=5)

    def test_complete_records_success_under_provider(self):
        llm = FakeProvider()
        with (
            patch("grooshub.services.quota.enforce_quota", new_callable=AsyncMock) as enforce,
            patch("grooshub.services.quota.record_usage", new_callable=AsyncMock) as record,
        ):
            response = _run(self._meter().complete(llm, messages=[{"role": "user", "content": "x"}]))

        assert response.content == "ok"
        assert enforce.await_args.args[1:] == ("anthropic", "rag_ask")
        record.assert_awaited_once()
        assert record.await_args.args == ("anthropic", "rag_ask", "success")
        assert record.await_args.kwargs["input_tokens"] == 12
        assert record.await_args.kwargs["model_id"] == "claude-haiku-4.5"
        assert record.await_args.kwargs["user_id"] == 5

    def test_complete_failure_records_error_and_raises(self):
        llm = FakeProvider(error=RuntimeError("overloaded"))
        with (
            patch("grooshub.services.quota.enforce_quota", new_callable=AsyncMock),
            patch("grooshub.services.quota.record_usage", new_callable=AsyncMock) as record,
        ):
            with pytest.raises(RuntimeError):
                _run(self._meter().complete(llm, messages=[]))

        assert record.await_args.args[2] == "error"
        assert record.await_args.kwargs["error_message"] == "overloaded"

    def test_exhausted_quota_skips_the_call(self):
        llm = FakeProvider()
        with (
            patch(
                "grooshub.services.quota.enforce_quota",
                AsyncMock(side_effect=QuotaExceededError("anthropic", 10)),
            ),
            patch("grooshub.services.quota.record_usage", new_callable=AsyncMock) as record,
        ):
            with pytest.raises(QuotaExceededError):
                _run(self._meter().complete(llm, messages=[]))

        assert llm.calls == 0
        record.assert_not_awaited()

    def test_embed_query_counts_under_embeddings(self):
        with (
            patch("grooshub.services.quota.enforce_quota", new_callable=AsyncMock) as enforce,
            patch("grooshub.services.quota.record_usage", new_callable=AsyncMock) as record,
            patch("grooshub.services.quota.embed_query_async", AsyncMock(return_value=[0.1, 0.2])),
        ):
            embedding = _run(self._meter().embed_query("brandveiligheid"))

        assert embedding == [0.1, 0.2]
        assert enforce.await_args.args[1] == "embeddings"
        assert record.await_args.args == ("embeddings", "rag_ask", "success")
