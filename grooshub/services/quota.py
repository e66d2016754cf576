# =============================================================================
# Quota Service — Monthly External-API Counters
# =============================================================================
#
# Every outbound call to a metered vendor API writes one ApiUsage row. The
# quota for a service is the number of rows with status='success' in the
# current calendar month ("YYYY-MM", UTC), shared across all users.
#
# FLOW (per external call):
#   1. check_quota() / enforce_quota()   — before dispatch
#   2. call the vendor
#   3. record_usage(status=...)          — success, error or quota_exceeded
#
# Failure behaviour:
# - check_quota() allows the request if the count query fails. A database
#   hiccup must not take down every AI feature.
# - record_usage() logs and swallows its own failures.
#
# UsageMeter wraps steps 1-3 around a single LLM or embedding call. One
# meter travels with a request through the RAG pipeline, so every vendor
# hop is checked and counted under its own provider.
#
# Sync variants exist for the Celery worker, which holds a sync Session.
# =============================================================================

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from grooshub.config import settings
from grooshub.db.engine import async_session_factory
from grooshub.db.models import ApiUsage
from grooshub.errors import QuotaExceededError
from grooshub.services.embedder import embed_query_async
from grooshub.services.llm import LLMProvider, LLMResponse

logger = logging.getLogger(__name__)

SERVICES = (
    "openai",
    "anthropic",
    "xai",
    "embeddings",
    "places_text_search",
    "places_nearby_search",
)


@dataclass
class QuotaCheck:
    allowed: bool
    remaining: int | None  # None = unlimited
    limit: int  # 0 = unlimited
    used: int
    percent_used: float
    message: str | None = None

    def to_status(self) -> dict:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "used": self.used,
            "percent_used": round(self.percent_used, 1),
        }


def current_year_month(now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.strftime("%Y-%m")


def quota_limit(service: str) -> int:
    """Configured monthly limit for a service; 0 means unlimited."""
    limits = {
        "openai": settings.quota_openai_monthly,
        "anthropic": settings.quota_anthropic_monthly,
        "xai": settings.quota_xai_monthly,
        "embeddings": settings.quota_embeddings_monthly,
        "places_text_search": settings.quota_places_text_search_monthly,
        "places_nearby_search": settings.quota_places_nearby_search_monthly,
    }
    return limits.get(service, 0)


def _success_count_stmt(service: str, year_month: str):
    return select(func.count(ApiUsage.id)).where(
        ApiUsage.service == service,
        ApiUsage.year_month == year_month,
        ApiUsage.status == "success",
    )


def evaluate_quota(service: str, used: int, request_count: int = 1) -> QuotaCheck:
    """Decide whether `request_count` more calls fit in the month's quota."""
    limit = quota_limit(service)
    if limit <= 0:
        return QuotaCheck(
            allowed=True, remaining=None, limit=0, used=used, percent_used=0.0,
        )

    remaining = max(0, limit - used)
    percent_used = used / limit * 100
    allowed = remaining >= request_count

    message = None
    if not allowed:
        message = f"Monthly quota limit reached for {service} ({limit} requests)."
        logger.error("Quota exceeded for %s: %d/%d", service, used, limit)
    elif percent_used >= 90:
        logger.critical(
            "Quota for %s at %.1f%% (%d remaining)", service, percent_used, remaining,
        )
    elif percent_used >= settings.quota_warning_threshold * 100:
        message = f"Approaching monthly quota for {service}: {remaining} remaining."
        logger.warning(
            "Quota for %s at %.1f%% (%d remaining)", service, percent_used, remaining,
        )

    return QuotaCheck(
        allowed=allowed,
        remaining=remaining,
        limit=limit,
        used=used,
        percent_used=percent_used,
        message=message,
    )


def _fail_open(service: str, exc: Exception) -> QuotaCheck:
    logger.warning("Quota check failed for %s, allowing request: %s", service, exc)
    limit = quota_limit(service)
    return QuotaCheck(
        allowed=True,
        remaining=limit or None,
        limit=limit,
        used=0,
        percent_used=0.0,
        message="Quota check unavailable",
    )


# ---------------------------------------------------------------------------
# Async API (web process)
# ---------------------------------------------------------------------------


async def get_monthly_usage(session: AsyncSession, service: str) -> int:
    result = await session.execute(
        _success_count_stmt(service, current_year_month())
    )
    return int(result.scalar_one() or 0)


async def check_quota(
    session: AsyncSession,
    service: str,
    request_count: int = 1,
) -> QuotaCheck:
    """Check the service's monthly quota. Allows the request if the check fails."""
    if quota_limit(service) <= 0:
        return evaluate_quota(service, 0, request_count)
    try:
        used = await get_monthly_usage(session, service)
    except Exception as e:
        return _fail_open(service, e)
    return evaluate_quota(service, used, request_count)


async def enforce_quota(
    session: AsyncSession,
    service: str,
    endpoint: str,
    request_count: int = 1,
    user_id: int | None = None,
) -> QuotaCheck:
    """
    check_quota(), recording a quota_exceeded row and raising when denied.

    Raises:
        QuotaExceededError: 429 with the quota status in `details`.
    """
    check = await check_quota(session, service, request_count)
    if not check.allowed:
        await record_usage(
            service,
            endpoint,
            "quota_exceeded",
            user_id=user_id,
            error_message="Monthly quota limit exceeded",
        )
        raise QuotaExceededError(
            service,
            check.limit,
            details={"quota_status": {**check.to_status(), "remaining": 0}},
        )
    return check


async def record_usage(
    service: str,
    endpoint: str,
    status: str,
    *,
    user_id: int | None = None,
    model_id: str | None = None,
    input_tokens: int | None = None,
    output_tokens: int | None = None,
    results_count: int | None = None,
    response_time_ms: int | None = None,
    error_message: str | None = None,
) -> None:
    """
    Insert one usage row in its own session.

    A separate session keeps the row even when the request session rolls
    back. Never raises.
    """
    try:
        async with async_session_factory() as session:
            session.add(ApiUsage(
                service=service,
                endpoint=endpoint,
                year_month=current_year_month(),
                status=status,
                error_message=error_message,
                user_id=user_id,
                model_id=model_id,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                results_count=results_count,
                response_time_ms=response_time_ms,
            ))
            await session.commit()
        logger.debug("Recorded usage: %s/%s %s", service, endpoint, status)
    except Exception as e:
        logger.error("Failed to record API usage for %s: %s", service, e)


async def get_usage_stats(session: AsyncSession) -> dict:
    """Per-service usage for the current month."""
    year_month = current_year_month()
    result = await session.execute(
        select(ApiUsage.service, ApiUsage.status, func.count(ApiUsage.id))
        .where(ApiUsage.year_month == year_month)
        .group_by(ApiUsage.service, ApiUsage.status)
    )

    counts: dict[str, dict[str, int]] = {}
    for service, status, count in result.all():
        counts.setdefault(service, {})[status] = count

    services = {}
    for service in SERVICES:
        by_status = counts.get(service, {})
        check = evaluate_quota(service, by_status.get("success", 0), 0)
        services[service] = {
            **asdict(check),
            "errors": by_status.get("error", 0),
            "quota_exceeded": by_status.get("quota_exceeded", 0),
        }

    return {"current_month": year_month, "services": services}


# ---------------------------------------------------------------------------
# Metered Calls
# ---------------------------------------------------------------------------


@dataclass
class UsageMeter:
    """Quota check and usage row around each vendor call of one request."""

    session: AsyncSession
    endpoint: str
    user_id: int | None = None

    async def complete(self, llm: LLMProvider, **kwargs) -> LLMResponse:
        """
        llm.complete() under the provider's quota.

        Raises:
            QuotaExceededError: The provider's monthly quota is used up.
        """
        await enforce_quota(self.session, llm.provider, self.endpoint, user_id=self.user_id)
        start = time.monotonic()
        try:
            response = await llm.complete(**kwargs)
        except Exception as e:
            await record_usage(
                llm.provider, self.endpoint, "error",
                user_id=self.user_id, model_id=llm.model_id, error_message=str(e)[:1000],
            )
            raise

        await record_usage(
            llm.provider, self.endpoint, "success",
            user_id=self.user_id,
            model_id=llm.model_id,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            response_time_ms=int((time.monotonic() - start) * 1000),
        )
        return response

    async def embed_query(self, text: str) -> list[float]:
        await enforce_quota(self.session, "embeddings", self.endpoint, user_id=self.user_id)
        start = time.monotonic()
        try:
            embedding = await embed_query_async(text)
        except Exception as e:
            await record_usage(
                "embeddings", self.endpoint, "error",
                user_id=self.user_id, error_message=str(e)[:1000],
            )
            raise

        await record_usage(
            "embeddings", self.endpoint, "success",
            user_id=self.user_id,
            model_id=settings.embedding_model,
            response_time_ms=int((time.monotonic() - start) * 1000),
        )
        return embedding


# ---------------------------------------------------------------------------
# Sync API (Celery worker)
# ---------------------------------------------------------------------------


def check_quota_sync(session: Session, service: str, request_count: int = 1) -> QuotaCheck:
    if quota_limit(service) <= 0:
        return evaluate_quota(service, 0, request_count)
    try:
        used = session.execute(
            _success_count_stmt(service, current_year_month())
        ).scalar_one()
    except Exception as e:
        return _fail_open(service, e)
    return evaluate_quota(service, int(used or 0), request_count)


def record_usage_sync(
    session: Session,
    service: str,
    endpoint: str,
    status: str,
    **fields,
) -> None:
    """Add a usage row to the worker's session; committed with the task."""
    try:
        with session.begin_nested():
            session.add(ApiUsage(
                service=service,
                endpoint=endpoint,
                year_month=current_year_month(),
                status=status,
                **fields,
            ))
    except Exception as e:
        logger.error("Failed to record API usage for %s: %s", service, e)
