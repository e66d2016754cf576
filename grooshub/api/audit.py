# =============================================================================
# Audit Logging Middleware
# =============================================================================
#
# Records every API request to the audit_logs table: who called which
# endpoint, for which project, with what status and latency.
#
# The user and project are read from request.state, where the auth and
# project-access dependencies put them. Writes use their own session and
# happen after the response is produced; a failed write is logged and the
# request still succeeds.
# =============================================================================

from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from grooshub.config import settings
from grooshub.db.engine import async_session_factory
from grooshub.db.models import AuditLog

logger = logging.getLogger(__name__)

_SKIP_PATHS = {"/health", "/docs", "/redoc", "/openapi.json"}


def endpoint_name(path: str) -> str:
    """'/api/projects/<id>/files' → 'projects'."""
    parts = [p for p in path.strip("/").split("/") if p]
    if parts and parts[0] == "api":
        parts = parts[1:]
    return parts[0] if parts else ""


class AuditLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if not settings.audit_logging_enabled or request.url.path in _SKIP_PATHS:
            return await call_next(request)

        start_time = time.monotonic()
        response = await call_next(request)
        elapsed_ms = int((time.monotonic() - start_time) * 1000)

        try:
            async with async_session_factory() as session:
                session.add(AuditLog(
                    user_id=getattr(request.state, "user_id", None),
                    endpoint=endpoint_name(request.url.path),
                    method=request.method,
                    path=request.url.path[:500],
                    project_id=getattr(request.state, "audit_project_id", None),
                    client_ip=request.client.host if request.client else None,
                    status_code=response.status_code,
                    response_time_ms=elapsed_ms,
                ))
                await session.commit()
        except Exception as e:
            logger.warning("Failed to write audit log: %s", e)

        return response
