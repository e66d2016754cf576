# =============================================================================
# FastAPI Application Entry Point
# =============================================================================
#
# Run with:
#   uvicorn grooshub.main:app --reload
#
# Start-up configures logging and, when `create_tables_on_startup` is
# set, creates the pgvector extension and tables (development).
# Domain errors (GroosHubError) are rendered as {"error", "message"};
# anything unhandled becomes a logged 500.
# =============================================================================

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from grooshub.api import chat, chats, files, invitations, lca, locations, projects, rag, tasks
from grooshub.api.audit import AuditLoggingMiddleware
from grooshub.config import settings
from grooshub.db.engine import async_engine, init_db
from grooshub.errors import GroosHubError
from grooshub.logging_config import setup_logging
from grooshub.models.responses import HealthResponse

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level)
    logger.info("Starting %s v%s", settings.app_name, settings.app_version)
    logger.info("Default chat model: %s", settings.default_chat_model)
    logger.info("Audit logging: %s", settings.audit_logging_enabled)

    if settings.create_tables_on_startup:
        await init_db()
        logger.info("Database schema ensured")

    yield

    await async_engine.dispose()
    logger.info("Shut down %s", settings.app_name)


app = FastAPI(
    title="GroosHub API",
    description=(
        "Projects, location intelligence, building LCA and a document-grounded "
        "AI assistant for real-estate development."
    ),
    version=settings.app_version,
    lifespan=lifespan,
)

app.add_middleware(AuditLoggingMiddleware)


# ---------------------------------------------------------------------------
# Exception Handlers
# ---------------------------------------------------------------------------


@app.exception_handler(GroosHubError)
async def grooshub_error_handler(request: Request, exc: GroosHubError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s: %s", type(exc).__name__, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "message": "An unexpected error occurred"},
    )


# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(chat.router)
app.include_router(chats.router)
app.include_router(projects.router)
app.include_router(invitations.router)
app.include_router(files.router)
app.include_router(rag.router)
app.include_router(lca.router)
app.include_router(locations.router)
app.include_router(tasks.router)


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse(version=settings.app_version, service=settings.app_name)
