# =============================================================================
# Database Engine & Session Management
# =============================================================================
#
# Two engines point at the same PostgreSQL database:
#
# - async_engine (asyncpg): used by FastAPI handlers, middleware and
#   background tasks running inside the web process.
# - sync engine (psycopg2): used by Celery workers, which are synchronous
#   and cannot drive an async engine. Created lazily so the web process
#   never needs psycopg2 at import time.
#
# COMMIT POLICY:
# 1. Dependency-injected sessions (get_async_session via Depends) commit
#    when the handler returns and roll back on exceptions. Handlers may
#    call flush()/commit() early when they need generated IDs.
# 2. Self-managed sessions (async_session_factory() directly) are used by
#    the audit middleware, usage recording and streaming callbacks that
#    outlive the request session. These MUST commit explicitly.
# =============================================================================

from collections.abc import AsyncGenerator, Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import Session, sessionmaker

from grooshub.config import settings

# ---------------------------------------------------------------------------
# Async Engine
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
    pool_size=5,
    max_overflow=10,
)

# expire_on_commit=False: attribute access after commit must not trigger
# lazy reloads, which fail outside a greenlet context.
async_session_factory = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Sync Engine — For Celery Workers (Lazy Initialization)
# ---------------------------------------------------------------------------

_sync_engine = None
_sync_session_factory = None


def _get_sync_engine():
    """Lazily create and cache the sync SQLAlchemy engine."""
    global _sync_engine
    if _sync_engine is None:
        _sync_engine = create_engine(
            settings.database_url_sync,
            echo=settings.debug,
            pool_size=5,
            max_overflow=10,
        )
    return _sync_engine


def _get_sync_session_factory():
    """Lazily create and cache the sync session factory."""
    global _sync_session_factory
    if _sync_session_factory is None:
        _sync_session_factory = sessionmaker(
            bind=_get_sync_engine(),
            class_=Session,
            expire_on_commit=False,
        )
    return _sync_session_factory


@contextmanager
def get_sync_session() -> Generator[Session, None, None]:
    """
    Context manager that provides a sync database session for Celery workers.

    Usage in Celery tasks:
        with get_sync_session() as session:
            project_file = session.get(ProjectFile, file_id)
            project_file.embedding_status = EmbeddingStatus.COMPLETED
            # Commits on exit, rolls back on exception
    """
    factory = _get_sync_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    Usage in route handlers:
        @router.get("/projects")
        async def list_projects(session: AsyncSession = Depends(get_async_session)):
            result = await session.execute(select(Project))
            return result.scalars().all()

    Commits when the handler returns; rolls back and re-raises on error.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """
    Create the pgvector extension and all tables (development only).

    Production schemas are managed outside the application.
    """
    from sqlalchemy import text

    from grooshub.db.models import Base

    async with async_engine.begin() as conn:
        await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
