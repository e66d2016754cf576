# =============================================================================
# Celery Tasks — Project File Processing
# =============================================================================
#
# PIPELINE (process_project_file):
#   1. embedding_status → PROCESSING
#   2. Parse the stored file (Docling for PDF/Office/HTML, plain text otherwise)
#   3. Chunk with tiktoken
#   4. Check the embeddings quota, embed in batches, record usage
#   5. Replace the file's chunks in project_doc_chunks
#   6. embedding_status → COMPLETED with chunk_count / embedded_at
#
# Workers are synchronous: they use the psycopg2 engine via
# get_sync_session(), never the async engine.
#
# RETRIES: up to 3, 60s apart. Errors that a retry cannot fix (unsupported
# type, missing file, no extractable text, missing API key, exhausted quota)
# fail immediately.
#
# USAGE: every embedding call that completed gets a success row, written in
# its own session even when a later batch fails.
# =============================================================================

import logging
import math
import time
import uuid
from datetime import datetime, timezone

from sqlalchemy import delete, update

from grooshub.config import settings
from grooshub.db.engine import get_sync_session
from grooshub.db.models import EmbeddingStatus, ProjectDocChunk, ProjectFile
from grooshub.errors import ConfigurationError, QuotaExceededError
from grooshub.services.chunker import chunk_document
from grooshub.services.embedder import EmbeddingResult, embed_batch
from grooshub.services.parser import EmptyDocumentError, UnsupportedFileTypeError, parse_file
from grooshub.services.quota import check_quota_sync, record_usage_sync
from grooshub.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

_PERMANENT_ERRORS = (
    UnsupportedFileTypeError,
    FileNotFoundError,
    EmptyDocumentError,
    ConfigurationError,
    QuotaExceededError,
)


def _set_status(
    file_id: uuid.UUID,
    status: EmbeddingStatus,
    error: str | None = None,
    **values,
) -> None:
    """Commit a status change immediately, in its own session."""
    with get_sync_session() as session:
        session.execute(
            update(ProjectFile)
            .where(ProjectFile.id == file_id)
            .values(embedding_status=status, embedding_error=error, **values)
        )


def _record_embedding_usage(
    user_id: int | None,
    embedded: EmbeddingResult,
    elapsed_ms: int,
    error: str | None = None,
) -> None:
    """One success row per completed call, plus an error row for a failed one."""
    calls = max(embedded.api_calls, 1)
    with get_sync_session() as session:
        for _ in range(embedded.api_calls):
            record_usage_sync(
                session, "embeddings", "process_project_file", "success",
                user_id=user_id,
                model_id=settings.embedding_model,
                input_tokens=embedded.prompt_tokens // calls,
                response_time_ms=elapsed_ms // calls,
            )
        if error is not None:
            record_usage_sync(
                session, "embeddings", "process_project_file", "error",
                user_id=user_id, model_id=settings.embedding_model, error_message=error,
            )


@celery_app.task(
    bind=True,
    name="process_project_file",
    max_retries=3,
    default_retry_delay=60,
)
def process_project_file(self, file_id: str) -> dict:
    """
    Parse, chunk, embed and store one uploaded project file.

    Args:
        file_id: ProjectFile UUID as a string (JSON-serialisable).

    Returns:
        Summary dict with chunk and token counts.
    """
    task_id = self.request.id
    fid = uuid.UUID(file_id)

    try:
        with get_sync_session() as session:
            project_file = session.get(ProjectFile, fid)
            if project_file is None or project_file.deleted_at is not None:
                logger.warning("[%s] File %s no longer exists, skipping", task_id, file_id)
                return {"file_id": file_id, "status": "skipped"}
            project_id = project_file.project_id
            storage_path = project_file.storage_path
            filename = project_file.filename
            user_id = project_file.user_id

        _set_status(fid, EmbeddingStatus.PROCESSING)
        logger.info("[%s] Processing %s (project %s)", task_id, filename, project_id)

        parsed = parse_file(storage_path, filename)
        chunks = chunk_document(
            parsed,
            chunk_size=settings.chunk_size,
            chunk_overlap=settings.chunk_overlap,
        )
        if not chunks:
            raise EmptyDocumentError("No text could be extracted from the file")
        logger.info("[%s] %d pages → %d chunks", task_id, parsed.page_count, len(chunks))

        expected_calls = math.ceil(len(chunks) / settings.embedding_batch_size)
        with get_sync_session() as session:
            quota = check_quota_sync(session, "embeddings", expected_calls)
            if not quota.allowed:
                record_usage_sync(
                    session, "embeddings", "process_project_file", "quota_exceeded",
                    user_id=user_id, error_message=quota.message,
                )
        if not quota.allowed:
            raise QuotaExceededError("embeddings", quota.limit)

        embedded = EmbeddingResult(embeddings=[], prompt_tokens=0, api_calls=0)
        error: str | None = None
        start = time.monotonic()
        try:
            embed_batch([c.content for c in chunks], result=embedded)
        except Exception as e:
            error = str(e)[:1000]
            raise
        finally:
            _record_embedding_usage(
                user_id, embedded, int((time.monotonic() - start) * 1000), error,
            )

        with get_sync_session() as session:
            session.execute(delete(ProjectDocChunk).where(ProjectDocChunk.file_id == fid))
            session.add_all([
                ProjectDocChunk(
                    project_id=project_id,
                    file_id=fid,
                    chunk_text=chunk.content,
                    chunk_index=chunk.chunk_index,
                    token_count=chunk.token_count,
                    page_number=chunk.page_number,
                    section_title=chunk.section_title,
                    source_file=filename,
                    embedding=embedding,
                    metadata_=chunk.metadata,
                )
                for chunk, embedding in zip(chunks, embedded.embeddings)
            ])
            session.execute(
                update(ProjectFile)
                .where(ProjectFile.id == fid)
                .values(
                    embedding_status=EmbeddingStatus.COMPLETED,
                    embedding_error=None,
                    chunk_count=len(chunks),
                    embedded_at=datetime.now(timezone.utc),
                )
            )

        summary = {
            "file_id": file_id,
            "status": "completed",
            "chunk_count": len(chunks),
            "page_count": parsed.page_count,
            "prompt_tokens": embedded.prompt_tokens,
        }
        logger.info("[%s] Processing complete: %s", task_id, summary)
        return summary

    except _PERMANENT_ERRORS as exc:
        logger.error("[%s] Processing failed for %s: %s", task_id, file_id, exc)
        _set_status(fid, EmbeddingStatus.FAILED, error=str(exc)[:1000])
        return {"file_id": file_id, "status": "failed", "error": str(exc)}

    except Exception as exc:
        logger.exception("[%s] Processing failed for %s: %s", task_id, file_id, exc)
        _set_status(fid, EmbeddingStatus.FAILED, error=str(exc)[:1000])
        raise self.retry(exc=exc)
