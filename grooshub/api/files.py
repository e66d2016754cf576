# =============================================================================
# Project Files API — Upload & Processing Status
# =============================================================================
#
#   POST   /api/projects/{id}/files                   upload (can_manage_files, rate limited)
#   GET    /api/projects/{id}/files                   list
#   GET    /api/projects/{id}/files/{file_id}         status
#   POST   /api/projects/{id}/files/{file_id}/reprocess
#   DELETE /api/projects/{id}/files/{file_id}         soft delete + drop chunks
#
# Uploads are written to `upload_dir/<project_id>/` and processed by the
# process_project_file Celery task. The API answers 202 immediately;
# clients poll the file's embedding_status.
# =============================================================================

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from pathlib import Path

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from grooshub.api.deps import get_project_member, rate_limit, require_permission
from grooshub.config import settings
from grooshub.db.engine import get_async_session
from grooshub.db.models import EmbeddingStatus, ProjectDocChunk, ProjectFile, ProjectMember
from grooshub.models.responses import MessageResponse, ProjectFileResponse
from grooshub.services.parser import SUPPORTED_SUFFIXES, is_supported
from grooshub.workers.tasks import process_project_file

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/projects/{project_id}/files", tags=["Files"])


async def _get_file(session: AsyncSession, project_id: uuid.UUID, file_id: uuid.UUID) -> ProjectFile:
    project_file = await session.get(ProjectFile, file_id)
    if (
        project_file is None
        or project_file.project_id != project_id
        or project_file.deleted_at is not None
    ):
        raise HTTPException(status_code=404, detail="File not found")
    return project_file


async def _dispatch(session: AsyncSession, project_file: ProjectFile) -> None:
    # The worker reads the row, so it must be committed first
    await session.commit()
    task = process_project_file.delay(str(project_file.id))
    project_file.celery_task_id = task.id
    logger.info("Dispatched processing for file %s: task_id=%s", project_file.id, task.id)


@router.post(
    "",
    response_model=ProjectFileResponse,
    status_code=202,
    dependencies=[Depends(rate_limit("file_upload"))],
)
async def upload_file(
    project_id: uuid.UUID,
    file: UploadFile = File(..., description="PDF, DOCX, PPTX, HTML, TXT, MD or CSV"),
    member: ProjectMember = Depends(require_permission("can_manage_files")),
    session: AsyncSession = Depends(get_async_session),
) -> ProjectFile:
    if not file.filename or not is_supported(file.filename):
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported file type. Supported: {', '.join(sorted(SUPPORTED_SUFFIXES))}",
        )

    content = await file.read()
    if not content:
        raise HTTPException(status_code=400, detail="Uploaded file is empty.")
    if len(content) > settings.max_upload_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File exceeds the {settings.max_upload_bytes // (1024 * 1024)} MB limit.",
        )

    file_id = uuid.uuid4()
    upload_dir = Path(settings.upload_dir) / str(project_id)
    upload_dir.mkdir(parents=True, exist_ok=True)
    storage_path = upload_dir / f"{file_id}_{Path(file.filename).name}"
    storage_path.write_bytes(content)

    project_file = ProjectFile(
        id=file_id,
        project_id=project_id,
        user_id=member.user_id,
        filename=file.filename,
        mime_type=file.content_type,
        file_size=len(content),
        storage_path=str(storage_path),
        embedding_status=EmbeddingStatus.PENDING,
    )
    session.add(project_file)
    await session.flush()
    await session.refresh(project_file)
    logger.info("Saved upload %s (%d bytes) → %s", file.filename, len(content), storage_path)

    await _dispatch(session, project_file)
    return project_file


@router.get("", response_model=list[ProjectFileResponse])
async def list_files(
    project_id: uuid.UUID,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> list[ProjectFile]:
    result = await session.execute(
        select(ProjectFile)
        .where(ProjectFile.project_id == project_id, ProjectFile.deleted_at.is_(None))
        .order_by(ProjectFile.created_at.desc())
    )
    return list(result.scalars().all())


@router.get("/{file_id}", response_model=ProjectFileResponse)
async def get_file(
    project_id: uuid.UUID,
    file_id: uuid.UUID,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> ProjectFile:
    return await _get_file(session, project_id, file_id)


@router.post("/{file_id}/reprocess", response_model=ProjectFileResponse, status_code=202)
async def reprocess_file(
    project_id: uuid.UUID,
    file_id: uuid.UUID,
    member: ProjectMember = Depends(require_permission("can_manage_files")),
    session: AsyncSession = Depends(get_async_session),
) -> ProjectFile:
    project_file = await _get_file(session, project_id, file_id)
    if project_file.embedding_status == EmbeddingStatus.PROCESSING:
        raise HTTPException(status_code=409, detail="File is already being processed")

    project_file.embedding_status = EmbeddingStatus.PENDING
    project_file.embedding_error = None
    await _dispatch(session, project_file)
    return project_file


@router.delete("/{file_id}", response_model=MessageResponse)
async def delete_file(
    project_id: uuid.UUID,
    file_id: uuid.UUID,
    member: ProjectMember = Depends(require_permission("can_manage_files")),
    session: AsyncSession = Depends(get_async_session),
) -> MessageResponse:
    project_file = await _get_file(session, project_id, file_id)
    result = await session.execute(
        delete(ProjectDocChunk).where(ProjectDocChunk.file_id == file_id)
    )
    project_file.deleted_at = datetime.now(timezone.utc)
    project_file.chunk_count = 0
    logger.info("Deleted file %s and %d chunks", file_id, result.rowcount)
    return MessageResponse(message="File deleted")
