# =============================================================================
# Tasks API — Project Kanban Board, Groups, Assignments & Notes
# =============================================================================
#
# TASKS
#   GET    /api/projects/{id}/tasks               ?status ?assigned_to ?group_id ?sort_by
#   POST   /api/projects/{id}/tasks               can_edit
#   GET    /api/projects/{id}/tasks/stats
#   GET    /api/projects/{id}/tasks/{tid}         with notes and subtasks
#   PATCH  /api/projects/{id}/tasks/{tid}         can_edit
#   DELETE /api/projects/{id}/tasks/{tid}         can_edit, soft delete
#
# ASSIGNMENTS & NOTES
#   POST   /api/projects/{id}/tasks/{tid}/assign          can_edit, members only
#   DELETE /api/projects/{id}/tasks/{tid}/assign/{uid}    can_edit
#   GET    /api/projects/{id}/tasks/{tid}/notes
#   POST   /api/projects/{id}/tasks/{tid}/notes           any member
#   PATCH  /api/projects/{id}/tasks/{tid}/notes/{nid}     author only
#   DELETE /api/projects/{id}/tasks/{tid}/notes/{nid}     author only
#
# GROUPS
#   GET    /api/projects/{id}/task-groups
#   POST   /api/projects/{id}/task-groups                 can_edit
#   PATCH  /api/projects/{id}/task-groups/{gid}           can_edit
#   DELETE /api/projects/{id}/task-groups/{gid}           can_edit, tasks are ungrouped
#
# USER
#   GET    /api/tasks/user                        tasks assigned to the caller
# =============================================================================

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from grooshub.api.deps import get_current_user, get_project_member, require_permission
from grooshub.db.engine import get_async_session
from grooshub.db.models import ProjectMember, Task, TaskGroup, TaskNote, TaskStatus, User
from grooshub.db.tasks import (
    SORT_FIELDS,
    apply_status_change,
    assign_users,
    deadline_info,
    get_group,
    get_own_note,
    get_task,
    list_groups,
    list_notes,
    list_subtasks,
    list_tasks,
    list_user_tasks,
    next_group_position,
    next_position,
    note_counts,
    task_stats,
    unassign_user,
)
from grooshub.models.requests import (
    TaskAssignRequest,
    TaskCreateRequest,
    TaskGroupCreateRequest,
    TaskGroupUpdateRequest,
    TaskNoteRequest,
    TaskUpdateRequest,
)
from grooshub.models.responses import (
    MessageResponse,
    TaskDetailResponse,
    TaskGroupResponse,
    TaskNoteResponse,
    TaskResponse,
    TaskStatsResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Tasks"])

_TASKS = "/api/projects/{project_id}/tasks"
_GROUPS = "/api/projects/{project_id}/task-groups"


def task_response(task: Task, note_count: int = 0, now: datetime | None = None) -> TaskResponse:
    is_overdue, days = deadline_info(task, now)
    return TaskResponse.model_validate(task).model_copy(update={
        "is_overdue": is_overdue,
        "days_until_deadline": days,
        "note_count": note_count,
    })


async def _task(session: AsyncSession, project_id: uuid.UUID, task_id: uuid.UUID) -> Task:
    task = await get_task(session, project_id, task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found")
    return task


async def _check_references(
    session: AsyncSession,
    project_id: uuid.UUID,
    parent_task_id: uuid.UUID | None,
    task_group_id: uuid.UUID | None,
    task_id: uuid.UUID | None = None,
) -> None:
    """Parent task and group must belong to the same project."""
    if parent_task_id is not None:
        if parent_task_id == task_id:
            raise HTTPException(status_code=400, detail="A task cannot be its own parent")
        if await get_task(session, project_id, parent_task_id) is None:
            raise HTTPException(status_code=400, detail="Parent task not found in this project")
    if task_group_id is not None and await get_group(session, project_id, task_group_id) is None:
        raise HTTPException(status_code=400, detail="Task group not found in this project")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@router.get(_TASKS, response_model=list[TaskResponse])
async def list_project_tasks(
    project_id: uuid.UUID,
    status: TaskStatus | None = Query(default=None),
    assigned_to: int | None = Query(default=None),
    group_id: uuid.UUID | None = Query(default=None),
    sort_by: str = Query(default="position"),
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> list[TaskResponse]:
    if sort_by not in SORT_FIELDS:
        raise HTTPException(
            status_code=400,
            detail=f"sort_by must be one of: {', '.join(SORT_FIELDS)}",
        )
    tasks = await list_tasks(session, project_id, status, assigned_to, group_id, sort_by)
    counts = await note_counts(session, [t.id for t in tasks])
    now = datetime.now(timezone.utc)
    return [task_response(t, counts.get(t.id, 0), now) for t in tasks]


@router.post(_TASKS, response_model=TaskResponse, status_code=201)
async def create_task(
    project_id: uuid.UUID,
    request: TaskCreateRequest,
    member: ProjectMember = Depends(require_permission("can_edit")),
    session: AsyncSession = Depends(get_async_session),
) -> TaskResponse:
    await _check_references(session, project_id, request.parent_task_id, request.task_group_id)

    task = Task(
        project_id=project_id,
        created_by_user_id=member.user_id,
        position=await next_position(session, project_id, request.status),
        assignments=[],
        **request.model_dump(exclude={"assignee_ids"}),
    )
    if request.status == TaskStatus.DONE:
        task.completed_at = datetime.now(timezone.utc)
        task.completed_by_user_id = member.user_id
    session.add(task)
    await session.flush()

    if request.assignee_ids:
        await assign_users(session, task, request.assignee_ids, assigned_by=member.user_id)
    await session.refresh(task)
    logger.info("Created task %s in project %s (%s)", task.id, project_id, task.status.value)
    return task_response(task)


@router.get(_TASKS + "/stats", response_model=TaskStatsResponse)
async def project_task_stats(
    project_id: uuid.UUID,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> TaskStatsResponse:
    tasks = await list_tasks(session, project_id)
    groups = await list_groups(session, project_id)
    stats = task_stats(tasks, groups)
    now = datetime.now(timezone.utc)
    stats["upcoming_deadlines"] = [task_response(t, now=now) for t in stats["upcoming_deadlines"]]
    return TaskStatsResponse(**stats)


@router.get(_TASKS + "/{task_id}", response_model=TaskDetailResponse)
async def get_project_task(
    project_id: uuid.UUID,
    task_id: uuid.UUID,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> TaskDetailResponse:
    task = await _task(session, project_id, task_id)
    notes = await list_notes(session, task_id)
    now = datetime.now(timezone.utc)
    return TaskDetailResponse(
        **task_response(task, len(notes), now).model_dump(),
        notes=[TaskNoteResponse.model_validate(n) for n in notes],
        subtasks=[task_response(t, now=now) for t in await list_subtasks(session, task_id)],
    )


@router.patch(_TASKS + "/{task_id}", response_model=TaskResponse)
async def update_task(
    project_id: uuid.UUID,
    task_id: uuid.UUID,
    request: TaskUpdateRequest,
    member: ProjectMember = Depends(require_permission("can_edit")),
    session: AsyncSession = Depends(get_async_session),
) -> TaskResponse:
    """Update fields; a status change without a position moves the task to the bottom of the new column."""
    task = await _task(session, project_id, task_id)
    updates = request.model_dump(exclude_unset=True)
    if not updates:
        raise HTTPException(status_code=400, detail="No fields to update")

    await _check_references(
        session, project_id, updates.get("parent_task_id"), updates.get("task_group_id"), task_id,
    )

    status = updates.pop("status", None)
    position = updates.pop("position", None)
    if status is not None and status != task.status:
        if position is None:
            position = await next_position(session, project_id, status)
        apply_status_change(task, status, member.user_id)
    if position is not None:
        task.position = position
    if "title" in updates:
        updates["title"] = updates["title"].strip()
    for field, value in updates.items():
        setattr(task, field, value)

    await session.flush()
    await session.refresh(task)
    return task_response(task)


@router.delete(_TASKS + "/{task_id}", response_model=MessageResponse)
async def delete_task(
    project_id: uuid.UUID,
    task_id: uuid.UUID,
    member: ProjectMember = Depends(require_permission("can_edit")),
    session: AsyncSession = Depends(get_async_session),
) -> MessageResponse:
    task = await _task(session, project_id, task_id)
    task.deleted_at = datetime.now(timezone.utc)
    task.deleted_by_user_id = member.user_id
    logger.info("Task %s deleted by user %d", task_id, member.user_id)
    return MessageResponse(message="Task deleted")


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


@router.post(_TASKS + "/{task_id}/assign", response_model=TaskResponse)
async def assign_task(
    project_id: uuid.UUID,
    task_id: uuid.UUID,
    request: TaskAssignRequest,
    member: ProjectMember = Depends(require_permission("can_edit")),
    session: AsyncSession = Depends(get_async_session),
) -> TaskResponse:
    task = await _task(session, project_id, task_id)
    assigned = await assign_users(
        session, task, request.user_ids, assigned_by=member.user_id, role=request.role,
    )
    logger.info("%d user(s) assigned to task %s", len(assigned), task_id)
    return task_response(task)


@router.delete(_TASKS + "/{task_id}/assign/{user_id}", response_model=TaskResponse)
async def unassign_task(
    project_id: uuid.UUID,
    task_id: uuid.UUID,
    user_id: int,
    member: ProjectMember = Depends(require_permission("can_edit")),
    session: AsyncSession = Depends(get_async_session),
) -> TaskResponse:
    task = await _task(session, project_id, task_id)
    if not unassign_user(task, user_id):
        raise HTTPException(status_code=404, detail="User is not assigned to this task")
    await session.flush()
    return task_response(task)


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


@router.get(_TASKS + "/{task_id}/notes", response_model=list[TaskNoteResponse])
async def list_task_notes(
    project_id: uuid.UUID,
    task_id: uuid.UUID,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> list[TaskNote]:
    await _task(session, project_id, task_id)
    return await list_notes(session, task_id)


@router.post(_TASKS + "/{task_id}/notes", response_model=TaskNoteResponse, status_code=201)
async def add_task_note(
    project_id: uuid.UUID,
    task_id: uuid.UUID,
    request: TaskNoteRequest,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> TaskNote:
    await _task(session, project_id, task_id)
    content = request.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Content is required")
    note = TaskNote(task_id=task_id, user_id=member.user_id, content=content)
    session.add(note)
    await session.flush()
    await session.refresh(note)
    return note


async def _own_note(
    session: AsyncSession, task_id: uuid.UUID, note_id: int, user_id: int,
) -> TaskNote:
    note = await get_own_note(session, task_id, note_id, user_id)
    if note is None:
        raise HTTPException(
            status_code=404,
            detail="Note not found or you are not its author",
        )
    return note


@router.patch(_TASKS + "/{task_id}/notes/{note_id}", response_model=TaskNoteResponse)
async def edit_task_note(
    project_id: uuid.UUID,
    task_id: uuid.UUID,
    note_id: int,
    request: TaskNoteRequest,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> TaskNote:
    await _task(session, project_id, task_id)
    note = await _own_note(session, task_id, note_id, member.user_id)
    content = request.content.strip()
    if not content:
        raise HTTPException(status_code=400, detail="Content is required")
    note.content = content
    note.is_edited = True
    note.edited_at = datetime.now(timezone.utc)
    await session.flush()
    await session.refresh(note)
    return note


@router.delete(_TASKS + "/{task_id}/notes/{note_id}", response_model=MessageResponse)
async def delete_task_note(
    project_id: uuid.UUID,
    task_id: uuid.UUID,
    note_id: int,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> MessageResponse:
    await _task(session, project_id, task_id)
    note = await _own_note(session, task_id, note_id, member.user_id)
    await session.delete(note)
    return MessageResponse(message="Note deleted")


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


async def _group(session: AsyncSession, project_id: uuid.UUID, group_id: uuid.UUID) -> TaskGroup:
    group = await get_group(session, project_id, group_id)
    if group is None:
        raise HTTPException(status_code=404, detail="Task group not found")
    return group


@router.get(_GROUPS, response_model=list[TaskGroupResponse])
async def list_task_groups(
    project_id: uuid.UUID,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> list[TaskGroup]:
    return await list_groups(session, project_id)


@router.post(_GROUPS, response_model=TaskGroupResponse, status_code=201)
async def create_task_group(
    project_id: uuid.UUID,
    request: TaskGroupCreateRequest,
    member: ProjectMember = Depends(require_permission("can_edit")),
    session: AsyncSession = Depends(get_async_session),
) -> TaskGroup:
    group = TaskGroup(
        project_id=project_id,
        created_by_user_id=member.user_id,
        position=await next_group_position(session, project_id),
        **request.model_dump(),
    )
    session.add(group)
    await session.flush()
    await session.refresh(group)
    return group


@router.patch(_GROUPS + "/{group_id}", response_model=TaskGroupResponse)
async def update_task_group(
    project_id: uuid.UUID,
    group_id: uuid.UUID,
    request: TaskGroupUpdateRequest,
    member: ProjectMember = Depends(require_permission("can_edit")),
    session: AsyncSession = Depends(get_async_session),
) -> TaskGroup:
    group = await _group(session, project_id, group_id)
    for field, value in request.model_dump(exclude_unset=True).items():
        setattr(group, field, value)
    await session.flush()
    await session.refresh(group)
    return group


@router.delete(_GROUPS + "/{group_id}", response_model=MessageResponse)
async def delete_task_group(
    project_id: uuid.UUID,
    group_id: uuid.UUID,
    member: ProjectMember = Depends(require_permission("can_edit")),
    session: AsyncSession = Depends(get_async_session),
) -> MessageResponse:
    group = await _group(session, project_id, group_id)
    await session.delete(group)
    return MessageResponse(message="Task group deleted")


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------


@router.get("/api/tasks/user", response_model=list[TaskResponse])
async def my_tasks(
    status: TaskStatus | None = Query(default=None),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> list[TaskResponse]:
    tasks = await list_user_tasks(session, user.id, status)
    now = datetime.now(timezone.utc)
    return [task_response(t, now=now) for t in tasks]
