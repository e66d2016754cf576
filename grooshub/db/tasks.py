# =============================================================================
# Task Queries — Kanban Board, Assignments, Notes & Statistics
# =============================================================================
#
# Tasks live in three status columns (todo → doing → done). `position`
# orders a column; a task created in, or moved to, a column without an
# explicit position goes to the bottom (max + 1).
#
# Entering DONE stamps completed_at / completed_by_user_id; leaving DONE
# clears both. Deleted tasks (deleted_at set) are invisible everywhere.
#
# Deadline fields are derived, never stored:
#   is_overdue           deadline passed and status != done
#   days_until_deadline  whole days to the deadline, truncated toward zero
# =============================================================================

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from datetime import datetime, timedelta, timezone

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from grooshub.db.models import (
    Project,
    ProjectMember,
    Task,
    TaskAssignment,
    TaskGroup,
    TaskNote,
    TaskPriority,
    TaskStatus,
)
from grooshub.db.projects import get_membership

logger = logging.getLogger(__name__)

SORT_FIELDS = ("position", "deadline", "priority", "created")

UPCOMING_WINDOW = timedelta(days=14)
UPCOMING_LIMIT = 10

_PRIORITY_RANK = {
    TaskPriority.URGENT: 0,
    TaskPriority.HIGH: 1,
    TaskPriority.NORMAL: 2,
    TaskPriority.LOW: 3,
}


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def apply_status_change(
    task: Task,
    status: TaskStatus,
    user_id: int,
    now: datetime | None = None,
) -> bool:
    """Move a task to `status`, maintaining the completion stamp. Returns False if unchanged."""
    if task.status == status:
        return False
    if status == TaskStatus.DONE:
        task.completed_at = now or datetime.now(timezone.utc)
        task.completed_by_user_id = user_id
    elif task.status == TaskStatus.DONE:
        task.completed_at = None
        task.completed_by_user_id = None
    task.status = status
    return True


def deadline_info(task: Task, now: datetime | None = None) -> tuple[bool, int | None]:
    """(is_overdue, days_until_deadline) for a task."""
    if task.deadline is None:
        return False, None
    now = now or datetime.now(timezone.utc)
    delta = task.deadline - now
    days = int(delta.total_seconds() / 86400)
    return delta.total_seconds() < 0 and task.status != TaskStatus.DONE, days


def _completion(done: int, total: int) -> float | None:
    return round(done / total * 100, 2) if total else None


def _counts(tasks: list[Task], now: datetime) -> dict:
    by_status = {s: 0 for s in TaskStatus}
    overdue = 0
    for task in tasks:
        by_status[task.status] += 1
        overdue += deadline_info(task, now)[0]
    return {
        "total_tasks": len(tasks),
        "todo_count": by_status[TaskStatus.TODO],
        "doing_count": by_status[TaskStatus.DOING],
        "done_count": by_status[TaskStatus.DONE],
        "overdue_count": overdue,
        "completion_percentage": _completion(by_status[TaskStatus.DONE], len(tasks)),
    }


def task_stats(
    tasks: list[Task],
    groups: list[TaskGroup],
    now: datetime | None = None,
) -> dict:
    """
    Board statistics for one project.

    Returns overall counts (status, priority, overdue, completion %),
    per-group and per-assignee breakdowns, and the open tasks due within
    the next 14 days (soonest first, at most 10).
    """
    now = now or datetime.now(timezone.utc)

    overall = _counts(tasks, now)
    overall["tasks_with_deadline"] = sum(1 for t in tasks if t.deadline is not None)
    for priority in TaskPriority:
        overall[f"{priority.value}_count"] = sum(1 for t in tasks if t.priority == priority)

    by_group = []
    for group in groups:
        counts = _counts([t for t in tasks if t.task_group_id == group.id], now)
        counts.pop("overdue_count")
        by_group.append({"group_id": group.id, "group_name": group.name,
                         "group_color": group.color, **counts})

    assigned: dict[int, list[Task]] = defaultdict(list)
    for task in tasks:
        for assignment in task.assignments:
            assigned[assignment.user_id].append(task)
    by_user = [
        {"user_id": user_id, **_counts(user_tasks, now)}
        for user_id, user_tasks in sorted(assigned.items())
    ]

    upcoming = sorted(
        (
            t for t in tasks
            if t.deadline is not None
            and t.status != TaskStatus.DONE
            and now <= t.deadline <= now + UPCOMING_WINDOW
        ),
        key=lambda t: t.deadline,
    )[:UPCOMING_LIMIT]

    return {
        "overall": overall,
        "by_group": by_group,
        "by_user": by_user,
        "upcoming_deadlines": upcoming,
    }


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


async def next_position(session: AsyncSession, project_id: uuid.UUID, status: TaskStatus) -> int:
    result = await session.execute(
        select(func.coalesce(func.max(Task.position), -1))
        .where(
            Task.project_id == project_id,
            Task.status == status,
            Task.deleted_at.is_(None),
        )
    )
    return int(result.scalar_one()) + 1


async def get_task(session: AsyncSession, project_id: uuid.UUID, task_id: uuid.UUID) -> Task | None:
    result = await session.execute(
        select(Task).where(
            Task.id == task_id,
            Task.project_id == project_id,
            Task.deleted_at.is_(None),
        )
    )
    return result.scalar_one_or_none()


async def list_tasks(
    session: AsyncSession,
    project_id: uuid.UUID,
    status: TaskStatus | None = None,
    assigned_to: int | None = None,
    group_id: uuid.UUID | None = None,
    sort_by: str = "position",
) -> list[Task]:
    stmt = select(Task).where(Task.project_id == project_id, Task.deleted_at.is_(None))
    if status is not None:
        stmt = stmt.where(Task.status == status)
    if group_id is not None:
        stmt = stmt.where(Task.task_group_id == group_id)
    if assigned_to is not None:
        stmt = stmt.where(
            Task.id.in_(select(TaskAssignment.task_id).where(TaskAssignment.user_id == assigned_to))
        )

    if sort_by == "deadline":
        stmt = stmt.order_by(Task.deadline.asc().nulls_last(), Task.position)
    elif sort_by == "priority":
        stmt = stmt.order_by(case(_PRIORITY_RANK, value=Task.priority), Task.position)
    elif sort_by == "created":
        stmt = stmt.order_by(Task.created_at.desc())
    else:
        stmt = stmt.order_by(Task.status, Task.position)

    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_subtasks(session: AsyncSession, task_id: uuid.UUID) -> list[Task]:
    result = await session.execute(
        select(Task)
        .where(Task.parent_task_id == task_id, Task.deleted_at.is_(None))
        .order_by(Task.position)
    )
    return list(result.scalars().all())


async def note_counts(session: AsyncSession, task_ids: list[uuid.UUID]) -> dict[uuid.UUID, int]:
    if not task_ids:
        return {}
    result = await session.execute(
        select(TaskNote.task_id, func.count(TaskNote.id))
        .where(TaskNote.task_id.in_(task_ids))
        .group_by(TaskNote.task_id)
    )
    return {task_id: int(count) for task_id, count in result.all()}


async def list_user_tasks(
    session: AsyncSession,
    user_id: int,
    status: TaskStatus | None = None,
) -> list[Task]:
    """Tasks assigned to a user across the projects they still belong to; soonest deadline first."""
    stmt = (
        select(Task)
        .join(TaskAssignment, TaskAssignment.task_id == Task.id)
        .join(Project, Project.id == Task.project_id)
        .join(ProjectMember, ProjectMember.project_id == Task.project_id)
        .where(
            TaskAssignment.user_id == user_id,
            ProjectMember.user_id == user_id,
            ProjectMember.left_at.is_(None),
            Project.deleted_at.is_(None),
            Task.deleted_at.is_(None),
        )
        .order_by(Task.deadline.asc().nulls_last(), Task.created_at.desc())
    )
    if status is not None:
        stmt = stmt.where(Task.status == status)
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------


async def assign_users(
    session: AsyncSession,
    task: Task,
    user_ids: list[int],
    assigned_by: int,
    role: str | None = None,
) -> list[int]:
    """
    Assign project members to a task. Returns the user IDs assigned.

    Users without an active membership are skipped; re-assigning an
    existing assignee refreshes its role and assigner.
    """
    existing = {a.user_id: a for a in task.assignments}
    assigned = []
    for user_id in dict.fromkeys(user_ids):
        if await get_membership(session, task.project_id, user_id) is None:
            logger.info("Skipping assignment of non-member %d to task %s", user_id, task.id)
            continue
        assignment = existing.get(user_id)
        if assignment is None:
            task.assignments.append(TaskAssignment(
                user_id=user_id, assigned_by_user_id=assigned_by, role=role,
            ))
        else:
            assignment.assigned_by_user_id = assigned_by
            assignment.assigned_at = datetime.now(timezone.utc)
            assignment.role = role
        assigned.append(user_id)
    await session.flush()
    return assigned


def unassign_user(task: Task, user_id: int) -> bool:
    for assignment in task.assignments:
        if assignment.user_id == user_id:
            task.assignments.remove(assignment)
            return True
    return False


# ---------------------------------------------------------------------------
# Notes & Groups
# ---------------------------------------------------------------------------


async def list_notes(session: AsyncSession, task_id: uuid.UUID) -> list[TaskNote]:
    result = await session.execute(
        select(TaskNote).where(TaskNote.task_id == task_id).order_by(TaskNote.created_at)
    )
    return list(result.scalars().all())


async def get_own_note(
    session: AsyncSession, task_id: uuid.UUID, note_id: int, user_id: int,
) -> TaskNote | None:
    """A note on the task written by `user_id`, or None."""
    result = await session.execute(
        select(TaskNote).where(
            TaskNote.id == note_id,
            TaskNote.task_id == task_id,
            TaskNote.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def list_groups(session: AsyncSession, project_id: uuid.UUID) -> list[TaskGroup]:
    result = await session.execute(
        select(TaskGroup).where(TaskGroup.project_id == project_id).order_by(TaskGroup.position)
    )
    return list(result.scalars().all())


async def get_group(
    session: AsyncSession, project_id: uuid.UUID, group_id: uuid.UUID,
) -> TaskGroup | None:
    result = await session.execute(
        select(TaskGroup).where(TaskGroup.id == group_id, TaskGroup.project_id == project_id)
    )
    return result.scalar_one_or_none()


async def next_group_position(session: AsyncSession, project_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.coalesce(func.max(TaskGroup.position), -1))
        .where(TaskGroup.project_id == project_id)
    )
    return int(result.scalar_one()) + 1
