# =============================================================================
# Versioned Snapshots — Shared Queries for Location & LCA Snapshots
# =============================================================================
#
# Both snapshot tables carry (project_id, version, is_active). Versions
# increase by one per project; at most one snapshot per project is active.
# =============================================================================

from __future__ import annotations

import uuid
from typing import TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from grooshub.db.models import LcaSnapshot, LocationSnapshot

SnapshotT = TypeVar("SnapshotT", LcaSnapshot, LocationSnapshot)


async def next_version(session: AsyncSession, model: type[SnapshotT], project_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.coalesce(func.max(model.version), 0))
        .where(model.project_id == project_id)
    )
    return int(result.scalar_one()) + 1


async def set_active(
    session: AsyncSession,
    model: type[SnapshotT],
    project_id: uuid.UUID,
    snapshot_id: uuid.UUID,
) -> None:
    """Activate one snapshot and deactivate every other one in the project."""
    await session.execute(
        update(model)
        .where(model.project_id == project_id, model.id != snapshot_id)
        .values(is_active=False)
    )
    await session.execute(
        update(model)
        .where(model.project_id == project_id, model.id == snapshot_id)
        .values(is_active=True)
    )


async def list_snapshots(
    session: AsyncSession, model: type[SnapshotT], project_id: uuid.UUID,
) -> list[SnapshotT]:
    result = await session.execute(
        select(model)
        .where(model.project_id == project_id)
        .order_by(model.version.desc())
    )
    return list(result.scalars().all())


async def get_snapshot(
    session: AsyncSession,
    model: type[SnapshotT],
    project_id: uuid.UUID,
    snapshot_id: uuid.UUID,
) -> SnapshotT | None:
    result = await session.execute(
        select(model).where(model.id == snapshot_id, model.project_id == project_id)
    )
    return result.scalar_one_or_none()


async def get_active_snapshot(
    session: AsyncSession, model: type[SnapshotT], project_id: uuid.UUID,
) -> SnapshotT | None:
    result = await session.execute(
        select(model).where(model.project_id == project_id, model.is_active.is_(True))
    )
    return result.scalar_one_or_none()
