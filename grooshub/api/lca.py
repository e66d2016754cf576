# =============================================================================
# LCA API — Materials, Building Projects, Elements, Calculation, Snapshots
# =============================================================================
#
# MATERIALS
#   GET    /api/lca/materials                       search (public + own)
#   GET    /api/lca/materials/{id}
#
# LCA PROJECTS (owner writes; members of a linked project may read)
#   GET    /api/lca/projects
#   POST   /api/lca/projects
#   GET    /api/lca/projects/{id}
#   PATCH  /api/lca/projects/{id}
#   DELETE /api/lca/projects/{id}
#   POST   /api/lca/projects/{id}/elements
#   PATCH  /api/lca/projects/{id}/elements/{element_id}
#   DELETE /api/lca/projects/{id}/elements/{element_id}
#   POST   /api/lca/projects/{id}/elements/{element_id}/layers
#   DELETE /api/lca/projects/{id}/elements/{element_id}/layers/{layer_id}
#   POST   /api/lca/projects/{id}/calculate
#
# SNAPSHOTS (attached to a GroosHub project)
#   POST   /api/projects/{id}/lca-snapshots          calculate + store (can_edit)
#   GET    /api/projects/{id}/lca-snapshots
#   GET    /api/projects/{id}/lca-snapshots/active
#   POST   /api/projects/{id}/lca-snapshots/{sid}/activate
#   DELETE /api/projects/{id}/lca-snapshots/{sid}
# =============================================================================

from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from grooshub.api.deps import get_current_user, get_project_member, require_permission
from grooshub.db.engine import get_async_session
from grooshub.db.models import LcaElement, LcaLayer, LcaMaterial, LcaProject, LcaSnapshot, ProjectMember, User
from grooshub.db.projects import get_membership
from grooshub.db.snapshots import get_active_snapshot, get_snapshot, list_snapshots, set_active
from grooshub.lca.service import (
    calculate_project,
    create_snapshot,
    get_material,
    load_lca_project,
    next_layer_position,
    search_materials,
)
from grooshub.models.requests import (
    LcaElementCreateRequest,
    LcaElementUpdateRequest,
    LcaLayerCreateRequest,
    LcaProjectCreateRequest,
    LcaProjectUpdateRequest,
    LcaSnapshotCreateRequest,
)
from grooshub.models.responses import (
    LcaMaterialResponse,
    LcaProjectDetailResponse,
    LcaProjectResponse,
    LcaSnapshotResponse,
    MessageResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["LCA"])


# ---------------------------------------------------------------------------
# Access Helpers
# ---------------------------------------------------------------------------


async def _lca_project(
    session: AsyncSession,
    lca_project_id: uuid.UUID,
    user: User,
    write: bool = False,
) -> LcaProject:
    project = await load_lca_project(session, lca_project_id)
    if project is None:
        raise HTTPException(status_code=404, detail="LCA project not found")
    if project.user_id == user.id:
        return project
    if not write and project.project_id is not None:
        if await get_membership(session, project.project_id, user.id) is not None:
            return project
    raise HTTPException(status_code=404, detail="LCA project not found")


def _element(project: LcaProject, element_id: int) -> LcaElement:
    for element in project.elements:
        if element.id == element_id:
            return element
    raise HTTPException(status_code=404, detail="Element not found")


async def _material(session: AsyncSession, material_id: int, user: User) -> LcaMaterial:
    material = await get_material(session, material_id, user.id)
    if material is None:
        raise HTTPException(status_code=404, detail=f"Material {material_id} not found")
    return material


async def _add_layer(
    session: AsyncSession,
    element: LcaElement,
    layer: LcaLayerCreateRequest,
    user: User,
    position: int,
) -> None:
    await _material(session, layer.material_id, user)
    session.add(LcaLayer(
        element_id=element.id,
        position=layer.position or position,
        material_id=layer.material_id,
        thickness=layer.thickness,
        coverage=layer.coverage,
        custom_lifespan=layer.custom_lifespan,
        custom_transport_km=layer.custom_transport_km,
    ))


# ---------------------------------------------------------------------------
# Materials
# ---------------------------------------------------------------------------


@router.get("/api/lca/materials", response_model=list[LcaMaterialResponse])
async def list_materials(
    q: str | None = Query(default=None, max_length=100),
    category: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> list[LcaMaterial]:
    return await search_materials(session, user.id, q, category, limit, offset)


@router.get("/api/lca/materials/{material_id}", response_model=LcaMaterialResponse)
async def material_detail(
    material_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> LcaMaterial:
    return await _material(session, material_id, user)


# ---------------------------------------------------------------------------
# LCA Projects
# ---------------------------------------------------------------------------


@router.get("/api/lca/projects", response_model=list[LcaProjectResponse])
async def list_lca_projects(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> list[LcaProject]:
    result = await session.execute(
        select(LcaProject)
        .where(LcaProject.user_id == user.id)
        .order_by(LcaProject.updated_at.desc())
    )
    return list(result.scalars().all())


@router.post("/api/lca/projects", response_model=LcaProjectDetailResponse, status_code=201)
async def create_lca_project(
    request: LcaProjectCreateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> LcaProject:
    if request.project_id is not None:
        if await get_membership(session, request.project_id, user.id) is None:
            raise HTTPException(status_code=404, detail="Project not found")

    project = LcaProject(user_id=user.id, **request.model_dump())
    session.add(project)
    await session.flush()
    logger.info("Created LCA project %s (%s, %.0f m2)", project.id, project.building_type, project.gross_floor_area)
    return await load_lca_project(session, project.id)


@router.get("/api/lca/projects/{lca_project_id}", response_model=LcaProjectDetailResponse)
async def get_lca_project(
    lca_project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> LcaProject:
    return await _lca_project(session, lca_project_id, user)


@router.patch("/api/lca/projects/{lca_project_id}", response_model=LcaProjectDetailResponse)
async def update_lca_project(
    lca_project_id: uuid.UUID,
    request: LcaProjectUpdateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> LcaProject:
    project = await _lca_project(session, lca_project_id, user, write=True)
    changes = request.model_dump(exclude_unset=True)
    if changes.get("project_id") is not None:
        if await get_membership(session, changes["project_id"], user.id) is None:
            raise HTTPException(status_code=404, detail="Project not found")
    for field, value in changes.items():
        setattr(project, field, value)
    await session.flush()
    return await load_lca_project(session, lca_project_id)


@router.delete("/api/lca/projects/{lca_project_id}", response_model=MessageResponse)
async def delete_lca_project(
    lca_project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> MessageResponse:
    project = await _lca_project(session, lca_project_id, user, write=True)
    await session.delete(project)
    return MessageResponse(message="LCA project deleted")


# ---------------------------------------------------------------------------
# Elements & Layers
# ---------------------------------------------------------------------------


@router.post(
    "/api/lca/projects/{lca_project_id}/elements",
    response_model=LcaProjectDetailResponse,
    status_code=201,
)
async def add_element(
    lca_project_id: uuid.UUID,
    request: LcaElementCreateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> LcaProject:
    await _lca_project(session, lca_project_id, user, write=True)
    element = LcaElement(
        lca_project_id=lca_project_id,
        **request.model_dump(exclude={"layers"}),
    )
    session.add(element)
    await session.flush()
    for position, layer in enumerate(request.layers, 1):
        await _add_layer(session, element, layer, user, position)
    await session.flush()
    return await load_lca_project(session, lca_project_id)


@router.patch(
    "/api/lca/projects/{lca_project_id}/elements/{element_id}",
    response_model=LcaProjectDetailResponse,
)
async def update_element(
    lca_project_id: uuid.UUID,
    element_id: int,
    request: LcaElementUpdateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> LcaProject:
    project = await _lca_project(session, lca_project_id, user, write=True)
    element = _element(project, element_id)
    for field, value in request.model_dump(exclude_unset=True).items():
        setattr(element, field, value)
    await session.flush()
    return await load_lca_project(session, lca_project_id)


@router.delete(
    "/api/lca/projects/{lca_project_id}/elements/{element_id}",
    response_model=LcaProjectDetailResponse,
)
async def delete_element(
    lca_project_id: uuid.UUID,
    element_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> LcaProject:
    project = await _lca_project(session, lca_project_id, user, write=True)
    await session.delete(_element(project, element_id))
    await session.flush()
    return await load_lca_project(session, lca_project_id)


@router.post(
    "/api/lca/projects/{lca_project_id}/elements/{element_id}/layers",
    response_model=LcaProjectDetailResponse,
    status_code=201,
)
async def add_layer(
    lca_project_id: uuid.UUID,
    element_id: int,
    request: LcaLayerCreateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> LcaProject:
    project = await _lca_project(session, lca_project_id, user, write=True)
    element = _element(project, element_id)
    position = await next_layer_position(session, element.id)
    await _add_layer(session, element, request, user, position)
    await session.flush()
    return await load_lca_project(session, lca_project_id)


@router.delete(
    "/api/lca/projects/{lca_project_id}/elements/{element_id}/layers/{layer_id}",
    response_model=LcaProjectDetailResponse,
)
async def delete_layer(
    lca_project_id: uuid.UUID,
    element_id: int,
    layer_id: int,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> LcaProject:
    project = await _lca_project(session, lca_project_id, user, write=True)
    element = _element(project, element_id)
    layer = next((layer for layer in element.layers if layer.id == layer_id), None)
    if layer is None:
        raise HTTPException(status_code=404, detail="Layer not found")
    await session.delete(layer)
    await session.flush()
    return await load_lca_project(session, lca_project_id)


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------


@router.post("/api/lca/projects/{lca_project_id}/calculate")
async def calculate(
    lca_project_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> dict:
    project = await _lca_project(session, lca_project_id, user, write=True)
    if not project.elements:
        raise HTTPException(status_code=400, detail="Add at least one element before calculating")
    result = await calculate_project(session, project)
    return {"lca_project_id": str(project.id), "results": result.to_dict()}


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


@router.post(
    "/api/projects/{project_id}/lca-snapshots",
    response_model=LcaSnapshotResponse,
    status_code=201,
)
async def create_lca_snapshot(
    project_id: uuid.UUID,
    request: LcaSnapshotCreateRequest,
    member: ProjectMember = Depends(require_permission("can_edit")),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> LcaSnapshot:
    lca_project = await _lca_project(session, request.lca_project_id, user)
    if not lca_project.elements:
        raise HTTPException(status_code=400, detail="The LCA project has no elements")

    # Only the owner's calculation refreshes the cached totals
    result = await calculate_project(
        session, lca_project, persist=lca_project.user_id == user.id,
    )
    snapshot = await create_snapshot(
        session, project_id, lca_project, result, user.id, request.notes, request.tags,
    )
    await session.refresh(snapshot)
    logger.info("Stored LCA snapshot v%d for project %s", snapshot.version, project_id)
    return snapshot


@router.get("/api/projects/{project_id}/lca-snapshots", response_model=list[LcaSnapshotResponse])
async def list_lca_snapshots(
    project_id: uuid.UUID,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> list[LcaSnapshot]:
    return await list_snapshots(session, LcaSnapshot, project_id)


@router.get("/api/projects/{project_id}/lca-snapshots/active", response_model=LcaSnapshotResponse)
async def active_lca_snapshot(
    project_id: uuid.UUID,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> LcaSnapshot:
    snapshot = await get_active_snapshot(session, LcaSnapshot, project_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No active LCA snapshot")
    return snapshot


@router.post(
    "/api/projects/{project_id}/lca-snapshots/{snapshot_id}/activate",
    response_model=LcaSnapshotResponse,
)
async def activate_lca_snapshot(
    project_id: uuid.UUID,
    snapshot_id: uuid.UUID,
    member: ProjectMember = Depends(require_permission("can_edit")),
    session: AsyncSession = Depends(get_async_session),
) -> LcaSnapshot:
    snapshot = await get_snapshot(session, LcaSnapshot, project_id, snapshot_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    await set_active(session, LcaSnapshot, project_id, snapshot_id)
    await session.refresh(snapshot)
    return snapshot


@router.delete(
    "/api/projects/{project_id}/lca-snapshots/{snapshot_id}",
    response_model=MessageResponse,
)
async def delete_lca_snapshot(
    project_id: uuid.UUID,
    snapshot_id: uuid.UUID,
    member: ProjectMember = Depends(require_permission("can_delete")),
    session: AsyncSession = Depends(get_async_session),
) -> MessageResponse:
    snapshot = await get_snapshot(session, LcaSnapshot, project_id, snapshot_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    await session.delete(snapshot)
    return MessageResponse(message="Snapshot deleted")
