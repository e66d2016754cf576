# =============================================================================
# Locations API — Location Snapshots, Saved Locations & Places Search
# =============================================================================
#
# SNAPSHOTS (versioned per project, one active)
#   POST   /api/projects/{id}/location-snapshots           can_edit
#   GET    /api/projects/{id}/location-snapshots
#   GET    /api/projects/{id}/location-snapshots/active
#   GET    /api/projects/{id}/location-snapshots/{sid}
#   PATCH  /api/projects/{id}/location-snapshots/{sid}     notes / tags
#   POST   /api/projects/{id}/location-snapshots/{sid}/activate
#   DELETE /api/projects/{id}/location-snapshots/{sid}     can_delete
#
# PLACES
#   POST   /api/location/text-search    Google Places Text Search (quota)
#   GET    /api/location/usage          monthly external-API usage
#
# SAVED LOCATIONS (per user, shareable)
#   POST   /api/location/saved          upsert by address
#   GET    /api/location/saved          owned + shared with me
#   GET    /api/location/saved/{lid}
#   PATCH  /api/location/saved/{lid}    owner, or shared with can_edit
#   DELETE /api/location/saved/{lid}    owner only
#   POST   /api/location/share          owner only
# =============================================================================

from __future__ import annotations

import logging
import time
import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from grooshub.api.deps import get_current_user, get_project_member, require_permission
from grooshub.db.engine import get_async_session
from grooshub.db.models import LocationShare, LocationSnapshot, ProjectMember, User
from grooshub.db.saved_locations import (
    LocationAccess,
    get_location_access,
    list_accessible_locations,
    save_location,
    share_location,
)
from grooshub.db.snapshots import (
    get_active_snapshot,
    get_snapshot,
    list_snapshots,
    next_version,
    set_active,
)
from grooshub.models.requests import (
    LocationShareRequest,
    LocationSnapshotCreateRequest,
    PlacesTextSearchRequest,
    SavedLocationCreateRequest,
    SavedLocationUpdateRequest,
    SnapshotUpdateRequest,
)
from grooshub.models.responses import (
    LocationShareResponse,
    LocationSnapshotResponse,
    MessageResponse,
    PlaceResponse,
    PlacesSearchResponse,
    SavedLocationResponse,
)
from grooshub.services.places import PlacesError, text_search
from grooshub.services.quota import enforce_quota, get_usage_stats, record_usage

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Locations"])

_SNAPSHOTS = "/api/projects/{project_id}/location-snapshots"


async def _snapshot(
    session: AsyncSession, project_id: uuid.UUID, snapshot_id: uuid.UUID,
) -> LocationSnapshot:
    snapshot = await get_snapshot(session, LocationSnapshot, project_id, snapshot_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    return snapshot


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


@router.post(_SNAPSHOTS, response_model=LocationSnapshotResponse, status_code=201)
async def create_location_snapshot(
    project_id: uuid.UUID,
    request: LocationSnapshotCreateRequest,
    member: ProjectMember = Depends(require_permission("can_edit")),
    session: AsyncSession = Depends(get_async_session),
) -> LocationSnapshot:
    """Store a new version and make it the active one."""
    snapshot = LocationSnapshot(
        project_id=project_id,
        user_id=member.user_id,
        version=await next_version(session, LocationSnapshot, project_id),
        is_active=False,
        **request.model_dump(),
    )
    session.add(snapshot)
    await session.flush()
    await set_active(session, LocationSnapshot, project_id, snapshot.id)
    await session.refresh(snapshot)
    logger.info(
        "Stored location snapshot v%d for project %s (%s)",
        snapshot.version, project_id, snapshot.address,
    )
    return snapshot


@router.get(_SNAPSHOTS, response_model=list[LocationSnapshotResponse])
async def list_location_snapshots(
    project_id: uuid.UUID,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> list[LocationSnapshot]:
    return await list_snapshots(session, LocationSnapshot, project_id)


@router.get(_SNAPSHOTS + "/active", response_model=LocationSnapshotResponse)
async def active_location_snapshot(
    project_id: uuid.UUID,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> LocationSnapshot:
    snapshot = await get_active_snapshot(session, LocationSnapshot, project_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No active location snapshot")
    return snapshot


@router.get(_SNAPSHOTS + "/{snapshot_id}", response_model=LocationSnapshotResponse)
async def get_location_snapshot(
    project_id: uuid.UUID,
    snapshot_id: uuid.UUID,
    member: ProjectMember = Depends(get_project_member),
    session: AsyncSession = Depends(get_async_session),
) -> LocationSnapshot:
    return await _snapshot(session, project_id, snapshot_id)


@router.patch(_SNAPSHOTS + "/{snapshot_id}", response_model=LocationSnapshotResponse)
async def update_location_snapshot(
    project_id: uuid.UUID,
    snapshot_id: uuid.UUID,
    request: SnapshotUpdateRequest,
    member: ProjectMember = Depends(require_permission("can_edit")),
    session: AsyncSession = Depends(get_async_session),
) -> LocationSnapshot:
    snapshot = await _snapshot(session, project_id, snapshot_id)
    for field, value in request.model_dump(exclude_unset=True).items():
        setattr(snapshot, field, value)
    await session.flush()
    await session.refresh(snapshot)
    return snapshot


@router.post(_SNAPSHOTS + "/{snapshot_id}/activate", response_model=LocationSnapshotResponse)
async def activate_location_snapshot(
    project_id: uuid.UUID,
    snapshot_id: uuid.UUID,
    member: ProjectMember = Depends(require_permission("can_edit")),
    session: AsyncSession = Depends(get_async_session),
) -> LocationSnapshot:
    snapshot = await _snapshot(session, project_id, snapshot_id)
    await set_active(session, LocationSnapshot, project_id, snapshot_id)
    await session.refresh(snapshot)
    return snapshot


@router.delete(_SNAPSHOTS + "/{snapshot_id}", response_model=MessageResponse)
async def delete_location_snapshot(
    project_id: uuid.UUID,
    snapshot_id: uuid.UUID,
    member: ProjectMember = Depends(require_permission("can_delete")),
    session: AsyncSession = Depends(get_async_session),
) -> MessageResponse:
    snapshot = await _snapshot(session, project_id, snapshot_id)
    await session.delete(snapshot)
    return MessageResponse(message="Snapshot deleted")


# ---------------------------------------------------------------------------
# Places Search
# ---------------------------------------------------------------------------


@router.post("/api/location/text-search", response_model=PlacesSearchResponse)
async def places_text_search(
    request: PlacesTextSearchRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> PlacesSearchResponse:
    quota = await enforce_quota(session, "places_text_search", "text_search", user_id=user.id)

    start = time.monotonic()
    try:
        places = await text_search(
            request.text_query,
            request.latitude,
            request.longitude,
            radius_m=request.radius,
            category_id=request.category_id,
            price_levels=request.price_levels,
        )
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        raise HTTPException(status_code=503, detail=f"Service configuration error: {e}") from e
    except PlacesError as e:
        await record_usage(
            "places_text_search", "text_search", "error",
            user_id=user.id,
            error_message=str(e),
            response_time_ms=int((time.monotonic() - start) * 1000),
        )
        raise HTTPException(status_code=e.status_code, detail=str(e)) from e

    await record_usage(
        "places_text_search", "text_search", "success",
        user_id=user.id,
        results_count=len(places),
        response_time_ms=int((time.monotonic() - start) * 1000),
    )

    status = quota.to_status()
    if status["remaining"] is not None:
        status["remaining"] = max(0, status["remaining"] - 1)
        status["used"] += 1
    return PlacesSearchResponse(
        places=[PlaceResponse(**p.to_dict()) for p in places],
        total=len(places),
        quota_status=status,
    )


@router.get("/api/location/usage")
async def location_usage(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> dict:
    return await get_usage_stats(session)


# ---------------------------------------------------------------------------
# Saved Locations
# ---------------------------------------------------------------------------


def saved_location_response(access: LocationAccess) -> SavedLocationResponse:
    return SavedLocationResponse.model_validate(access.location).model_copy(update={
        "is_owner": access.is_owner,
        "can_edit": access.can_edit,
        "shared_by_user_id": access.shared_by_user_id,
    })


@router.post("/api/location/saved", response_model=SavedLocationResponse, status_code=201)
async def create_saved_location(
    request: SavedLocationCreateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> SavedLocationResponse:
    location = await save_location(session, user.id, **request.model_dump())
    await session.refresh(location)
    logger.info("User %d saved location %s", user.id, location.address)
    return saved_location_response(LocationAccess(location=location, is_owner=True, can_edit=True))


@router.get("/api/location/saved", response_model=list[SavedLocationResponse])
async def list_saved_locations(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> list[SavedLocationResponse]:
    return [saved_location_response(a) for a in await list_accessible_locations(session, user.id)]


@router.get("/api/location/saved/{location_id}", response_model=SavedLocationResponse)
async def get_saved_location(
    location_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> SavedLocationResponse:
    return saved_location_response(await get_location_access(session, location_id, user.id))


@router.patch("/api/location/saved/{location_id}", response_model=SavedLocationResponse)
async def update_saved_location(
    location_id: uuid.UUID,
    request: SavedLocationUpdateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> SavedLocationResponse:
    access = await get_location_access(session, location_id, user.id)
    if not access.can_edit:
        raise HTTPException(status_code=403, detail="You do not have edit rights on this location")
    for field, value in request.model_dump(exclude_unset=True).items():
        setattr(access.location, field, value)
    await session.flush()
    await session.refresh(access.location)
    return saved_location_response(access)


@router.delete("/api/location/saved/{location_id}", response_model=MessageResponse)
async def delete_saved_location(
    location_id: uuid.UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> MessageResponse:
    access = await get_location_access(session, location_id, user.id)
    if not access.is_owner:
        raise HTTPException(
            status_code=404,
            detail="Location not found or you do not have permission to delete it",
        )
    await session.delete(access.location)
    return MessageResponse(message="Location deleted")


@router.post("/api/location/share", response_model=LocationShareResponse, status_code=201)
async def share_saved_location(
    request: LocationShareRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_async_session),
) -> LocationShare:
    share = await share_location(
        session, user, request.location_id, request.share_with_email, request.can_edit,
    )
    await session.refresh(share)
    return share
