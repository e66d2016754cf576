# =============================================================================
# Saved Location Queries — Bookmarks & Sharing
# =============================================================================
#
# A saved location belongs to one user. Its owner may share it with other
# users, read-only or with edit rights. Access rules:
#
#   owner          read, update, delete, share
#   shared, edit   read, update
#   shared         read
#
# Anyone else gets "not found".
# =============================================================================

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from grooshub.db.models import LocationShare, SavedLocation, User
from grooshub.errors import ForbiddenError, NotFoundError

logger = logging.getLogger(__name__)


@dataclass
class LocationAccess:
    location: SavedLocation
    is_owner: bool
    can_edit: bool
    shared_by_user_id: int | None = None


def access_for(location: SavedLocation, user_id: int, share: LocationShare | None) -> LocationAccess | None:
    """Resolve what `user_id` may do with `location` given their share row (if any)."""
    if location.user_id == user_id:
        return LocationAccess(location=location, is_owner=True, can_edit=True)
    if share is None:
        return None
    return LocationAccess(
        location=location,
        is_owner=False,
        can_edit=share.can_edit,
        shared_by_user_id=share.shared_by_user_id,
    )


async def get_location_access(
    session: AsyncSession, location_id: uuid.UUID, user_id: int,
) -> LocationAccess:
    """
    Load a saved location as seen by `user_id`.

    Raises:
        NotFoundError: missing, or neither owned by nor shared with the user.
    """
    result = await session.execute(
        select(SavedLocation, LocationShare)
        .outerjoin(
            LocationShare,
            (LocationShare.saved_location_id == SavedLocation.id)
            & (LocationShare.shared_with_user_id == user_id),
        )
        .where(SavedLocation.id == location_id)
    )
    row = result.first()
    access = access_for(row[0], user_id, row[1]) if row else None
    if access is None:
        raise NotFoundError("Location not found or access denied")
    return access


async def save_location(session: AsyncSession, user_id: int, **fields) -> SavedLocation:
    """Insert a saved location, or overwrite the user's existing one at the same address."""
    result = await session.execute(
        select(SavedLocation).where(
            SavedLocation.user_id == user_id,
            SavedLocation.address == fields["address"],
        )
    )
    location = result.scalar_one_or_none()
    if location is None:
        location = SavedLocation(user_id=user_id, **fields)
        session.add(location)
    else:
        for name, value in fields.items():
            setattr(location, name, value)
    await session.flush()
    return location


async def list_accessible_locations(session: AsyncSession, user_id: int) -> list[LocationAccess]:
    """Owned locations (newest first), then those shared with the user."""
    owned = await session.execute(
        select(SavedLocation)
        .where(SavedLocation.user_id == user_id)
        .order_by(SavedLocation.updated_at.desc())
    )
    shared = await session.execute(
        select(SavedLocation, LocationShare)
        .join(LocationShare, LocationShare.saved_location_id == SavedLocation.id)
        .where(LocationShare.shared_with_user_id == user_id)
        .order_by(LocationShare.shared_at.desc())
    )
    return [access_for(location, user_id, None) for location in owned.scalars().all()] + [
        access_for(location, user_id, share) for location, share in shared.all()
    ]


async def share_location(
    session: AsyncSession,
    owner: User,
    location_id: uuid.UUID,
    email: str,
    can_edit: bool = False,
) -> LocationShare:
    """
    Share an owned location with the user registered under `email`.

    Sharing again with the same user updates `can_edit`.

    Raises:
        NotFoundError: location not owned by `owner`, or no such user.
        ForbiddenError: sharing with oneself.
    """
    location = await session.get(SavedLocation, location_id)
    if location is None or location.user_id != owner.id:
        raise NotFoundError("Location not found or you do not own this location")

    result = await session.execute(
        select(User).where(func.lower(User.email) == email.strip().lower())
    )
    target = result.scalar_one_or_none()
    if target is None:
        raise NotFoundError("User with this email not found")
    if target.id == owner.id:
        raise ForbiddenError("You cannot share a location with yourself")

    result = await session.execute(
        select(LocationShare).where(
            LocationShare.saved_location_id == location_id,
            LocationShare.shared_with_user_id == target.id,
        )
    )
    share = result.scalar_one_or_none()
    if share is None:
        share = LocationShare(
            saved_location_id=location_id,
            shared_by_user_id=owner.id,
            shared_with_user_id=target.id,
            can_edit=can_edit,
        )
        session.add(share)
    else:
        share.can_edit = can_edit
    await session.flush()
    logger.info("User %d shared location %s with user %d", owner.id, location_id, target.id)
    return share
