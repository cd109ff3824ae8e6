from __future__ import annotations

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from venuedesk.domain.models import Venue, VenueStaff
from venuedesk.persistence.guards import account_predicate


async def get_venue(session: AsyncSession, venue_id: str) -> Venue | None:
    return await session.get(Venue, venue_id)


async def list_account_venues(
    session: AsyncSession,
    *,
    account_id: str,
    venue_ids: list[str],
) -> list[Venue]:
    # Only venues that belong to the account come back; callers compare counts.
    if not venue_ids:
        return []
    result = await session.execute(
        select(Venue).where(account_predicate(Venue, account_id), Venue.id.in_(venue_ids))
    )
    return list(result.scalars().all())


async def has_staff_row(session: AsyncSession, *, user_id: str, venue_id: str) -> bool:
    result = await session.execute(
        select(VenueStaff.id).where(VenueStaff.user_id == user_id, VenueStaff.venue_id == venue_id)
    )
    return result.first() is not None


async def staff_venue_ids(session: AsyncSession, user_id: str) -> set[str]:
    result = await session.execute(select(VenueStaff.venue_id).where(VenueStaff.user_id == user_id))
    return set(result.scalars().all())


async def staff_venues_for_users(session: AsyncSession, user_ids: list[str]) -> dict[str, list[Venue]]:
    # Batch venue lookups for manager listings.
    if not user_ids:
        return {}
    result = await session.execute(
        select(VenueStaff.user_id, Venue)
        .join(Venue, Venue.id == VenueStaff.venue_id)
        .where(VenueStaff.user_id.in_(user_ids))
        .order_by(Venue.name.asc())
    )
    grouped: dict[str, list[Venue]] = {}
    for user_id, venue in result.all():
        grouped.setdefault(user_id, []).append(venue)
    return grouped


async def delete_staff_rows(session: AsyncSession, user_id: str) -> None:
    await session.execute(delete(VenueStaff).where(VenueStaff.user_id == user_id))


async def insert_staff_rows(
    session: AsyncSession,
    *,
    user_id: str,
    venue_ids: list[str],
    role: str = "manager",
) -> None:
    session.add_all([VenueStaff(user_id=user_id, venue_id=venue_id, role=role) for venue_id in venue_ids])
    await session.flush()
