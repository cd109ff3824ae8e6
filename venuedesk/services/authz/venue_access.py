from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from venuedesk.core.errors import Forbidden, NotFound
from venuedesk.domain.roles import Role
from venuedesk.persistence.repos import venues as venues_repo
from venuedesk.services.auth.identity import Identity


logger = logging.getLogger(__name__)


async def ensure_venue_access(session: AsyncSession, identity: Identity, venue_id: str) -> None:
    """Allow the caller through to ``venue_id`` or raise.

    Operators always pass. Account owners pass for venues in their own account
    and otherwise see ``NotFound`` so other accounts' venues stay hidden.
    Scoped members need a staff row for the venue, and the venue must sit in
    their own account.
    """
    if identity.role is Role.OPERATOR:
        return
    if identity.role is Role.ACCOUNT_OWNER:
        venue = await venues_repo.get_venue(session, venue_id)
        if venue is None or venue.account_id != identity.account_id:
            raise NotFound("Venue not found")
        return
    if not await venues_repo.has_staff_row(session, user_id=identity.id, venue_id=venue_id):
        raise Forbidden("Access denied. You are not assigned to this venue.")
    venue = await venues_repo.get_venue(session, venue_id)
    if venue is None or venue.account_id != identity.account_id:
        # A staff row pointing across accounts is a data fault; deny and surface it.
        logger.warning(
            "cross_account_staff_row user_id=%s venue_id=%s", identity.id, venue_id
        )
        raise Forbidden("Access denied. You are not assigned to this venue.")
