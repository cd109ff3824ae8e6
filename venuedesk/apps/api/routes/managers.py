from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from venuedesk.apps.api.deps import get_current_identity, get_db
from venuedesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from venuedesk.services import managers as manager_service
from venuedesk.services.auth.identity import Identity


router = APIRouter(prefix="/api/managers", tags=["managers"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("")
async def list_managers(
    account_id: str | None = Query(default=None, alias="accountId"),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    # Visibility follows the reporting chain, so no permission code is needed here.
    listing = await manager_service.list_visible_managers(db, identity, account_id)
    return {
        "managers": listing.managers,
        "hierarchy": listing.hierarchy,
        "currentUserRole": listing.current_user_role,
    }
