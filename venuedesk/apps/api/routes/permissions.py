from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from venuedesk.apps.api.deps import get_db, require_venue_access
from venuedesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from venuedesk.core.errors import DatabaseError
from venuedesk.services.auth.identity import Identity
from venuedesk.services.authz.catalog import group_by_category
from venuedesk.services.authz.evaluator import effective_permissions


router = APIRouter(prefix="/api/permissions", tags=["permissions"], responses=DEFAULT_ERROR_RESPONSES)


@router.get("/me")
async def my_permissions(
    venue_id: str | None = Query(default=None, alias="venueId"),
    identity: Identity = Depends(require_venue_access),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    resolution = await effective_permissions(db, identity, venue_id)
    if resolution.failed:
        raise DatabaseError("Unable to load permissions")
    codes = sorted(resolution.codes)
    return {
        "userId": identity.id,
        "role": identity.role.value,
        "accountId": identity.account_id,
        "venueId": venue_id,
        "permissions": codes,
        "byCategory": group_by_category(codes),
        "source": resolution.source,
        "fullAccess": identity.is_top_level,
    }
