from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from venuedesk.apps.api.deps import get_db
from venuedesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from venuedesk.services import invitations as invitation_service


router = APIRouter(prefix="/api", tags=["invitations"], responses=DEFAULT_ERROR_RESPONSES)


class ValidateTokenRequest(BaseModel):
    token: str | None = None


@router.post("/validate-invitation-token")
async def validate_invitation_token(
    payload: ValidateTokenRequest,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    # Public: the token itself is the credential.
    check = await invitation_service.check_token(db, payload.token)
    if not check.valid or check.invitation is None:
        return {"valid": False, "reason": check.reason, "message": check.message}
    invitation = check.invitation
    return {
        "valid": True,
        "email": invitation.email,
        "firstName": invitation.first_name,
        "lastName": invitation.last_name,
        "venueIds": list(invitation.venue_ids or []),
    }
