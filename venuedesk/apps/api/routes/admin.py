from __future__ import annotations

from datetime import date, datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, BeforeValidator, ConfigDict
from pydantic.alias_generators import to_camel
from sqlalchemy.ext.asyncio import AsyncSession

from venuedesk.apps.api.deps import (
    get_db,
    get_email_sender,
    get_settings_dep,
    require_account_admin,
    require_permission,
)
from venuedesk.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from venuedesk.core.config import Settings
from venuedesk.domain.models import ManagerInvitation, PermissionAssignment, User
from venuedesk.services import invitations as invitation_service
from venuedesk.services import managers as manager_service
from venuedesk.services.auth.identity import Identity
from venuedesk.services.email import EmailSender


router = APIRouter(prefix="/api/admin", tags=["admin"], responses=DEFAULT_ERROR_RESPONSES)


class CamelModel(BaseModel):
    # Dashboard clients post camelCase bodies.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


# Forms submit an empty string when the optional date is left blank.
OptionalDate = Annotated[date | None, BeforeValidator(_blank_to_none)]


class InviteManagerRequest(CamelModel):
    email: str | None = None
    venue_ids: list[str] | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    date_of_birth: OptionalDate = None
    permission_template_id: str | None = None
    account_id: str | None = None


class RevokeInvitationRequest(CamelModel):
    invitation_id: str | None = None


class ResendInvitationRequest(CamelModel):
    email: str | None = None
    account_id: str | None = None


class UpdatePermissionsRequest(CamelModel):
    manager_id: str | None = None
    role_template_id: str | None = None
    custom_permissions: list[str] | None = None
    venue_id: str | None = None


class UpdateVenuesRequest(CamelModel):
    manager_id: str | None = None
    venue_ids: list[str] | None = None


class DeleteManagerRequest(CamelModel):
    manager_id: str | None = None


class UpdateManagerRequest(CamelModel):
    manager_id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    date_of_birth: OptionalDate = None


def _iso(value: datetime | date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _invitation_payload(row: ManagerInvitation) -> dict[str, Any]:
    return {
        "id": row.id,
        "email": row.email,
        "account_id": row.account_id,
        "invited_by": row.invited_by,
        "venue_ids": list(row.venue_ids or []),
        "token": row.token,
        "expires_at": _iso(row.expires_at),
        "status": row.status,
        "first_name": row.first_name,
        "last_name": row.last_name,
        "phone": row.phone,
        "date_of_birth": _iso(row.date_of_birth),
        "permission_template_id": row.permission_template_id,
        "created_at": _iso(row.created_at),
    }


def _assignment_payload(row: PermissionAssignment) -> dict[str, Any]:
    return {
        "id": row.id,
        "user_id": row.user_id,
        "account_id": row.account_id,
        "venue_id": row.venue_id,
        "role_template_id": row.role_template_id,
        "custom_permissions": list(row.custom_permissions or []),
        "created_by": row.created_by,
        "updated_at": _iso(row.updated_at),
    }


def _manager_payload(row: User) -> dict[str, Any]:
    return {
        "id": row.id,
        "email": row.email,
        "account_id": row.account_id,
        "role": row.role,
        "first_name": row.first_name,
        "last_name": row.last_name,
        "phone": row.phone,
        "date_of_birth": _iso(row.date_of_birth),
        "deleted_at": _iso(row.deleted_at),
    }


@router.post("/invite-manager")
async def invite_manager(
    payload: InviteManagerRequest,
    identity: Identity = Depends(require_permission("managers.invite")),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings_dep),
    email_sender: EmailSender = Depends(get_email_sender),
) -> dict[str, Any]:
    created = await invitation_service.create_invitation(
        db,
        identity,
        invitation_service.InviteRequest(
            email=payload.email or "",
            venue_ids=payload.venue_ids or [],
            first_name=payload.first_name or "",
            last_name=payload.last_name or "",
            phone=payload.phone,
            date_of_birth=payload.date_of_birth,
            permission_template_id=payload.permission_template_id,
            account_id=payload.account_id,
        ),
        settings=settings,
        email_sender=email_sender,
    )
    return {
        "success": True,
        "invitation": _invitation_payload(created.invitation),
        "inviteLink": created.invite_link,
        "emailSent": created.delivery.sent,
        "message": "Manager invitation created successfully",
    }


@router.post("/revoke-invitation")
async def revoke_invitation(
    payload: RevokeInvitationRequest,
    identity: Identity = Depends(require_account_admin()),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await invitation_service.revoke_invitation(db, identity, payload.invitation_id)
    return {"success": True, "message": "Invitation revoked successfully"}


@router.post("/resend-invitation")
async def resend_invitation(
    payload: ResendInvitationRequest,
    identity: Identity = Depends(require_account_admin()),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings_dep),
    email_sender: EmailSender = Depends(get_email_sender),
) -> dict[str, Any]:
    invitation, delivery = await invitation_service.resend_invitation(
        db,
        identity,
        payload.email,
        settings=settings,
        email_sender=email_sender,
        account_id=payload.account_id,
    )
    return {
        "success": True,
        "expiresAt": _iso(invitation.expires_at),
        "emailSent": delivery.sent,
        "message": "Invitation email resent successfully",
    }


@router.get("/get-pending-invitations")
async def get_pending_invitations(
    account_id: str | None = Query(default=None, alias="accountId"),
    identity: Identity = Depends(require_permission("managers.view")),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    rows = await invitation_service.list_pending_invitations(db, identity, account_id)
    return {"invitations": [_invitation_payload(row) for row in rows]}


@router.post("/update-manager-permissions")
async def update_manager_permissions(
    payload: UpdatePermissionsRequest,
    request: Request,
    identity: Identity = Depends(require_permission("managers.permissions")),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    result = await manager_service.update_permissions(
        db,
        identity,
        payload.manager_id,
        role_template_id=payload.role_template_id,
        custom_permissions=payload.custom_permissions,
        venue_id=payload.venue_id,
        request=request,
    )
    return {
        "success": True,
        "message": "Permissions updated successfully",
        "data": _assignment_payload(result.assignment),
    }


@router.post("/update-manager-venues")
async def update_manager_venues(
    payload: UpdateVenuesRequest,
    identity: Identity = Depends(require_permission("managers.venues")),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    venue_ids = await manager_service.update_venues(db, identity, payload.manager_id, payload.venue_ids)
    return {"success": True, "message": "Venue access updated successfully", "venueIds": venue_ids}


@router.post("/delete-manager")
async def delete_manager(
    payload: DeleteManagerRequest,
    request: Request,
    identity: Identity = Depends(require_account_admin()),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    manager = await manager_service.soft_delete_manager(db, identity, payload.manager_id, request=request)
    return {
        "success": True,
        "deletedAt": _iso(manager.deleted_at),
        "message": "Manager deleted successfully",
    }


@router.post("/update-manager")
async def update_manager(
    payload: UpdateManagerRequest,
    identity: Identity = Depends(require_account_admin()),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    manager = await manager_service.update_manager_profile(
        db,
        identity,
        payload.manager_id,
        first_name=payload.first_name,
        last_name=payload.last_name,
        phone=payload.phone,
        date_of_birth=payload.date_of_birth,
    )
    return {"success": True, "manager": _manager_payload(manager), "message": "Manager updated successfully"}
