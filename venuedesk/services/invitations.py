from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
import logging
import secrets
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from venuedesk.core.config import Settings
from venuedesk.core.errors import Forbidden, NotFound, ValidationFailed
from venuedesk.domain.models import ManagerInvitation
from venuedesk.domain.roles import InvitationStatus, Role
from venuedesk.persistence.repos import invitations as invitations_repo
from venuedesk.persistence.repos import permissions as permissions_repo
from venuedesk.persistence.repos import users as users_repo
from venuedesk.persistence.repos import venues as venues_repo
from venuedesk.services.auth.identity import Identity
from venuedesk.services.authz.escalation import validate_grant
from venuedesk.services.email import EmailDeliveryResult, EmailSender, build_invite_link


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    # Keep invitation timestamps in UTC for consistent expiry checks.
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; treat them as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def _dedupe(values: list[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for value in values:
        if value and value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


@dataclass(frozen=True)
class InviteRequest:
    email: str
    venue_ids: list[str]
    first_name: str
    last_name: str
    phone: str | None = None
    date_of_birth: date | None = None
    permission_template_id: str | None = None
    account_id: str | None = None


@dataclass(frozen=True)
class InvitationCreated:
    invitation: ManagerInvitation
    invite_link: str
    delivery: EmailDeliveryResult


@dataclass(frozen=True)
class TokenCheck:
    valid: bool
    reason: str | None = None
    message: str | None = None
    invitation: ManagerInvitation | None = None


async def _inviter_name(session: AsyncSession, caller: Identity) -> str:
    row = await users_repo.get_live_user(session, caller.id)
    if row is not None and row.first_name and row.last_name:
        return f"{row.first_name} {row.last_name}"
    if row is not None and row.email:
        return row.email
    return "Your account administrator"


async def create_invitation(
    session: AsyncSession,
    caller: Identity,
    payload: InviteRequest,
    *,
    settings: Settings,
    email_sender: EmailSender,
) -> InvitationCreated:
    """Create a pending manager invitation and attempt the invitation email.

    Older pending invitations for the same email are revoked first so only the
    newest link works. Email failures are logged and reported in the result
    without failing the call.
    """
    email = normalize_email(payload.email)
    venue_ids = _dedupe(list(payload.venue_ids or []))
    if not email or not venue_ids:
        raise ValidationFailed("Email and venue IDs required")
    if not (payload.first_name or "").strip() or not (payload.last_name or "").strip():
        raise ValidationFailed("First name and last name required")

    account_id = caller.account_scope(payload.account_id)
    if not account_id:
        raise ValidationFailed("accountId is required")

    if caller.role is Role.SCOPED_MEMBER:
        # Inviters cannot hand out venues they cannot reach themselves.
        reachable = await venues_repo.staff_venue_ids(session, caller.id)
        if any(venue_id not in reachable for venue_id in venue_ids):
            raise Forbidden("You can only invite managers to venues you have access to")

    venues = await venues_repo.list_account_venues(session, account_id=account_id, venue_ids=venue_ids)
    if len(venues) != len(venue_ids):
        raise Forbidden("Some venues do not belong to your account")

    if await users_repo.get_live_user_by_email(session, email) is not None:
        raise ValidationFailed("A user with this email already exists")

    if payload.permission_template_id:
        if await permissions_repo.get_template(session, payload.permission_template_id) is None:
            raise ValidationFailed("Unknown role template")
        await validate_grant(session, caller, template_id=payload.permission_template_id)

    revoked = await invitations_repo.transition_pending_for_email(
        session, email=email, status=InvitationStatus.REVOKED
    )
    now = _utc_now()
    invitation = ManagerInvitation(
        id=uuid4().hex,
        email=email,
        account_id=account_id,
        invited_by=caller.id,
        venue_ids=venue_ids,
        token=secrets.token_urlsafe(32),
        expires_at=now + timedelta(days=settings.invitation_ttl_days),
        status=InvitationStatus.PENDING.value,
        first_name=payload.first_name.strip(),
        last_name=payload.last_name.strip(),
        phone=payload.phone or None,
        date_of_birth=payload.date_of_birth,
        permission_template_id=payload.permission_template_id or None,
        created_at=now,
    )
    session.add(invitation)
    await session.commit()
    logger.info(
        "invitation_created invitation_id=%s account_id=%s invited_by=%s superseded=%s",
        invitation.id,
        account_id,
        caller.id,
        revoked,
    )

    invite_link = build_invite_link(settings, invitation.token)
    by_id = {venue.id: venue for venue in venues}
    venue_names = ", ".join(by_id[venue_id].name or venue_id for venue_id in venue_ids)
    delivery = await email_sender.send_invitation(
        to=email,
        first_name=invitation.first_name or "",
        inviter_name=await _inviter_name(session, caller),
        venue_names=venue_names,
        invite_link=invite_link,
    )
    return InvitationCreated(invitation=invitation, invite_link=invite_link, delivery=delivery)


async def resend_invitation(
    session: AsyncSession,
    caller: Identity,
    email: str | None,
    *,
    settings: Settings,
    email_sender: EmailSender,
    account_id: str | None = None,
) -> tuple[ManagerInvitation, EmailDeliveryResult]:
    normalized = normalize_email(email)
    if not normalized:
        raise ValidationFailed("Email is required")
    invitation = await invitations_repo.latest_pending_for_email(
        session, email=normalized, account_id=caller.account_scope(account_id)
    )
    if invitation is None:
        raise NotFound("No pending invitation found for this email")

    invitation.expires_at = _utc_now() + timedelta(days=settings.invitation_ttl_days)
    await session.commit()
    logger.info("invitation_resent invitation_id=%s by=%s", invitation.id, caller.id)

    delivery = await email_sender.send_reminder(
        to=invitation.email,
        first_name=invitation.first_name,
        invite_link=build_invite_link(settings, invitation.token),
    )
    return invitation, delivery


async def revoke_invitation(
    session: AsyncSession,
    caller: Identity,
    invitation_id: str | None,
) -> ManagerInvitation:
    if not invitation_id:
        raise ValidationFailed("Invitation ID required")
    # Only pending rows qualify, so a second revoke reads as not found.
    invitation = await invitations_repo.get_pending_invitation(
        session, invitation_id=invitation_id, account_id=caller.account_scope()
    )
    if invitation is None:
        raise NotFound("Invitation not found")
    invitation.status = InvitationStatus.REJECTED.value
    await session.commit()
    logger.info("invitation_revoked invitation_id=%s by=%s", invitation.id, caller.id)
    return invitation


async def list_pending_invitations(
    session: AsyncSession,
    caller: Identity,
    account_id: str | None = None,
) -> list[ManagerInvitation]:
    scope = caller.account_scope(account_id)
    if not scope:
        return []
    invited_by = None if caller.is_top_level else caller.id
    return await invitations_repo.list_pending(
        session, account_id=scope, now=_utc_now(), invited_by=invited_by
    )


async def check_token(session: AsyncSession, token: str | None) -> TokenCheck:
    if not token:
        raise ValidationFailed("Token is required")
    invitation = await invitations_repo.get_by_token(session, token)
    if invitation is None:
        return TokenCheck(valid=False, reason="invalid", message="Invalid invitation token")
    if _as_utc(invitation.expires_at) < _utc_now():
        return TokenCheck(valid=False, reason="expired", message="This invitation has expired")
    if invitation.status == InvitationStatus.ACCEPTED.value:
        return TokenCheck(valid=False, reason="used", message="This invitation has already been used")
    if invitation.status != InvitationStatus.PENDING.value:
        return TokenCheck(valid=False, reason="invalid", message="Invalid invitation token")
    return TokenCheck(valid=True, invitation=invitation)
