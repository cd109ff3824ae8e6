from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from venuedesk.domain.models import ManagerInvitation
from venuedesk.domain.roles import InvitationStatus
from venuedesk.persistence.guards import account_predicate


async def get_pending_invitation(
    session: AsyncSession,
    *,
    invitation_id: str,
    account_id: str | None,
) -> ManagerInvitation | None:
    # Filtering on status means already-rejected rows read as missing.
    stmt = select(ManagerInvitation).where(
        ManagerInvitation.id == invitation_id,
        ManagerInvitation.status == InvitationStatus.PENDING.value,
    )
    if account_id is not None:
        stmt = stmt.where(account_predicate(ManagerInvitation, account_id))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def latest_pending_for_email(
    session: AsyncSession,
    *,
    email: str,
    account_id: str | None,
) -> ManagerInvitation | None:
    stmt = select(ManagerInvitation).where(
        ManagerInvitation.email == email,
        ManagerInvitation.status == InvitationStatus.PENDING.value,
    )
    if account_id is not None:
        stmt = stmt.where(account_predicate(ManagerInvitation, account_id))
    stmt = stmt.order_by(ManagerInvitation.created_at.desc(), ManagerInvitation.id.desc()).limit(1)
    result = await session.execute(stmt)
    return result.scalars().first()


async def get_by_token(session: AsyncSession, token: str) -> ManagerInvitation | None:
    result = await session.execute(select(ManagerInvitation).where(ManagerInvitation.token == token))
    return result.scalar_one_or_none()


async def list_pending(
    session: AsyncSession,
    *,
    account_id: str,
    now: datetime,
    invited_by: str | None = None,
) -> list[ManagerInvitation]:
    # Expiry is enforced here by the reader; stale rows stay pending in storage.
    stmt = select(ManagerInvitation).where(
        account_predicate(ManagerInvitation, account_id),
        ManagerInvitation.status == InvitationStatus.PENDING.value,
        ManagerInvitation.expires_at > now,
    )
    if invited_by is not None:
        stmt = stmt.where(ManagerInvitation.invited_by == invited_by)
    stmt = stmt.order_by(ManagerInvitation.created_at.desc(), ManagerInvitation.id.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def transition_pending_for_email(
    session: AsyncSession,
    *,
    email: str,
    status: InvitationStatus,
) -> int:
    # Move every pending invitation for the email to a terminal status.
    result = await session.execute(
        update(ManagerInvitation)
        .where(
            func.lower(ManagerInvitation.email) == email.strip().lower(),
            ManagerInvitation.status == InvitationStatus.PENDING.value,
        )
        .values(status=status.value)
    )
    return int(result.rowcount or 0)
