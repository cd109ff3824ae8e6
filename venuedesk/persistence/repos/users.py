from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from venuedesk.domain.models import User
from venuedesk.domain.roles import Role
from venuedesk.persistence.guards import account_predicate


async def get_live_user(session: AsyncSession, user_id: str) -> User | None:
    # Soft-deleted rows are invisible to every read path.
    result = await session.execute(
        select(User).where(User.id == user_id, User.deleted_at.is_(None))
    )
    return result.scalar_one_or_none()


async def get_live_user_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(
        select(User)
        .where(func.lower(User.email) == email.strip().lower(), User.deleted_at.is_(None))
        .limit(1)
    )
    return result.scalars().first()


async def get_live_member(
    session: AsyncSession,
    *,
    user_id: str,
    account_id: str | None = None,
) -> User | None:
    # Fetch a live scoped member, optionally pinned to an account.
    stmt = select(User).where(
        User.id == user_id,
        User.role == Role.SCOPED_MEMBER.value,
        User.deleted_at.is_(None),
    )
    if account_id is not None:
        stmt = stmt.where(account_predicate(User, account_id))
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_live_members(session: AsyncSession, *, account_id: str) -> list[User]:
    result = await session.execute(
        select(User)
        .where(
            account_predicate(User, account_id),
            User.role == Role.SCOPED_MEMBER.value,
            User.deleted_at.is_(None),
        )
        .order_by(User.created_at.asc(), User.id.asc())
    )
    return list(result.scalars().all())


async def list_users_by_ids(session: AsyncSession, user_ids: set[str]) -> list[User]:
    if not user_ids:
        return []
    result = await session.execute(select(User).where(User.id.in_(user_ids)))
    return list(result.scalars().all())
