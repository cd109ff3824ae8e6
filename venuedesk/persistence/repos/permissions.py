from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from venuedesk.domain.models import (
    Permission,
    PermissionAssignment,
    RoleTemplate,
    RoleTemplatePermission,
)


async def list_all_codes(session: AsyncSession) -> set[str]:
    # Read the catalog fresh so newly added codes are picked up immediately.
    result = await session.execute(select(Permission.code))
    return set(result.scalars().all())


async def list_operator_only_codes(session: AsyncSession, codes: set[str] | None = None) -> set[str]:
    stmt = select(Permission.code).where(Permission.operator_only.is_(True))
    if codes is not None:
        stmt = stmt.where(Permission.code.in_(codes))
    result = await session.execute(stmt)
    return set(result.scalars().all())


async def get_template(session: AsyncSession, template_id: str) -> RoleTemplate | None:
    return await session.get(RoleTemplate, template_id)


async def template_codes(session: AsyncSession, template_id: str) -> set[str]:
    result = await session.execute(
        select(RoleTemplatePermission.permission_code).where(
            RoleTemplatePermission.template_id == template_id
        )
    )
    return set(result.scalars().all())


async def template_codes_by_code(session: AsyncSession, template_code: str) -> set[str]:
    # Resolve built-in templates (admin/manager/viewer) by their stable code.
    result = await session.execute(
        select(RoleTemplatePermission.permission_code)
        .join(RoleTemplate, RoleTemplate.id == RoleTemplatePermission.template_id)
        .where(RoleTemplate.code == template_code)
    )
    return set(result.scalars().all())


async def list_assignments(session: AsyncSession, user_id: str) -> list[PermissionAssignment]:
    # Venue-scoped rows sort ahead of the account-wide (venue_id null) row.
    result = await session.execute(
        select(PermissionAssignment)
        .where(PermissionAssignment.user_id == user_id)
        .order_by(PermissionAssignment.venue_id.is_(None).asc(), PermissionAssignment.venue_id.asc())
    )
    return list(result.scalars().all())


async def get_assignment(
    session: AsyncSession,
    *,
    user_id: str,
    venue_id: str | None,
) -> PermissionAssignment | None:
    stmt = select(PermissionAssignment).where(PermissionAssignment.user_id == user_id)
    if venue_id is None:
        stmt = stmt.where(PermissionAssignment.venue_id.is_(None))
    else:
        stmt = stmt.where(PermissionAssignment.venue_id == venue_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()
