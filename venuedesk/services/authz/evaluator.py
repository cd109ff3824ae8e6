from __future__ import annotations

from dataclasses import dataclass, field
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from venuedesk.domain.models import PermissionAssignment
from venuedesk.domain.roles import Role
from venuedesk.persistence.repos import permissions as permissions_repo
from venuedesk.services.auth.identity import Identity
from venuedesk.services.authz.catalog import TEMPLATE_ADMIN, TEMPLATE_VIEWER


logger = logging.getLogger(__name__)

SOURCE_CATALOG = "catalog"
SOURCE_TEMPLATE = "template"
SOURCE_CUSTOM = "custom"
SOURCE_DEFAULT_VIEWER = "default_viewer"
SOURCE_NONE = "none"
SOURCE_ERROR = "error"


@dataclass(frozen=True)
class PermissionResolution:
    """Effective permission codes for one identity at one scope.

    ``error`` is set when the lookup failed; the code set is then empty, which
    callers can tell apart from an identity that simply holds nothing.
    """

    codes: frozenset[str] = field(default_factory=frozenset)
    source: str = SOURCE_NONE
    assignment_id: str | None = None
    error: str | None = None

    def __contains__(self, code: object) -> bool:
        return code in self.codes

    @property
    def failed(self) -> bool:
        return self.error is not None


def select_assignment(
    rows: list[PermissionAssignment],
    venue_id: str | None,
) -> PermissionAssignment | None:
    # A row for the requested venue beats the account-wide row.
    if venue_id is not None:
        for row in rows:
            if row.venue_id == venue_id:
                return row
    for row in rows:
        if row.venue_id is None:
            return row
    return None


async def effective_permissions(
    session: AsyncSession,
    identity: Identity,
    venue_id: str | None = None,
) -> PermissionResolution:
    try:
        if identity.role is Role.OPERATOR:
            codes = await permissions_repo.list_all_codes(session)
            return PermissionResolution(codes=frozenset(codes), source=SOURCE_CATALOG)
        if identity.role is Role.ACCOUNT_OWNER:
            codes = await permissions_repo.template_codes_by_code(session, TEMPLATE_ADMIN)
            return PermissionResolution(codes=frozenset(codes), source=SOURCE_TEMPLATE)

        rows = await permissions_repo.list_assignments(session, identity.id)
        if not rows:
            # Members without any assignment fall back to read-only access.
            codes = await permissions_repo.template_codes_by_code(session, TEMPLATE_VIEWER)
            return PermissionResolution(codes=frozenset(codes), source=SOURCE_DEFAULT_VIEWER)

        row = select_assignment(rows, venue_id)
        if row is None:
            return PermissionResolution(source=SOURCE_NONE)
        if row.role_template_id:
            codes = await permissions_repo.template_codes(session, row.role_template_id)
            return PermissionResolution(
                codes=frozenset(codes), source=SOURCE_TEMPLATE, assignment_id=row.id
            )
        return PermissionResolution(
            codes=frozenset(row.custom_permissions or []),
            source=SOURCE_CUSTOM,
            assignment_id=row.id,
        )
    except SQLAlchemyError as exc:
        logger.error(
            "permission_lookup_failed user_id=%s venue_id=%s",
            identity.id,
            venue_id,
            exc_info=exc,
        )
        return PermissionResolution(source=SOURCE_ERROR, error=str(exc))


async def has_permission(
    session: AsyncSession,
    identity: Identity,
    code: str,
    venue_id: str | None = None,
) -> bool:
    # Top-level roles hold everything; skip the lookup entirely.
    if identity.is_top_level:
        return True
    resolution = await effective_permissions(session, identity, venue_id)
    return code in resolution.codes


async def has_any(
    session: AsyncSession,
    identity: Identity,
    codes: list[str] | tuple[str, ...],
    venue_id: str | None = None,
) -> bool:
    if identity.is_top_level:
        return True
    resolution = await effective_permissions(session, identity, venue_id)
    return any(code in resolution.codes for code in codes)


async def has_all(
    session: AsyncSession,
    identity: Identity,
    codes: list[str] | tuple[str, ...],
    venue_id: str | None = None,
) -> bool:
    if identity.is_top_level:
        return True
    resolution = await effective_permissions(session, identity, venue_id)
    return all(code in resolution.codes for code in codes)
