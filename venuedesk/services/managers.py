from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timezone
import logging
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from venuedesk.core.errors import DatabaseError, Forbidden, NotFound, ValidationFailed
from venuedesk.domain.models import PermissionAssignment, User
from venuedesk.domain.roles import AuditAction, InvitationStatus, Role
from venuedesk.persistence.repos import invitations as invitations_repo
from venuedesk.persistence.repos import permissions as permissions_repo
from venuedesk.persistence.repos import users as users_repo
from venuedesk.persistence.repos import venues as venues_repo
from venuedesk.services.audit import record_permission_change
from venuedesk.services.auth.identity import Identity
from venuedesk.services.authz.escalation import validate_grant
from venuedesk.services.authz.evaluator import select_assignment
from venuedesk.services.authz.hierarchy import build_tree, parent_of, require_ancestor, subordinate_ids


logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class PermissionUpdate:
    assignment: PermissionAssignment
    action: AuditAction
    audited: bool


@dataclass(frozen=True)
class ManagerListing:
    managers: list[dict[str, Any]]
    hierarchy: list[dict[str, Any]]
    current_user_role: str


async def _load_mutable_target(session: AsyncSession, caller: Identity, manager_id: str | None) -> User:
    # Permission and venue writes only ever touch live scoped members in the caller's account.
    if not manager_id:
        raise ValidationFailed("Manager ID is required")
    target = await users_repo.get_live_user(session, manager_id)
    if target is None:
        raise NotFound("Manager not found")
    if caller.account_id and target.account_id != caller.account_id:
        raise Forbidden("Cannot modify users outside your account")
    if target.role != Role.SCOPED_MEMBER.value:
        raise Forbidden("Cannot modify operator or account owner users")
    return target


async def _load_member_in_scope(session: AsyncSession, caller: Identity, manager_id: str | None) -> User:
    if not manager_id:
        raise ValidationFailed("Manager ID is required")
    target = await users_repo.get_live_member(
        session, user_id=manager_id, account_id=caller.account_scope()
    )
    if target is None:
        raise NotFound("Manager not found or already deleted")
    return target


def _apply_grant(
    assignment: PermissionAssignment,
    caller: Identity,
    *,
    template_id: str | None,
    custom: list[str],
) -> PermissionAssignment:
    assignment.role_template_id = template_id
    assignment.custom_permissions = custom
    assignment.created_by = caller.id
    assignment.updated_at = _utc_now()
    return assignment


async def update_permissions(
    session: AsyncSession,
    caller: Identity,
    manager_id: str | None,
    *,
    role_template_id: str | None = None,
    custom_permissions: list[str] | None = None,
    venue_id: str | None = None,
    request: Request | None = None,
) -> PermissionUpdate:
    """Replace a manager's permission assignment at account or venue scope.

    A template clears any custom list. Scoped callers must sit above the
    target in the hierarchy and may only grant codes they hold themselves.
    Nothing is written when a check fails.
    """
    custom = sorted(set(custom_permissions or []))
    if role_template_id and custom:
        raise ValidationFailed("Provide either roleTemplateId or customPermissions, not both")

    target = await _load_mutable_target(session, caller, manager_id)
    await require_ancestor(session, caller, target.id)

    if role_template_id:
        if await permissions_repo.get_template(session, role_template_id) is None:
            raise ValidationFailed("Unknown role template")
    elif custom:
        unknown = sorted(set(custom) - await permissions_repo.list_all_codes(session))
        if unknown:
            raise ValidationFailed(f"Unknown permission codes: {', '.join(unknown)}")

    if venue_id:
        venue = await venues_repo.get_venue(session, venue_id)
        if venue is None or venue.account_id != target.account_id:
            raise NotFound("Venue not found")

    await validate_grant(
        session,
        caller,
        template_id=role_template_id or None,
        custom_codes=() if role_template_id else custom,
        venue_id=venue_id or None,
    )

    target_id, target_account_id = target.id, target.account_id
    scope_venue_id = venue_id or None
    new_template = role_template_id or None
    new_custom = [] if role_template_id else custom

    existing = await permissions_repo.get_assignment(session, user_id=target_id, venue_id=scope_venue_id)
    if existing is None:
        previous_template, previous_custom = None, []
        assignment = PermissionAssignment(
            id=uuid4().hex,
            user_id=target_id,
            account_id=target_account_id,
            venue_id=scope_venue_id,
            role_template_id=new_template,
            custom_permissions=new_custom,
            created_by=caller.id,
            updated_at=_utc_now(),
        )
        session.add(assignment)
        action = AuditAction.CREATE
        try:
            await session.commit()
        except IntegrityError:
            # A concurrent grant created the row for this scope first; last write wins.
            await session.rollback()
            existing = await permissions_repo.get_assignment(
                session, user_id=target_id, venue_id=scope_venue_id
            )
            if existing is None:
                raise DatabaseError("Failed to update permissions")
            logger.info("manager_permissions_insert_raced target_id=%s by=%s", target_id, caller.id)
    if existing is not None:
        previous_template = existing.role_template_id
        previous_custom = list(existing.custom_permissions or [])
        assignment = _apply_grant(existing, caller, template_id=new_template, custom=new_custom)
        action = AuditAction.UPDATE
        await session.commit()
    logger.info(
        "manager_permissions_updated target_id=%s by=%s action=%s venue_id=%s template_id=%s",
        target_id,
        caller.id,
        action.value,
        venue_id,
        role_template_id,
    )

    audited = await record_permission_change(
        session=session,
        target_user_id=target_id,
        changed_by_user_id=caller.id,
        action=action,
        account_id=target_account_id,
        previous_role_template_id=previous_template,
        previous_custom_permissions=previous_custom,
        new_role_template_id=new_template,
        new_custom_permissions=new_custom,
        venue_id=scope_venue_id,
        request=request,
        metadata={"caller_role": caller.role.value},
    )
    return PermissionUpdate(assignment=assignment, action=action, audited=audited)


async def update_venues(
    session: AsyncSession,
    caller: Identity,
    manager_id: str | None,
    venue_ids: list[str] | None,
) -> list[str]:
    """Swap a manager's venue access for ``venue_ids`` in one transaction."""
    if not manager_id:
        raise ValidationFailed("Manager ID is required")
    requested = list(dict.fromkeys(venue_ids or []))
    if not requested:
        raise ValidationFailed("At least one venue must be assigned")

    target = await _load_mutable_target(session, caller, manager_id)
    await require_ancestor(session, caller, target.id)

    venues = await venues_repo.list_account_venues(
        session, account_id=target.account_id, venue_ids=requested
    )
    if len(venues) != len(requested):
        raise Forbidden("Some venues do not belong to your account")
    if caller.role is Role.SCOPED_MEMBER:
        reachable = await venues_repo.staff_venue_ids(session, caller.id)
        if any(venue_id not in reachable for venue_id in requested):
            raise Forbidden("You can only assign venues you have access to")

    # Rollback expires the loaded target, so keep its id as a plain value.
    target_id = target.id
    previous = sorted(await venues_repo.staff_venue_ids(session, target_id))
    try:
        await venues_repo.delete_staff_rows(session, target_id)
        await venues_repo.insert_staff_rows(session, user_id=target_id, venue_ids=requested)
        await session.commit()
    except SQLAlchemyError as exc:
        # Rollback restores the previous assignment set as a unit.
        await session.rollback()
        logger.error("manager_venues_update_failed target_id=%s by=%s", target_id, caller.id, exc_info=exc)
        raise DatabaseError("Failed to update venue assignments") from exc
    logger.info(
        "manager_venues_updated target_id=%s by=%s previous=%s new=%s",
        target_id,
        caller.id,
        ",".join(previous),
        ",".join(requested),
    )
    return requested


async def soft_delete_manager(
    session: AsyncSession,
    caller: Identity,
    manager_id: str | None,
    *,
    request: Request | None = None,
) -> User:
    target = await _load_member_in_scope(session, caller, manager_id)
    # Capture the permission state before the identity disappears from reads.
    prior = select_assignment(await permissions_repo.list_assignments(session, target.id), None)

    target.deleted_at = _utc_now()
    target.deleted_by = caller.id
    rejected = 0
    if target.email:
        rejected = await invitations_repo.transition_pending_for_email(
            session, email=target.email, status=InvitationStatus.REJECTED
        )
    await session.commit()
    logger.info(
        "manager_soft_deleted target_id=%s by=%s invitations_rejected=%s",
        target.id,
        caller.id,
        rejected,
    )

    await record_permission_change(
        session=session,
        target_user_id=target.id,
        changed_by_user_id=caller.id,
        action=AuditAction.DELETE,
        account_id=target.account_id,
        previous_role_template_id=prior.role_template_id if prior else None,
        previous_custom_permissions=list(prior.custom_permissions or []) if prior else [],
        request=request,
    )
    return target


async def update_manager_profile(
    session: AsyncSession,
    caller: Identity,
    manager_id: str | None,
    *,
    first_name: str | None,
    last_name: str | None,
    phone: str | None = None,
    date_of_birth: date | None = None,
) -> User:
    if not manager_id:
        raise ValidationFailed("Manager ID is required")
    if not (first_name or "").strip() or not (last_name or "").strip():
        raise ValidationFailed("First name and last name are required")
    target = await _load_member_in_scope(session, caller, manager_id)
    target.first_name = first_name.strip()
    target.last_name = last_name.strip()
    target.phone = phone or None
    target.date_of_birth = date_of_birth
    await session.commit()
    logger.info("manager_profile_updated target_id=%s by=%s", target.id, caller.id)
    return target


def _display_name(user: User) -> str | None:
    if user.first_name and user.last_name:
        return f"{user.first_name} {user.last_name}"
    return user.email


async def list_visible_managers(
    session: AsyncSession,
    caller: Identity,
    account_id: str | None = None,
) -> ManagerListing:
    """Managers the caller may manage, with venues and a reporting tree.

    Operators and account owners see every live manager in the account;
    scoped members see their direct and transitive reports.
    """
    scope = caller.account_scope(account_id)
    if not scope:
        return ManagerListing(managers=[], hierarchy=[], current_user_role=caller.role.value)
    members = await users_repo.list_live_members(session, account_id=scope)
    if not caller.is_top_level:
        visible_ids = subordinate_ids(members, caller.id)
        members = [member for member in members if member.id in visible_ids]

    venues_by_user = await venues_repo.staff_venues_for_users(session, [m.id for m in members])
    inviter_ids = {m.invited_by for m in members} - {None}
    inviters = {user.id: user for user in await users_repo.list_users_by_ids(session, inviter_ids)}

    entries: list[dict[str, Any]] = []
    for member in members:
        parent_id = parent_of(member)
        inviter = inviters.get(member.invited_by) if member.invited_by else None
        entries.append(
            {
                "id": member.id,
                "email": member.email,
                "first_name": member.first_name,
                "last_name": member.last_name,
                "role": member.role,
                "reports_to": member.reports_to,
                "invited_by": member.invited_by,
                "invited_by_name": _display_name(inviter) if inviter else None,
                "parent_id": parent_id,
                "created_at": member.created_at.isoformat() if member.created_at else None,
                "venues": [
                    {"id": venue.id, "name": venue.name} for venue in venues_by_user.get(member.id, [])
                ],
            }
        )
    return ManagerListing(
        managers=entries,
        hierarchy=build_tree(entries, caller.id),
        current_user_role=caller.role.value,
    )
