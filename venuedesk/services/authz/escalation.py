from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy.ext.asyncio import AsyncSession

from venuedesk.core.config import OPERATOR_ONLY_PERMISSIONS
from venuedesk.core.errors import DatabaseError, EscalationDenied, ValidationFailed
from venuedesk.persistence.repos import permissions as permissions_repo
from venuedesk.services.auth.identity import Identity
from venuedesk.services.authz.evaluator import effective_permissions


logger = logging.getLogger(__name__)


async def _grantor_codes(
    session: AsyncSession,
    grantor: Identity,
    venue_id: str | None,
) -> frozenset[str]:
    resolution = await effective_permissions(session, grantor, venue_id)
    if resolution.failed:
        # An unreadable grantor set must not be mistaken for "holds nothing".
        raise DatabaseError("Unable to resolve grantor permissions")
    return resolution.codes


async def validate_grant(
    session: AsyncSession,
    grantor: Identity,
    *,
    template_id: str | None = None,
    custom_codes: Iterable[str] = (),
    venue_id: str | None = None,
) -> None:
    """Reject grants the grantor is not entitled to hand out.

    Exactly one of ``template_id`` or ``custom_codes`` is validated per call.
    Operators and account owners may grant anything. For scoped members every
    requested code must be held by the grantor at the grant's venue scope and
    none may be reserved for operators.
    """
    requested_custom = list(custom_codes)
    if template_id and requested_custom:
        raise ValueError("validate_grant accepts a template or custom codes, not both")
    if grantor.is_top_level:
        return

    if template_id:
        template = await permissions_repo.get_template(session, template_id)
        if template is None:
            raise ValidationFailed("Unknown role template")
        requested = await permissions_repo.template_codes(session, template_id)
        flagged = await permissions_repo.list_operator_only_codes(session, requested)
        reserved = sorted((requested & set(OPERATOR_ONLY_PERMISSIONS)) | flagged)
        if reserved:
            logger.info(
                "escalation_denied grantor_id=%s template_id=%s reserved=%s",
                grantor.id,
                template_id,
                ",".join(reserved),
            )
            raise EscalationDenied(
                f"Cannot assign template with operator-only permission: {reserved[0]}"
            )
        held = await _grantor_codes(session, grantor, venue_id)
        missing = sorted(requested - held)
        if missing:
            logger.info(
                "escalation_denied grantor_id=%s template_id=%s missing=%s",
                grantor.id,
                template_id,
                ",".join(missing),
            )
            raise EscalationDenied(f"Cannot assign permission you don't have: {missing[0]}")
        return

    if not requested_custom:
        return
    requested = set(requested_custom)
    flagged = await permissions_repo.list_operator_only_codes(session, requested)
    reserved = sorted((requested & set(OPERATOR_ONLY_PERMISSIONS)) | flagged)
    if reserved:
        logger.info(
            "escalation_denied grantor_id=%s reserved=%s", grantor.id, ",".join(reserved)
        )
        raise EscalationDenied(f"Cannot assign operator-only permissions: {', '.join(reserved)}")
    held = await _grantor_codes(session, grantor, venue_id)
    missing = sorted(requested - held)
    if missing:
        logger.info("escalation_denied grantor_id=%s missing=%s", grantor.id, ",".join(missing))
        raise EscalationDenied(f"Cannot assign permissions you don't have: {', '.join(missing)}")
