from __future__ import annotations

import logging
from typing import AsyncGenerator

from fastapi import Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from venuedesk.core.config import Settings
from venuedesk.core.errors import Forbidden
from venuedesk.domain.roles import ACCOUNT_ADMIN_ROLES, Role
from venuedesk.services.auth.identity import Identity, resolve
from venuedesk.services.auth.tokens import TokenVerifier
from venuedesk.services.authz.evaluator import has_permission
from venuedesk.services.authz.venue_access import ensure_venue_access
from venuedesk.services.email import EmailSender


logger = logging.getLogger(__name__)


def get_settings_dep(request: Request) -> Settings:
    return request.app.state.settings


async def get_db(request: Request) -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with request.app.state.db.session() as session:
        yield session


def get_token_verifier(request: Request) -> TokenVerifier:
    return request.app.state.token_verifier


def get_email_sender(request: Request) -> EmailSender:
    return request.app.state.email_sender


async def get_current_identity(
    request: Request,
    db: AsyncSession = Depends(get_db),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> Identity:
    # Verify the bearer credential first; the identity row is only read afterwards.
    settings = get_settings_dep(request)
    return await resolve(db, request.headers.get(settings.auth_header), verifier)


def require_role(*roles: Role):
    # Dependency factory for coarse role gates.
    allowed = frozenset(roles)

    async def _dependency(identity: Identity = Depends(get_current_identity)) -> Identity:
        if identity.role not in allowed:
            logger.info(
                "rbac_forbidden user_id=%s role=%s required=%s",
                identity.id,
                identity.role.value,
                ",".join(sorted(role.value for role in allowed)),
            )
            raise Forbidden("Insufficient role for this operation")
        return identity

    return _dependency


def require_account_admin():
    # Operators and account owners administer invitations and manager records.
    return require_role(*ACCOUNT_ADMIN_ROLES)


def require_permission(code: str):
    # Dependency factory for fine-grained permission gates at account scope.
    async def _dependency(
        identity: Identity = Depends(get_current_identity),
        db: AsyncSession = Depends(get_db),
    ) -> Identity:
        if not await has_permission(db, identity, code):
            logger.info("permission_forbidden user_id=%s required=%s", identity.id, code)
            raise Forbidden(f"Insufficient permissions. {code} permission required.")
        return identity

    return _dependency


async def require_venue_access(
    venue_id: str | None = Query(default=None, alias="venueId"),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db),
) -> Identity:
    # Without a venue the request is account-scoped and only needs authentication.
    if venue_id:
        await ensure_venue_access(db, identity, venue_id)
    return identity
