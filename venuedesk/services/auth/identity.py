from __future__ import annotations

from dataclasses import dataclass
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from venuedesk.core.errors import IdentityNotFound
from venuedesk.domain.roles import Role, normalize_role
from venuedesk.persistence.repos import users as users_repo
from venuedesk.services.auth.tokens import TokenVerifier, VerifiedSubject, parse_bearer


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    id: str
    role: Role
    account_id: str | None
    email: str | None = None

    @property
    def is_top_level(self) -> bool:
        return self.role.is_top_level

    def account_scope(self, requested_account_id: str | None = None) -> str | None:
        # Account-agnostic operators name the account explicitly; everyone else is pinned.
        if self.account_id:
            return self.account_id
        if self.role is Role.OPERATOR:
            return requested_account_id or None
        return None


class ElevatedReader:
    """Reads identity rows with the service credential.

    Construction requires a :class:`VerifiedSubject`, so the privileged read can
    only happen after the bearer token has been verified.
    """

    def __init__(self, subject: VerifiedSubject, session: AsyncSession) -> None:
        if not isinstance(subject, VerifiedSubject):
            raise TypeError("ElevatedReader requires a VerifiedSubject")
        self._subject = subject
        self._session = session

    async def load_identity(self) -> Identity:
        row = await users_repo.get_live_user(self._session, self._subject.subject)
        if row is None:
            logger.info("identity_not_found subject=%s", self._subject.subject)
            raise IdentityNotFound("User not found")
        return Identity(
            id=row.id,
            role=normalize_role(row.role),
            account_id=row.account_id,
            email=row.email,
        )


async def resolve(
    session: AsyncSession,
    authorization: str | None,
    verifier: TokenVerifier,
) -> Identity:
    """Turn an ``Authorization`` header into the caller's identity.

    Raises ``Unauthenticated`` for a missing, malformed or rejected credential
    and ``IdentityNotFound`` when the verified subject has no live row.
    """
    token = parse_bearer(authorization)
    subject = verifier.verify(token)
    return await ElevatedReader(subject, session).load_identity()
