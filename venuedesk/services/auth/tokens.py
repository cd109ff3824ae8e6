from __future__ import annotations

import logging
import time
from typing import Any

import jwt

from venuedesk.core.config import Settings
from venuedesk.core.errors import Unauthenticated


logger = logging.getLogger(__name__)

# Private mint token: only TokenVerifier can construct a VerifiedSubject.
_MINT = object()


class VerifiedSubject:
    """Proof that a bearer credential was verified by the auth provider.

    Instances are only produced by :meth:`TokenVerifier.verify`; holding one is
    the precondition for reading identity rows with elevated credentials.
    """

    __slots__ = ("subject", "claims")

    def __init__(self, subject: str, claims: dict[str, Any], *, _mint: object = None) -> None:
        if _mint is not _MINT:
            raise TypeError("VerifiedSubject can only be issued by a TokenVerifier")
        self.subject = subject
        self.claims = claims

    def __repr__(self) -> str:
        return f"VerifiedSubject(subject={self.subject!r})"


def parse_bearer(header_value: str | None) -> str:
    # Reject missing or malformed headers before any provider or database call.
    if not header_value:
        raise Unauthenticated("Missing or invalid authorization header")
    parts = header_value.strip().split(" ", 1)
    if len(parts) != 2 or parts[0] != "Bearer":
        raise Unauthenticated("Missing or invalid authorization header")
    token = parts[1].strip()
    if not token:
        raise Unauthenticated("Missing or invalid authorization header")
    return token


class TokenVerifier:
    """Validates provider-issued access tokens and yields the subject id."""

    def __init__(self, settings: Settings) -> None:
        self._secret = settings.auth_jwt_secret
        self._audience = settings.auth_jwt_audience
        self._algorithms = settings.jwt_algorithms()
        self._leeway = settings.auth_jwt_leeway_seconds

    def verify(self, token: str) -> VerifiedSubject:
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=self._algorithms,
                audience=self._audience,
                leeway=self._leeway,
                options={"require": ["sub", "exp"]},
            )
        except jwt.PyJWTError as exc:
            logger.info("auth_token_rejected reason=%s", type(exc).__name__)
            raise Unauthenticated("Invalid or expired token") from exc
        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise Unauthenticated("Invalid or expired token")
        return VerifiedSubject(subject, claims, _mint=_MINT)


def issue_token(settings: Settings, *, subject: str, ttl_seconds: int = 3600, **extra: Any) -> str:
    # Local token minting for scripts and tests; production tokens come from the provider.
    now = int(time.time())
    payload: dict[str, Any] = {
        "sub": subject,
        "aud": settings.auth_jwt_audience,
        "iat": now,
        "exp": now + ttl_seconds,
        **extra,
    }
    algorithm = settings.jwt_algorithms()[0] if settings.jwt_algorithms() else "HS256"
    return jwt.encode(payload, settings.auth_jwt_secret, algorithm=algorithm)
