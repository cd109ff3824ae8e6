from __future__ import annotations

import time

import jwt
import pytest

from venuedesk.core.errors import IdentityNotFound, Unauthenticated
from venuedesk.domain.roles import Role
from venuedesk.services.auth.identity import ElevatedReader, Identity, resolve
from venuedesk.services.auth.tokens import (
    TokenVerifier,
    VerifiedSubject,
    issue_token,
    parse_bearer,
)
from venuedesk.tests.utils.auth import create_account, create_user


@pytest.mark.parametrize(
    "header",
    [None, "", "Bearer", "Bearer ", "Token abc", "bearer abc", "Basic dXNlcjpwYXNz"],
)
def test_malformed_headers_are_rejected(header) -> None:
    with pytest.raises(Unauthenticated):
        parse_bearer(header)


def test_bearer_token_is_extracted() -> None:
    assert parse_bearer("Bearer abc.def.ghi") == "abc.def.ghi"


def test_verified_subject_cannot_be_forged() -> None:
    with pytest.raises(TypeError):
        VerifiedSubject("user-1", {"sub": "user-1"})


def test_elevated_reader_requires_verified_subject() -> None:
    with pytest.raises(TypeError):
        ElevatedReader("user-1", None)  # type: ignore[arg-type]


def test_verifier_accepts_provider_tokens(settings) -> None:
    token = issue_token(settings, subject="user-1")
    subject = TokenVerifier(settings).verify(token)
    assert subject.subject == "user-1"
    assert subject.claims["aud"] == "authenticated"


def test_verifier_rejects_wrong_secret(settings) -> None:
    token = jwt.encode(
        {"sub": "user-1", "aud": "authenticated", "exp": int(time.time()) + 60},
        "some-other-secret",
        algorithm="HS256",
    )
    with pytest.raises(Unauthenticated):
        TokenVerifier(settings).verify(token)


def test_verifier_rejects_expired_and_wrong_audience(settings) -> None:
    verifier = TokenVerifier(settings)
    expired = issue_token(settings, subject="user-1", ttl_seconds=-3600)
    with pytest.raises(Unauthenticated):
        verifier.verify(expired)
    wrong_audience = jwt.encode(
        {"sub": "user-1", "aud": "service_role", "exp": int(time.time()) + 60},
        settings.auth_jwt_secret,
        algorithm="HS256",
    )
    with pytest.raises(Unauthenticated):
        verifier.verify(wrong_audience)


def test_verifier_requires_subject(settings) -> None:
    token = jwt.encode(
        {"aud": "authenticated", "exp": int(time.time()) + 60},
        settings.auth_jwt_secret,
        algorithm="HS256",
    )
    with pytest.raises(Unauthenticated):
        TokenVerifier(settings).verify(token)


async def test_resolve_loads_live_identity(settings, database, session) -> None:
    account_id = await create_account(database)
    owner_id = await create_user(
        database, role=Role.ACCOUNT_OWNER, account_id=account_id, email="owner@example.com"
    )
    header = f"Bearer {issue_token(settings, subject=owner_id)}"

    resolved = await resolve(session, header, TokenVerifier(settings))
    assert resolved == Identity(
        id=owner_id, role=Role.ACCOUNT_OWNER, account_id=account_id, email="owner@example.com"
    )
    assert resolved.is_top_level


async def test_resolve_rejects_unknown_and_deleted_subjects(settings, database, session) -> None:
    account_id = await create_account(database)
    deleted_id = await create_user(
        database, role=Role.SCOPED_MEMBER, account_id=account_id, deleted=True
    )
    verifier = TokenVerifier(settings)

    with pytest.raises(IdentityNotFound):
        await resolve(session, f"Bearer {issue_token(settings, subject='nobody')}", verifier)
    with pytest.raises(IdentityNotFound):
        await resolve(session, f"Bearer {issue_token(settings, subject=deleted_id)}", verifier)


async def test_resolve_never_reads_rows_for_bad_tokens(settings) -> None:
    # A None session would blow up if the reader were reached.
    with pytest.raises(Unauthenticated):
        await resolve(None, "Bearer not-a-jwt", TokenVerifier(settings))


def test_account_scope_rules() -> None:
    operator = Identity(id="op", role=Role.OPERATOR, account_id=None)
    owner = Identity(id="owner", role=Role.ACCOUNT_OWNER, account_id="acct-1")
    assert operator.account_scope("acct-9") == "acct-9"
    assert operator.account_scope() is None
    assert owner.account_scope("acct-9") == "acct-1"
