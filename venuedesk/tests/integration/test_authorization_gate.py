from __future__ import annotations

import pytest

from venuedesk.domain.roles import Role
from venuedesk.services.auth.tokens import issue_token
from venuedesk.tests.utils.auth import (
    assign_permissions,
    auth_headers,
    create_account,
    create_user,
    create_venue,
)


ADMIN_POSTS = [
    "/api/admin/invite-manager",
    "/api/admin/revoke-invitation",
    "/api/admin/resend-invitation",
    "/api/admin/update-manager-permissions",
    "/api/admin/update-manager-venues",
    "/api/admin/delete-manager",
    "/api/admin/update-manager",
]


@pytest.mark.parametrize("path", ADMIN_POSTS)
async def test_admin_endpoints_require_bearer(client, path) -> None:
    response = await client.post(path, json={})
    assert response.status_code == 401
    body = response.json()
    assert body["code"] == "AUTH_UNAUTHORIZED"
    assert body["error"]


async def test_malformed_and_forged_credentials_are_401(client, settings) -> None:
    response = await client.get("/api/managers", headers={"Authorization": "Token abc"})
    assert response.status_code == 401
    forged = settings.model_copy(update={"auth_jwt_secret": "not-the-secret"})
    response = await client.get(
        "/api/managers",
        headers={"Authorization": f"Bearer {issue_token(forged, subject='user-1')}"},
    )
    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_UNAUTHORIZED"


async def test_verified_subject_without_row_is_401(client, settings) -> None:
    response = await client.get("/api/managers", headers=auth_headers(settings, "ghost"))
    assert response.status_code == 401
    assert response.json() == {"error": "User not found", "code": "AUTH_IDENTITY_NOT_FOUND"}


async def test_soft_deleted_identity_cannot_authenticate(client, settings, database) -> None:
    account_id = await create_account(database)
    member_id = await create_user(
        database, role=Role.SCOPED_MEMBER, account_id=account_id, deleted=True
    )
    response = await client.get("/api/permissions/me", headers=auth_headers(settings, member_id))
    assert response.status_code == 401


async def test_permission_gate_names_the_missing_code(client, settings, database) -> None:
    account_id = await create_account(database)
    member_id = await create_user(database, role=Role.SCOPED_MEMBER, account_id=account_id)
    await assign_permissions(
        database, user_id=member_id, account_id=account_id, custom_permissions=["feedback.view"]
    )
    response = await client.post(
        "/api/admin/update-manager-venues",
        json={"managerId": "anyone", "venueIds": ["v"]},
        headers=auth_headers(settings, member_id),
    )
    assert response.status_code == 403
    assert response.json() == {
        "error": "Insufficient permissions. managers.venues permission required.",
        "code": "AUTH_FORBIDDEN",
    }


async def test_account_admin_gate_rejects_members_with_any_permissions(
    client, settings, database
) -> None:
    account_id = await create_account(database)
    member_id = await create_user(database, role=Role.SCOPED_MEMBER, account_id=account_id)
    await assign_permissions(
        database, user_id=member_id, account_id=account_id, role_template_id="tpl_manager"
    )
    response = await client.post(
        "/api/admin/delete-manager",
        json={"managerId": "anyone"},
        headers=auth_headers(settings, member_id),
    )
    assert response.status_code == 403
    assert response.json()["error"] == "Insufficient role for this operation"


async def test_permissions_me_reports_effective_set(client, settings, database) -> None:
    account_id = await create_account(database)
    venue_id = await create_venue(database, account_id)
    member_id = await create_user(
        database, role=Role.SCOPED_MEMBER, account_id=account_id, venue_ids=[venue_id]
    )
    await assign_permissions(
        database,
        user_id=member_id,
        account_id=account_id,
        venue_id=venue_id,
        custom_permissions=["feedback.view", "feedback.respond"],
    )
    headers = auth_headers(settings, member_id)

    response = await client.get(f"/api/permissions/me?venueId={venue_id}", headers=headers)
    assert response.status_code == 200
    body = response.json()
    assert body["permissions"] == ["feedback.respond", "feedback.view"]
    assert body["byCategory"] == {"feedback": ["feedback.respond", "feedback.view"]}
    assert body["source"] == "custom"
    assert body["fullAccess"] is False

    # Only a venue row exists, so account scope resolves to nothing.
    response = await client.get("/api/permissions/me", headers=headers)
    assert response.json()["permissions"] == []


async def test_venue_gate(client, settings, database) -> None:
    account_a = await create_account(database)
    account_b = await create_account(database)
    venue_a = await create_venue(database, account_a)
    other_venue_a = await create_venue(database, account_a)
    venue_b = await create_venue(database, account_b)
    owner_a = await create_user(database, role=Role.ACCOUNT_OWNER, account_id=account_a)
    member_a = await create_user(
        database, role=Role.SCOPED_MEMBER, account_id=account_a, venue_ids=[venue_a]
    )
    operator = await create_user(database, role=Role.OPERATOR)

    async def _status(user_id: str, venue_id: str) -> int:
        response = await client.get(
            f"/api/permissions/me?venueId={venue_id}", headers=auth_headers(settings, user_id)
        )
        return response.status_code

    assert await _status(owner_a, venue_a) == 200
    assert await _status(owner_a, venue_b) == 404
    assert await _status(member_a, venue_a) == 200
    assert await _status(member_a, other_venue_a) == 403
    assert await _status(operator, venue_b) == 200


async def test_preflight_and_request_id(client) -> None:
    response = await client.options("/api/admin/invite-manager")
    assert response.status_code == 200
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert response.content == b""

    response = await client.get("/health", headers={"X-Request-Id": "req-123"})
    assert response.status_code == 200
    assert response.headers["X-Request-Id"] == "req-123"
    assert response.json()["status"] == "ok"


async def test_malformed_body_is_400(client, settings, database) -> None:
    account_id = await create_account(database)
    owner_id = await create_user(database, role=Role.ACCOUNT_OWNER, account_id=account_id)
    response = await client.post(
        "/api/admin/update-manager-venues",
        json={"managerId": "m", "venueIds": "not-a-list"},
        headers=auth_headers(settings, owner_id),
    )
    assert response.status_code == 400
    assert response.json()["code"] == "BAD_REQUEST"
