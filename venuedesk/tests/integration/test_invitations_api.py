from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json

from sqlalchemy import select

from venuedesk.domain.models import ManagerInvitation
from venuedesk.domain.roles import InvitationStatus, Role
from venuedesk.tests.utils.auth import (
    assign_permissions,
    auth_headers,
    create_account,
    create_invitation_row,
    create_user,
    create_venue,
)


def _parse(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


async def _owner_setup(database):
    account_id = await create_account(database)
    venue_a = await create_venue(database, account_id, name="Pier Bar")
    venue_b = await create_venue(database, account_id, name="Dock Kitchen")
    owner_id = await create_user(
        database,
        role=Role.ACCOUNT_OWNER,
        account_id=account_id,
        first_name="Olive",
        last_name="Owner",
    )
    return account_id, venue_a, venue_b, owner_id


async def _invitations_for(database, email: str) -> list[ManagerInvitation]:
    async with database.session() as session:
        result = await session.execute(
            select(ManagerInvitation)
            .where(ManagerInvitation.email == email)
            .order_by(ManagerInvitation.created_at.asc())
        )
        return list(result.scalars().all())


async def test_owner_invite_creates_seven_day_pending_invitation(
    client, settings, database, outbox
) -> None:
    account_id, venue_a, venue_b, owner_id = await _owner_setup(database)
    before = datetime.now(timezone.utc)

    response = await client.post(
        "/api/admin/invite-manager",
        json={
            "email": "  New.Manager@Example.com ",
            "venueIds": [venue_a, venue_b],
            "firstName": "Nia",
            "lastName": "Manager",
            "dateOfBirth": "",
            "permissionTemplateId": "tpl_manager",
        },
        headers=auth_headers(settings, owner_id),
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["emailSent"] is True
    invitation = body["invitation"]
    assert invitation["email"] == "new.manager@example.com"
    assert invitation["status"] == "pending"
    assert invitation["account_id"] == account_id
    assert invitation["invited_by"] == owner_id
    assert invitation["venue_ids"] == [venue_a, venue_b]
    assert body["inviteLink"] == f"https://app.test/set-password?token={invitation['token']}"
    expires_at = _parse(invitation["expires_at"])
    assert timedelta(days=7) - timedelta(minutes=1) <= expires_at - before <= timedelta(days=7, minutes=1)

    assert outbox.recipients == ["new.manager@example.com"]
    html = json.loads(outbox.requests[0].content)["html"]
    assert "Olive Owner" in html
    assert "Pier Bar, Dock Kitchen" in html


async def test_second_invite_supersedes_the_first(client, settings, database) -> None:
    _account_id, venue_a, _venue_b, owner_id = await _owner_setup(database)
    headers = auth_headers(settings, owner_id)
    payload = {"email": "twice@example.com", "venueIds": [venue_a], "firstName": "T", "lastName": "W"}

    first = await client.post("/api/admin/invite-manager", json=payload, headers=headers)
    second = await client.post("/api/admin/invite-manager", json=payload, headers=headers)
    assert first.status_code == 200
    assert second.status_code == 200

    rows = await _invitations_for(database, "twice@example.com")
    statuses = {row.id: row.status for row in rows}
    assert statuses[first.json()["invitation"]["id"]] == "revoked"
    assert statuses[second.json()["invitation"]["id"]] == "pending"
    assert sum(1 for status in statuses.values() if status == "pending") == 1


async def test_invite_validation_and_account_checks(client, settings, database) -> None:
    account_id, venue_a, _venue_b, owner_id = await _owner_setup(database)
    other_account = await create_account(database)
    foreign_venue = await create_venue(database, other_account)
    await create_user(
        database, role=Role.SCOPED_MEMBER, account_id=account_id, email="taken@example.com"
    )
    headers = auth_headers(settings, owner_id)

    missing = await client.post(
        "/api/admin/invite-manager", json={"email": "a@example.com"}, headers=headers
    )
    assert missing.status_code == 400
    assert missing.json()["error"] == "Email and venue IDs required"

    no_names = await client.post(
        "/api/admin/invite-manager",
        json={"email": "a@example.com", "venueIds": [venue_a]},
        headers=headers,
    )
    assert no_names.status_code == 400
    assert no_names.json()["error"] == "First name and last name required"

    foreign = await client.post(
        "/api/admin/invite-manager",
        json={"email": "a@example.com", "venueIds": [foreign_venue], "firstName": "A", "lastName": "B"},
        headers=headers,
    )
    assert foreign.status_code == 403
    assert foreign.json()["error"] == "Some venues do not belong to your account"

    existing = await client.post(
        "/api/admin/invite-manager",
        json={"email": "Taken@example.com", "venueIds": [venue_a], "firstName": "A", "lastName": "B"},
        headers=headers,
    )
    assert existing.status_code == 400


async def test_invite_matches_existing_user_email_case_insensitively(client, settings, database) -> None:
    account_id, venue_a, _venue_b, owner_id = await _owner_setup(database)
    await create_user(
        database, role=Role.SCOPED_MEMBER, account_id=account_id, email="Stored.Mixed@Example.com"
    )

    response = await client.post(
        "/api/admin/invite-manager",
        json={"email": "stored.mixed@example.com", "venueIds": [venue_a], "firstName": "A", "lastName": "B"},
        headers=auth_headers(settings, owner_id),
    )
    assert response.status_code == 400
    assert response.json()["error"] == "A user with this email already exists"
    assert await _invitations_for(database, "stored.mixed@example.com") == []


async def test_operator_must_name_the_account(client, settings, database) -> None:
    account_id, venue_a, _venue_b, _owner_id = await _owner_setup(database)
    operator_id = await create_user(database, role=Role.OPERATOR)
    headers = auth_headers(settings, operator_id)
    payload = {"email": "op-invite@example.com", "venueIds": [venue_a], "firstName": "O", "lastName": "P"}

    response = await client.post("/api/admin/invite-manager", json=payload, headers=headers)
    assert response.status_code == 400
    assert response.json()["error"] == "accountId is required"

    response = await client.post(
        "/api/admin/invite-manager", json={**payload, "accountId": account_id}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["invitation"]["account_id"] == account_id


async def test_member_invites_only_to_reachable_venues_and_grantable_templates(
    client, settings, database
) -> None:
    account_id, venue_a, venue_b, _owner_id = await _owner_setup(database)
    member_id = await create_user(
        database, role=Role.SCOPED_MEMBER, account_id=account_id, venue_ids=[venue_a]
    )
    await assign_permissions(
        database, user_id=member_id, account_id=account_id, role_template_id="tpl_manager"
    )
    headers = auth_headers(settings, member_id)
    base = {"email": "sub@example.com", "firstName": "S", "lastName": "B"}

    unreachable = await client.post(
        "/api/admin/invite-manager", json={**base, "venueIds": [venue_b]}, headers=headers
    )
    assert unreachable.status_code == 403

    escalating = await client.post(
        "/api/admin/invite-manager",
        json={**base, "venueIds": [venue_a], "permissionTemplateId": "tpl_admin"},
        headers=headers,
    )
    assert escalating.status_code == 403
    assert escalating.json()["code"] == "ESCALATION_DENIED"

    allowed = await client.post(
        "/api/admin/invite-manager",
        json={**base, "venueIds": [venue_a], "permissionTemplateId": "tpl_viewer"},
        headers=headers,
    )
    assert allowed.status_code == 200
    assert await _invitations_for(database, "sub@example.com") != []


async def test_email_failure_does_not_fail_invite(client, settings, database, outbox) -> None:
    _account_id, venue_a, _venue_b, owner_id = await _owner_setup(database)
    outbox.status_code = 500
    response = await client.post(
        "/api/admin/invite-manager",
        json={"email": "bounce@example.com", "venueIds": [venue_a], "firstName": "B", "lastName": "O"},
        headers=auth_headers(settings, owner_id),
    )
    assert response.status_code == 200
    assert response.json()["emailSent"] is False

    health = await client.get("/health")
    assert health.json()["counters"]["email_send_failed"] == 1


async def test_revoke_then_revoke_again_is_404(client, settings, database) -> None:
    account_id, venue_a, _venue_b, owner_id = await _owner_setup(database)
    invitation = await create_invitation_row(
        database,
        account_id=account_id,
        invited_by=owner_id,
        email="revoke@example.com",
        venue_ids=[venue_a],
    )
    headers = auth_headers(settings, owner_id)

    first = await client.post(
        "/api/admin/revoke-invitation", json={"invitationId": invitation.id}, headers=headers
    )
    assert first.status_code == 200
    rows = await _invitations_for(database, "revoke@example.com")
    assert rows[0].status == InvitationStatus.REJECTED.value

    second = await client.post(
        "/api/admin/revoke-invitation", json={"invitationId": invitation.id}, headers=headers
    )
    assert second.status_code == 404
    assert second.json()["error"] == "Invitation not found"

    missing_id = await client.post("/api/admin/revoke-invitation", json={}, headers=headers)
    assert missing_id.status_code == 400


async def test_revoke_is_scoped_to_the_callers_account(client, settings, database) -> None:
    account_id, venue_a, _venue_b, owner_id = await _owner_setup(database)
    other_account, _, _, other_owner = await _owner_setup(database)
    invitation = await create_invitation_row(
        database,
        account_id=account_id,
        invited_by=owner_id,
        email="mine@example.com",
        venue_ids=[venue_a],
    )
    response = await client.post(
        "/api/admin/revoke-invitation",
        json={"invitationId": invitation.id},
        headers=auth_headers(settings, other_owner),
    )
    assert response.status_code == 404
    rows = await _invitations_for(database, "mine@example.com")
    assert rows[0].status == "pending"


async def test_resend_extends_expiry_and_sends_reminder(client, settings, database, outbox) -> None:
    account_id, venue_a, _venue_b, owner_id = await _owner_setup(database)
    await create_invitation_row(
        database,
        account_id=account_id,
        invited_by=owner_id,
        email="later@example.com",
        venue_ids=[venue_a],
        expires_in=timedelta(days=1),
    )
    headers = auth_headers(settings, owner_id)

    response = await client.post(
        "/api/admin/resend-invitation", json={"email": "Later@Example.com"}, headers=headers
    )
    assert response.status_code == 200
    body = response.json()
    assert body["emailSent"] is True
    assert _parse(body["expiresAt"]) > datetime.now(timezone.utc) + timedelta(days=6)
    assert outbox.recipients == ["later@example.com"]

    missing = await client.post(
        "/api/admin/resend-invitation", json={"email": "nobody@example.com"}, headers=headers
    )
    assert missing.status_code == 404
    assert missing.json()["error"] == "No pending invitation found for this email"


async def test_pending_list_filters_expiry_and_inviter(client, settings, database) -> None:
    account_id, venue_a, _venue_b, owner_id = await _owner_setup(database)
    member_id = await create_user(
        database, role=Role.SCOPED_MEMBER, account_id=account_id, venue_ids=[venue_a]
    )
    await assign_permissions(
        database, user_id=member_id, account_id=account_id, role_template_id="tpl_manager"
    )
    by_owner = await create_invitation_row(
        database, account_id=account_id, invited_by=owner_id, email="o@example.com", venue_ids=[venue_a]
    )
    by_member = await create_invitation_row(
        database, account_id=account_id, invited_by=member_id, email="m@example.com", venue_ids=[venue_a]
    )
    await create_invitation_row(
        database,
        account_id=account_id,
        invited_by=owner_id,
        email="stale@example.com",
        venue_ids=[venue_a],
        expires_in=timedelta(days=-1),
    )
    await create_invitation_row(
        database,
        account_id=account_id,
        invited_by=owner_id,
        email="done@example.com",
        venue_ids=[venue_a],
        status=InvitationStatus.ACCEPTED,
    )

    owner_view = await client.get(
        "/api/admin/get-pending-invitations", headers=auth_headers(settings, owner_id)
    )
    assert owner_view.status_code == 200
    assert {row["id"] for row in owner_view.json()["invitations"]} == {by_owner.id, by_member.id}

    member_view = await client.get(
        "/api/admin/get-pending-invitations", headers=auth_headers(settings, member_id)
    )
    assert [row["id"] for row in member_view.json()["invitations"]] == [by_member.id]

    operator_id = await create_user(database, role=Role.OPERATOR)
    unscoped = await client.get(
        "/api/admin/get-pending-invitations", headers=auth_headers(settings, operator_id)
    )
    assert unscoped.json() == {"invitations": []}
    scoped = await client.get(
        f"/api/admin/get-pending-invitations?accountId={account_id}",
        headers=auth_headers(settings, operator_id),
    )
    assert len(scoped.json()["invitations"]) == 2


async def test_validate_invitation_token(client, database) -> None:
    account_id, venue_a, _venue_b, owner_id = await _owner_setup(database)
    live = await create_invitation_row(
        database, account_id=account_id, invited_by=owner_id, email="v@example.com", venue_ids=[venue_a]
    )
    expired = await create_invitation_row(
        database,
        account_id=account_id,
        invited_by=owner_id,
        email="e@example.com",
        venue_ids=[venue_a],
        expires_in=timedelta(hours=-1),
    )
    used = await create_invitation_row(
        database,
        account_id=account_id,
        invited_by=owner_id,
        email="u@example.com",
        venue_ids=[venue_a],
        status=InvitationStatus.ACCEPTED,
    )

    async def _check(token):
        response = await client.post("/api/validate-invitation-token", json={"token": token})
        return response.status_code, response.json()

    status, body = await _check(live.token)
    assert status == 200
    assert body == {
        "valid": True,
        "email": "v@example.com",
        "firstName": "Ina",
        "lastName": "Vitee",
        "venueIds": [venue_a],
    }
    assert (await _check(expired.token))[1]["reason"] == "expired"
    assert (await _check(used.token))[1]["reason"] == "used"
    assert (await _check("unknown"))[1]["reason"] == "invalid"
    assert (await _check(None))[0] == 400
