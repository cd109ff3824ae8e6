from __future__ import annotations

import argparse
import asyncio
import sys
from uuid import uuid4

from venuedesk.core.config import get_settings
from venuedesk.core.logging import configure_logging
from venuedesk.domain.models import Account, User
from venuedesk.domain.roles import Role, normalize_role
from venuedesk.persistence.db import Database
from venuedesk.services.auth.tokens import issue_token


def _build_parser() -> argparse.ArgumentParser:
    # Only top-level identities are provisioned here; scoped members arrive by invitation.
    parser = argparse.ArgumentParser(description="Create an operator or account owner identity")
    parser.add_argument("--role", required=True, help="Role: operator|account_owner")
    parser.add_argument("--email", required=True, help="Login email")
    parser.add_argument("--user-id", default=None, help="Auth provider subject id")
    parser.add_argument("--account-id", default=None, help="Existing account id (account_owner)")
    parser.add_argument("--account-name", default=None, help="Create a new account with this name")
    parser.add_argument("--first-name", default=None)
    parser.add_argument("--last-name", default=None)
    parser.add_argument(
        "--issue-token",
        action="store_true",
        help="Print a locally signed access token for development",
    )
    return parser


async def _create_identity(args: argparse.Namespace) -> int:
    role = normalize_role(args.role)
    if role is Role.SCOPED_MEMBER:
        raise ValueError("Scoped members must be invited, not provisioned")
    if role is Role.ACCOUNT_OWNER and not (args.account_id or args.account_name):
        raise ValueError("account_owner requires --account-id or --account-name")

    settings = get_settings()
    configure_logging(settings)
    db = Database(settings)
    user_id = args.user_id or uuid4().hex
    account_id = args.account_id
    try:
        async with db.session() as session:
            if account_id is None and args.account_name:
                account_id = uuid4().hex
                session.add(Account(id=account_id, name=args.account_name))
                # Flush the account before the user row to satisfy FK constraints.
                await session.flush()
            elif account_id is not None and await session.get(Account, account_id) is None:
                raise ValueError(f"Account not found: {account_id}")

            existing = await session.get(User, user_id)
            if existing is not None:
                raise ValueError(f"User already exists: {user_id}")
            session.add(
                User(
                    id=user_id,
                    account_id=account_id if role is Role.ACCOUNT_OWNER else None,
                    email=args.email.strip().lower(),
                    role=role.value,
                    first_name=args.first_name,
                    last_name=args.last_name,
                )
            )
            await session.commit()
    finally:
        await db.dispose()

    print("Identity created:")
    print(f"  user_id: {user_id}")
    print(f"  role: {role.value}")
    if role is Role.ACCOUNT_OWNER:
        print(f"  account_id: {account_id}")
    if args.issue_token:
        print("  access_token: ")
        print(f"    {issue_token(settings, subject=user_id)}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_create_identity(args))
    except Exception as exc:  # noqa: BLE001 - surface provisioning failures clearly
        print(f"create_identity failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
