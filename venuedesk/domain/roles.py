from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    # Closed role vocabulary; every branch on role goes through this enum.
    OPERATOR = "operator"
    ACCOUNT_OWNER = "account_owner"
    SCOPED_MEMBER = "scoped_member"

    @property
    def is_top_level(self) -> bool:
        # Operators and account owners hold every permission unconditionally.
        return self in (Role.OPERATOR, Role.ACCOUNT_OWNER)


ACCOUNT_ADMIN_ROLES: frozenset[Role] = frozenset({Role.OPERATOR, Role.ACCOUNT_OWNER})


def normalize_role(role: str | Role) -> Role:
    # Enforce a stable, lowercased role vocabulary for RBAC checks.
    if isinstance(role, Role):
        return role
    normalized = role.strip().lower()
    try:
        return Role(normalized)
    except ValueError as exc:
        raise ValueError(f"Unsupported role: {role}") from exc


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    REVOKED = "revoked"


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
