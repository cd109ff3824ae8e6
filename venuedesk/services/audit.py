from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import Request

from venuedesk.domain.models import PermissionAuditLog
from venuedesk.domain.roles import AuditAction
from venuedesk.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

_SENSITIVE_KEY_PATTERNS = ["authorization", "token", "secret", "password", "api_key"]
_REDACTED_VALUE = "[REDACTED]"

AUDIT_WRITE_FAILED_COUNTER = "audit_write_failed"


def _is_sensitive_key(key: str) -> bool:
    # Match sensitive key fragments case-insensitively to enforce redaction policy.
    lowered = key.lower()
    return any(pattern in lowered for pattern in _SENSITIVE_KEY_PATTERNS)


def sanitize_metadata(value: Any) -> Any:
    # Recursively scrub sensitive fields while preserving safe structure.
    if isinstance(value, dict):
        sanitized: dict[str, Any] = {}
        for raw_key, raw_value in value.items():
            key = str(raw_key)
            if _is_sensitive_key(key):
                sanitized[key] = _REDACTED_VALUE
            else:
                sanitized[key] = sanitize_metadata(raw_value)
        return sanitized
    if isinstance(value, list):
        return [sanitize_metadata(item) for item in value]
    return value


def get_request_context(request: Request | None) -> dict[str, str | None]:
    # Prefer the proxy-supplied client address; never persist credentials.
    if request is None:
        return {"request_id": None, "ip_address": None, "user_agent": None}
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        ip_address = forwarded.split(",")[0].strip() or None
    else:
        ip_address = request.client.host if request.client else None
    return {
        "request_id": request.headers.get("X-Request-Id"),
        "ip_address": ip_address,
        "user_agent": request.headers.get("user-agent"),
    }


async def record_permission_change(
    *,
    session: AsyncSession,
    target_user_id: str,
    changed_by_user_id: str,
    action: AuditAction,
    account_id: str | None,
    previous_role_template_id: str | None = None,
    previous_custom_permissions: list[str] | None = None,
    new_role_template_id: str | None = None,
    new_custom_permissions: list[str] | None = None,
    venue_id: str | None = None,
    request: Request | None = None,
    metadata: dict[str, Any] | None = None,
    commit: bool = True,
    best_effort: bool = True,
) -> bool:
    """Append one row to the permission audit log.

    Called after the primary mutation has committed, so a failure here can never
    undo it. With ``best_effort`` the error is logged and counted instead of
    raised. Returns whether the row was written.
    """
    context = get_request_context(request)
    entry = PermissionAuditLog(
        target_user_id=target_user_id,
        changed_by_user_id=changed_by_user_id,
        action=action.value,
        previous_role_template_id=previous_role_template_id,
        previous_custom_permissions=list(previous_custom_permissions or []),
        new_role_template_id=new_role_template_id,
        new_custom_permissions=list(new_custom_permissions or []),
        account_id=account_id,
        venue_id=venue_id,
        ip_address=context["ip_address"],
        user_agent=context["user_agent"],
        metadata_json=sanitize_metadata({"request_id": context["request_id"], **(metadata or {})}),
    )
    try:
        # The savepoint confines a failed insert to the audit row; the caller's
        # committed objects stay loaded.
        async with session.begin_nested():
            session.add(entry)
        if commit:
            await session.commit()
    except SQLAlchemyError as exc:
        increment_counter(AUDIT_WRITE_FAILED_COUNTER)
        level = logger.warning if best_effort else logger.error
        level(
            "audit_write_failed action=%s target_user_id=%s request_id=%s",
            action.value,
            target_user_id,
            context["request_id"],
            exc_info=exc,
        )
        if not best_effort:
            raise
        return False
    return True
