from __future__ import annotations


class VenueDeskError(Exception):
    """Base error for VenueDesk.

    Subclasses pin a stable ``code`` and the HTTP status the API maps them to.
    """

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.__class__.__doc__ or "Request failed"
        super().__init__(self.message)


class Unauthenticated(VenueDeskError):
    """Missing or invalid bearer credential."""

    code = "AUTH_UNAUTHORIZED"
    status_code = 401


class IdentityNotFound(VenueDeskError):
    """Credential verified but no identity row exists for the subject."""

    code = "AUTH_IDENTITY_NOT_FOUND"
    status_code = 401


class Forbidden(VenueDeskError):
    """Authenticated caller lacks the role or permission for the operation."""

    code = "AUTH_FORBIDDEN"
    status_code = 403


class HierarchyViolation(Forbidden):
    """Target does not report to the caller in the manager hierarchy."""

    code = "HIERARCHY_VIOLATION"


class EscalationDenied(Forbidden):
    """Grant includes operator-only permissions or permissions the grantor lacks."""

    code = "ESCALATION_DENIED"


class NotFound(VenueDeskError):
    """Target entity is absent or outside the caller's account."""

    code = "NOT_FOUND"
    status_code = 404


class ValidationFailed(VenueDeskError):
    """Missing or malformed request fields."""

    code = "BAD_REQUEST"
    status_code = 400


class DatabaseError(VenueDeskError):
    """Database layer failure."""

    code = "DATABASE_ERROR"
    status_code = 500
