from __future__ import annotations

from typing import Any

from venuedesk.apps.api.response import ErrorBody


def _error_example(*, code: str, message: str) -> dict[str, Any]:
    # Build a consistent error body example for OpenAPI docs.
    return {"error": message, "code": code}


def _response(description: str, code: str, message: str) -> dict[str, Any]:
    return {
        "model": ErrorBody,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    400: _response("Bad request", "BAD_REQUEST", "Email and venue IDs required"),
    401: _response("Unauthorized", "AUTH_UNAUTHORIZED", "Missing or invalid authorization header"),
    403: _response("Forbidden", "AUTH_FORBIDDEN", "Insufficient role for this operation"),
    404: _response("Not found", "NOT_FOUND", "Manager not found"),
    500: _response("Internal error", "INTERNAL_ERROR", "Internal server error"),
}
