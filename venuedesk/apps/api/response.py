from __future__ import annotations

from typing import Any
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel


class ErrorBody(BaseModel):
    # Shape of every failure response.
    error: str
    code: str
    details: dict[str, Any] | None = None


def get_request_id(request: Request) -> str:
    # Use existing request IDs when provided to preserve traceability.
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    header_request_id = request.headers.get("X-Request-Id")
    if header_request_id:
        request.state.request_id = header_request_id
        return header_request_id
    generated = str(uuid4())
    request.state.request_id = generated
    return generated


def error_response(
    *,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    # Flat error body: dashboard clients read the human-readable "error" string.
    payload: dict[str, Any] = {"error": message, "code": code}
    if details:
        payload["details"] = details
    return payload
