from __future__ import annotations

import logging
import traceback
from typing import Any

from fastapi import HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from venuedesk.apps.api.response import error_response, get_request_id
from venuedesk.core.errors import VenueDeskError
from venuedesk.persistence.guards import AccountPredicateError


logger = logging.getLogger(__name__)

_DEFAULT_ERROR_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    401: "AUTH_UNAUTHORIZED",
    403: "AUTH_FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    422: "VALIDATION_ERROR",
    500: "INTERNAL_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _default_code(status_code: int) -> str:
    # Map status codes to fallback error codes when none are provided.
    return _DEFAULT_ERROR_CODES.get(status_code, "UNKNOWN_ERROR")


def _split_detail(detail: Any, status_code: int) -> tuple[str, str, dict[str, Any] | None]:
    # Extract code/message/details from HTTPException detail payloads.
    if isinstance(detail, dict):
        code = str(detail.get("code") or _default_code(status_code))
        message = str(detail.get("message") or "Request failed")
        details = {k: v for k, v in detail.items() if k not in {"code", "message"}}
        return code, message, details or None
    if isinstance(detail, str):
        return _default_code(status_code), detail, None
    return _default_code(status_code), "Request failed", None


def _debug_details(request: Request, exc: Exception) -> dict[str, Any] | None:
    # Tracebacks only leave the process when explicitly enabled for development.
    settings = getattr(request.app.state, "settings", None)
    if settings is None or not settings.debug_errors:
        return None
    return {"traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))}


async def venuedesk_error_handler(request: Request, exc: VenueDeskError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "request_failed code=%s path=%s request_id=%s",
            exc.code,
            request.url.path,
            get_request_id(request),
            exc_info=exc,
        )
    payload = error_response(code=exc.code, message=exc.message, details=None)
    return JSONResponse(content=payload, status_code=exc.status_code)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def starlette_http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    # Ensure Starlette-raised exceptions (404 routes, 405 methods) share the envelope.
    code, message, details = _split_detail(exc.detail, exc.status_code)
    payload = error_response(code=code, message=message, details=details)
    return JSONResponse(content=payload, status_code=exc.status_code, headers=exc.headers)


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    # Malformed bodies are client errors like any other missing field.
    payload = error_response(
        code="BAD_REQUEST",
        message="Invalid request body",
        details={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(content=payload, status_code=400)


async def database_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(
        "database_error path=%s request_id=%s",
        request.url.path,
        get_request_id(request),
        exc_info=exc,
    )
    payload = error_response(
        code="DATABASE_ERROR",
        message="Internal server error",
        details=_debug_details(request, exc),
    )
    return JSONResponse(content=payload, status_code=500)


async def account_predicate_exception_handler(
    request: Request, exc: AccountPredicateError
) -> JSONResponse:
    # Surface missing account predicates as a stable internal error.
    logger.error("account_predicate_missing path=%s", request.url.path)
    payload = error_response(code="ACCOUNT_PREDICATE_REQUIRED", message=exc.message)
    return JSONResponse(content=payload, status_code=500)


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    # Avoid leaking stack traces unless debug errors are enabled.
    logger.error(
        "unhandled_exception path=%s request_id=%s",
        request.url.path,
        get_request_id(request),
        exc_info=exc,
    )
    payload = error_response(
        code="INTERNAL_ERROR",
        message="Internal server error",
        details=_debug_details(request, exc),
    )
    return JSONResponse(content=payload, status_code=500)
