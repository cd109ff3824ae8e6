from __future__ import annotations

from contextlib import asynccontextmanager
import time
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from venuedesk.apps.api.errors import (
    account_predicate_exception_handler,
    database_exception_handler,
    http_exception_handler,
    starlette_http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
    venuedesk_error_handler,
)
from venuedesk.apps.api.routes.admin import router as admin_router
from venuedesk.apps.api.routes.health import router as health_router
from venuedesk.apps.api.routes.invitations import router as invitations_router
from venuedesk.apps.api.routes.managers import router as managers_router
from venuedesk.apps.api.routes.permissions import router as permissions_router
from venuedesk.core.config import Settings, get_settings
from venuedesk.core.errors import VenueDeskError
from venuedesk.core.logging import configure_logging
from venuedesk.persistence.db import Database
from venuedesk.persistence.guards import AccountPredicateError
from venuedesk.services.auth.tokens import TokenVerifier
from venuedesk.services.email import EmailSender
from venuedesk.services.telemetry import record_request


_PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}


def create_app(
    settings: Settings | None = None,
    *,
    database: Database | None = None,
    email_sender: EmailSender | None = None,
) -> FastAPI:
    """Build the API with its collaborators attached to ``app.state``.

    The database is created here (or passed in) and disposed when the app
    shuts down; nothing connects at import time.
    """
    settings = settings or get_settings()
    configure_logging(settings)
    db = database or Database(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await db.dispose()

    app = FastAPI(title="VenueDesk API", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db
    app.state.token_verifier = TokenVerifier(settings)
    app.state.email_sender = email_sender or EmailSender(settings)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        # Preserve incoming request IDs or assign a new one for traceability.
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        request.state.request_id = request_id
        start = time.monotonic()
        if request.method == "OPTIONS":
            # Browsers preflight the admin endpoints; answer without touching routes.
            response: Response = Response(status_code=200)
            response.headers["Access-Control-Allow-Origin"] = settings.cors_allow_origin
            response.headers.update(_PREFLIGHT_HEADERS)
        else:
            response = await call_next(request)
        record_request(
            path=request.url.path,
            status_code=response.status_code,
            latency_ms=(time.monotonic() - start) * 1000.0,
        )
        response.headers.setdefault("X-Request-Id", request_id)
        return response

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.cors_allow_origin],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.exception_handler(VenueDeskError)
    async def _venuedesk_error_handler(request: Request, exc: VenueDeskError):
        return await venuedesk_error_handler(request, exc)

    @app.exception_handler(StarletteHTTPException)
    async def _starlette_http_exception_handler(request: Request, exc: StarletteHTTPException):
        return await starlette_http_exception_handler(request, exc)

    @app.exception_handler(HTTPException)
    async def _http_exception_handler(request: Request, exc: HTTPException):
        return await http_exception_handler(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _validation_exception_handler(request: Request, exc: RequestValidationError):
        return await validation_exception_handler(request, exc)

    @app.exception_handler(SQLAlchemyError)
    async def _database_exception_handler(request: Request, exc: SQLAlchemyError):
        return await database_exception_handler(request, exc)

    @app.exception_handler(AccountPredicateError)
    async def _account_predicate_exception_handler(request: Request, exc: AccountPredicateError):
        return await account_predicate_exception_handler(request, exc)

    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        return await unhandled_exception_handler(request, exc)

    app.include_router(health_router)
    app.include_router(admin_router)
    app.include_router(managers_router)
    app.include_router(permissions_router)
    app.include_router(invitations_router)
    return app
