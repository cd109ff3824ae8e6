from __future__ import annotations

from collections.abc import AsyncIterator
import json

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from venuedesk.apps.api.main import create_app
from venuedesk.core.config import Settings
from venuedesk.persistence.db import Database
from venuedesk.services import telemetry
from venuedesk.services.authz.catalog import ensure_builtin_catalog
from venuedesk.services.email import EmailSender


class EmailOutbox:
    # Captures provider calls made through an httpx MockTransport.
    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status_code = 200

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"id": f"email-{len(self.requests)}"})

    @property
    def recipients(self) -> list[str]:
        return [json.loads(req.content)["to"][0] for req in self.requests]


@pytest.fixture(autouse=True)
def reset_telemetry() -> None:
    # Counters are process-wide; start each test from zero.
    telemetry.reset()
    yield
    telemetry.reset()


@pytest.fixture
def settings(tmp_path) -> Settings:
    # One SQLite file per test keeps rows isolated without cleanup helpers.
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'venuedesk.db'}",
        auth_jwt_secret="test-jwt-secret",
        resend_api_key="re_test_key",
        app_base_url="https://app.test",
    )


@pytest.fixture
async def database(settings: Settings) -> AsyncIterator[Database]:
    db = Database(settings)
    await db.create_all()
    async with db.session() as session:
        await ensure_builtin_catalog(session)
        await session.commit()
    yield db
    await db.dispose()


@pytest.fixture
async def session(database: Database):
    async with database.session() as session:
        yield session


@pytest.fixture
def outbox() -> EmailOutbox:
    return EmailOutbox()


@pytest.fixture
def email_sender(settings: Settings, outbox: EmailOutbox) -> EmailSender:
    return EmailSender(settings, transport=httpx.MockTransport(outbox.handler))


@pytest.fixture
def app(settings: Settings, database: Database, email_sender: EmailSender):
    return create_app(settings, database=database, email_sender=email_sender)


@pytest.fixture
async def client(app) -> AsyncIterator[AsyncClient]:
    # Let registered handlers produce 500 bodies instead of re-raising into the test.
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
