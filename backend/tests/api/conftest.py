"""API-specific test fixtures."""

from contextlib import asynccontextmanager

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from benchmarkai.api.deps import get_ai_client, get_notifier
from benchmarkai.api.routes import api_router
from benchmarkai.core.config import get_settings
from benchmarkai.main import register_exception_handlers
from benchmarkai.services.notifications import EmailNotifier


def _build_app(lifespan=None) -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title=settings.app_name,
        description="BenchmarkAI - Test Client",
        version="0.1.0",
        lifespan=lifespan,
    )
    register_exception_handlers(app)
    app.include_router(api_router, prefix="/api")
    return app


@pytest.fixture
def notifier() -> EmailNotifier:
    """Notifier with no service configured: every send is a logged no-op."""
    return EmailNotifier(service_url="", token="")


@pytest.fixture
def app(engine, fake_ai, notifier) -> FastAPI:
    """In-process app sharing the pytest event loop and the engine fixture's database."""
    app = _build_app()
    app.dependency_overrides[get_ai_client] = lambda: fake_ai
    app.dependency_overrides[get_notifier] = lambda: notifier
    return app


@pytest.fixture
async def client(app) -> httpx.AsyncClient:
    """Async client over ASGITransport. Background tasks finish before the call returns."""
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def api_client(engine, db_url, fake_ai, notifier):
    """FastAPI TestClient with test database.

    Initializes the global database via init_db inside the TestClient's own
    event loop so route handlers can use get_session_factory(). The engine
    fixture ensures tables exist before this runs.
    """
    from benchmarkai.db import close_db, init_db

    @asynccontextmanager
    async def test_lifespan(app: FastAPI):
        import benchmarkai.db.base as db_mod

        db_mod._engine = None
        db_mod._session_factory = None
        await init_db(db_url)
        yield
        await close_db()

    app = _build_app(lifespan=test_lifespan)
    app.dependency_overrides[get_ai_client] = lambda: fake_ai
    app.dependency_overrides[get_notifier] = lambda: notifier

    with TestClient(app) as client:
        yield client
