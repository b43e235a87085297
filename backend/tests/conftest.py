"""Shared test fixtures for all test groups."""

import os

# Settings are read once (lru_cache); set the test environment before any app import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-supabase-jwt-secret-0123456789abcdef")
os.environ.setdefault("SERVICE_ROLE_KEY", "test-service-role-key")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_dummy")
os.environ.setdefault("STRIPE_PRICE_STANDARD", "price_test_standard")
os.environ.setdefault("STRIPE_PRICE_PRO", "price_test_pro")
os.environ.setdefault("STRIPE_PRICE_AGENCY", "price_test_agency")
os.environ.setdefault("FRONTEND_URL", "http://localhost:5173")

from datetime import UTC, datetime, timedelta

import jwt as pyjwt
import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from benchmarkai.core.config import get_settings
from benchmarkai.db.base import Base, engine_options
from benchmarkai.db.models.report import Report
from benchmarkai.lifecycle.schemas import Plan, ReportStatus
from benchmarkai.lifecycle.state_machine import ReportStateMachine
from benchmarkai.services.ai_client_fake import SAMPLE_REPORT, FakeReportAIClient
from benchmarkai.services.report_generator import ReportGenerator

TEST_USER_ID = "user_report_owner"
TEST_USER_EMAIL = "owner@example.com"
OTHER_USER_ID = "user_someone_else"

SAMPLE_INPUT = {
    "businessName": "Atelier Lumen",
    "website": "https://atelier-lumen.example",
    "sector": "Loisirs créatifs",
    "location": {"city": "Lyon", "country": "France"},
    "targetCustomers": {"type": "B2C", "persona": "Actifs urbains 25-40 ans"},
    "whatYouSell": "Cours de céramique en petits groupes",
    "priceRange": {"min": 35, "max": 60},
    "differentiators": ["Petits groupes", "Cuisson incluse"],
    "acquisitionChannels": ["Instagram"],
    "goals": ["pricing", "positioning"],
    "competitors": [{"name": "Terre & Feu", "url": "https://terre-et-feu.example"}],
    "budgetLevel": "low",
    "timeline": "30days",
    "tonePreference": "professional",
    "reportLanguage": "fr",
}


def make_token(user_id: str = TEST_USER_ID, email: str | None = TEST_USER_EMAIL, **claims) -> str:
    """Sign a Supabase-style access token with the test secret."""
    settings = get_settings()
    payload = {
        "sub": user_id,
        "aud": settings.supabase_jwt_audience,
        "exp": datetime.now(UTC) + timedelta(hours=1),
        **claims,
    }
    if email:
        payload["email"] = email
    return pyjwt.encode(payload, settings.supabase_jwt_secret, algorithm="HS256")


def auth_headers(user_id: str = TEST_USER_ID, email: str | None = TEST_USER_EMAIL) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, email)}"}


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'reports.db'}"


@pytest.fixture
async def engine(db_url) -> AsyncEngine:
    """SQLite test engine with fresh tables.

    Also sets the global session factory in the pytest-asyncio event loop so
    in-process clients (httpx ASGITransport) share it.
    """
    import benchmarkai.db.base as db_mod
    import benchmarkai.db.models  # noqa: F401

    engine = create_async_engine(db_url, **engine_options(db_url))
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    db_mod._engine = engine
    db_mod._session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    yield engine

    db_mod._engine = None
    db_mod._session_factory = None
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def state_machine(session_factory) -> ReportStateMachine:
    return ReportStateMachine(session_factory)


@pytest.fixture
def fake_ai() -> FakeReportAIClient:
    """Fresh FakeReportAIClient with happy_path scenario (default)."""
    return FakeReportAIClient(scenario="happy_path")


@pytest.fixture
def generator(state_machine, fake_ai) -> ReportGenerator:
    return ReportGenerator(
        state_machine,
        fake_ai,
        timeout_seconds=5,
        heartbeat_seconds=0.05,
        stall_threshold_seconds=120,
    )


@pytest.fixture
def make_report(state_machine, session_factory):
    """Create a report and force it into any status (bypassing the transition table)."""

    async def _make(
        status: ReportStatus = ReportStatus.DRAFT,
        plan: Plan = Plan.STANDARD,
        user_id: str = TEST_USER_ID,
        input_data: dict | None = None,
        **fields,
    ) -> str:
        report = await state_machine.create_report(user_id, plan, input_data or dict(SAMPLE_INPUT))
        values = {"status": status.value, **fields}
        if status == ReportStatus.READY and "output_data" not in values:
            values["output_data"] = dict(SAMPLE_REPORT)
        async with session_factory() as session:
            await session.execute(update(Report).where(Report.id == report.id).values(**values))
            await session.commit()
        return report.id

    return _make
