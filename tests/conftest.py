"""
Global pytest fixtures for the Jusbill test suite.

Provides:
- Async database session with SQLite in-memory
- FastAPI async client sharing the test session
- Row factories for companies, plans, flows, credentials and charges
"""
import os
from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio

# Set test environment BEFORE any app imports
os.environ["TESTING"] = "true"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "development"
for _name in (
    "ASAAS_WEBHOOK_SECRET",
    "ASAAS_WEBHOOK_ALLOWED_IPS",
    "ASAAS_WEBHOOK_PUBLIC_URL",
    "ASAAS_ALLOW_LEGACY_CREDENTIAL_FALLBACK",
    "ASAAS_ENVIRONMENT",
    "ASAAS_API_URL",
    "ASAAS_ACCESS_TOKEN",
    "ASAAS_API_KEY",
    "PLAN_PAYMENT_ACCOUNT_ID",
):
    os.environ.pop(_name, None)

import app.models  # noqa: F401, E402

from tests.utils import ASAAS_SANDBOX_URL  # noqa: E402


@pytest.fixture(autouse=True)
def reset_process_state():
    """Settings and schema caches are process-wide; isolate every test."""
    from app.modules.billing.domain.billing.webhook_impl import company_column_cache
    from app.shared.core.config import get_settings

    get_settings.cache_clear()
    company_column_cache.reset_caches()
    yield
    get_settings.cache_clear()
    company_column_cache.reset_caches()


@pytest.fixture
def set_env(monkeypatch):
    """Set environment variables and drop the cached settings."""
    from app.shared.core.config import get_settings

    def _set(**values: object) -> None:
        for name, value in values.items():
            if value is None:
                monkeypatch.delenv(name, raising=False)
            else:
                monkeypatch.setenv(name, str(value))
        get_settings.cache_clear()

    return _set


# ============================================================================
# Async Database Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def async_engine():
    """In-memory SQLite engine shared by every connection of one test."""
    from sqlalchemy.ext.asyncio import create_async_engine
    from sqlalchemy.pool import StaticPool

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(async_engine) -> AsyncGenerator:
    """Create database tables and provide async session."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from app.shared.db.base import Base

    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.rollback()
            await session.close()


@pytest_asyncio.fixture
async def db(db_session):
    """Alias for db_session."""
    return db_session


# ============================================================================
# FastAPI Test Client Fixtures
# ============================================================================


@pytest.fixture
def app():
    from app.main import app as jusbill_app

    return jusbill_app


@pytest_asyncio.fixture
async def async_client(app, db) -> AsyncGenerator:
    """Async test client for FastAPI. Overrides get_db to share test session."""
    from httpx import ASGITransport, AsyncClient

    from app.shared.db.session import get_db

    async def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.pop(get_db, None)


@pytest_asyncio.fixture
async def ac(async_client):
    """Alias for async_client."""
    return async_client


# ============================================================================
# Row factories
# ============================================================================


@pytest.fixture
def make_company(db):
    from app.models.company import Company

    async def _make(**fields):
        company = Company(nome_empresa=fields.pop("nome_empresa", "Acme Ltda"), **fields)
        db.add(company)
        await db.commit()
        return company

    return _make


@pytest.fixture
def make_plan(db):
    from app.models.plan import Plan

    async def _make(valor_mensal="99.90", valor_anual="999.00", **fields):
        plan = Plan(
            nome=fields.pop("nome", "Profissional"),
            valor_mensal=Decimal(valor_mensal) if valor_mensal is not None else None,
            valor_anual=Decimal(valor_anual) if valor_anual is not None else None,
            **fields,
        )
        db.add(plan)
        await db.commit()
        return plan

    return _make


@pytest.fixture
def make_flow(db):
    from app.models.financial_flow import FinancialFlow

    async def _make(**fields):
        fields.setdefault("descricao", "Mensalidade")
        fields.setdefault("valor", Decimal("150.00"))
        fields.setdefault("status", "pendente")
        flow = FinancialFlow(**fields)
        db.add(flow)
        await db.commit()
        return flow

    return _make


@pytest.fixture
def make_credential(db):
    from app.models.credential import IntegrationApiKey

    async def _make(**fields):
        fields.setdefault("provider", "asaas")
        fields.setdefault("url_api", ASAAS_SANDBOX_URL)
        fields.setdefault("key_value", "tok-company")
        fields.setdefault("environment", "homologacao")
        fields.setdefault("active", True)
        fields.setdefault("is_global", False)
        credential = IntegrationApiKey(**fields)
        db.add(credential)
        await db.commit()
        return credential

    return _make


@pytest.fixture
def make_charge(db):
    from app.models.charge import AsaasCharge

    async def _make(**fields):
        fields.setdefault("billing_type", "PIX")
        fields.setdefault("status", "PENDING")
        fields.setdefault("value", Decimal("150.00"))
        charge = AsaasCharge(**fields)
        db.add(charge)
        await db.commit()
        return charge

    return _make
