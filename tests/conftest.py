"""Pytest configuration and shared fixtures for all tests."""

import os
import sys
import uuid
from pathlib import Path

# Minimal environment for Settings; must be set before the package is imported
os.environ.setdefault("DATABASE_URL", "sqlite:///./affiliate_hub_test.db")
os.environ.setdefault("SECRET_KEY", "test_secret_key_for_testing_only")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("AFFILIATE_LOCK_TIMEOUT_SECONDS", "5")

# Add project root to PYTHONPATH
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from affiliate_hub import models  # noqa: F401
from affiliate_hub.core.locks import AffiliateLockRegistry
from affiliate_hub.core.security import create_access_token
from affiliate_hub.database import Base, get_db
from affiliate_hub.models.affiliate import Affiliate
from affiliate_hub.models.lead import Lead, LeadStatus, LeadType
from affiliate_hub.models.onboarding import OnboardingRecord
from affiliate_hub.services.affiliate_service import AffiliateService
from affiliate_hub.services.document_storage import get_document_storage
from affiliate_hub.services.lead_events import LeadEventDispatcher, get_lead_event_dispatcher
from affiliate_hub.services.lead_service import generate_lead_id
from affiliate_hub.services.onboarding_service import OnboardingService
from affiliate_hub.services.onboarding_state_machine import OnboardingStage
from affiliate_hub.services.signature_provider import (
    SignatureSession,
    SignatureSessionStatus,
    get_signature_provider,
)


# =============================================================================
# Provider doubles
# =============================================================================

class FakeSignatureProvider:
    """In-memory e-signature provider honouring idempotency keys."""

    def __init__(self):
        self.sessions = {}
        self.by_key = {}
        self.create_calls = 0
        self.fail_with = None

    async def create_session(self, affiliate_id, idempotency_key=None):
        self.create_calls += 1
        if self.fail_with is not None:
            raise self.fail_with
        if idempotency_key and idempotency_key in self.by_key:
            return self.by_key[idempotency_key]

        ref = f"sess_{len(self.sessions) + 1}"
        session = SignatureSession(session_ref=ref, signing_url=f"https://sign.example.com/{ref}")
        self.sessions[ref] = SignatureSessionStatus.PENDING
        if idempotency_key:
            self.by_key[idempotency_key] = session
        return session

    async def session_status(self, session_ref):
        if self.fail_with is not None:
            raise self.fail_with
        return self.sessions[session_ref]

    def complete(self, session_ref):
        self.sessions[session_ref] = SignatureSessionStatus.COMPLETED

    def expire(self, session_ref):
        self.sessions[session_ref] = SignatureSessionStatus.EXPIRED


class FakeDocumentStorage:
    """Keeps uploaded documents in a list."""

    def __init__(self):
        self.stored = []
        self.fail_with = None

    async def store(self, content, mime_type):
        if self.fail_with is not None:
            raise self.fail_with
        ref = f"kyc/doc_{len(self.stored) + 1}"
        self.stored.append((ref, content, mime_type))
        return ref


# =============================================================================
# Database
# =============================================================================

@pytest_asyncio.fixture
async def engine(tmp_path):
    """File-backed SQLite so concurrent sessions see each other's commits."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# Collaborators
# =============================================================================

@pytest.fixture
def signature_provider():
    return FakeSignatureProvider()


@pytest.fixture
def document_storage():
    return FakeDocumentStorage()


@pytest.fixture
def locks():
    return AffiliateLockRegistry(timeout=5)


@pytest.fixture
def onboarding(db, signature_provider, document_storage, locks):
    return OnboardingService(db, signature_provider, document_storage, locks)


@pytest.fixture
def dispatcher(session_factory):
    return LeadEventDispatcher(session_factory)


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_affiliate(db):
    """Register an affiliate, optionally under ``referrer``."""
    counter = {"n": 0}

    async def _make(first_name="Jane", last_name="Doe", referrer=None, is_admin=False):
        counter["n"] += 1
        affiliate = await AffiliateService(db).register(
            email=f"{first_name.lower()}.{counter['n']}@example.com",
            first_name=first_name,
            last_name=last_name,
            phone="5550100",
            referral_code=referrer.referral_code if referrer is not None else None,
        )
        if is_admin:
            affiliate.is_admin = True
            await db.commit()
        return affiliate

    return _make


@pytest.fixture
def make_lead(db):
    async def _make(owner, status=LeadStatus.SUBMITTED.value):
        lead = Lead(
            id=uuid.uuid4(),
            lead_id=generate_lead_id(),
            owner_affiliate_id=owner.id,
            status=status,
            lead_type=LeadType.SOLAR.value,
            first_name="Lead",
            last_name="Contact",
            email="lead@example.com",
            phone="5550199",
        )
        db.add(lead)
        await db.commit()
        return lead

    return _make


@pytest.fixture
def set_stage(db):
    """Force an affiliate's onboarding stage directly (test setup only)."""
    async def _set(affiliate, stage: OnboardingStage):
        result = await db.execute(
            select(OnboardingRecord).where(OnboardingRecord.affiliate_id == affiliate.id)
        )
        record = result.scalar_one()
        record.current_stage = stage.value
        affiliate.onboarding_state = stage.value
        await db.commit()
        return record

    return _set


@pytest.fixture
def auth_headers():
    def _headers(affiliate: Affiliate) -> dict:
        return {"Authorization": f"Bearer {create_access_token(affiliate.id)}"}

    return _headers


# =============================================================================
# HTTP
# =============================================================================

@pytest_asyncio.fixture
async def client(session_factory, signature_provider, document_storage, dispatcher):
    """API client bound to the test database and provider doubles."""
    from affiliate_hub.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_signature_provider] = lambda: signature_provider
    app.dependency_overrides[get_document_storage] = lambda: document_storage
    app.dependency_overrides[get_lead_event_dispatcher] = lambda: dispatcher

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    await dispatcher.drain()
    app.dependency_overrides.clear()
