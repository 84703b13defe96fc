"""
Pytest configuration and fixtures for quota service tests
"""

import os
import uuid
from datetime import datetime, timedelta, timezone

import pytest

# Settings are read at import time; pin them before any quota_service import
os.environ.setdefault("QUOTA_STORE_BACKEND", "memory")
os.environ.setdefault("SUPABASE_URL", "https://test.supabase.co")
os.environ.setdefault("SUPABASE_KEY", "test-key")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-key")
os.environ.setdefault("ALPHA_TESTER_CODE", "HEALTH-ALPHA")
os.environ.setdefault("ENVIRONMENT", "test")
os.environ["SENTRY_DSN"] = ""  # Disable Sentry in tests

T0 = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
T0_MS = 1_700_000_000_000


class FakeClock:
    """Settable clock returning aware UTC datetimes"""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeMillisClock:
    """Settable epoch-milliseconds clock for the admission controller"""

    def __init__(self, start: int = T0_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ms_clock():
    return FakeMillisClock()


@pytest.fixture
def memory_store():
    """Fresh in-memory store for each test"""
    from quota_service.db.memory_store import InMemoryQuotaStore

    return InMemoryQuotaStore()


@pytest.fixture
def scheduler(memory_store, clock):
    from quota_service.core.reset import ResetScheduler

    return ResetScheduler(memory_store, clock=clock)


@pytest.fixture
def accountant(memory_store, scheduler, clock):
    from quota_service.core.accounting import UsageAccountant

    return UsageAccountant(memory_store, scheduler=scheduler, clock=clock)


@pytest.fixture
def sample_user():
    """Create a sample user for testing"""
    from quota_service.auth.models import User

    return User(
        id=uuid.uuid4(), email="test@example.com", created_at=datetime.now(timezone.utc)
    )


@pytest.fixture
def api_client(memory_store, sample_user):
    """TestClient with the memory store and an authenticated caller"""
    from fastapi.testclient import TestClient

    from quota_service.api.routes import get_store
    from quota_service.auth.middleware import require_auth
    from quota_service.main import app

    app.dependency_overrides[get_store] = lambda: memory_store
    app.dependency_overrides[require_auth] = lambda: sample_user

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
