"""Root-level pytest fixtures for all tests.

Provides shared fixtures:
- In-memory SQLite session with all tables
- Credential vault with a fixed test key
- FakeTradingView and an httpx client wired to it
- A fixed clock and a config with no prober delay
"""

import os
import tempfile
from collections.abc import Generator

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tests.helpers import NOW, TEST_VAULT_KEY


# ============================================================================
# Pytest Markers
# ============================================================================


def pytest_configure(config):
    """Register custom markers and point the app at throwaway storage.

    pinegate.db.connection builds its engine at import time, so the env
    must be set before any test module imports the app.
    """
    config.addinivalue_line(
        "markers", "integration: marks tests requiring external services"
    )
    os.environ.setdefault("DATABASE_URL", "sqlite://")
    os.environ.setdefault("PINEGATE_DATA_DIR", tempfile.mkdtemp(prefix="pinegate-test-"))


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    """Create an in-memory SQLite database with all tables.

    StaticPool keeps a single connection so the FastAPI TestClient thread
    sees the same database as the test.
    """
    from pinegate.db.models import Base

    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def vault():
    """Credential vault with a fixed key."""
    from pinegate.services.credential_vault import CredentialVault

    return CredentialVault(TEST_VAULT_KEY)


@pytest.fixture
def fake_tv():
    """Scriptable TradingView stand-in."""
    from tests.helpers import FakeTradingView

    return FakeTradingView()


@pytest.fixture
def http_client(fake_tv) -> Generator[httpx.Client, None, None]:
    """httpx client routed to fake_tv."""
    client = fake_tv.client()
    yield client
    client.close()


@pytest.fixture
def config():
    """Default config with the prober delay removed."""
    from pinegate.config import PineGateConfig, ProberConfig

    return PineGateConfig(prober=ProberConfig(delay_seconds=0))


@pytest.fixture
def clock():
    """Fixed clock returning NOW."""
    return lambda: NOW
