"""Pytest fixtures for API tests.

Provides a test client whose database, vault, config and outbound HTTP
client are all replaced with the in-memory fixtures from tests/conftest.py.
"""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from pinegate.api.dependencies import get_app_config, get_http_client, get_vault
from pinegate.api.main import app
from pinegate.api.middleware.auth import ADMIN_KEY_ENV, STOREFRONT_KEY_ENV, reset_failure_counts
from pinegate.db.connection import get_db


@pytest.fixture
def client(db_session, vault, config, fake_tv, monkeypatch) -> Generator[TestClient, None, None]:
    """Test client with all dependencies overridden.

    Auth is disabled unless a test sets the storefront or admin key itself.
    """
    monkeypatch.delenv(STOREFRONT_KEY_ENV, raising=False)
    monkeypatch.delenv(ADMIN_KEY_ENV, raising=False)
    http_client = fake_tv.client()

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_vault] = lambda: vault
    app.dependency_overrides[get_app_config] = lambda: config
    app.dependency_overrides[get_http_client] = lambda: http_client
    reset_failure_counts()

    yield TestClient(app)

    app.dependency_overrides.clear()
    reset_failure_counts()
    http_client.close()
