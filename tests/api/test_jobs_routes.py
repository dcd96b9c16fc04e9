"""Tests for maintenance job routes and /health."""

from datetime import UTC, datetime, timedelta

from pinegate.db.models import GrantStatus
from tests.helpers import ANONYMOUS_PAGE, make_catalog_entry, make_connection, make_grant, make_program


def test_health_endpoint(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["scheduler"] == "not_initialized"
    assert "uptime_seconds" in data


def test_health_check_job(client, db_session, vault, fake_tv):
    make_connection(db_session, vault)
    make_program(db_session)
    fake_tv.settings_reply = (200, ANONYMOUS_PAGE)

    response = client.post("/api/v1/health-check")

    assert response.status_code == 200
    data = response.json()
    assert data["checked"] == 1
    assert data["expired"] == 1
    assert data["disabled_programs"] == 1


def test_trial_cleanup_job(client, db_session, vault, fake_tv):
    make_connection(db_session, vault)
    make_catalog_entry(db_session)
    make_grant(
        db_session,
        status=GrantStatus.assigned,
        access_type="trial",
        script_id="PUB;abc",
        expires_at=(datetime.now(UTC) - timedelta(hours=1)).isoformat(),
    )

    response = client.post("/api/v1/trials/cleanup")

    assert response.status_code == 200
    assert response.json()["processed"] == 1
    assert len(fake_tv.calls("/pine_perm/remove/")) == 1
