"""Tests for expired trial revocation."""

import json
from datetime import timedelta

from pinegate.db.models import AccessGrant, AssignmentLogEntry, GrantStatus
from pinegate.services.trial_cleanup import cleanup_expired_trials, find_expired_trials
from tests.helpers import NOW, make_catalog_entry, make_connection, make_grant


def _trial(db_session, hours_from_now, status=GrantStatus.assigned, **overrides):
    return make_grant(
        db_session,
        status=status,
        access_type="trial",
        script_id="PUB;abc",
        expires_at=(NOW + timedelta(hours=hours_from_now)).isoformat(),
        **overrides,
    )


class TestFindExpiredTrials:

    def test_only_past_assigned_trials(self, db_session):
        past = _trial(db_session, -1)
        _trial(db_session, +1)
        _trial(db_session, -5, status=GrantStatus.expired)
        make_grant(db_session, status=GrantStatus.assigned, access_type="full_purchase")
        make_grant(
            db_session, status=GrantStatus.assigned, access_type="subscription",
            expires_at=(NOW - timedelta(days=1)).isoformat(),
        )

        assert [g.id for g in find_expired_trials(db_session, NOW)] == [past.id]

    def test_bad_timestamp_skipped(self, db_session):
        make_grant(db_session, status=GrantStatus.assigned, access_type="trial", expires_at="soon")
        assert find_expired_trials(db_session, NOW) == []


class TestCleanupExpiredTrials:

    def test_revokes_expired(self, db_session, vault, config, http_client, clock, fake_tv):
        make_connection(db_session, vault)
        make_catalog_entry(db_session)
        grant = _trial(db_session, -2)

        summary = cleanup_expired_trials(db_session, vault, config, http_client, clock=clock)

        assert summary == {"total": 1, "processed": 1, "errors": 0, "failures": []}
        db_session.refresh(grant)
        assert grant.status == GrantStatus.expired.value
        assert len(fake_tv.calls("/pine_perm/remove/")) == 1

    def test_failure_does_not_stop_others(self, db_session, vault, config, http_client, clock):
        make_connection(db_session, vault)
        make_catalog_entry(db_session)
        orphan = _trial(db_session, -3, seller_id="seller-without-connection")
        ok = _trial(db_session, -1)

        summary = cleanup_expired_trials(db_session, vault, config, http_client, clock=clock)

        assert summary["total"] == 2
        assert summary["processed"] == 2
        assert summary["errors"] == 1
        assert summary["failures"][0]["grant_id"] == orphan.id
        assert summary["failures"][0]["code"] == "E-2001"
        assert db_session.get(AccessGrant, ok.id).status == GrantStatus.expired.value
        assert db_session.get(AccessGrant, orphan.id).status == GrantStatus.expired.value

    def test_unusable_session_expires_once(self, db_session, vault, config, http_client, clock, fake_tv):
        """A trial whose seller session is unusable is expired on the first run only."""
        make_connection(db_session, vault, status=None)
        make_catalog_entry(db_session)
        grant = _trial(db_session, -1)

        first = cleanup_expired_trials(db_session, vault, config, http_client, clock=clock)
        log_count = db_session.query(AssignmentLogEntry).filter_by(grant_id=grant.id).count()
        for _ in range(2):
            again = cleanup_expired_trials(db_session, vault, config, http_client, clock=clock)
            assert again == {"total": 0, "processed": 0, "errors": 0, "failures": []}

        assert first["errors"] == 1
        assert fake_tv.calls("/pine_perm/remove/") == []
        db_session.refresh(grant)
        assert grant.status == GrantStatus.expired.value
        assert json.loads(grant.details_json)["revocation"]["removed"] is False
        logs = db_session.query(AssignmentLogEntry).filter_by(grant_id=grant.id).all()
        assert len(logs) == log_count
        assert any(e.level == "warning" and "removal failed" in e.message for e in logs)

    def test_platform_error_still_expires(self, db_session, vault, config, http_client, clock, fake_tv):
        make_connection(db_session, vault)
        make_catalog_entry(db_session)
        fake_tv.remove_reply = (500, "down")
        grant = _trial(db_session, -1)

        summary = cleanup_expired_trials(db_session, vault, config, http_client, clock=clock)

        assert summary["processed"] == 1
        assert summary["errors"] == 1
        db_session.refresh(grant)
        assert grant.status == GrantStatus.expired.value
        assert grant.error_message

    def test_claimed_grant_left_for_next_run(self, db_session, vault, config, http_client, clock, fake_tv):
        make_connection(db_session, vault)
        make_catalog_entry(db_session)
        grant = _trial(db_session, -1, lock_token="other-worker", locked_at=NOW.isoformat())

        summary = cleanup_expired_trials(db_session, vault, config, http_client, clock=clock)

        assert summary["failures"][0]["code"] == "E-1005"
        assert summary["processed"] == 0
        db_session.refresh(grant)
        assert grant.status == GrantStatus.assigned.value

    def test_nothing_to_do(self, db_session, vault, config, http_client, clock, fake_tv):
        summary = cleanup_expired_trials(db_session, vault, config, http_client, clock=clock)
        assert summary["total"] == 0
        assert fake_tv.requests == []
