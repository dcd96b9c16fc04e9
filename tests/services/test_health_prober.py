"""Tests for SessionHealthProber."""

from datetime import timedelta

import httpx
import pytest

from pinegate.config import PineGateConfig, ProberConfig
from pinegate.db.models import ConnectionStatus, Program, ProgramStatus, SellerConnection
from pinegate.services.health_prober import SessionHealthProber
from pinegate.services.program_service import BROKEN_CONNECTION_REASON
from tests.helpers import ANONYMOUS_PAGE, NOW, make_connection, make_program


def _hours_ago(hours: float) -> str:
    return (NOW - timedelta(hours=hours)).isoformat()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def prober(db_session, vault, config, http_client, clock, sleeps):
    return SessionHealthProber(
        db_session, vault, config, http_client, sleep=sleeps.append, clock=clock,
    )


def _status(db_session, seller_id):
    return db_session.query(SellerConnection).filter_by(seller_id=seller_id).one().status


class TestSkipWindow:

    def test_recent_skipped_stale_checked(self, prober, db_session, vault, fake_tv):
        """Validated 2h ago is skipped; 7h ago is re-checked."""
        make_connection(db_session, vault, seller_id="recent", username="recent",
                        last_validated_at=_hours_ago(2))
        make_connection(db_session, vault, seller_id="stale", username="stale",
                        last_validated_at=_hours_ago(7))

        summary = prober.run()

        assert summary["total"] == 2
        assert summary["checked"] == 1
        assert summary["skipped"] == 1
        assert [r.url.path for r in fake_tv.requests] == ["/u/stale/"]

    def test_never_validated_is_checked(self, prober, db_session, vault):
        make_connection(db_session, vault, status=None)
        summary = prober.run()
        assert summary["checked"] == 1
        assert _status(db_session, "seller-1") == ConnectionStatus.active.value

    def test_window_is_configurable(self, db_session, vault, http_client, clock):
        cfg = PineGateConfig(prober=ProberConfig(revalidate_after_hours=1, delay_seconds=0))
        make_connection(db_session, vault, last_validated_at=_hours_ago(2))
        summary = SessionHealthProber(db_session, vault, cfg, http_client, clock=clock).run()
        assert summary["checked"] == 1

    def test_unparseable_timestamp_is_checked(self, prober, db_session, vault):
        make_connection(db_session, vault, last_validated_at="yesterday-ish")
        assert prober.run()["checked"] == 1


class TestOutcomes:

    def test_healthy_session_stays_active(self, prober, db_session, vault):
        row = make_connection(db_session, vault, last_validated_at=_hours_ago(8))
        row.last_error = "old failure"
        db_session.commit()

        summary = prober.run()

        assert summary["expired"] == 0
        refreshed = db_session.query(SellerConnection).one()
        assert refreshed.status == ConnectionStatus.active.value
        assert refreshed.last_error is None
        assert refreshed.last_validated_at == NOW.isoformat()

    def test_missing_marker_expires(self, prober, db_session, vault, fake_tv):
        make_connection(db_session, vault)
        fake_tv.settings_reply = (200, ANONYMOUS_PAGE)
        summary = prober.run()
        assert summary["expired"] == 1
        row = db_session.query(SellerConnection).one()
        assert row.status == ConnectionStatus.expired.value
        assert "cookies may be expired" in row.last_error

    def test_http_failure_expires(self, prober, db_session, vault, fake_tv):
        make_connection(db_session, vault)
        fake_tv.settings_reply = (403, "forbidden")
        assert prober.run()["expired"] == 1
        assert _status(db_session, "seller-1") == ConnectionStatus.expired.value

    def test_undecryptable_session_is_error(self, prober, db_session, vault, fake_tv):
        row = make_connection(db_session, vault)
        row.encrypted_signed_session = "bm90LWEtcmVhbC1jaXBoZXJ0ZXh0LWF0LWFsbA=="
        db_session.commit()
        summary = prober.run()
        assert summary["errors"] == 1
        assert _status(db_session, "seller-1") == ConnectionStatus.error.value
        assert fake_tv.requests == []


class TestIsolation:

    def test_one_failure_does_not_stop_the_rest(self, prober, db_session, vault, fake_tv):
        make_connection(db_session, vault, seller_id="a-broken", username="broken")
        make_connection(db_session, vault, seller_id="b-fine", username="fine")
        fake_tv.errors["/u/broken/"] = RuntimeError("parser exploded")

        summary = prober.run()

        assert summary["checked"] == 2
        assert summary["errors"] == 1
        assert _status(db_session, "a-broken") == ConnectionStatus.error.value
        assert "parser exploded" in db_session.query(SellerConnection).filter_by(
            seller_id="a-broken").one().last_error
        assert _status(db_session, "b-fine") == ConnectionStatus.active.value

    def test_delay_between_checked_sellers(self, db_session, vault, http_client, clock):
        sleeps = []
        cfg = PineGateConfig(prober=ProberConfig(delay_seconds=2.0))
        for name in ("a", "b", "c"):
            make_connection(db_session, vault, seller_id=name, username=name)
        make_connection(db_session, vault, seller_id="d", username="d",
                        last_validated_at=_hours_ago(1))

        SessionHealthProber(
            db_session, vault, cfg, http_client, sleep=sleeps.append, clock=clock,
        ).run()

        assert sleeps == [2.0, 2.0]

    def test_excluded_statuses_not_probed(self, prober, db_session, vault, fake_tv):
        make_connection(db_session, vault, seller_id="x", username="x", status=ConnectionStatus.expired)
        make_connection(db_session, vault, seller_id="y", username="y", status=ConnectionStatus.disconnected)
        summary = prober.run()
        assert summary["total"] == 0
        assert fake_tv.requests == []


class TestProgramDisablement:

    def test_programs_of_broken_sellers_disabled(self, prober, db_session, vault, fake_tv):
        make_connection(db_session, vault)
        program = make_program(db_session)
        draft = make_program(db_session, status=ProgramStatus.draft, title="Draft")
        fake_tv.settings_reply = (200, ANONYMOUS_PAGE)

        summary = prober.run()

        assert summary["disabled_programs"] == 1
        db_session.refresh(program)
        db_session.refresh(draft)
        assert program.status == ProgramStatus.disabled.value
        assert program.disabled_reason == BROKEN_CONNECTION_REASON
        assert draft.status == ProgramStatus.draft.value

    def test_previously_broken_sellers_also_disabled(self, prober, db_session, vault):
        make_connection(db_session, vault, seller_id="gone", username="gone",
                        status=ConnectionStatus.disconnected)
        make_program(db_session, seller_id="gone")
        assert prober.run()["disabled_programs"] == 1

    def test_healthy_sellers_keep_programs(self, prober, db_session, vault):
        make_connection(db_session, vault)
        make_program(db_session)
        make_program(db_session, seller_id="no-connection-row")
        assert prober.run()["disabled_programs"] == 0
        assert {p.status for p in db_session.query(Program).all()} == {"published"}


def test_transport_timeout_expires(prober, db_session, vault, fake_tv):
    make_connection(db_session, vault)
    fake_tv.errors["/u/seller1/"] = httpx.ConnectTimeout("timeout")
    assert prober.run()["expired"] == 1
