"""Tests for AssignmentLogService and ProgramService."""

import json

import pytest

from pinegate.db.models import ConnectionStatus, LogLevel, ProgramStatus
from pinegate.services.assignment_log_service import AssignmentLogService
from pinegate.services.program_service import ProgramService
from tests.helpers import make_connection, make_grant, make_program


@pytest.fixture
def audit(db_session):
    return AssignmentLogService(db_session)


@pytest.fixture
def grant(db_session):
    return make_grant(db_session, purchase_id="purchase-9", attempts=1)


class TestLogging:

    def test_attempt_entry(self, audit, grant):
        entry = audit.log_attempt(grant, "assign")
        assert entry.level == "info"
        assert entry.message == "Assign attempt 1 for trader1"
        assert entry.purchase_id == "purchase-9"

    def test_details_redacted(self, audit, grant):
        entry = audit.log_success(grant, "ok", {"cookies": {"sessionid": "abc"}, "status": 200})
        details = json.loads(entry.details_json)
        assert details["cookies"] == "***REDACTED***"
        assert details["status"] == 200

    def test_message_sanitized(self, audit, grant):
        entry = audit.log_warning(grant, "retry with sessionid=abc123")
        assert "abc123" not in entry.message

    def test_failure_includes_code(self, audit, grant):
        entry = audit.log_failure(grant, "E-3001", "not found", {"candidates": ["x"]})
        assert entry.level == "error"
        assert entry.message == "E-3001: not found"
        assert json.loads(entry.details_json) == {"error_code": "E-3001", "candidates": ["x"]}

    def test_entries_flushed_not_committed(self, audit, grant, db_session):
        audit.log_attempt(grant)
        db_session.rollback()
        assert audit.get_logs(grant.id) == []


class TestQueries:

    def test_level_filter(self, audit, grant):
        audit.log_attempt(grant)
        audit.log_failure(grant, "E-4001", "boom")
        errors = audit.get_logs(grant.id, level=LogLevel.error)
        assert [e.level for e in errors] == ["error"]

    def test_limit(self, audit, grant):
        for _ in range(5):
            audit.log_attempt(grant)
        assert len(audit.get_logs(grant.id, limit=3)) == 3

    def test_export_text(self, audit, grant):
        audit.log_attempt(grant)
        audit.log_success(grant, "Access granted", {"expires_at": None})
        text = audit.export_logs_text(grant.id)
        assert "[info] Assign attempt 1 for trader1" in text
        assert "[success] Access granted" in text
        assert '"expires_at": null' in text

    def test_export_empty(self, audit):
        assert audit.export_logs_text("nothing") == ""


class TestProgramService:

    def test_disable_for_broken_connections(self, db_session, vault):
        make_connection(db_session, vault, seller_id="ok", username="ok")
        make_connection(db_session, vault, seller_id="bad", username="bad", status=ConnectionStatus.error)
        make_connection(db_session, vault, seller_id="unknown", username="unknown", status=None)
        healthy = make_program(db_session, seller_id="ok")
        broken = make_program(db_session, seller_id="bad")
        unknown = make_program(db_session, seller_id="unknown")

        assert ProgramService(db_session).disable_programs_for_broken_connections() == 2
        assert healthy.status == ProgramStatus.published.value
        assert broken.status == ProgramStatus.disabled.value
        assert unknown.status == ProgramStatus.disabled.value

    def test_set_seller_programs_draft(self, db_session):
        make_program(db_session)
        make_program(db_session, seller_id="other")
        assert ProgramService(db_session).set_seller_programs_draft("seller-1") == 1
