"""Assignment log service for PineGate.

Grant-scoped, append-only audit trail. Every attempt, success, failure and
revocation writes one entry; details are redacted before storage so no
session cookie ever lands in the log table.

Usage:
    from pinegate.services.assignment_log_service import AssignmentLogService

    audit = AssignmentLogService(db)
    audit.log_attempt(grant, attempt=1)
    audit.log_success(grant, "Access granted", {"response": {...}})

    # Export logs as plain text
    export = audit.export_logs_text(grant.id)
"""

import json
from typing import Any

from sqlalchemy.orm import Session

from pinegate.db.models import AccessGrant, AssignmentLogEntry, LogLevel, utc_now_iso
from pinegate.utils.redaction import redact_for_logging, sanitize_error_message

__all__ = ["AssignmentLogService", "LogLevel"]


class AssignmentLogService:
    """Writes and reads AssignmentLogEntry rows.

    Entries are added to the caller's session and flushed, not committed,
    so they land in the same transaction as the grant change they describe.

    Attributes:
        db: SQLAlchemy session for database operations.
    """

    def __init__(self, db: Session) -> None:
        self.db = db

    def log(
        self,
        grant: AccessGrant,
        level: LogLevel,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> AssignmentLogEntry:
        """Append a log entry for a grant.

        Core method all other log methods delegate to. Redacts details and
        sanitizes the message before storage.

        Args:
            grant: Grant the entry belongs to.
            level: Severity level.
            message: Human-readable event description.
            details: Optional structured data (redacted and JSON-encoded).

        Returns:
            The created AssignmentLogEntry.
        """
        details_json: str | None = None
        if details is not None:
            details_json = json.dumps(redact_for_logging(details), default=str)

        entry = AssignmentLogEntry(
            grant_id=grant.id,
            purchase_id=grant.purchase_id,
            level=level.value,
            message=sanitize_error_message(message) or "",
            details_json=details_json,
            timestamp=utc_now_iso(),
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    # Event-specific methods

    def log_attempt(self, grant: AccessGrant, action: str = "assign") -> AssignmentLogEntry:
        return self.log(
            grant,
            LogLevel.info,
            f"{action.capitalize()} attempt {grant.attempts} for {grant.buyer_username}",
            {"pine_id": grant.pine_id, "access_type": grant.access_type},
        )

    def log_success(
        self, grant: AccessGrant, message: str, details: dict[str, Any] | None = None,
    ) -> AssignmentLogEntry:
        return self.log(grant, LogLevel.success, message, details)

    def log_warning(
        self, grant: AccessGrant, message: str, details: dict[str, Any] | None = None,
    ) -> AssignmentLogEntry:
        return self.log(grant, LogLevel.warning, message, details)

    def log_failure(
        self,
        grant: AccessGrant,
        error_code: str,
        error_message: str,
        details: dict[str, Any] | None = None,
    ) -> AssignmentLogEntry:
        """Log a failed attempt.

        Args:
            grant: Grant the attempt belonged to.
            error_code: Registry code (e.g. 'E-3001').
            error_message: Human-readable error description.
            details: Optional structured error context.
        """
        error_details: dict[str, Any] = {"error_code": error_code}
        if details:
            error_details.update(details)
        return self.log(grant, LogLevel.error, f"{error_code}: {error_message}", error_details)

    # Query methods

    def get_logs(
        self, grant_id: str, level: LogLevel | None = None, limit: int = 1000,
    ) -> list[AssignmentLogEntry]:
        """Log entries for a grant, oldest first, optionally filtered by level."""
        query = self.db.query(AssignmentLogEntry).filter(
            AssignmentLogEntry.grant_id == grant_id
        )
        if level is not None:
            query = query.filter(AssignmentLogEntry.level == level.value)
        return query.order_by(AssignmentLogEntry.timestamp.asc()).limit(limit).all()

    # Export methods

    def export_logs_text(self, grant_id: str) -> str:
        """Export all logs for a grant as plain text.

        Example output:
            [2026-01-23T10:30:45+00:00] [info] Assign attempt 1 for trader1
            [2026-01-23T10:30:46+00:00] [success] Access granted to trader1
                {
                    "expires_at": null
                }
        """
        lines = []
        for entry in self.get_logs(grant_id):
            lines.append(f"[{entry.timestamp}] [{entry.level}] {entry.message}")
            if entry.details_json:
                try:
                    formatted = json.dumps(json.loads(entry.details_json), indent=4)
                    for detail_line in formatted.split("\n"):
                        lines.append(f"    {detail_line}")
                except json.JSONDecodeError:
                    lines.append(f"    {entry.details_json}")
        return "\n".join(lines)
