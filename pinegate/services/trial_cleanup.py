"""Revoke trial grants whose window has closed."""

import logging
from collections.abc import Callable
from datetime import UTC, datetime

import httpx
from sqlalchemy.orm import Session

from pinegate.config import PineGateConfig
from pinegate.db.models import AccessGrant, AccessType, GrantStatus, parse_iso
from pinegate.services.access_grant_orchestrator import AccessGrantOrchestrator
from pinegate.services.credential_vault import CredentialVault

logger = logging.getLogger(__name__)

_CLAIM_CONFLICT = "E-1005"


def find_expired_trials(db: Session, now: datetime) -> list[AccessGrant]:
    """Assigned trial grants whose expires_at is in the past."""
    candidates = (
        db.query(AccessGrant)
        .filter(AccessGrant.status == GrantStatus.assigned.value)
        .filter(AccessGrant.access_type == AccessType.trial.value)
        .filter(AccessGrant.expires_at.isnot(None))
        .order_by(AccessGrant.expires_at)
        .all()
    )
    expired = []
    for grant in candidates:
        try:
            expires_at = parse_iso(grant.expires_at)
        except ValueError:
            logger.warning("Grant %s has unparseable expires_at %r", grant.id, grant.expires_at)
            continue
        if expires_at is not None and expires_at <= now:
            expired.append(grant)
    return expired


def cleanup_expired_trials(
    db: Session,
    vault: CredentialVault,
    config: PineGateConfig | None = None,
    http_client: httpx.Client | None = None,
    clock: Callable[[], datetime] | None = None,
) -> dict:
    """Revoke every expired trial. One grant's failure does not stop the rest.

    A lapsed trial is expired even when TradingView access cannot be removed
    (no usable seller session, platform error); the failure is recorded on
    the grant and counted in "errors". Grants held by another worker are
    left for the next run.

    Returns:
        {"total", "processed", "errors", "failures": [{grant_id, error, code}]}
    """
    clock = clock or (lambda: datetime.now(UTC))
    orchestrator = AccessGrantOrchestrator(db, vault, config, http_client, clock=clock)
    grants = find_expired_trials(db, clock())

    summary: dict = {"total": len(grants), "processed": 0, "errors": 0, "failures": []}
    for grant in grants:
        grant_id = grant.id
        result = orchestrator.revoke(grant.pine_id, grant.buyer_username, grant_id)
        if result["success"]:
            summary["processed"] += 1
            continue

        summary["errors"] += 1
        summary["failures"].append(
            {"grant_id": grant_id, "error": result["error"], "code": result["code"]}
        )
        if result["code"] == _CLAIM_CONFLICT:
            logger.info("Grant %s is being processed elsewhere; skipping", grant_id)
            continue
        logger.warning("Trial revoke failed for grant %s: %s", grant_id, result["error"])
        if orchestrator.mark_expired(grant_id, result["error"], result["code"])["success"]:
            summary["processed"] += 1

    logger.info(
        "Trial cleanup: %d due, %d expired, %d removal errors",
        summary["total"], summary["processed"], summary["errors"],
    )
    return summary
