"""API routes for access grants.

Assign and revoke return the orchestrator result unchanged. A failed
attempt comes back with a non-2xx status derived from its error code, so a
2xx always means the grant change was applied.
"""

import json
import logging

import httpx
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session
from starlette.responses import JSONResponse

from pinegate.api.dependencies import get_app_config, get_http_client, get_vault
from pinegate.api.responses import error_response, internal_error, status_for_code
from pinegate.api.schemas import (
    AssignmentLogResponse,
    AssignRequest,
    GrantResponse,
    RevokeRequest,
)
from pinegate.config import PineGateConfig
from pinegate.db.connection import get_db
from pinegate.db.models import AccessGrant, LogLevel
from pinegate.services.access_grant_orchestrator import AccessGrantOrchestrator
from pinegate.services.assignment_log_service import AssignmentLogService
from pinegate.services.credential_vault import CredentialVault

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/grants", tags=["grants"])


def _build_orchestrator(
    db: Session,
    vault: CredentialVault,
    config: PineGateConfig,
    http_client: httpx.Client | None,
) -> AccessGrantOrchestrator:
    return AccessGrantOrchestrator(db, vault, config, http_client=http_client)


def _parse_details(raw: str | None) -> dict | None:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return {"raw": raw}


def _result_response(result: dict) -> JSONResponse:
    if result.get("success"):
        return JSONResponse(status_code=200, content=result)
    return JSONResponse(status_code=status_for_code(result.get("code")), content=result)


def _caller(request: Request) -> str:
    return getattr(request.state, "api_caller", None) or "unauthenticated caller"


def _grant_not_found(grant_id: str) -> JSONResponse:
    return error_response(404, "E-3003", f"Grant '{grant_id}' not found")


@router.post("/{grant_id}/assign")
def assign_grant(
    grant_id: str,
    body: AssignRequest,
    request: Request,
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_vault),
    config: PineGateConfig = Depends(get_app_config),
    http_client: httpx.Client | None = Depends(get_http_client),
):
    """Run one assign attempt for a grant (first try or retry)."""
    logger.info("Assign requested for grant %s by %s", grant_id, _caller(request))
    try:
        orchestrator = _build_orchestrator(db, vault, config, http_client)
        result = orchestrator.assign(
            pine_id=body.pine_id,
            buyer_username=body.buyer_username,
            grant_id=grant_id,
            access_type=body.access_type.value if body.access_type else None,
            trial_duration_days=body.trial_duration_days,
            subscription_expires_at=body.subscription_expires_at,
        )
        return _result_response(result)
    except Exception as e:
        return internal_error(e, "assign grant")


@router.post("/{grant_id}/revoke")
def revoke_grant(
    grant_id: str,
    body: RevokeRequest,
    request: Request,
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_vault),
    config: PineGateConfig = Depends(get_app_config),
    http_client: httpx.Client | None = Depends(get_http_client),
):
    """Remove the buyer's access and expire the grant."""
    logger.info("Revoke requested for grant %s by %s", grant_id, _caller(request))
    try:
        orchestrator = _build_orchestrator(db, vault, config, http_client)
        result = orchestrator.revoke(
            pine_id=body.pine_id,
            buyer_username=body.buyer_username,
            grant_id=grant_id,
        )
        return _result_response(result)
    except Exception as e:
        return internal_error(e, "revoke grant")


@router.get("/{grant_id}/verify")
def verify_grant(
    grant_id: str,
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_vault),
    config: PineGateConfig = Depends(get_app_config),
    http_client: httpx.Client | None = Depends(get_http_client),
):
    """Check the buyer against the script's live access list."""
    try:
        orchestrator = _build_orchestrator(db, vault, config, http_client)
        result = orchestrator.verify(grant_id)
        if result.get("success") is False:
            return _result_response(result)
        return result
    except Exception as e:
        return internal_error(e, "verify grant")


@router.get("/{grant_id}", response_model=GrantResponse)
def get_grant(grant_id: str, db: Session = Depends(get_db)):
    """Get a grant with its parsed details blob."""
    try:
        grant = db.get(AccessGrant, grant_id)
        if grant is None:
            return _grant_not_found(grant_id)
        response = GrantResponse.model_validate(grant)
        response.details = _parse_details(grant.details_json)
        return response
    except Exception as e:
        return internal_error(e, "get grant")


@router.get("/{grant_id}/logs", response_model=list[AssignmentLogResponse])
def get_grant_logs(
    grant_id: str,
    level: LogLevel | None = Query(None, description="Filter by log level"),
    limit: int = Query(1000, ge=1, le=10000),
    db: Session = Depends(get_db),
):
    """Assignment log for a grant, oldest first."""
    try:
        if db.get(AccessGrant, grant_id) is None:
            return _grant_not_found(grant_id)
        entries = AssignmentLogService(db).get_logs(grant_id, level=level, limit=limit)
        return [
            AssignmentLogResponse(
                id=entry.id,
                grant_id=entry.grant_id,
                purchase_id=entry.purchase_id,
                timestamp=entry.timestamp,
                level=entry.level,
                message=entry.message,
                details=_parse_details(entry.details_json),
            )
            for entry in entries
        ]
    except Exception as e:
        return internal_error(e, "get grant logs")


@router.get("/{grant_id}/logs/export", response_class=PlainTextResponse)
def export_grant_logs(grant_id: str, db: Session = Depends(get_db)):
    """Assignment log for a grant as a plain-text download."""
    try:
        if db.get(AccessGrant, grant_id) is None:
            return _grant_not_found(grant_id)
        content = AssignmentLogService(db).export_logs_text(grant_id)
        return PlainTextResponse(
            content,
            headers={"Content-Disposition": f'attachment; filename="grant_{grant_id}_logs.txt"'},
        )
    except Exception as e:
        return internal_error(e, "export grant logs")
