"""API routes for seller TradingView connections.

Cookie values are never echoed back; responses carry only status metadata.
SellerConnectionService is created inside each handler so that
construction failures (e.g. vault key issues) are caught by the route's own
try/except and returned as structured JSON.
"""

import logging

import httpx
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pinegate.api.dependencies import get_app_config, get_http_client, get_vault
from pinegate.api.responses import domain_error, error_response, internal_error
from pinegate.api.schemas import TestConnectionRequest
from pinegate.config import PineGateConfig
from pinegate.db.connection import get_db
from pinegate.errors import DomainError
from pinegate.services.credential_vault import CredentialVault
from pinegate.services.seller_connection_service import SellerConnectionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connections", tags=["connections"])


def _build_service(
    db: Session,
    vault: CredentialVault,
    config: PineGateConfig,
    http_client: httpx.Client | None,
) -> SellerConnectionService:
    return SellerConnectionService(db, vault, config.platform, http_client)


def _not_found(seller_id: str):
    return error_response(404, "E-3003", f"No TradingView connection for seller '{seller_id}'")


@router.get("/{seller_id}")
def get_connection(
    seller_id: str,
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_vault),
    config: PineGateConfig = Depends(get_app_config),
):
    """Get a seller's connection status (no credentials exposed)."""
    try:
        conn = _build_service(db, vault, config, None).get_connection(seller_id)
        if conn is None:
            return _not_found(seller_id)
        return conn
    except Exception as e:
        return internal_error(e, "get connection")


@router.post("/{seller_id}/test")
def test_connection(
    seller_id: str,
    body: TestConnectionRequest,
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_vault),
    config: PineGateConfig = Depends(get_app_config),
    http_client: httpx.Client | None = Depends(get_http_client),
):
    """Validate a cookie pair against TradingView and store it on success."""
    try:
        service = _build_service(db, vault, config, http_client)
        return service.test_connection(
            seller_id,
            session=body.session,
            signed_session=body.signed_session,
            username=body.username,
        )
    except DomainError as e:
        if e.http_status == 400 and e.code.startswith("E-2"):
            # Rejected session cookies.
            return error_response(401, e.code, e.message)
        return domain_error(e)
    except Exception as e:
        return internal_error(e, "test connection")


@router.post("/{seller_id}/disconnect")
def disconnect_connection(
    seller_id: str,
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_vault),
    config: PineGateConfig = Depends(get_app_config),
):
    """Clear the stored session, catalog and published programs of a seller."""
    try:
        conn = _build_service(db, vault, config, None).disconnect(seller_id)
        if conn is None:
            return _not_found(seller_id)
        return conn
    except Exception as e:
        return internal_error(e, "disconnect connection")
