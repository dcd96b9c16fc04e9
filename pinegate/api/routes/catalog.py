"""API routes for the synced script catalog."""

import logging

import httpx
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pinegate.api.dependencies import get_app_config, get_http_client, get_vault
from pinegate.api.responses import domain_error, internal_error
from pinegate.config import PineGateConfig
from pinegate.db.connection import get_db
from pinegate.errors import DomainError
from pinegate.services.catalog_sync import CatalogSynchronizer
from pinegate.services.credential_vault import CredentialVault

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/catalog", tags=["catalog"])


@router.post("/{seller_id}/sync")
def sync_catalog(
    seller_id: str,
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_vault),
    config: PineGateConfig = Depends(get_app_config),
    http_client: httpx.Client | None = Depends(get_http_client),
):
    """Pull the seller's published scripts from TradingView."""
    try:
        return CatalogSynchronizer(db, vault, config.platform, http_client).sync(seller_id)
    except DomainError as e:
        logger.warning("Catalog sync for %s failed: %s %s", seller_id, e.code, e.message)
        return domain_error(e)
    except Exception as e:
        return internal_error(e, "sync catalog")


@router.get("/{seller_id}")
def list_catalog(
    seller_id: str,
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_vault),
    config: PineGateConfig = Depends(get_app_config),
):
    """Stored catalog entries for a seller."""
    try:
        entries = CatalogSynchronizer(db, vault, config.platform).list_entries(seller_id)
        return {"seller_id": seller_id, "count": len(entries), "scripts": entries}
    except Exception as e:
        return internal_error(e, "list catalog")
