"""API routes for on-demand maintenance jobs.

The same jobs run on a timer when the scheduler is enabled; these routes let
an admin (or an external cron) trigger them directly.
"""

import logging

import httpx
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from pinegate.api.dependencies import get_app_config, get_http_client, get_vault
from pinegate.api.responses import internal_error
from pinegate.config import PineGateConfig
from pinegate.db.connection import get_db
from pinegate.services.credential_vault import CredentialVault
from pinegate.services.health_prober import SessionHealthProber
from pinegate.services.trial_cleanup import cleanup_expired_trials

logger = logging.getLogger(__name__)

router = APIRouter(tags=["jobs"])


@router.post("/health-check")
def run_health_check(
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_vault),
    config: PineGateConfig = Depends(get_app_config),
    http_client: httpx.Client | None = Depends(get_http_client),
):
    """Re-validate stored seller sessions and disable broken programs."""
    try:
        return SessionHealthProber(db, vault, config, http_client=http_client).run()
    except Exception as e:
        return internal_error(e, "health check")


@router.post("/trials/cleanup")
def run_trial_cleanup(
    db: Session = Depends(get_db),
    vault: CredentialVault = Depends(get_vault),
    config: PineGateConfig = Depends(get_app_config),
    http_client: httpx.Client | None = Depends(get_http_client),
):
    """Revoke trial grants whose window has closed."""
    try:
        return cleanup_expired_trials(db, vault, config, http_client=http_client)
    except Exception as e:
        return internal_error(e, "trial cleanup")
