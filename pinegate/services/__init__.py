"""Service layer for PineGate.

Provides the credential vault, catalog synchronization, access grant
orchestration and session health probing.
"""

from pinegate.services.access_grant_orchestrator import AccessGrantOrchestrator
from pinegate.services.assignment_log_service import AssignmentLogService
from pinegate.services.catalog_sync import CatalogSynchronizer
from pinegate.services.credential_vault import CredentialVault, build_default_vault
from pinegate.services.health_prober import SessionHealthProber
from pinegate.services.seller_connection_service import SellerConnectionService

__all__ = [
    "AccessGrantOrchestrator",
    "AssignmentLogService",
    "CatalogSynchronizer",
    "CredentialVault",
    "build_default_vault",
    "SessionHealthProber",
    "SellerConnectionService",
]
