"""Shared FastAPI dependencies.

The vault key and config are resolved once per process. Tests replace these
through app.dependency_overrides.
"""

from functools import lru_cache

import httpx

from pinegate.config import PineGateConfig, load_config
from pinegate.services.credential_vault import CredentialVault, build_default_vault


@lru_cache(maxsize=1)
def get_app_config() -> PineGateConfig:
    """Process-wide configuration."""
    return load_config()


@lru_cache(maxsize=1)
def get_vault() -> CredentialVault:
    """Process-wide credential vault."""
    return build_default_vault()


def get_http_client() -> httpx.Client | None:
    """Outbound HTTP client override; None lets each service build its own."""
    return None
