"""Catalog synchronizer: mirror a seller's published TradingView scripts.

Flow for one seller:
    1. Load the active connection and decrypt its session.
    2. Fetch the seller's profile page and discover the numeric user id.
    3. Fetch the script listing for that id and normalize it.
    4. Upsert each script keyed by (seller_id, script_id).

Rows are never deleted here, so a script that disappears from the listing
stays resolvable for grants that already reference it. Upserts are
committed per script; a failure midway leaves earlier rows in place.
"""

import logging

import httpx
from sqlalchemy.orm import Session

from pinegate.config import PlatformConfig
from pinegate.db.models import CatalogEntry, utc_now_iso
from pinegate.errors import ExternalServiceError
from pinegate.services.credential_vault import CredentialVault
from pinegate.services.platform_client import TradingViewClient
from pinegate.services.platform_parsing import extract_user_id, parse_script_listing
from pinegate.services.platform_types import ScriptRecord
from pinegate.services.seller_connection_service import SellerConnectionService

logger = logging.getLogger(__name__)


class CatalogSynchronizer:
    """Pulls a seller's script listing from TradingView into catalog_entries.

    Args:
        db: SQLAlchemy session.
        vault: Credential vault for decrypting the seller session.
        config: Platform settings.
        http_client: Optional httpx.Client passed through to TradingViewClient.
    """

    def __init__(
        self,
        db: Session,
        vault: CredentialVault,
        config: PlatformConfig | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._db = db
        self._config = config or PlatformConfig()
        self._http_client = http_client
        self._connections = SellerConnectionService(db, vault, self._config, http_client)

    def sync(self, seller_id: str) -> dict:
        """Synchronize one seller's catalog.

        Returns:
            {"success": True, "seller_id", "count", "scripts": [...]}

        Raises:
            CredentialError: If the seller has no usable connection.
            ExternalServiceError: If the user id cannot be found, the listing
                request fails, or the listing cannot be parsed.
        """
        connection = self._connections.get_active_connection(seller_id)
        cookies = self._connections.get_session(connection)
        username = connection.platform_username
        if not username:
            raise ExternalServiceError(
                "Seller connection has no TradingView username; reconnect the account",
                code="E-4003",
            )

        with TradingViewClient(cookies, self._config, http_client=self._http_client) as tv:
            profile_html = tv.fetch_profile_page(username)
            user_id = extract_user_id(profile_html, username)
            if user_id is None:
                raise ExternalServiceError(
                    f"Could not find the TradingView user id for '{username}'. "
                    "The profile page structure may have changed.",
                    code="E-4003",
                )
            logger.info("Resolved TradingView user %s to id %d", username, user_id)
            listing = tv.fetch_script_listing(user_id)

        records = parse_script_listing(listing, base_url=self._config.base_url)
        if not records:
            logger.info("No published scripts found for %s", username)
            return {"success": True, "seller_id": seller_id, "count": 0, "scripts": []}

        for record in records:
            self._upsert(seller_id, record)
            self._db.commit()

        logger.info("Synced %d scripts for seller %s", len(records), seller_id)
        return {
            "success": True,
            "seller_id": seller_id,
            "count": len(records),
            "scripts": [record.to_dict() for record in records],
        }

    def _upsert(self, seller_id: str, record: ScriptRecord) -> CatalogEntry:
        entry = (
            self._db.query(CatalogEntry)
            .filter_by(seller_id=seller_id, script_id=record.script_id)
            .first()
        )
        if entry is None:
            entry = CatalogEntry(seller_id=seller_id, script_id=record.script_id)
            self._db.add(entry)
        entry.pine_id = record.private_id
        entry.title = record.title
        entry.publication_url = record.publication_url
        entry.image_url = record.image_url
        entry.likes = record.likes
        entry.reviews_count = record.reviews_count
        entry.last_synced_at = utc_now_iso()
        return entry

    def list_entries(self, seller_id: str) -> list[dict]:
        """Stored catalog for a seller, ordered by title."""
        entries = (
            self._db.query(CatalogEntry)
            .filter(CatalogEntry.seller_id == seller_id)
            .order_by(CatalogEntry.title)
            .all()
        )
        return [
            {
                "script_id": e.script_id,
                "pine_id": e.pine_id,
                "title": e.title,
                "publication_url": e.publication_url,
                "image_url": e.image_url,
                "likes": e.likes,
                "reviews_count": e.reviews_count,
                "last_synced_at": e.last_synced_at,
            }
            for e in entries
        ]
