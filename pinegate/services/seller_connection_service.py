"""SellerConnectionService — lifecycle of a seller's TradingView session.

Stores the sessionid / sessionid_sign cookie pair encrypted with the
credential vault, validates it against TradingView before storing it, and
tracks its health status. Error messages are sanitized before persistence.
"""

import logging
from datetime import datetime

import httpx
from sqlalchemy import func
from sqlalchemy.orm import Session

from pinegate.config import PlatformConfig
from pinegate.db.models import (
    CatalogEntry,
    ConnectionStatus,
    SellerConnection,
    utc_now_iso,
)
from pinegate.errors import CredentialError, ExternalServiceError, ValidationError
from pinegate.errors.registry import get_error
from pinegate.services.credential_vault import CredentialVault
from pinegate.services.platform_client import TradingViewClient
from pinegate.services.platform_parsing import (
    extract_page_username,
    is_authenticated_page,
)
from pinegate.services.platform_types import SessionCookies
from pinegate.services.program_service import ProgramService
from pinegate.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

# Statuses the prober re-checks; NULL (never validated) is included separately.
PROBE_STATUSES = frozenset({ConnectionStatus.active.value})


class SellerConnectionService:
    """Manages seller TradingView connections with encrypted session storage.

    Args:
        db: SQLAlchemy session.
        vault: Credential vault used for cookie encryption.
        config: Platform settings for the validation request.
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
        self._vault = vault
        self._config = config or PlatformConfig()
        self._http_client = http_client

    def _get_row(self, seller_id: str) -> SellerConnection | None:
        return self._db.query(SellerConnection).filter_by(seller_id=seller_id).first()

    def _row_to_dict(self, row: SellerConnection) -> dict:
        """Convert a DB row to a response dict (no credentials exposed)."""
        return {
            "seller_id": row.seller_id,
            "platform_username": row.platform_username,
            "status": row.status,
            "has_credentials": row.has_credentials,
            "last_validated_at": row.last_validated_at,
            "last_error": row.last_error,
            "created_at": row.created_at,
            "updated_at": row.updated_at,
        }

    def get_connection(self, seller_id: str) -> dict | None:
        """Get a seller's connection (no credentials exposed), or None."""
        row = self._get_row(seller_id)
        if row is None:
            return None
        return self._row_to_dict(row)

    def get_active_connection(self, seller_id: str) -> SellerConnection:
        """Return the seller's connection if it can be used for TradingView calls.

        Raises:
            CredentialError: If missing, not active, or without stored cookies.
        """
        row = self._get_row(seller_id)
        if row is None or row.status != ConnectionStatus.active.value or not row.has_credentials:
            raise CredentialError(
                "Seller TradingView account not connected", code="E-2001",
                details={"seller_id": seller_id, "status": row.status if row else None},
            )
        return row

    def get_session(self, row: SellerConnection) -> SessionCookies:
        """Decrypt a connection's cookie pair.

        Raises:
            CredentialError: If either ciphertext is missing or undecryptable.
        """
        return self._vault.decrypt_session(row.encrypted_session, row.encrypted_signed_session)

    def update_status(
        self,
        row: SellerConnection,
        status: ConnectionStatus,
        error_message: str | None = None,
        validated_at: datetime | None = None,
    ) -> None:
        """Set status, validation timestamp and (sanitized) last error, then commit."""
        now = validated_at.isoformat() if validated_at else utc_now_iso()
        row.status = status.value
        row.last_validated_at = now
        row.last_error = sanitize_error_message(error_message) if error_message else None
        row.updated_at = now
        self._db.commit()

    def list_for_probe(self) -> list[SellerConnection]:
        """Connections the health prober should consider: active or never validated, with cookies."""
        rows = (
            self._db.query(SellerConnection)
            .filter(
                (SellerConnection.status.in_(PROBE_STATUSES))
                | (SellerConnection.status.is_(None))
            )
            .filter(SellerConnection.encrypted_session.isnot(None))
            .filter(SellerConnection.encrypted_signed_session.isnot(None))
            .order_by(SellerConnection.seller_id)
            .all()
        )
        return [row for row in rows if row.has_credentials]

    def _reject(
        self, row: SellerConnection, status: ConnectionStatus, error: CredentialError,
    ) -> CredentialError:
        self.update_status(row, status, error.message)
        logger.warning(
            "Connection test for seller %s rejected: %s (%s)",
            row.seller_id, error.code, status.value,
        )
        return error

    def test_connection(
        self,
        seller_id: str,
        session: str,
        signed_session: str,
        username: str | None = None,
    ) -> dict:
        """Validate a cookie pair against TradingView and store it if it works.

        Fetches the settings page with the cookies, requires the authenticated
        marker, extracts the username, rejects a username mismatch or an
        account already connected to another seller, then encrypts and stores
        the pair with status active.

        Args:
            seller_id: Marketplace seller id.
            session: Plain `sessionid` cookie value.
            signed_session: Plain `sessionid_sign` cookie value.
            username: Username the seller claims; optional.

        Returns:
            Connection dict (no credentials exposed).

        Raises:
            ValidationError: If a cookie value is missing.
            CredentialError: If TradingView rejects the session or a check fails.
                The connection row records the failure before this is raised.
        """
        missing = [
            name for name, value in (("session", session), ("signed_session", signed_session))
            if not value
        ]
        if missing or not seller_id:
            if not seller_id:
                missing.insert(0, "seller_id")
            raise ValidationError(
                f"Missing required parameters: {', '.join(missing)}", code="E-1001",
                details={"fields": missing},
            )

        row = self._get_row(seller_id)
        if row is None:
            row = SellerConnection(seller_id=seller_id)
            self._db.add(row)
            self._db.flush()

        cookies = SessionCookies(session=session.strip(), signed_session=signed_session.strip())
        client = TradingViewClient(cookies, self._config, http_client=self._http_client)
        try:
            html = client.fetch_settings_page(username)
        except ExternalServiceError as e:
            status_text = f"HTTP {e.status_code}" if e.status_code else e.message
            raise self._reject(
                row, ConnectionStatus.expired,
                CredentialError(
                    f"TradingView connection failed ({status_text}). "
                    "Please check your session cookies.",
                    code="E-2003",
                ),
            ) from e
        finally:
            client.close()

        if not is_authenticated_page(html):
            raise self._reject(
                row, ConnectionStatus.expired,
                CredentialError(
                    "Could not verify TradingView session. "
                    "Your cookies may be invalid or expired.",
                    code="E-2003",
                ),
            )

        found = extract_page_username(html)
        if not found and username:
            logger.info("Username not found on page; using provided username %s", username)
            found = username
        if not found:
            raise self._reject(
                row, ConnectionStatus.error,
                CredentialError(
                    "Could not extract the TradingView username from the profile page",
                    code="E-2003",
                ),
            )

        if username and found.lower() != username.lower():
            template = get_error("E-2004").message_template
            raise self._reject(
                row, ConnectionStatus.error,
                CredentialError(template.format(found=found, expected=username), code="E-2004"),
            )

        taken = (
            self._db.query(SellerConnection)
            .filter(func.lower(SellerConnection.platform_username) == found.lower())
            .filter(SellerConnection.status == ConnectionStatus.active.value)
            .filter(SellerConnection.seller_id != seller_id)
            .first()
        )
        if taken is not None:
            template = get_error("E-2005").message_template
            raise self._reject(
                row, ConnectionStatus.error,
                CredentialError(template.format(username=found), code="E-2005"),
            )

        row.encrypted_session, row.encrypted_signed_session = self._vault.encrypt_session(cookies)
        row.platform_username = found
        self.update_status(row, ConnectionStatus.active)
        logger.info("Seller %s connected TradingView account %s", seller_id, found)
        return self._row_to_dict(row)

    def disconnect(self, seller_id: str) -> dict | None:
        """Drop a seller's stored session and everything derived from it.

        Clears both ciphertexts and the username, sets status disconnected,
        deletes the seller's catalog rows and moves published programs back
        to draft.

        Returns:
            Updated connection dict, or None if the seller has no connection.
        """
        row = self._get_row(seller_id)
        if row is None:
            return None

        row.encrypted_session = None
        row.encrypted_signed_session = None
        row.platform_username = None
        row.status = ConnectionStatus.disconnected.value
        row.last_error = None
        row.updated_at = utc_now_iso()

        deleted = (
            self._db.query(CatalogEntry)
            .filter(CatalogEntry.seller_id == seller_id)
            .delete(synchronize_session=False)
        )
        drafted = ProgramService(self._db).set_seller_programs_draft(seller_id, commit=False)
        self._db.commit()

        logger.info(
            "Seller %s disconnected: %d catalog entries removed, %d programs set to draft",
            seller_id, deleted, drafted,
        )
        result = self._row_to_dict(row)
        result["catalog_entries_removed"] = deleted
        result["programs_drafted"] = drafted
        return result
