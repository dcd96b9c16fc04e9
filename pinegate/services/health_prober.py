"""Session health prober.

Walks every seller connection that is active or has never been validated,
skips those checked recently, and re-validates the rest one at a time
against the TradingView settings page. Sellers are processed sequentially
with a fixed pause between checks so a large run never looks like a burst
from one IP.

Outcome per seller:
    authenticated marker present  -> active (last_error cleared)
    HTTP failure or marker absent -> expired
    anything else                 -> error (message stored)

After the pass, published programs of every non-active seller are disabled.
"""

import logging
import time
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

import httpx
from sqlalchemy.orm import Session

from pinegate.config import PineGateConfig
from pinegate.db.models import ConnectionStatus, SellerConnection, parse_iso
from pinegate.errors import CredentialError, ExternalServiceError
from pinegate.services.credential_vault import CredentialVault
from pinegate.services.platform_client import TradingViewClient
from pinegate.services.platform_parsing import is_authenticated_page
from pinegate.services.program_service import ProgramService
from pinegate.services.seller_connection_service import SellerConnectionService

logger = logging.getLogger(__name__)


class SessionHealthProber:
    """Single-worker re-validation loop over stored seller sessions.

    Args:
        db: SQLAlchemy session.
        vault: Credential vault for decrypting sessions.
        config: Application config (prober + platform sections are used).
        http_client: Optional httpx.Client passed through to TradingViewClient.
        sleep: Called with the inter-seller delay in seconds.
        clock: Returns the current aware UTC datetime.
    """

    def __init__(
        self,
        db: Session,
        vault: CredentialVault,
        config: PineGateConfig | None = None,
        http_client: httpx.Client | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = db
        self._config = config or PineGateConfig()
        self._http_client = http_client
        self._sleep = sleep
        self._clock = clock or (lambda: datetime.now(UTC))
        self._connections = SellerConnectionService(
            db, vault, self._config.platform, http_client
        )

    def _recently_validated(self, row: SellerConnection, now: datetime) -> bool:
        try:
            validated = parse_iso(row.last_validated_at)
        except ValueError:
            logger.warning("Unparseable last_validated_at for seller %s", row.seller_id)
            return False
        if validated is None:
            return False
        window = timedelta(hours=self._config.prober.revalidate_after_hours)
        return now - validated < window

    def check_connection(self, row: SellerConnection) -> ConnectionStatus:
        """Validate one stored session and persist the resulting status."""
        now = self._clock()
        try:
            cookies = self._connections.get_session(row)
            with TradingViewClient(
                cookies, self._config.platform, http_client=self._http_client
            ) as tv:
                html = tv.fetch_settings_page(row.platform_username)
        except ExternalServiceError as e:
            self._connections.update_status(
                row, ConnectionStatus.expired, e.message, validated_at=now,
            )
            return ConnectionStatus.expired
        except CredentialError as e:
            self._connections.update_status(
                row, ConnectionStatus.error, e.message, validated_at=now,
            )
            return ConnectionStatus.error

        if not is_authenticated_page(html):
            self._connections.update_status(
                row, ConnectionStatus.expired,
                "Authentication failed - cookies may be expired",
                validated_at=now,
            )
            return ConnectionStatus.expired

        self._connections.update_status(row, ConnectionStatus.active, validated_at=now)
        return ConnectionStatus.active

    def run(self) -> dict:
        """Run one full pass.

        Returns:
            {"total", "checked", "skipped", "expired", "errors",
             "disabled_programs"}
        """
        rows = self._connections.list_for_probe()
        summary = {
            "total": len(rows),
            "checked": 0,
            "skipped": 0,
            "expired": 0,
            "errors": 0,
            "disabled_programs": 0,
        }
        logger.info("Health check starting for %d connections", len(rows))

        first = True
        for row in rows:
            if self._recently_validated(row, self._clock()):
                summary["skipped"] += 1
                continue

            if not first:
                self._sleep(self._config.prober.delay_seconds)
            first = False

            seller_id = row.seller_id
            try:
                status = self.check_connection(row)
            except Exception as e:
                self._db.rollback()
                logger.exception("Health check for seller %s failed unexpectedly", seller_id)
                self._connections.update_status(
                    row, ConnectionStatus.error, f"{type(e).__name__}: {e}",
                    validated_at=self._clock(),
                )
                status = ConnectionStatus.error

            summary["checked"] += 1
            if status == ConnectionStatus.expired:
                summary["expired"] += 1
            elif status == ConnectionStatus.error:
                summary["errors"] += 1
            logger.info("Seller %s session: %s", seller_id, status.value)

        summary["disabled_programs"] = ProgramService(
            self._db
        ).disable_programs_for_broken_connections()
        logger.info(
            "Health check done: checked=%d skipped=%d expired=%d errors=%d disabled=%d",
            summary["checked"], summary["skipped"], summary["expired"],
            summary["errors"], summary["disabled_programs"],
        )
        return summary
