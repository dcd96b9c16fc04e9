"""Program status changes driven by seller connection health.

A program whose seller can no longer grant access must not stay on sale.
"""

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from pinegate.db.models import ConnectionStatus, Program, ProgramStatus, SellerConnection, utc_now_iso

logger = logging.getLogger(__name__)

BROKEN_CONNECTION_REASON = "TradingView connection is not active"


class ProgramService:
    """Bulk program status updates.

    Args:
        db: SQLAlchemy session.
    """

    def __init__(self, db: Session) -> None:
        self._db = db

    def disable_programs_for_broken_connections(self, commit: bool = True) -> int:
        """Disable published programs of sellers whose connection is not active.

        A seller with no connection row at all is left alone; the storefront
        never lets such a seller publish.

        Returns:
            Number of programs disabled.
        """
        broken_sellers = select(SellerConnection.seller_id).where(
            (SellerConnection.status.is_(None))
            | (SellerConnection.status != ConnectionStatus.active.value)
        )
        programs = (
            self._db.query(Program)
            .filter(Program.status == ProgramStatus.published.value)
            .filter(Program.seller_id.in_(broken_sellers))
            .all()
        )
        now = utc_now_iso()
        for program in programs:
            program.status = ProgramStatus.disabled.value
            program.disabled_reason = BROKEN_CONNECTION_REASON
            program.updated_at = now
        if commit:
            self._db.commit()
        if programs:
            logger.info("Disabled %d programs with broken seller connections", len(programs))
        return len(programs)

    def set_seller_programs_draft(self, seller_id: str, commit: bool = True) -> int:
        """Move a seller's published programs back to draft.

        Returns:
            Number of programs changed.
        """
        programs = (
            self._db.query(Program)
            .filter(Program.seller_id == seller_id)
            .filter(Program.status == ProgramStatus.published.value)
            .all()
        )
        now = utc_now_iso()
        for program in programs:
            program.status = ProgramStatus.draft.value
            program.updated_at = now
        if commit:
            self._db.commit()
        return len(programs)
