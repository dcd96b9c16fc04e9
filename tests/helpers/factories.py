"""Row factories for seeding the test database."""

from datetime import UTC, datetime

from sqlalchemy.orm import Session

from pinegate.db.models import (
    AccessGrant,
    CatalogEntry,
    ConnectionStatus,
    GrantStatus,
    Program,
    ProgramStatus,
    SellerConnection,
)
from pinegate.services.credential_vault import CredentialVault
from pinegate.services.platform_types import SessionCookies

TEST_VAULT_KEY = bytes(range(32))
NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


def make_connection(
    db: Session,
    vault: CredentialVault,
    seller_id: str = "seller-1",
    username: str | None = "seller1",
    status: ConnectionStatus | None = ConnectionStatus.active,
    last_validated_at: str | None = None,
    session: str = "sess-abc",
    signed_session: str = "sign-xyz",
) -> SellerConnection:
    """Store a seller connection with a vault-encrypted cookie pair."""
    encrypted, encrypted_signed = vault.encrypt_session(
        SessionCookies(session=session, signed_session=signed_session)
    )
    row = SellerConnection(
        seller_id=seller_id,
        platform_username=username,
        encrypted_session=encrypted,
        encrypted_signed_session=encrypted_signed,
        status=status.value if status else None,
        last_validated_at=last_validated_at,
    )
    db.add(row)
    db.commit()
    return row


def make_catalog_entry(
    db: Session,
    seller_id: str = "seller-1",
    script_id: str = "PUB;abc",
    pine_id: str | None = "PINE123",
    title: str = "Alpha Trend",
) -> CatalogEntry:
    entry = CatalogEntry(
        seller_id=seller_id,
        script_id=script_id,
        pine_id=pine_id,
        title=title,
        publication_url=f"https://www.tradingview.com/script/{script_id}/",
    )
    db.add(entry)
    db.commit()
    return entry


def make_grant(
    db: Session,
    seller_id: str = "seller-1",
    pine_id: str = "PINE123",
    buyer_username: str = "trader1",
    status: GrantStatus = GrantStatus.pending,
    **overrides,
) -> AccessGrant:
    """Create an AccessGrant; keyword overrides go straight to the model."""
    values = {
        "seller_id": seller_id,
        "buyer_id": "buyer-1",
        "pine_id": pine_id,
        "buyer_username": buyer_username,
        "status": status.value,
    }
    values.update(overrides)
    grant = AccessGrant(**values)
    db.add(grant)
    db.commit()
    return grant


def make_program(
    db: Session,
    seller_id: str = "seller-1",
    status: ProgramStatus = ProgramStatus.published,
    title: str = "Alpha Trend Access",
) -> Program:
    program = Program(seller_id=seller_id, title=title, status=status.value)
    db.add(program)
    db.commit()
    return program
