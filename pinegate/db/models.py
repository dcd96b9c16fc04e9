"""SQLAlchemy ORM models for the PineGate state database.

Defines seller connections (encrypted TradingView sessions), the synced
script catalog, marketplace programs, access grants and the append-only
assignment log. Uses SQLAlchemy 2.0 style with Mapped and mapped_column.

Timestamps are ISO8601 UTC strings for SQLite compatibility. JSON blobs
are TEXT columns parsed in the service layer.
"""

from datetime import UTC, datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    relationship,
)


def generate_uuid() -> str:
    """Generate a UUID4 string for primary keys."""
    return str(uuid4())


def utc_now_iso() -> str:
    """Generate current UTC timestamp in ISO8601 format."""
    return datetime.now(UTC).isoformat()


def parse_iso(value: str | None) -> datetime | None:
    """Parse an ISO8601 timestamp, assuming UTC when no offset is present.

    Accepts the trailing 'Z' form TradingView and JavaScript callers send.
    """
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


# Enums matching the database schema constraints


class ConnectionStatus(str, Enum):
    """Health of a seller's stored TradingView session.

    A NULL status column means "unknown" (never probed).
    """

    active = "active"
    expired = "expired"
    error = "error"
    disconnected = "disconnected"


class ProgramStatus(str, Enum):
    """Marketplace offering status."""

    draft = "draft"
    published = "published"
    disabled = "disabled"


class AccessType(str, Enum):
    """How long a grant lasts: lifetime, trial window, or subscription period."""

    full_purchase = "full_purchase"
    trial = "trial"
    subscription = "subscription"


class GrantStatus(str, Enum):
    """Status values for access grants.

    Lifecycle: pending -> assigned | failed
               failed/expired -> (retry) pending
               assigned -> expired (revoke only)
    """

    pending = "pending"
    assigned = "assigned"
    failed = "failed"
    expired = "expired"


class LogLevel(str, Enum):
    """Severity levels for assignment log entries."""

    info = "info"
    warning = "warning"
    error = "error"
    success = "success"


# SQLAlchemy Base


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# Models


class SellerConnection(Base):
    """A seller's TradingView session, encrypted at rest.

    Both session columns are either NULL or vault ciphertext. Mutated by the
    connection test flow, disconnect, and the health prober; the grant
    orchestrator only reads it.

    Attributes:
        id: UUID primary key
        seller_id: Marketplace seller id (unique)
        platform_username: Seller's TradingView username
        encrypted_session: Vault ciphertext of the `sessionid` cookie
        encrypted_signed_session: Vault ciphertext of the `sessionid_sign` cookie
        status: active, expired, error, disconnected, or NULL (unknown)
        last_validated_at: When the session was last checked against TradingView
        last_error: Sanitized text of the last failure
    """

    __tablename__ = "seller_connections"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    platform_username: Mapped[str | None] = mapped_column(String(255), nullable=True)
    encrypted_session: Mapped[str | None] = mapped_column(Text, nullable=True)
    encrypted_signed_session: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_validated_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    __table_args__ = (
        Index("idx_seller_connections_status", "status"),
        Index("idx_seller_connections_username", "platform_username"),
    )

    @property
    def has_credentials(self) -> bool:
        """True when both session ciphertexts are present."""
        return bool(self.encrypted_session and self.encrypted_signed_session)

    def __repr__(self) -> str:
        return (
            f"<SellerConnection(seller_id={self.seller_id!r}, "
            f"username={self.platform_username!r}, status={self.status!r})>"
        )


class CatalogEntry(Base):
    """One published script of a seller, as last seen on TradingView.

    Written only by the catalog synchronizer (upsert). A sync never deletes
    rows, so unpublished scripts stay resolvable for existing grants.

    Attributes:
        id: UUID primary key
        seller_id: Owning seller
        script_id: Externally-addressable id ("PUB;..." form)
        pine_id: Optional secondary identifier
        title: Script display name
        publication_url: Public script page URL
        image_url: Cover image URL
        likes: Like count at last sync
        reviews_count: Review/comment count at last sync
        last_synced_at: When this row was last refreshed
    """

    __tablename__ = "catalog_entries"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    script_id: Mapped[str] = mapped_column(String(255), nullable=False)
    pine_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    publication_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    likes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reviews_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_synced_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    __table_args__ = (
        UniqueConstraint("seller_id", "script_id", name="uq_catalog_seller_script"),
        Index("idx_catalog_entries_seller_pine", "seller_id", "pine_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<CatalogEntry(seller_id={self.seller_id!r}, "
            f"script_id={self.script_id!r}, title={self.title!r})>"
        )


class Program(Base):
    """Marketplace offering backed by a seller's script.

    Only the fields needed to disable offerings of sellers whose TradingView
    session broke; the storefront owns the rest.
    """

    __tablename__ = "programs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProgramStatus.draft.value
    )
    disabled_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    __table_args__ = (
        Index("idx_programs_seller_status", "seller_id", "status"),
    )


class AccessGrant(Base):
    """Buyer access to one seller script, created per purchase or trial.

    Mutated only by the grant orchestrator; never deleted. Expiry and
    revocation are status transitions.

    Attributes:
        id: UUID primary key
        seller_id / buyer_id / program_id / purchase_id: Marketplace references
        pine_id: Identifier the purchase was made against
        script_id: Resolved externally-addressable id (set on first resolution)
        buyer_username: Buyer's claimed TradingView username
        access_type: full_purchase, trial, subscription
        trial_duration_days: Trial length, for trial grants
        subscription_expires_at: Caller-supplied expiry, for subscription grants
        status: pending, assigned, failed, expired
        attempts: Monotonic attempt counter
        expires_at: NULL means lifetime access
        details_json: Last external response + verification result (JSON text)
        lock_token / locked_at: Per-grant attempt claim
    """

    __tablename__ = "access_grants"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    seller_id: Mapped[str] = mapped_column(String(64), nullable=False)
    buyer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    program_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    purchase_id: Mapped[str | None] = mapped_column(
        String(64), nullable=True, unique=True
    )
    pine_id: Mapped[str] = mapped_column(String(255), nullable=False)
    script_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    buyer_username: Mapped[str] = mapped_column(String(255), nullable=False)
    access_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AccessType.full_purchase.value
    )
    trial_duration_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    subscription_expires_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=GrantStatus.pending.value
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    assigned_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    expires_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    details_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    lock_token: Mapped[str | None] = mapped_column(String(36), nullable=True)
    locked_at: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )
    updated_at: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    logs: Mapped[list["AssignmentLogEntry"]] = relationship(
        "AssignmentLogEntry",
        back_populates="grant",
        order_by="AssignmentLogEntry.timestamp",
    )

    __table_args__ = (
        Index("idx_access_grants_seller", "seller_id"),
        Index("idx_access_grants_buyer", "buyer_id"),
        Index("idx_access_grants_program", "program_id"),
        Index("idx_access_grants_status_type", "status", "access_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<AccessGrant(id={self.id!r}, pine_id={self.pine_id!r}, "
            f"buyer={self.buyer_username!r}, status={self.status!r})>"
        )


class AssignmentLogEntry(Base):
    """Append-only audit trail entry for a grant.

    Written for every attempt, success, failure and revocation. This is what
    admins read when TradingView markup drifts and grants start failing.
    """

    __tablename__ = "assignment_logs"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    grant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("access_grants.id"), nullable=False
    )
    purchase_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    level: Mapped[str] = mapped_column(String(10), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    details_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    timestamp: Mapped[str] = mapped_column(
        String(50), nullable=False, default=utc_now_iso
    )

    grant: Mapped["AccessGrant"] = relationship("AccessGrant", back_populates="logs")

    __table_args__ = (
        Index("idx_assignment_logs_grant", "grant_id", "timestamp"),
    )
