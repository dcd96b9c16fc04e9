"""Database module for PineGate state management and persistence.

Only the models are re-exported here; import pinegate.db.connection
explicitly when an engine is needed.
"""

from pinegate.db.models import (
    AccessGrant,
    AccessType,
    AssignmentLogEntry,
    Base,
    CatalogEntry,
    ConnectionStatus,
    GrantStatus,
    LogLevel,
    Program,
    ProgramStatus,
    SellerConnection,
)

__all__ = [
    # Models
    "Base",
    "SellerConnection",
    "CatalogEntry",
    "Program",
    "AccessGrant",
    "AssignmentLogEntry",
    # Enums
    "ConnectionStatus",
    "ProgramStatus",
    "AccessType",
    "GrantStatus",
    "LogLevel",
]
