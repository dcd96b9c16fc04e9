"""Error handling framework for PineGate.

This package provides:
- Error code registry with E-XXXX format codes
- Typed domain exceptions carrying those codes

Error categories:
- E-1xxx: Input validation errors
- E-2xxx: Seller credential errors
- E-3xxx: Lookup errors
- E-4xxx: TradingView / external service errors
- E-5xxx: System/internal errors
"""

from pinegate.errors.domain import (
    AmbiguousResponseError,
    ConflictError,
    CredentialError,
    DomainError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from pinegate.errors.registry import (
    ERROR_REGISTRY,
    ErrorCategory,
    ErrorCode,
    get_error,
    get_errors_by_category,
)

__all__ = [
    # Registry
    "ErrorCode",
    "ErrorCategory",
    "ERROR_REGISTRY",
    "get_error",
    "get_errors_by_category",
    # Domain exceptions
    "DomainError",
    "ValidationError",
    "ConflictError",
    "CredentialError",
    "NotFoundError",
    "ExternalServiceError",
    "AmbiguousResponseError",
]
