"""Typed domain exceptions for grant, catalog and connection flows.

Every exception carries a registry code (E-XXXX) so the orchestration
boundary can persist it and the API layer can map it to an HTTP status
without matching on message strings.

Usage:
    # In service layer
    raise NotFoundError(f'TradingView username "{username}" not found', code="E-3001")

    # At the orchestration boundary
    except DomainError as e:
        grant.error_message = e.message
"""

from pinegate.errors.registry import get_error


class DomainError(Exception):
    """Base exception for all domain errors.

    Attributes:
        message: Human-readable message, safe to show sellers and admins.
        code: Registry code in E-XXXX format.
        details: Extra structured context for diagnostics.
    """

    default_code = "E-5001"
    http_status = 500

    def __init__(
        self, message: str, code: str | None = None, details: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}

    @property
    def is_retryable(self) -> bool:
        """Whether retrying without changing anything can succeed."""
        error_def = get_error(self.code)
        return bool(error_def and error_def.is_retryable)

    @property
    def remediation(self) -> str:
        """Remediation text from the registry, or empty string."""
        error_def = get_error(self.code)
        return error_def.remediation if error_def else ""

    def to_dict(self) -> dict:
        """Structured representation used in API failures and grant details."""
        return {
            "error": self.message,
            "code": self.code,
            "type": type(self).__name__,
            "retryable": self.is_retryable,
        }


class ValidationError(DomainError):
    """Missing or malformed input. Not retried; the caller must fix input. Maps to HTTP 400."""

    default_code = "E-1001"
    http_status = 400


class ConflictError(DomainError):
    """Concurrent attempt on the same grant. Maps to HTTP 409."""

    default_code = "E-1005"
    http_status = 409


class CredentialError(DomainError):
    """Seller not connected or session undecryptable. Maps to HTTP 400.

    Not retried automatically; the seller has to re-authenticate.
    """

    default_code = "E-2001"
    http_status = 400


class NotFoundError(DomainError):
    """Buyer username or script identifier unknown. Maps to HTTP 404.

    Retryable only after the underlying fact changes.
    """

    default_code = "E-3003"
    http_status = 404


class ExternalServiceError(DomainError):
    """Non-success HTTP or unusable response from TradingView. Maps to HTTP 502.

    Transient; a later retry can succeed.

    Attributes:
        status_code: HTTP status returned by TradingView, if any.
    """

    default_code = "E-4001"
    http_status = 502

    def __init__(
        self, message: str, code: str | None = None, details: dict | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message, code=code, details=details)
        self.status_code = status_code


class AmbiguousResponseError(DomainError):
    """TradingView answered with a shape we do not recognize.

    Never surfaced as a failure: the orchestrator records it as a flag on an
    otherwise successful grant so it can be audited later.
    """

    default_code = "E-4004"
    http_status = 200
