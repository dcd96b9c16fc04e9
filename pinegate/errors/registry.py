"""Error code registry with E-XXXX format codes.

Categories:
- E-1xxx: Input validation errors
- E-2xxx: Seller credential errors
- E-3xxx: Lookup errors (buyer username, script identifier)
- E-4xxx: TradingView / external service errors
- E-5xxx: System/internal errors

Each error includes a code, title, message template, and remediation steps.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCategory(str, Enum):
    """Categories for error codes."""

    VALIDATION = "validation"  # E-1xxx
    CREDENTIAL = "credential"  # E-2xxx
    NOT_FOUND = "not_found"  # E-3xxx
    EXTERNAL = "external"  # E-4xxx
    SYSTEM = "system"  # E-5xxx


@dataclass
class ErrorCode:
    """Definition of an error code with metadata.

    Attributes:
        code: Error code in E-XXXX format.
        category: Error category for grouping.
        title: Short title for display.
        message_template: Message with {placeholders} for context.
        remediation: Action the seller or admin should take to resolve.
        is_retryable: Whether a plain retry can succeed without anyone changing anything.
    """

    code: str
    category: ErrorCategory
    title: str
    message_template: str
    remediation: str
    is_retryable: bool = False


ERROR_REGISTRY: dict[str, ErrorCode] = {
    # Validation errors (E-1xxx)
    "E-1001": ErrorCode(
        code="E-1001",
        category=ErrorCategory.VALIDATION,
        title="Missing Parameters",
        message_template="Missing required parameters: {fields}.",
        remediation="Supply the missing parameters and call again.",
    ),
    "E-1002": ErrorCode(
        code="E-1002",
        category=ErrorCategory.VALIDATION,
        title="Invalid Script Identifier",
        message_template="Script identifier '{script_id}' is not a valid TradingView script id.",
        remediation="Re-sync the seller catalog and check the program's script mapping.",
    ),
    "E-1003": ErrorCode(
        code="E-1003",
        category=ErrorCategory.VALIDATION,
        title="Invalid Access Type",
        message_template="{message}",
        remediation="Use full_purchase, trial (with trial_duration_days) or subscription (with an expiry).",
    ),
    "E-1004": ErrorCode(
        code="E-1004",
        category=ErrorCategory.VALIDATION,
        title="Grant Mismatch",
        message_template="{message}",
        remediation="Call with the identifiers stored on the grant.",
    ),
    "E-1005": ErrorCode(
        code="E-1005",
        category=ErrorCategory.VALIDATION,
        title="Attempt In Progress",
        message_template="Another attempt for grant {grant_id} is already in progress.",
        remediation="Wait for the running attempt to finish, then retry if it failed.",
        is_retryable=True,
    ),
    # Credential errors (E-2xxx)
    "E-2001": ErrorCode(
        code="E-2001",
        category=ErrorCategory.CREDENTIAL,
        title="Seller Not Connected",
        message_template="{message}",
        remediation="The seller must reconnect their TradingView account in settings.",
    ),
    "E-2002": ErrorCode(
        code="E-2002",
        category=ErrorCategory.CREDENTIAL,
        title="Credential Decryption Failed",
        message_template="{message}",
        remediation="The vault key may have changed. The seller must re-enter their session cookies.",
    ),
    "E-2003": ErrorCode(
        code="E-2003",
        category=ErrorCategory.CREDENTIAL,
        title="Session Rejected",
        message_template="{message}",
        remediation="Copy fresh sessionid and sessionid_sign cookies from a logged-in browser.",
    ),
    "E-2004": ErrorCode(
        code="E-2004",
        category=ErrorCategory.CREDENTIAL,
        title="Username Mismatch",
        message_template="The provided cookies belong to '{found}', not '{expected}'.",
        remediation="Make sure the username and cookies come from the same TradingView account.",
    ),
    "E-2005": ErrorCode(
        code="E-2005",
        category=ErrorCategory.CREDENTIAL,
        title="Account Already Connected",
        message_template="TradingView account '{username}' is already connected to another seller.",
        remediation="Disconnect the account from the other seller first.",
    ),
    # Lookup errors (E-3xxx)
    "E-3001": ErrorCode(
        code="E-3001",
        category=ErrorCategory.NOT_FOUND,
        title="Username Not Found",
        message_template="{message}",
        remediation="Ask the buyer to double-check their TradingView username, then retry.",
    ),
    "E-3002": ErrorCode(
        code="E-3002",
        category=ErrorCategory.NOT_FOUND,
        title="Script Not Found",
        message_template="{message}",
        remediation="Sync the seller catalog so the script is known, then retry.",
    ),
    "E-3003": ErrorCode(
        code="E-3003",
        category=ErrorCategory.NOT_FOUND,
        title="Record Not Found",
        message_template="{message}",
        remediation="Check the identifier.",
    ),
    # External service errors (E-4xxx)
    "E-4001": ErrorCode(
        code="E-4001",
        category=ErrorCategory.EXTERNAL,
        title="TradingView Request Failed",
        message_template="{message}",
        remediation="TradingView rejected or did not answer the request. Retry later.",
        is_retryable=True,
    ),
    "E-4002": ErrorCode(
        code="E-4002",
        category=ErrorCategory.EXTERNAL,
        title="TradingView Timeout",
        message_template="{message}",
        remediation="TradingView did not answer in time. Retry later.",
        is_retryable=True,
    ),
    "E-4003": ErrorCode(
        code="E-4003",
        category=ErrorCategory.EXTERNAL,
        title="Unexpected TradingView Response",
        message_template="{message}",
        remediation="TradingView page structure may have changed. Check the assignment logs.",
        is_retryable=True,
    ),
    "E-4004": ErrorCode(
        code="E-4004",
        category=ErrorCategory.EXTERNAL,
        title="Ambiguous TradingView Response",
        message_template="{message}",
        remediation="Confirm access manually on TradingView.",
    ),
    # System errors (E-5xxx)
    "E-5001": ErrorCode(
        code="E-5001",
        category=ErrorCategory.SYSTEM,
        title="Internal Error",
        message_template="{message}",
        remediation="Contact support with the grant id.",
    ),
}


def get_error(code: str) -> ErrorCode | None:
    """Look up an error code definition.

    Args:
        code: Error code in E-XXXX format.

    Returns:
        ErrorCode if registered, None otherwise.
    """
    return ERROR_REGISTRY.get(code)


def get_errors_by_category(category: ErrorCategory) -> list[ErrorCode]:
    """Return all registered errors in a category."""
    return [e for e in ERROR_REGISTRY.values() if e.category == category]
