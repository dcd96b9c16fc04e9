"""Error envelopes shared by the route modules.

Every route returns ``{"error": {"code", "message"}}`` on failure and never
lets an exception reach FastAPI's default 500 handler.
"""

import logging

from starlette.responses import JSONResponse

from pinegate.errors import DomainError
from pinegate.utils.redaction import sanitize_error_message

logger = logging.getLogger(__name__)

# Status by code prefix, for orchestrator results that carry only a code.
_STATUS_BY_PREFIX = {
    "E-1": 400,
    "E-2": 400,
    "E-3": 404,
    "E-4": 502,
    "E-5": 500,
}


def status_for_code(code: str | None) -> int:
    """HTTP status for a registry code."""
    if code == "E-1005":
        return 409
    if not code:
        return 500
    return _STATUS_BY_PREFIX.get(code[:3], 500)


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


def domain_error(e: DomainError) -> JSONResponse:
    """Structured response for a typed domain error."""
    return error_response(e.http_status, e.code, e.message)


def internal_error(e: Exception, operation: str) -> JSONResponse:
    """Build a structured 500 response and log the full traceback.

    Args:
        e: The exception that was raised.
        operation: Human-readable operation name for the log message.
    """
    logger.error(
        "Unexpected error during %s: %s: %s",
        operation, type(e).__name__, e,
        exc_info=True,
    )
    return error_response(500, "INTERNAL_ERROR", sanitize_error_message(str(e)))
