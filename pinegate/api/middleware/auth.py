"""Caller-scoped API-key auth for the PineGate HTTP API.

Two kinds of caller talk to PineGate:

- the storefront backend, which fires assign/revoke after a purchase or
  refund and reads grant status and seller catalogs for its pages;
- operators, who manage seller connections, trigger catalog syncs and
  jobs, and read assignment logs.

Each gets its own key (PINEGATE_STOREFRONT_API_KEY, PINEGATE_ADMIN_API_KEY)
sent in the X-API-Key header. The admin key opens every /api/* route; the
storefront key opens only the routes in _STOREFRONT_ROUTES. With neither
key configured the API is open, as for a local single-operator install.
"""

from __future__ import annotations

import hmac
import logging
import os
import re
import threading
import time
from enum import Enum

from fastapi import Request
from fastapi.responses import Response

from pinegate.api.responses import error_response

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"
STOREFRONT_KEY_ENV = "PINEGATE_STOREFRONT_API_KEY"
ADMIN_KEY_ENV = "PINEGATE_ADMIN_API_KEY"
_MIN_KEY_LENGTH = 32


class CallerRole(str, Enum):
    """Who an API key belongs to."""

    storefront = "storefront"
    admin = "admin"


def _route(method: str, template: str) -> tuple[str, re.Pattern]:
    segments = [
        "[^/]+" if part.startswith("{") else re.escape(part)
        for part in template.split("/")
    ]
    return method, re.compile("^" + "/".join(segments) + "/?$")


# Purchase-flow routes. Everything else under /api/ needs the admin key.
_STOREFRONT_ROUTES = (
    _route("POST", "/api/v1/grants/{grant_id}/assign"),
    _route("POST", "/api/v1/grants/{grant_id}/revoke"),
    _route("GET", "/api/v1/grants/{grant_id}/verify"),
    _route("GET", "/api/v1/grants/{grant_id}"),
    _route("GET", "/api/v1/catalog/{seller_id}"),
)

# Repeated bad keys from one address
_FAILURE_LIMIT = 10
_FAILURE_WINDOW_SECONDS = 300
_failures: dict[str, list[float]] = {}
_failures_lock = threading.Lock()


def configured_keys() -> dict[CallerRole, str]:
    """Keys set in the environment, by role. Empty means auth is off."""
    keys = {
        CallerRole.storefront: os.environ.get(STOREFRONT_KEY_ENV, "").strip(),
        CallerRole.admin: os.environ.get(ADMIN_KEY_ENV, "").strip(),
    }
    return {role: key for role, key in keys.items() if key}


def validate_api_keys() -> None:
    """Check key configuration at startup.

    Raises:
        ValueError: A key is shorter than 32 characters, or both roles
            were given the same key.
    """
    keys = configured_keys()
    env_names = {CallerRole.storefront: STOREFRONT_KEY_ENV, CallerRole.admin: ADMIN_KEY_ENV}
    for role, key in keys.items():
        if len(key) < _MIN_KEY_LENGTH:
            raise ValueError(
                f"{env_names[role]} is too short ({len(key)} chars). "
                f"Minimum length is {_MIN_KEY_LENGTH} characters."
            )
    if len(keys) == 2 and hmac.compare_digest(
        keys[CallerRole.storefront], keys[CallerRole.admin]
    ):
        raise ValueError(f"{STOREFRONT_KEY_ENV} and {ADMIN_KEY_ENV} must differ")


def identify_caller(provided: str, keys: dict[CallerRole, str]) -> CallerRole | None:
    """Role whose key matches, compared in constant time."""
    if not provided:
        return None
    for role, key in keys.items():
        if hmac.compare_digest(provided.encode(), key.encode()):
            return role
    return None


def required_role(method: str, path: str) -> CallerRole | None:
    """Least-privileged role allowed to call this route; None if public."""
    if not path.startswith("/api/"):
        return None
    for route_method, pattern in _STOREFRONT_ROUTES:
        if method == route_method and pattern.match(path):
            return CallerRole.storefront
    return CallerRole.admin


def is_allowed(caller: CallerRole, needed: CallerRole) -> bool:
    return caller == CallerRole.admin or caller == needed


def _client_address(request: Request) -> str:
    """Peer address; X-Forwarded-For only with PINEGATE_TRUST_PROXY set."""
    if os.environ.get("PINEGATE_TRUST_PROXY", "").strip().lower() in ("1", "true"):
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _too_many_failures(address: str) -> bool:
    with _failures_lock:
        now = time.monotonic()
        recent = [t for t in _failures.get(address, []) if now - t < _FAILURE_WINDOW_SECONDS]
        _failures[address] = recent
        return len(recent) >= _FAILURE_LIMIT


def _note_failure(address: str) -> None:
    with _failures_lock:
        _failures.setdefault(address, []).append(time.monotonic())


def reset_failure_counts() -> None:
    """Forget recorded key failures. Used by tests."""
    with _failures_lock:
        _failures.clear()


async def require_caller_key(request: Request, call_next) -> Response:
    """HTTP middleware: authenticate the caller and check the route's scope.

    The matched role is stored on ``request.state.api_caller`` (None when
    auth is off) for the route handlers' audit logging.
    """
    request.state.api_caller = None
    keys = configured_keys()
    needed = required_role(request.method.upper(), request.url.path)
    if request.method.upper() == "OPTIONS" or not keys or needed is None:
        return await call_next(request)

    address = _client_address(request)
    if _too_many_failures(address):
        logger.warning("Rejecting %s: too many bad API keys", address)
        return error_response(
            429, "RATE_LIMITED", "Too many authentication failures. Try again later."
        )

    caller = identify_caller(request.headers.get(API_KEY_HEADER, ""), keys)
    if caller is None:
        _note_failure(address)
        return error_response(401, "UNAUTHORIZED", "Invalid or missing API key")

    if not is_allowed(caller, needed):
        logger.warning(
            "%s key refused for %s %s", caller.value, request.method, request.url.path,
        )
        return error_response(
            403, "FORBIDDEN", f"The {caller.value} key cannot call this endpoint"
        )

    request.state.api_caller = caller.value
    return await call_next(request)
