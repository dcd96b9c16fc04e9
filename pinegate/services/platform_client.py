"""Synchronous HTTP client for the TradingView endpoints PineGate relies on.

TradingView publishes no API contract for any of this. Every request
carries the seller's cookie pair and a browser user agent, and every
request is bounded by the configured timeout. Transport failures and
non-2xx responses are raised as ExternalServiceError (retryable); what a
2xx body *means* is left to the callers, which own the interpretation.

Usage:
    with TradingViewClient(cookies, config.platform) as tv:
        hints = tv.username_hints("trader1")
        resp = tv.add_access("PUB;abc", "trader1", expiration=None)
"""

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any
from urllib.parse import quote

import httpx

from pinegate.config import PlatformConfig
from pinegate.errors import ExternalServiceError
from pinegate.services.platform_types import SessionCookies

logger = logging.getLogger(__name__)

# Response bodies are kept in grant details for diagnostics; cap their size.
_MAX_BODY_CHARS = 4000


@dataclass
class PlatformResponse:
    """A 2xx response from TradingView.

    Attributes:
        status_code: HTTP status.
        text: Raw body (truncated for storage).
        data: Parsed JSON body, or None when the body is not JSON.
    """

    status_code: int
    text: str
    data: Any = None

    @property
    def is_json(self) -> bool:
        return self.data is not None

    def to_details(self) -> dict:
        """Diagnostic form stored in grant details and log entries."""
        return {
            "status_code": self.status_code,
            "body": self.data if self.is_json else self.text[:_MAX_BODY_CHARS],
        }


def format_expiration(expires_at: datetime) -> str:
    """Format an expiry the way the pine_perm endpoints expect it."""
    return expires_at.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%S.000Z")


def _parse_json(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError):
        return None


class TradingViewClient:
    """Authenticated TradingView session for one seller.

    Args:
        cookies: Decrypted session cookie pair.
        config: Platform settings (base URL, timeout, user agent).
        http_client: Optional pre-built httpx.Client (tests inject a fake
            transport here). When given, the caller owns its lifecycle.
    """

    def __init__(
        self,
        cookies: SessionCookies,
        config: PlatformConfig | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._config = config or PlatformConfig()
        self._base_url = self._config.base_url.rstrip("/")
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(
            timeout=self._config.timeout_seconds,
            follow_redirects=True,
        )
        self._headers = {
            "User-Agent": self._config.user_agent,
            "Cookie": "; ".join(f"{k}={v}" for k, v in cookies.as_cookies().items()),
        }

    def __repr__(self) -> str:
        return f"<TradingViewClient(base_url={self._base_url!r})>"

    def __enter__(self) -> "TradingViewClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._owns_client:
            self._client.close()

    def _send(
        self,
        method: str,
        path: str,
        operation: str,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> httpx.Response:
        """Issue one request; raise ExternalServiceError on transport or HTTP failure."""
        url = f"{self._base_url}{path}"
        merged = {**self._headers, **(headers or {})}
        try:
            response = self._client.request(
                method, url, headers=merged,
                timeout=self._config.timeout_seconds, **kwargs,
            )
        except httpx.TimeoutException as e:
            logger.warning("TradingView %s timed out: %s", operation, type(e).__name__)
            raise ExternalServiceError(
                f"TradingView {operation} timed out after {self._config.timeout_seconds}s",
                code="E-4002",
            ) from e
        except httpx.HTTPError as e:
            logger.warning("TradingView %s failed: %s", operation, type(e).__name__)
            raise ExternalServiceError(
                f"TradingView {operation} failed: {type(e).__name__}",
                code="E-4001",
            ) from e

        logger.debug("TradingView %s -> HTTP %d", operation, response.status_code)
        if response.status_code >= 400:
            raise ExternalServiceError(
                f"TradingView {operation} returned HTTP {response.status_code}",
                code="E-4001",
                status_code=response.status_code,
                details={"body": response.text[:500]},
            )
        return response

    def _request(
        self,
        method: str,
        path: str,
        operation: str,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> PlatformResponse:
        """Like _send, but wrap the body for interpretation and storage."""
        response = self._send(method, path, operation, headers=headers, **kwargs)
        text = response.text
        return PlatformResponse(
            status_code=response.status_code,
            text=text[:_MAX_BODY_CHARS],
            data=_parse_json(text),
        )

    # --- Read endpoints ---

    def username_hints(self, query: str) -> list[dict]:
        """Search TradingView usernames starting with query.

        Returns:
            List of candidate dicts (each with at least 'username').

        Raises:
            ExternalServiceError: On HTTP failure or a non-list body.
        """
        resp = self._request(
            "GET", "/username_hint/", "username search", params={"s": query},
        )
        if not isinstance(resp.data, list):
            raise ExternalServiceError(
                "TradingView username search returned an unexpected response",
                code="E-4003",
                details=resp.to_details(),
            )
        return [item for item in resp.data if isinstance(item, dict)]

    def fetch_profile_page(self, username: str) -> str:
        """Fetch a user's public profile page HTML (full body, for id discovery)."""
        return self._send("GET", f"/u/{quote(username)}/", "profile page fetch").text

    def fetch_script_listing(self, user_id: int) -> str:
        """Fetch the published-script listing for a numeric user id.

        Returns the raw body: either a JSON document or an HTML page with
        embedded JSON blocks, depending on what TradingView serves.
        """
        return self._send(
            "GET", f"/api/v1/user/{user_id}/scripts/", "script listing",
            headers={"Accept": "application/json, text/html;q=0.9"},
            params={"sort": "recent"},
        ).text

    def fetch_settings_page(self, username: str | None) -> str:
        """Fetch a page that only renders the authenticated marker for a live session."""
        if username:
            return self._send(
                "GET", f"/u/{quote(username)}/", "settings page",
                params={"tab": "settings-profile"},
            ).text
        return self._send("GET", "/chart/", "settings page").text

    def list_access(self, script_id: str, username: str | None = None) -> PlatformResponse:
        """List users with access to a script (optionally filtered by username)."""
        form: dict[str, tuple[None, str]] = {"pine_id": (None, script_id)}
        if username:
            form["username"] = (None, username)
        return self._request(
            "POST", "/pine_perm/list_users/", "access list",
            params={"limit": 30, "order_by": "-created"},
            headers={"Referer": f"{self._base_url}/", "X-Requested-With": "XMLHttpRequest"},
            files=form,
        )

    # --- Write endpoints ---

    def add_access(
        self, script_id: str, username: str, expiration: datetime | None = None,
    ) -> PlatformResponse:
        """Grant a user access to an invite-only script.

        Sent as multipart form data: pine_id, username_recip and, for
        time-limited grants, expiration.
        """
        form: dict[str, tuple[None, str]] = {
            "pine_id": (None, script_id),
            "username_recip": (None, username),
        }
        if expiration is not None:
            form["expiration"] = (None, format_expiration(expiration))
        return self._request(
            "POST", "/pine_perm/add/", "access add",
            headers={
                "Referer": f"{self._base_url}/script/{quote(script_id, safe='')}/",
                "X-Requested-With": "XMLHttpRequest",
            },
            files=form,
        )

    def remove_access(self, script_id: str, username: str) -> PlatformResponse:
        """Remove a user's access to a script. Same form shape as add_access."""
        return self._request(
            "POST", "/pine_perm/remove/", "access remove",
            headers={
                "Referer": f"{self._base_url}/",
                "X-Requested-With": "XMLHttpRequest",
            },
            files={
                "pine_id": (None, script_id),
                "username_recip": (None, username),
            },
        )
