"""Scriptable TradingView stand-in for tests.

Routes requests by path through an httpx.MockTransport, so the real
TradingViewClient code (headers, multipart forms, error mapping) runs
unchanged. Each endpoint's reply can be replaced per test, and every
request is recorded for assertions.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any

import httpx

ANONYMOUS_PAGE = (
    '<html lang="en" class="theme-light is-not-authenticated">'
    "<head><title>TradingView — Track All Markets</title></head>"
    "<body></body></html>"
)


def authenticated_page(username: str = "seller1") -> str:
    """Settings page HTML as rendered for a logged-in session."""
    return (
        '<html lang="en" class="theme-dark is-authenticated is-pro">'
        f"<head><title>{username} — Trading Ideas and Scripts — TradingView</title>"
        f'<meta name="description" content="View {username}\'s trading ideas"></head>'
        "<body><div id=\"settings\"></div></body></html>"
    )


def profile_page(username: str = "seller1", user_id: int = 4242) -> str:
    """Public profile page HTML with the user object embedded in page data."""
    return (
        "<html><head><title>Profile</title></head><body>"
        "<script>window.initData = {"
        f'"user": {{"id": {user_id}, "username": "{username}", "is_pro": true}},'
        '"viewer": {"id": 1, "username": "someone_else"}'
        "};</script></body></html>"
    )


def json_listing(*items: dict) -> str:
    return json.dumps({"count": len(items), "results": list(items)})


@dataclass
class FakeTradingView:
    """In-process TradingView.

    Attributes are (status_code, body) pairs; a dict/list body is sent as
    JSON, a str body as text. Put an exception in ``errors[path]`` to make
    the transport raise it for that path.
    """

    hints: list[dict] = field(default_factory=lambda: [{"username": "trader1"}])
    add_reply: tuple[int, Any] = (200, {"status": "ok"})
    remove_reply: tuple[int, Any] = (200, {"status": "ok"})
    list_users_reply: tuple[int, Any] = (
        200, {"results": [{"id": 1, "username": "trader1", "expiration": None}]}
    )
    settings_reply: tuple[int, Any] = (200, authenticated_page())
    profile_reply: tuple[int, Any] = (200, profile_page())
    listing_reply: tuple[int, Any] = (200, json_listing())
    errors: dict[str, Exception] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)

    def client(self) -> httpx.Client:
        """httpx.Client wired to this fake."""
        return httpx.Client(transport=httpx.MockTransport(self.handle))

    def calls(self, path: str) -> list[httpx.Request]:
        """Recorded requests for an exact path."""
        return [r for r in self.requests if r.url.path == path]

    def handle(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        path = request.url.path

        if path in self.errors:
            raise self.errors[path]

        if path == "/username_hint/":
            return self._reply((200, self.hints))
        if path == "/pine_perm/add/":
            return self._reply(self.add_reply)
        if path == "/pine_perm/remove/":
            return self._reply(self.remove_reply)
        if path == "/pine_perm/list_users/":
            return self._reply(self.list_users_reply)
        if path == "/chart/":
            return self._reply(self.settings_reply)
        if re.fullmatch(r"/api/v1/user/\d+/scripts/", path):
            return self._reply(self.listing_reply)
        if re.fullmatch(r"/u/[^/]+/", path):
            if request.url.params.get("tab") == "settings-profile":
                return self._reply(self.settings_reply)
            return self._reply(self.profile_reply)
        return httpx.Response(404, text="not found")

    @staticmethod
    def _reply(reply: tuple[int, Any]) -> httpx.Response:
        status, body = reply
        if isinstance(body, (dict, list)):
            return httpx.Response(status, json=body)
        return httpx.Response(status, text=body)
