"""Test helpers: a scriptable TradingView stand-in and row factories."""

from tests.helpers.factories import (
    NOW,
    TEST_VAULT_KEY,
    make_catalog_entry,
    make_connection,
    make_grant,
    make_program,
)
from tests.helpers.fake_tradingview import (
    ANONYMOUS_PAGE,
    FakeTradingView,
    authenticated_page,
    json_listing,
    profile_page,
)

__all__ = [
    "NOW",
    "TEST_VAULT_KEY",
    "ANONYMOUS_PAGE",
    "FakeTradingView",
    "authenticated_page",
    "json_listing",
    "profile_page",
    "make_catalog_entry",
    "make_connection",
    "make_grant",
    "make_program",
]
