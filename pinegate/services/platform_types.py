"""Shared types and constants for TradingView integration.

Neutral module with no DB or service-layer imports. Used by the vault,
the platform client, the catalog parser and the grant orchestrator.
"""

import re
from dataclasses import dataclass, field

# --- Shared Constants ---

# Externally-addressable script id as accepted by the pine_perm endpoints.
SCRIPT_ID_PATTERN = re.compile(r"^PUB;[A-Za-z0-9]+$")

# Cookie names TradingView uses for an authenticated session.
SESSION_COOKIE = "sessionid"
SIGNED_SESSION_COOKIE = "sessionid_sign"

# Class on <html> that TradingView only renders for a logged-in session.
AUTHENTICATED_MARKER = "is-authenticated"


def is_valid_script_id(value: str | None) -> bool:
    """Return True when value is in the PUB;... form the access endpoints accept."""
    return bool(value) and bool(SCRIPT_ID_PATTERN.match(value))


# --- Dataclasses ---


@dataclass(frozen=True)
class SessionCookies:
    """Decrypted TradingView session cookie pair.

    Never persisted in this form; repr hides the values so an accidental
    log line cannot leak them.
    """

    session: str = field(repr=False)
    signed_session: str = field(repr=False)

    def as_cookies(self) -> dict[str, str]:
        """Cookie mapping for outbound requests."""
        return {SESSION_COOKIE: self.session, SIGNED_SESSION_COOKIE: self.signed_session}


@dataclass
class ScriptRecord:
    """One script normalized out of a TradingView listing response.

    Produced by the catalog parser regardless of which response shape
    (JSON API or HTML-embedded JSON) it came from.
    """

    script_id: str
    title: str
    publication_url: str | None = None
    image_url: str | None = None
    likes: int = 0
    reviews_count: int = 0
    private_id: str | None = None

    def to_dict(self) -> dict:
        """Plain dict for API responses."""
        return {
            "script_id": self.script_id,
            "title": self.title,
            "publication_url": self.publication_url,
            "image_url": self.image_url,
            "likes": self.likes,
            "reviews_count": self.reviews_count,
            "pine_id": self.private_id,
        }
