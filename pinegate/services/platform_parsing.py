"""Normalization boundary for everything scraped off TradingView.

TradingView changes its markup without notice. All knowledge of page and
response shapes lives in this module so a breakage is fixed in one place:

- numeric user id discovery from profile page HTML
- script listings, served either as a JSON document or as HTML with
  embedded ``<script type="application/json">`` blocks
- the authenticated-session marker and username on settings pages

Anything that cannot be parsed raises ExternalServiceError (E-4003), which
callers treat as retryable.
"""

import json
import logging
import re
from typing import Any, Iterator

from bs4 import BeautifulSoup

from pinegate.errors import ExternalServiceError
from pinegate.services.platform_types import AUTHENTICATED_MARKER, ScriptRecord

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://www.tradingview.com"

_SCRIPT_PATH_PATTERN = re.compile(r"/script/([^/?#]+)")

# Legacy markup put the id straight on the page.
_LEGACY_USER_ID_PATTERNS = (
    re.compile(r'"user_id"\s*:\s*(\d+)'),
    re.compile(r'data-user-id="(\d+)"'),
)
_ID_PATTERN = re.compile(r'"id"\s*:\s*(\d+)')
_USER_ID_WINDOW = 2000

_TITLE_KEYS = ("name", "title", "script_name")
_URL_KEYS = ("chart_url", "publication_url", "url", "link")
_IMAGE_KEYS = ("image_url", "chart_image", "image")
_LIKES_KEYS = ("likes_count", "likes", "agree_count")
_REVIEWS_KEYS = ("comments_count", "reviews_count", "comments")
_PRIVATE_ID_KEYS = ("pine_id", "private_id", "scriptIdPart", "script_id", "id")

# Keys that commonly hold the list of publications in either shape.
_LIST_KEYS = ("results", "scripts", "publications", "items", "data", "public_scripts")

_TITLE_USERNAME_PATTERNS = (
    re.compile(r"^([^—]+?)\s*—\s*Trading Ideas and Scripts"),
    re.compile(r"^([^—]+?)\s*—\s*TradingView"),
    re.compile(r"Trader\s+([^—\s]+)"),
)
_META_USERNAME_PATTERN = re.compile(r"View\s+([^'\s]+)'?s?\s+trading", re.IGNORECASE)


# --- Profile page: numeric user id ---


def _find_user_object_id(obj: Any, wanted: str, depth: int = 0) -> int | None:
    if depth > 8:
        return None
    if isinstance(obj, dict):
        username = obj.get("username")
        user_id = obj.get("id")
        if (
            isinstance(username, str)
            and username.lower() == wanted
            and isinstance(user_id, int)
            and not isinstance(user_id, bool)
        ):
            return user_id
        children = obj.values()
    elif isinstance(obj, list):
        children = obj
    else:
        return None
    for child in children:
        found = _find_user_object_id(child, wanted, depth + 1)
        if found is not None:
            return found
    return None


def _nearest_id_in_window(html: str, username: str) -> int | None:
    anchor = re.compile(r'"username"\s*:\s*"' + re.escape(username) + r'"', re.IGNORECASE)
    for match in anchor.finditer(html):
        start = max(0, match.start() - _USER_ID_WINDOW)
        window = html[start:match.end() + _USER_ID_WINDOW]
        anchor_start = match.start() - start
        anchor_end = match.end() - start
        candidates = [
            (anchor_start - m.end() if m.end() <= anchor_start else m.start() - anchor_end,
             int(m.group(1)))
            for m in _ID_PATTERN.finditer(window)
        ]
        if candidates:
            return min(candidates)[1]
    return None


def extract_user_id(html: str, username: str) -> int | None:
    """Find a user's numeric id in profile page HTML.

    Tried in order: the parsed JSON object whose ``username`` matches
    (whole body or embedded ``application/json`` blocks), the ``"id"``
    nearest to ``"username": "<name>"`` in the raw text, then legacy
    ``"user_id"`` / ``data-user-id`` markup.

    Returns:
        The id, or None when nothing matches.
    """
    wanted = username.lower()
    try:
        documents = [json.loads(html)]
    except json.JSONDecodeError:
        documents = _embedded_json_blocks(html)
    for document in documents:
        user_id = _find_user_object_id(document, wanted)
        if user_id is not None:
            return user_id

    user_id = _nearest_id_in_window(html, username)
    if user_id is not None:
        return user_id

    for pattern in _LEGACY_USER_ID_PATTERNS:
        match = pattern.search(html)
        if match:
            logger.info("User id for %s found via legacy pattern", username)
            return int(match.group(1))
    return None


# --- Script listings ---


def derive_script_id(publication_url: str | None, private_id: str | None) -> str | None:
    """Path segment after /script/ in the publication URL, else the private id."""
    if publication_url:
        match = _SCRIPT_PATH_PATTERN.search(publication_url)
        if match:
            return match.group(1)
    return private_id or None


def _first(item: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = item.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _absolute_url(url: str | None, base_url: str) -> str | None:
    if not url:
        return None
    if url.startswith("//"):
        return f"https:{url}"
    if url.startswith("/"):
        return f"{base_url.rstrip('/')}{url}"
    return url


def _image_url(item: dict) -> str | None:
    image = _first(item, _IMAGE_KEYS)
    if isinstance(image, dict):
        image = image.get("big") or image.get("middle") or image.get("url")
    return image if isinstance(image, str) else None


def _looks_like_script(item: Any) -> bool:
    return (
        isinstance(item, dict)
        and _first(item, _TITLE_KEYS) is not None
        and (_first(item, _URL_KEYS) is not None or _first(item, _PRIVATE_ID_KEYS) is not None)
    )


def _iter_script_items(obj: Any, depth: int = 0) -> Iterator[dict]:
    """Yield script-like dicts from the first list that contains them."""
    if depth > 6:
        return
    if isinstance(obj, list):
        items = [item for item in obj if _looks_like_script(item)]
        if items:
            yield from items
            return
        for item in obj:
            yield from _iter_script_items(item, depth + 1)
    elif isinstance(obj, dict):
        for key in _LIST_KEYS:
            if key in obj:
                found = list(_iter_script_items(obj[key], depth + 1))
                if found:
                    yield from found
                    return
        for value in obj.values():
            if isinstance(value, (dict, list)):
                found = list(_iter_script_items(value, depth + 1))
                if found:
                    yield from found
                    return


def normalize_script_item(item: dict, base_url: str = DEFAULT_BASE_URL) -> ScriptRecord | None:
    """Turn one raw listing item into a ScriptRecord, or None if unusable."""
    title = _first(item, _TITLE_KEYS)
    publication_url = _absolute_url(_first(item, _URL_KEYS), base_url)
    private_id = _first(item, _PRIVATE_ID_KEYS)
    private_id = str(private_id) if private_id is not None else None

    script_id = derive_script_id(publication_url, private_id)
    if not script_id or not title:
        return None

    return ScriptRecord(
        script_id=script_id,
        title=str(title).strip(),
        publication_url=publication_url,
        image_url=_absolute_url(_image_url(item), base_url),
        likes=_as_int(_first(item, _LIKES_KEYS)),
        reviews_count=_as_int(_first(item, _REVIEWS_KEYS)),
        private_id=private_id,
    )


def _embedded_json_blocks(html: str) -> list[Any]:
    soup = BeautifulSoup(html, "html.parser")
    blocks = []
    for tag in soup.find_all("script", attrs={"type": "application/json"}):
        raw = tag.string or tag.get_text()
        if not raw or not raw.strip():
            continue
        try:
            blocks.append(json.loads(raw))
        except json.JSONDecodeError:
            logger.debug("Skipping unparseable embedded JSON block id=%s", tag.get("id"))
    return blocks


def parse_script_listing(body: str, base_url: str = DEFAULT_BASE_URL) -> list[ScriptRecord]:
    """Parse a script listing response in either supported shape.

    Args:
        body: Raw response body (JSON document or HTML page).
        base_url: Used to absolutize relative publication/image URLs.

    Returns:
        Normalized records, de-duplicated by script id. Empty when the
        response parsed but lists no scripts.

    Raises:
        ExternalServiceError: If the body is neither JSON nor HTML with at
            least one parseable embedded JSON block.
    """
    try:
        documents = [json.loads(body)]
    except (json.JSONDecodeError, TypeError, ValueError):
        documents = _embedded_json_blocks(body or "")
        if not documents:
            raise ExternalServiceError(
                "Could not find script data in the TradingView listing response. "
                "The page structure may have changed.",
                code="E-4003",
                details={"body_sample": (body or "")[:500]},
            )

    records: dict[str, ScriptRecord] = {}
    for document in documents:
        for item in _iter_script_items(document):
            record = normalize_script_item(item, base_url)
            if record is None:
                logger.debug("Skipping listing item without title or identifier")
                continue
            records.setdefault(record.script_id, record)
    return list(records.values())


# --- Settings page: session health ---


def is_authenticated_page(html: str) -> bool:
    """True when the <html> element carries the authenticated-session class."""
    soup = BeautifulSoup(html or "", "html.parser")
    root = soup.find("html")
    if root is None:
        return False
    classes = root.get("class") or []
    return AUTHENTICATED_MARKER in classes


def extract_page_username(html: str) -> str | None:
    """Best-effort username of the logged-in profile page.

    Tries the <title> formats TradingView has used, then the meta description.
    """
    soup = BeautifulSoup(html or "", "html.parser")
    title_tag = soup.find("title")
    title = title_tag.get_text().strip() if title_tag else ""
    if title:
        for pattern in _TITLE_USERNAME_PATTERNS:
            match = pattern.search(title)
            if match and match.group(1).strip():
                return match.group(1).strip()

    meta = soup.find("meta", attrs={"name": "description"})
    content = meta.get("content") if meta else None
    if content:
        match = _META_USERNAME_PATTERN.search(content)
        if match:
            return match.group(1)
    return None

