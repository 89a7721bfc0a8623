"""URL and page helpers shared by the CLI and the browser session."""

from __future__ import annotations

import importlib.util
from urllib.parse import urlparse, urlunparse


def collapse_ws(value: object) -> str:
    return " ".join(str(value or "").split())


def normalize_url(raw: str) -> str:
    """Trim pasted punctuation and default bare ``host/path`` input to https."""
    text = raw.strip().rstrip(".,;:!?)]}\"'")
    if "://" not in text and "." in text.split("/", 1)[0]:
        text = f"https://{text}"
    return text


def is_valid_url(text: str) -> bool:
    try:
        parsed = urlparse(text)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def is_same_document(current_url: str, target_url: str) -> bool:
    """True when both URLs name the same document; the fragment is ignored.

    The query is part of the document identity.
    """
    try:
        current = urlparse(current_url)
        target = urlparse(target_url)
    except ValueError:
        return False
    if not current.scheme or not current.netloc:
        return False
    return _document_key(current) == _document_key(target)


def _document_key(parsed) -> str:
    return urlunparse(
        (parsed.scheme.lower(), parsed.netloc.lower(), parsed.path or "/", "", parsed.query, "")
    )


def playwright_available() -> bool:
    try:
        return importlib.util.find_spec("playwright.async_api") is not None
    except ModuleNotFoundError:
        return False


async def safe_page_title(page: object) -> str:
    title_attr = getattr(page, "title", None)
    if not callable(title_attr):
        return ""
    try:
        value = await title_attr()
    except Exception:
        return ""
    return str(value or "")
