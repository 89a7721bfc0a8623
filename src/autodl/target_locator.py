"""Download-control lookup over the live surface."""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from autodl.constants import (
    CLICKABLE_SELECTOR,
    DOWNLOAD_ATTR_SELECTOR,
    DOWNLOAD_TEXT_PATTERN,
    FILE_HREF_PATTERN,
    FILE_LINK_SELECTOR,
    SPECIFIC_SELECTORS,
    TEST_ID_PATTERN,
)
from autodl.diagnostics import RunLog
from autodl.models import Candidate, ElementFacts
from autodl.web_surface import Surface


@dataclass(frozen=True)
class LocatorRules:
    specific_selectors: tuple[str, ...] = SPECIFIC_SELECTORS
    clickable_selector: str = CLICKABLE_SELECTOR
    download_attr_selector: str = DOWNLOAD_ATTR_SELECTOR
    file_link_selector: str = FILE_LINK_SELECTOR
    download_text_re: re.Pattern[str] = field(
        default_factory=lambda: re.compile(DOWNLOAD_TEXT_PATTERN, re.IGNORECASE)
    )
    file_href_re: re.Pattern[str] = field(
        default_factory=lambda: re.compile(FILE_HREF_PATTERN, re.IGNORECASE)
    )
    test_id_re: re.Pattern[str] = field(
        default_factory=lambda: re.compile(TEST_ID_PATTERN, re.IGNORECASE)
    )


def is_visible(el: ElementFacts) -> bool:
    if not el.style_error:
        if el.display == "none" or el.visibility == "hidden":
            return False
        if _parse_opacity(el.opacity) == 0.0:
            return False
    if el.rect_count <= 0:
        return False
    if el.width == 0 or el.height == 0:
        return False
    if not (el.bottom >= 0 and el.top <= el.viewport_height):
        return False
    if el.aria_hidden_ancestor:
        return False
    return True


def is_interactable(el: ElementFacts) -> bool:
    return not el.disabled


def is_visible_and_interactable(el: ElementFacts) -> bool:
    return is_interactable(el) and is_visible(el)


def looks_like_download(el: ElementFacts, rules: LocatorRules) -> bool:
    text = f"{el.text} {el.aria_label} {el.title}".strip()
    if rules.download_text_re.search(text):
        return True
    if el.href and rules.file_href_re.search(el.href):
        return True
    if el.has_download_attr:
        return True
    if el.test_id and rules.test_id_re.search(el.test_id):
        return True
    return False


def _parse_opacity(raw: str) -> float | None:
    # Unset opacity means fully opaque.
    value = (raw or "1").strip()
    match = re.match(r"[+-]?(\d+\.?\d*|\.\d+)", value)
    if match is None:
        return None
    return float(match.group(0))


class TargetLocator:
    """Returns at most one download control; tier order is fixed."""

    def __init__(self, surface: Surface, rules: LocatorRules | None = None, *, log: RunLog | None = None) -> None:
        self.surface = surface
        self.rules = rules or LocatorRules()
        self.log = log or RunLog()

    async def locate(self) -> Candidate | None:
        found = await self._specific_selector_match()
        if found is not None:
            return found
        found = await self._clickable_scan_match()
        if found is not None:
            return found
        return await self._fallback_match()

    async def _specific_selector_match(self) -> Candidate | None:
        for selector in self.rules.specific_selectors:
            try:
                node = await self.surface.query_first(selector)
            except Exception:
                continue
            if node is None:
                continue
            if is_visible_and_interactable(node) and looks_like_download(node, self.rules):
                self.log.debug(f"Found via specific selector: {selector} {node.describe()}")
                return Candidate(element=node, tier=1, source=selector)
        return None

    async def _clickable_scan_match(self) -> Candidate | None:
        try:
            nodes = await self.surface.query_all(self.rules.clickable_selector)
        except Exception:
            return None
        for node in nodes:
            if looks_like_download(node, self.rules) and is_visible_and_interactable(node):
                self.log.debug(f"Found via scanning candidate: {node.describe()}")
                return Candidate(element=node, tier=2, source=self.rules.clickable_selector)
        return None

    async def _fallback_match(self) -> Candidate | None:
        try:
            node = await self.surface.query_first(self.rules.download_attr_selector)
        except Exception:
            node = None
        if node is not None and is_visible_and_interactable(node):
            self.log.debug(f"Found [download] element: {node.describe()}")
            return Candidate(element=node, tier=3, source=self.rules.download_attr_selector)

        try:
            links = await self.surface.query_all(self.rules.file_link_selector)
        except Exception:
            return None
        for link in links:
            href = link.resolved_href or link.href
            if href and self.rules.file_href_re.search(href) and is_visible_and_interactable(link):
                self.log.debug(f"Found link with file extension: {link.describe()}")
                return Candidate(element=link, tier=3, source=self.rules.file_link_selector)
        return None
