import re
import unittest

from surface_fakes import FakeSurface, element

from autodl.constants import CLICKABLE_SELECTOR, DOWNLOAD_ATTR_SELECTOR, FILE_LINK_SELECTOR
from autodl.target_locator import (
    LocatorRules,
    TargetLocator,
    is_visible,
    is_visible_and_interactable,
    looks_like_download,
)


class VisibilityTests(unittest.TestCase):
    def test_plain_visible_element_passes(self) -> None:
        self.assertTrue(is_visible_and_interactable(element()))

    def test_hidden_styles_are_rejected(self) -> None:
        self.assertFalse(is_visible(element(display="none")))
        self.assertFalse(is_visible(element(visibility="hidden")))
        self.assertFalse(is_visible(element(opacity="0")))
        self.assertFalse(is_visible(element(opacity="0.0")))

    def test_unset_opacity_counts_as_opaque(self) -> None:
        self.assertTrue(is_visible(element(opacity="")))

    def test_style_failure_skips_style_checks(self) -> None:
        self.assertTrue(is_visible(element(display="none", style_error=True)))

    def test_zero_area_and_missing_rects_are_rejected(self) -> None:
        self.assertFalse(is_visible(element(width=0)))
        self.assertFalse(is_visible(element(height=0)))
        self.assertFalse(is_visible(element(rect_count=0)))

    def test_outside_viewport_is_rejected(self) -> None:
        self.assertFalse(is_visible(element(top=900.0, bottom=930.0)))
        self.assertFalse(is_visible(element(top=-60.0, bottom=-10.0)))

    def test_aria_hidden_ancestor_is_rejected(self) -> None:
        self.assertFalse(is_visible(element(aria_hidden_ancestor=True)))

    def test_disabled_is_not_interactable(self) -> None:
        self.assertFalse(is_visible_and_interactable(element(disabled=True)))


class DownloadHeuristicTests(unittest.TestCase):
    def setUp(self) -> None:
        self.rules = LocatorRules()

    def test_text_label_and_title_match_case_insensitively(self) -> None:
        self.assertTrue(looks_like_download(element(text="DOWNLOAD ALL FILES"), self.rules))
        self.assertTrue(looks_like_download(element(text="", aria_label="Get file"), self.rules))
        self.assertTrue(looks_like_download(element(text="", title="download"), self.rules))

    def test_word_boundary_is_required(self) -> None:
        self.assertFalse(looks_like_download(element(text="Downloaded 3 times"), self.rules))

    def test_file_extension_href_matches(self) -> None:
        self.assertTrue(looks_like_download(element("a", text="Save", href="/f/report.PDF?x=1"), self.rules))
        self.assertFalse(looks_like_download(element("a", text="Save", href="/f/report.pdfx"), self.rules))

    def test_download_attribute_and_test_id_match(self) -> None:
        self.assertTrue(looks_like_download(element("a", text="Save", has_download_attr=True), self.rules))
        self.assertTrue(looks_like_download(element(text="Go", test_id="btn-Download-main"), self.rules))

    def test_unrelated_button_does_not_match(self) -> None:
        self.assertFalse(looks_like_download(element(text="Cancel"), self.rules))


class TargetLocatorTests(unittest.IsolatedAsyncioTestCase):
    async def test_returns_none_on_empty_surface(self) -> None:
        self.assertIsNone(await TargetLocator(FakeSurface()).locate())

    async def test_specific_selector_outranks_generic_scan(self) -> None:
        surface = FakeSurface()
        generic = element(text="Download")
        specific = element(text="Download all files")
        surface.put(CLICKABLE_SELECTOR, generic, specific)
        surface.put('button[aria-label*="Download"]', specific)
        found = await TargetLocator(surface).locate()
        self.assertIsNotNone(found)
        assert found is not None
        self.assertEqual(found.tier, 1)
        self.assertIs(found.element, specific)
        self.assertEqual(found.source, 'button[aria-label*="Download"]')

    async def test_specific_match_must_look_like_download(self) -> None:
        surface = FakeSurface()
        surface.put("button.chakra-button", element(text="Copy link"))
        self.assertIsNone(await TargetLocator(surface).locate())

    async def test_specific_selectors_are_tried_in_order(self) -> None:
        surface = FakeSurface()
        first = element(text="Download")
        second = element("a", text="Download", has_download_attr=True)
        surface.put("a[download]", second)
        surface.put("button.chakra-button", first)
        found = await TargetLocator(surface).locate()
        assert found is not None
        self.assertIs(found.element, first)

    async def test_broken_selector_is_skipped(self) -> None:
        surface = FakeSurface()
        surface.broken_selectors.add("button.chakra-button")
        target = element("a", text="Download", has_download_attr=True)
        surface.put("a[download]", target)
        found = await TargetLocator(surface).locate()
        assert found is not None
        self.assertIs(found.element, target)

    async def test_generic_scan_takes_first_qualifying_in_document_order(self) -> None:
        surface = FakeSurface()
        hidden = element(text="Download", display="none")
        other = element(text="Settings")
        first_ok = element("a", text="Download files")
        second_ok = element(text="Download")
        surface.put(CLICKABLE_SELECTOR, hidden, other, first_ok, second_ok)
        found = await TargetLocator(surface).locate()
        assert found is not None
        self.assertEqual(found.tier, 2)
        self.assertIs(found.element, first_ok)

    async def test_download_attribute_fallback(self) -> None:
        surface = FakeSurface()
        target = element("div", text="Save", has_download_attr=True)
        surface.put(DOWNLOAD_ATTR_SELECTOR, target)
        found = await TargetLocator(surface).locate()
        assert found is not None
        self.assertEqual(found.tier, 3)
        self.assertIs(found.element, target)

    async def test_file_link_fallback_uses_resolved_href(self) -> None:
        surface = FakeSurface()
        hidden = element("a", text="x", resolved_href="https://h/a.zip", width=0)
        target = element("a", text="archive", href="files?id=1", resolved_href="https://h/files/a.zip")
        surface.put(FILE_LINK_SELECTOR, hidden, target)
        found = await TargetLocator(surface).locate()
        assert found is not None
        self.assertEqual(found.source, FILE_LINK_SELECTOR)
        self.assertIs(found.element, target)

    async def test_repeated_calls_are_deterministic(self) -> None:
        surface = FakeSurface()
        surface.put(CLICKABLE_SELECTOR, element(text="Other"), element(text="Download"))
        locator = TargetLocator(surface)
        first = await locator.locate()
        second = await locator.locate()
        self.assertEqual(first, second)

    async def test_custom_rules_are_injected(self) -> None:
        surface = FakeSurface()
        surface.put("#save", element(text="Save now"))
        rules = LocatorRules(
            specific_selectors=("#save",),
            download_text_re=re.compile(r"\bsave\b", re.IGNORECASE),
        )
        found = await TargetLocator(surface, rules).locate()
        assert found is not None
        self.assertEqual(found.source, "#save")


if __name__ == "__main__":
    unittest.main()
