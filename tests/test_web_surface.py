import unittest

from autodl.constants import CLICKABLE_SELECTOR, FILE_LINK_SELECTOR
from autodl.target_locator import TargetLocator
from autodl.web_surface import (
    _ACTIVATE_JS,
    _EXISTS_JS,
    _QUERY_ALL_JS,
    _QUERY_FIRST_JS,
    PlaywrightSurface,
)


def _facts(tag="BUTTON", text="Download", **overrides):
    payload = {
        "tag": tag,
        "text": text,
        "rectCount": 1,
        "width": 120,
        "height": 32,
        "top": 100,
        "bottom": 132,
        "viewportHeight": 800,
        "display": "inline-block",
        "visibility": "visible",
        "opacity": "1",
    }
    payload.update(overrides)
    return payload


class _Page:
    """Page double that serves facts by selector and counts element handles."""

    def __init__(self):
        self.storage = {}
        self.dom = {}
        self.bindings = {}
        self.activations = []
        self.binding_error = None
        self.reload_kwargs = None
        self.handles_created = 0

    async def query_selector(self, selector):
        self.handles_created += 1
        return object()

    async def query_selector_all(self, selector):
        found = self.dom.get(selector) or []
        self.handles_created += len(found)
        return [object() for _ in found]

    async def evaluate(self, script, arg=None):
        if script == _QUERY_FIRST_JS:
            found = self.dom.get(arg) or []
            return found[0] if found else None
        if script == _QUERY_ALL_JS:
            return list(self.dom.get(arg) or [])
        if script == _EXISTS_JS:
            return bool(self.dom.get(arg))
        if script == _ACTIVATE_JS:
            selector, index, tag, events = arg
            found = self.dom.get(selector) or []
            if index >= len(found) or found[index]["tag"].lower() != tag:
                raise RuntimeError("Error: download control is no longer attached")
            self.activations.append((selector, index, events))
            return True
        if "sessionStorage.getItem" in script:
            return self.storage.get(arg)
        if "sessionStorage.setItem" in script:
            key, value = arg
            self.storage[key] = value
            return None
        if "innerText" in script:
            return "Preparing files"
        return True

    async def expose_binding(self, name, callback):
        if self.binding_error is not None:
            raise self.binding_error
        self.bindings[name] = callback

    async def reload(self, **kwargs):
        self.reload_kwargs = kwargs


class PlaywrightSurfaceTests(unittest.IsolatedAsyncioTestCase):
    async def test_session_storage_round_trip(self) -> None:
        surface = PlaywrightSurface(_Page())
        self.assertIsNone(await surface.storage_get("k"))
        await surface.storage_set("k", "2")
        self.assertEqual(await surface.storage_get("k"), "2")

    async def test_queries_record_selector_and_position(self) -> None:
        page = _Page()
        page.dom["button, a"] = [_facts(), _facts("A", "file.zip")]
        surface = PlaywrightSurface(page)

        one = await surface.query_first("button, a")
        every = await surface.query_all("button, a")
        assert one is not None
        self.assertEqual((one.tag, one.selector, one.index), ("button", "button, a", 0))
        self.assertEqual([(f.tag, f.index) for f in every], [("button", 0), ("a", 1)])
        self.assertIsNone(await surface.query_first("#missing"))
        self.assertEqual(await surface.query_all("#missing"), [])
        self.assertTrue(await surface.exists("button, a"))
        self.assertFalse(await surface.exists("#missing"))

    async def test_repeated_lookups_create_no_element_handles(self) -> None:
        page = _Page()
        page.dom[FILE_LINK_SELECTOR] = [_facts("A", f"link {n}", href=f"/page/{n}") for n in range(50)]
        page.dom[CLICKABLE_SELECTOR] = list(page.dom[FILE_LINK_SELECTOR])
        locator = TargetLocator(PlaywrightSurface(page))
        for _ in range(60):
            self.assertIsNone(await locator.locate())
        self.assertEqual(page.handles_created, 0)

    async def test_activate_targets_recorded_position(self) -> None:
        page = _Page()
        page.dom["button"] = [_facts(text="Cancel"), _facts()]
        surface = PlaywrightSurface(page)
        every = await surface.query_all("button")
        await surface.activate(every[1], ("pointerdown", "click"))
        self.assertEqual(page.activations, [("button", 1, ["pointerdown", "click"])])

    async def test_activate_fails_when_element_is_gone(self) -> None:
        page = _Page()
        page.dom["button"] = [_facts()]
        surface = PlaywrightSurface(page)
        found = await surface.query_first("button")
        assert found is not None
        page.dom["button"] = []
        with self.assertRaises(RuntimeError):
            await surface.activate(found, ("click",))

    async def test_mutations_fan_out_until_unsubscribed(self) -> None:
        page = _Page()
        surface = PlaywrightSurface(page)
        hits = []
        unsubscribe = await surface.subscribe_mutations(lambda: hits.append(1))
        notify = page.bindings["__autodlMutationNotify"]
        notify(object())
        await unsubscribe()
        notify(object())
        self.assertEqual(hits, [1])

    async def test_already_registered_binding_is_reused(self) -> None:
        page = _Page()
        page.binding_error = RuntimeError('Function "__autodlMutationNotify" has been already registered')
        surface = PlaywrightSurface(page)
        unsubscribe = await surface.subscribe_mutations(lambda: None)
        await unsubscribe()

    async def test_other_binding_errors_propagate(self) -> None:
        page = _Page()
        page.binding_error = RuntimeError("Target closed")
        surface = PlaywrightSurface(page)
        with self.assertRaises(RuntimeError):
            await surface.subscribe_mutations(lambda: None)

    async def test_body_text_and_reload(self) -> None:
        page = _Page()
        surface = PlaywrightSurface(page)
        self.assertEqual(await surface.body_text(), "Preparing files")
        await surface.reload()
        self.assertEqual(page.reload_kwargs, {"wait_until": "domcontentloaded"})


if __name__ == "__main__":
    unittest.main()
