"""Live document access for the download runner.

Every decision the runner makes is a function of what these queries return.
The Playwright implementation collects raw element facts in the page and
leaves all judgement (visibility, heuristics) to the Python side.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol, Sequence

from autodl.models import ElementFacts

MutationCallback = Callable[[], None]
Unsubscribe = Callable[[], Awaitable[None]]

_BINDING_NAME = "__autodlMutationNotify"

_FACTS_FN = """
(el) => {
  const attr = (name) => (el.getAttribute ? (el.getAttribute(name) || '') : '');
  let display = '';
  let visibility = '';
  let opacity = '';
  let styleError = false;
  try {
    const style = window.getComputedStyle(el);
    if (style) {
      display = String(style.display || '');
      visibility = String(style.visibility || '');
      opacity = String(style.opacity || '');
    }
  } catch (_e) {
    styleError = true;
  }
  const rects = el.getClientRects ? el.getClientRects() : [];
  const r = el.getBoundingClientRect ? el.getBoundingClientRect() : { width: 0, height: 0, top: 0, bottom: 0 };
  const testId = attr('data-testid') || attr('data-test') || attr('data-download');
  return {
    tag: String(el.tagName || ''),
    text: String(el.textContent || ''),
    ariaLabel: attr('aria-label'),
    title: attr('title'),
    href: attr('href'),
    resolvedHref: typeof el.href === 'string' ? el.href : '',
    hasDownloadAttr: !!(el.hasAttribute && el.hasAttribute('download')),
    testId,
    disabled: !!el.disabled,
    display,
    visibility,
    opacity,
    styleError,
    rectCount: rects ? rects.length : 0,
    width: r.width,
    height: r.height,
    top: r.top,
    bottom: r.bottom,
    viewportHeight: window.innerHeight || document.documentElement.clientHeight || 0,
    ariaHiddenAncestor: !!(el.closest && el.closest('[aria-hidden="true"]')),
  };
}
"""

_QUERY_FIRST_JS = (
    "(selector) => { const el = document.querySelector(selector); "
    f"return el ? ({_FACTS_FN.strip()})(el) : null; }}"
)

_QUERY_ALL_JS = f"(selector) => Array.from(document.querySelectorAll(selector)).map({_FACTS_FN.strip()})"

_EXISTS_JS = "(selector) => document.querySelector(selector) !== null"

_ACTIVATE_JS = """
([selector, index, expectedTag, eventTypes]) => {
  const el = document.querySelectorAll(selector)[index];
  if (!el || String(el.tagName || '').toLowerCase() !== expectedTag) {
    throw new Error('download control is no longer attached');
  }
  el.scrollIntoView({ behavior: 'instant', block: 'center', inline: 'center' });
  for (const type of eventTypes) {
    const evt = new MouseEvent(type, { bubbles: true, cancelable: true, view: window });
    el.dispatchEvent(evt);
  }
  if (typeof el.click === 'function') {
    try { el.click(); } catch (_e) {}
  }
  return true;
}
"""

_OBSERVE_JS = """
(bindingName) => {
  if (window.__autodlObserver) {
    window.__autodlObserver.disconnect();
  }
  const target = document.documentElement || document.body;
  const observer = new MutationObserver(() => {
    const notify = window[bindingName];
    if (typeof notify === 'function') {
      notify().catch(() => {});
    }
  });
  observer.observe(target, { childList: true, subtree: true, attributes: true });
  window.__autodlObserver = observer;
  return true;
}
"""

_DISCONNECT_JS = """
() => {
  if (window.__autodlObserver) {
    window.__autodlObserver.disconnect();
    window.__autodlObserver = null;
  }
}
"""


class Surface(Protocol):
    async def query_first(self, selector: str) -> ElementFacts | None: ...

    async def query_all(self, selector: str) -> list[ElementFacts]: ...

    async def exists(self, selector: str) -> bool: ...

    async def body_text(self) -> str: ...

    async def activate(self, element: ElementFacts, events: Sequence[str]) -> None: ...

    async def subscribe_mutations(self, callback: MutationCallback) -> Unsubscribe: ...

    async def reload(self) -> None: ...

    async def wait_until_loaded(self) -> None: ...

    async def storage_get(self, key: str) -> str | None: ...

    async def storage_set(self, key: str, value: str) -> None: ...


class PlaywrightSurface:
    """Surface backed by a Playwright async ``Page``."""

    def __init__(self, page: Any) -> None:
        self.page = page
        self._listeners: list[MutationCallback] = []
        self._binding_ready = False

    # Queries return serialized facts only; no element handles are created.
    async def query_first(self, selector: str) -> ElementFacts | None:
        payload = await self.page.evaluate(_QUERY_FIRST_JS, selector)
        if not payload:
            return None
        return ElementFacts.from_payload(payload, selector=selector, index=0)

    async def query_all(self, selector: str) -> list[ElementFacts]:
        payloads = await self.page.evaluate(_QUERY_ALL_JS, selector)
        if not isinstance(payloads, list):
            return []
        return [
            ElementFacts.from_payload(payload or {}, selector=selector, index=index)
            for index, payload in enumerate(payloads)
        ]

    async def exists(self, selector: str) -> bool:
        return bool(await self.page.evaluate(_EXISTS_JS, selector))

    async def body_text(self) -> str:
        text = await self.page.evaluate(
            "() => (document.body && document.body.innerText) ? document.body.innerText : ''"
        )
        return str(text or "")

    async def activate(self, element: ElementFacts, events: Sequence[str]) -> None:
        if not element.selector:
            raise RuntimeError(f"No query position for {element.describe()}")
        await self.page.evaluate(
            _ACTIVATE_JS,
            [element.selector, element.index, element.tag, list(events)],
        )

    async def subscribe_mutations(self, callback: MutationCallback) -> Unsubscribe:
        await self._ensure_binding()
        await self.page.evaluate(_OBSERVE_JS, _BINDING_NAME)
        self._listeners.append(callback)

        async def _unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)
            if self._listeners:
                return
            try:
                await self.page.evaluate(_DISCONNECT_JS)
            except Exception:
                return

        return _unsubscribe

    async def reload(self) -> None:
        await self.page.reload(wait_until="domcontentloaded")

    async def wait_until_loaded(self) -> None:
        await self.page.wait_for_load_state("load")

    async def storage_get(self, key: str) -> str | None:
        value = await self.page.evaluate("(key) => window.sessionStorage.getItem(key)", key)
        return None if value is None else str(value)

    async def storage_set(self, key: str, value: str) -> None:
        await self.page.evaluate(
            "([key, value]) => window.sessionStorage.setItem(key, value)",
            [key, value],
        )

    async def _ensure_binding(self) -> None:
        if self._binding_ready:
            return
        try:
            await self.page.expose_binding(_BINDING_NAME, self._on_binding)
        except Exception as exc:
            # Bindings outlive navigations; a second surface on the same page reuses it.
            if "has been already registered" not in str(exc):
                raise
        self._binding_ready = True

    def _on_binding(self, _source: Any, *_args: Any) -> None:
        for listener in list(self._listeners):
            listener()
