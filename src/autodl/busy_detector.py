"""Detection of pages that report ongoing background work."""

from __future__ import annotations

from typing import Sequence

from autodl.constants import BUSY_MARKER_SELECTORS, BUSY_TEXTS
from autodl.diagnostics import RunLog
from autodl.models import BusySignal
from autodl.web_surface import Surface


class BusyStateDetector:
    def __init__(
        self,
        surface: Surface,
        *,
        busy_texts: Sequence[str] = BUSY_TEXTS,
        busy_markers: Sequence[str] = BUSY_MARKER_SELECTORS,
        log: RunLog | None = None,
    ) -> None:
        self.surface = surface
        self.busy_texts = tuple(busy_texts)
        self.busy_markers = tuple(busy_markers)
        self.log = log or RunLog()

    async def detect(self) -> BusySignal:
        try:
            body_text = await self.surface.body_text()
        except Exception:
            body_text = ""
        for phrase in self.busy_texts:
            if phrase and phrase in body_text:
                self.log.debug(f"Busy indicator found in body text: {phrase}")
                return BusySignal(busy=True, indicator=f"text:{phrase}")

        for marker in self.busy_markers:
            try:
                present = await self.surface.exists(marker)
            except Exception:
                continue
            if present:
                self.log.debug(f"Busy element found: {marker}")
                return BusySignal(busy=True, indicator=f"marker:{marker}")
        return BusySignal(busy=False)

    async def is_busy(self) -> bool:
        return (await self.detect()).busy
