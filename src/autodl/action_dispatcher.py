"""Synthetic activation of a located control."""

from __future__ import annotations

from typing import Sequence

from autodl.constants import ACTIVATION_EVENT_SEQUENCE
from autodl.diagnostics import RunLog
from autodl.models import Candidate
from autodl.web_surface import Surface


class ActionDispatcher:
    """Best-effort click emulation; failures are logged, never raised."""

    def __init__(
        self,
        surface: Surface,
        *,
        events: Sequence[str] = ACTIVATION_EVENT_SEQUENCE,
        log: RunLog | None = None,
    ) -> None:
        self.surface = surface
        self.events = tuple(events)
        self.log = log or RunLog()

    async def activate(self, candidate: Candidate) -> bool:
        self.log.info(f"Emulating click on {candidate.describe()}")
        try:
            await self.surface.activate(candidate.element, self.events)
        except Exception as exc:
            self.log.error(f"Click failed: {exc}")
            return False
        self.log.info("Click dispatched.")
        return True
