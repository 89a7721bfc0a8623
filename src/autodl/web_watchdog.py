"""Watchdog state for one machine instance."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Callable


@dataclass
class WatchdogState:
    ceiling_ms: int
    deadline_ts: float = 0.0
    armed: bool = False
    fired: bool = False


def arm_watchdog(
    state: WatchdogState,
    *,
    loop: asyncio.AbstractEventLoop,
    on_expire: Callable[[], None],
) -> asyncio.TimerHandle | None:
    """Arm once per instance; later calls are no-ops and return None."""
    if state.armed:
        return None
    state.armed = True
    delay = max(0.0, state.ceiling_ms / 1000.0)
    state.deadline_ts = loop.time() + delay

    def _expire() -> None:
        state.fired = True
        on_expire()

    return loop.call_later(delay, _expire)


def remaining_ms(deadline_ts: float, *, now_ts: float) -> int:
    return int(max(0.0, deadline_ts - now_ts) * 1000)
