"""Reload counter that survives page reloads within one browsing session."""

from __future__ import annotations

import re
from typing import Protocol

from autodl.constants import DEFAULT_STORAGE_KEY
from autodl.diagnostics import RunLog
from autodl.web_surface import Surface

_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


class AttemptLedger(Protocol):
    async def read(self) -> int: ...

    async def increment(self) -> int: ...


def parse_count(raw: object) -> int:
    """Leading integer of a stored value; anything unusable reads as zero."""
    if raw is None:
        return 0
    match = _LEADING_INT_RE.match(str(raw))
    if match is None:
        return 0
    return max(0, int(match.group(1)))


class SessionStorageLedger:
    def __init__(self, surface: Surface, key: str = DEFAULT_STORAGE_KEY, *, log: RunLog | None = None) -> None:
        self.surface = surface
        self.key = key
        self.log = log or RunLog()

    async def read(self) -> int:
        try:
            raw = await self.surface.storage_get(self.key)
        except Exception as exc:
            self.log.debug(f"Reload counter unreadable, assuming 0: {exc}")
            return 0
        return parse_count(raw)

    async def increment(self) -> int:
        try:
            value = await self.read() + 1
            await self.surface.storage_set(self.key, str(value))
        except Exception as exc:
            self.log.debug(f"Reload counter not persisted: {exc}")
            return 0
        return value


class MemoryLedger:
    """In-process ledger; ``available=False`` models a missing storage medium."""

    def __init__(self, value: int = 0, *, available: bool = True) -> None:
        self.value = value
        self.available = available
        self.increments = 0

    async def read(self) -> int:
        if not self.available:
            return 0
        return self.value

    async def increment(self) -> int:
        if not self.available:
            return 0
        self.value += 1
        self.increments += 1
        return self.value
