"""Runner configuration with environment overrides."""

from __future__ import annotations

import math
import os
from dataclasses import dataclass, field, replace
from typing import Any, Mapping

from autodl.constants import (
    BUSY_MARKER_SELECTORS,
    BUSY_TEXTS,
    DEFAULT_BACKOFF_FACTOR,
    DEFAULT_INITIAL_WAIT_MS,
    DEFAULT_MAX_RELOADS,
    DEFAULT_MIN_BACKOFF_MS,
    DEFAULT_POLL_INTERVAL_MS,
    DEFAULT_START_DELAY_MS,
    DEFAULT_STORAGE_KEY,
    DEFAULT_WATCHDOG_MS,
)
from autodl.target_locator import LocatorRules

_INT_ENV_FIELDS = {
    "AUTODL_INITIAL_WAIT_MS": "initial_wait_ms",
    "AUTODL_POLL_INTERVAL_MS": "poll_interval_ms",
    "AUTODL_WATCHDOG_MS": "watchdog_ms",
    "AUTODL_MAX_RELOADS": "max_reloads",
    "AUTODL_MIN_BACKOFF_MS": "min_backoff_ms",
    "AUTODL_START_DELAY_MS": "start_delay_ms",
}


@dataclass(frozen=True)
class AutoDownloadConfig:
    initial_wait_ms: int = DEFAULT_INITIAL_WAIT_MS
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS
    watchdog_ms: int = DEFAULT_WATCHDOG_MS
    max_reloads: int = DEFAULT_MAX_RELOADS
    backoff_factor: float = DEFAULT_BACKOFF_FACTOR
    min_backoff_ms: int = DEFAULT_MIN_BACKOFF_MS
    start_delay_ms: int = DEFAULT_START_DELAY_MS
    storage_key: str = DEFAULT_STORAGE_KEY
    busy_texts: tuple[str, ...] = BUSY_TEXTS
    busy_markers: tuple[str, ...] = BUSY_MARKER_SELECTORS
    locator_rules: LocatorRules = field(default_factory=LocatorRules)

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> "AutoDownloadConfig":
        if self.initial_wait_ms <= 0:
            raise ValueError("initial_wait_ms must be positive")
        if self.poll_interval_ms <= 0:
            raise ValueError("poll_interval_ms must be positive")
        if self.watchdog_ms <= 0:
            raise ValueError("watchdog_ms must be positive")
        if self.max_reloads < 0:
            raise ValueError("max_reloads must be zero or greater")
        if not math.isfinite(self.backoff_factor) or self.backoff_factor < 1.0:
            raise ValueError("backoff_factor must be a finite number of at least 1.0")
        if self.min_backoff_ms < 0:
            raise ValueError("min_backoff_ms must be zero or greater")
        if self.start_delay_ms < 0:
            raise ValueError("start_delay_ms must be zero or greater")
        if not self.storage_key.strip():
            raise ValueError("storage_key must not be empty")
        return self

    def with_overrides(self, **overrides: Any) -> "AutoDownloadConfig":
        clean = {key: value for key, value in overrides.items() if value is not None}
        return replace(self, **clean)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AutoDownloadConfig":
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for name, attr in _INT_ENV_FIELDS.items():
            raw = str(env.get(name, "")).strip()
            if raw:
                values[attr] = _parse_int(name, raw)
        raw_factor = str(env.get("AUTODL_BACKOFF_FACTOR", "")).strip()
        if raw_factor:
            try:
                values["backoff_factor"] = float(raw_factor)
            except ValueError as exc:
                raise ValueError(f"Invalid AUTODL_BACKOFF_FACTOR: {raw_factor!r}") from exc
        storage_key = str(env.get("AUTODL_STORAGE_KEY", "")).strip()
        if storage_key:
            values["storage_key"] = storage_key
        busy_texts = _split_list(env.get("AUTODL_BUSY_TEXTS", ""))
        if busy_texts:
            values["busy_texts"] = busy_texts
        return cls(**values)


def _parse_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid {name}: {raw!r}") from exc


def _split_list(raw: str) -> tuple[str, ...]:
    # "|" separates phrases; commas and dots occur inside busy texts.
    return tuple(part.strip() for part in str(raw or "").split("|") if part.strip())
