"""Human-readable run log shared by the runner components."""

from __future__ import annotations

import sys
from pathlib import Path

from autodl.constants import LOG_LEVELS, LOG_PREFIX
from autodl.storage import append_log


class RunLog:
    """One-way diagnostics channel.

    Lines are kept in memory for the run report and, when a path is given,
    appended to the run's log file. Nothing in the runner reads them back to
    make decisions.
    """

    def __init__(self, path: Path | None = None, *, echo: bool = False, level: str = "debug") -> None:
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level '{level}'. Must be one of {list(LOG_LEVELS)}")
        self.path = path
        self.echo = echo
        self._threshold = LOG_LEVELS.index(level)
        self.entries: list[tuple[str, str]] = []

    def debug(self, message: str) -> None:
        self._emit("debug", message)

    def info(self, message: str) -> None:
        self._emit("info", message)

    def warning(self, message: str) -> None:
        self._emit("warning", message)

    def error(self, message: str) -> None:
        self._emit("error", message)

    def messages(self, level: str | None = None) -> list[str]:
        return [msg for lvl, msg in self.entries if level is None or lvl == level]

    def _emit(self, level: str, message: str) -> None:
        if LOG_LEVELS.index(level) < self._threshold:
            return
        self.entries.append((level, message))
        line = f"{LOG_PREFIX} {level}: {message}"
        if self.path is not None:
            try:
                append_log(self.path, line)
            except OSError:
                pass
        if self.echo:
            print(line, file=sys.stderr)
