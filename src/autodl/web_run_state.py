"""Per-instance runtime state: the resolution latch and owned handles."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable


class ResolutionLatch:
    """Single-assignment flag shared by the detection channels."""

    def __init__(self) -> None:
        self._value: Any = None
        self._set = False

    @property
    def is_set(self) -> bool:
        return self._set

    @property
    def value(self) -> Any:
        return self._value

    def try_set(self, value: Any) -> bool:
        # No await between test and set: callbacks on one loop cannot interleave here.
        if self._set:
            return False
        self._value = value
        self._set = True
        return True


@dataclass
class RunHandles:
    """Timers, tasks and subscriptions owned by one machine instance."""

    tasks: set[asyncio.Task[Any]] = field(default_factory=set)
    timers: list[asyncio.TimerHandle] = field(default_factory=list)
    unsubscribers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)
    created: int = 0

    def add_task(self, task: asyncio.Task[Any]) -> asyncio.Task[Any]:
        self.created += 1
        self.tasks.add(task)
        task.add_done_callback(self.tasks.discard)
        return task

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> asyncio.TimerHandle:
        """Schedule an owned timer; it stops counting as live once it fires."""
        timer: asyncio.TimerHandle | None = None

        def _fire() -> None:
            if timer in self.timers:
                self.timers.remove(timer)
            callback(*args)

        timer = asyncio.get_running_loop().call_later(delay, _fire)
        self.created += 1
        self.timers.append(timer)
        return timer

    def add_unsubscriber(self, unsubscribe: Callable[[], Awaitable[None]]) -> None:
        self.created += 1
        self.unsubscribers.append(unsubscribe)

    @property
    def active_count(self) -> int:
        live_timers = sum(1 for timer in self.timers if not timer.cancelled())
        return len(self.tasks) + live_timers + len(self.unsubscribers)

    def cancel_scheduled(self) -> None:
        current = asyncio.current_task()
        for task in list(self.tasks):
            if task is not current and not task.done():
                task.cancel()
        for timer in self.timers:
            timer.cancel()
        self.timers.clear()

    async def release(self) -> None:
        current = asyncio.current_task()
        pending = [task for task in self.tasks if task is not current]
        self.cancel_scheduled()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            self.tasks.difference_update(pending)
        unsubscribers, self.unsubscribers = self.unsubscribers, []
        for unsubscribe in unsubscribers:
            try:
                await unsubscribe()
            except Exception:
                continue
