"""Detection-and-retry state machine for one page lifetime.

One instance lives as long as the page's current document. It looks for the
download control once, then watches the page through two channels at the same
time: a mutation subscription (reactive) and a fixed-interval poll
(periodic). Whichever channel sees the control first wins the resolution
latch; the other is cancelled. When the watch window runs out the machine
either backs off (page reports it is busy), reloads the page (reload budget
left), or gives up. A watchdog bounds the instance's total lifetime.

A reload ends the instance. The caller starts a fresh instance on the new
document; the reload budget carries over through the attempt ledger.
"""

from __future__ import annotations

import asyncio
import math
from typing import Any

from autodl.action_dispatcher import ActionDispatcher
from autodl.attempt_ledger import AttemptLedger
from autodl.busy_detector import BusyStateDetector
from autodl.config import AutoDownloadConfig
from autodl.constants import (
    STATE_BUSY_BACKOFF,
    STATE_GIVEN_UP,
    STATE_INIT,
    STATE_RELOAD_PENDING,
    STATE_RESOLVED,
    STATE_SCANNING,
    STATE_TIMED_OUT,
    TERMINAL_STATES,
)
from autodl.diagnostics import RunLog
from autodl.models import Candidate, MachineOutcome
from autodl.target_locator import TargetLocator
from autodl.web_run_state import ResolutionLatch, RunHandles
from autodl.web_surface import Surface
from autodl.web_watchdog import WatchdogState, arm_watchdog, remaining_ms


def backoff_delay(
    ledger_value: int,
    *,
    initial_wait_ms: int,
    factor: float,
    min_delay_ms: int,
    max_delay_ms: int | None = None,
) -> int:
    """``max(min_delay, initial_wait * factor ** ledger)``, capped at ``max_delay_ms`` when given."""
    exponent = max(0, int(ledger_value))
    try:
        raw = initial_wait_ms * math.pow(factor, exponent)
    except OverflowError:
        raw = math.inf
    if max_delay_ms is not None:
        raw = min(raw, float(max_delay_ms))
    if not math.isfinite(raw):
        raise OverflowError(f"backoff delay overflows for ledger value {ledger_value}")
    return max(int(min_delay_ms), int(math.floor(raw)))


def _resolve_future(future: asyncio.Future[Any], value: Any) -> None:
    if not future.done():
        future.set_result(value)


class RetryStateMachine:
    def __init__(
        self,
        *,
        surface: Surface,
        locator: TargetLocator,
        busy_detector: BusyStateDetector,
        dispatcher: ActionDispatcher,
        ledger: AttemptLedger,
        config: AutoDownloadConfig,
        log: RunLog | None = None,
    ) -> None:
        self.surface = surface
        self.locator = locator
        self.busy_detector = busy_detector
        self.dispatcher = dispatcher
        self.ledger = ledger
        self.config = config
        self.log = log or RunLog()

        self.state = STATE_INIT
        self.history: list[str] = []
        self.latch = ResolutionLatch()
        self.handles = RunHandles()
        self.watchdog = WatchdogState(ceiling_ms=config.watchdog_ms)

        self._watchdog_timer: asyncio.TimerHandle | None = None
        self._drive_task: asyncio.Task[None] | None = None
        self._window: asyncio.Future[Candidate | None] | None = None
        self._window_open = False
        self._reactive_running = False
        self._reactive_dirty = False
        self._candidate: Candidate | None = None
        self._activated = False
        self._resolved_by = ""
        self._ledger_value = 0
        self._busy_backoffs = 0
        self._started = False

    @property
    def active_handles(self) -> int:
        live_watchdog = self._watchdog_timer is not None and not self._watchdog_timer.cancelled()
        return self.handles.active_count + (1 if live_watchdog else 0)

    async def run(self) -> MachineOutcome:
        if self._started:
            raise RuntimeError("RetryStateMachine instances are single-use")
        self._started = True
        self._drive_task = asyncio.ensure_future(self._drive())
        try:
            await self._drive_task
        except asyncio.CancelledError:
            if self.state != STATE_TIMED_OUT:
                raise
        except Exception as exc:
            self.log.error(f"Runner stopped on unexpected error: {exc}")
            if self.state not in TERMINAL_STATES:
                self._transition(STATE_GIVEN_UP)
        finally:
            await self.teardown()
        return self.outcome()

    def outcome(self) -> MachineOutcome:
        return MachineOutcome(
            state=self.state,
            candidate=self._candidate.describe() if self._candidate is not None else "",
            activated=self._activated,
            resolved_by=self._resolved_by,
            ledger_value=self._ledger_value,
            busy_backoffs=self._busy_backoffs,
            history=tuple(self.history),
        )

    async def teardown(self) -> None:
        self._window_open = False
        if self._watchdog_timer is not None:
            self._watchdog_timer.cancel()
            self._watchdog_timer = None
        await self.handles.release()

    async def _drive(self) -> None:
        while True:
            self._transition(STATE_INIT)
            candidate = await self._locate()
            if candidate is not None and self.latch.try_set(candidate):
                await self._resolve(candidate, channel="init")
                return

            self._arm_watchdog()
            if await self.busy_detector.is_busy():
                self.log.debug("Busy UI present at start; watching without reloading yet.")

            self._transition(STATE_SCANNING)
            candidate = await self._scan()
            if candidate is not None:
                await self._resolve(candidate, channel=self._resolved_by)
                return

            signal = await self.busy_detector.detect()
            self._ledger_value = await self.ledger.read()
            if signal.busy:
                self._transition(STATE_BUSY_BACKOFF)
                delay_ms = backoff_delay(
                    self._ledger_value,
                    initial_wait_ms=self.config.initial_wait_ms,
                    factor=self.config.backoff_factor,
                    min_delay_ms=self.config.min_backoff_ms,
                    max_delay_ms=self.config.watchdog_ms,
                )
                self._busy_backoffs += 1
                budget_ms = remaining_ms(self.watchdog.deadline_ts, now_ts=asyncio.get_running_loop().time())
                self.log.info(
                    f"Page is busy ({signal.indicator}). Will retry without reloading in "
                    f"{delay_ms} ms (retry count: {self._ledger_value}, watchdog in {budget_ms} ms)."
                )
                await self._sleep(delay_ms)
                continue

            if self._ledger_value >= self.config.max_reloads:
                self._transition(STATE_GIVEN_UP)
                self.log.warning(f"Max reload attempts reached ({self._ledger_value}). Giving up.")
                await self.teardown()
                return

            await self._reload()
            return

    async def _locate(self) -> Candidate | None:
        try:
            return await self.locator.locate()
        except Exception as exc:
            self.log.debug(f"Target lookup failed: {exc}")
            return None

    async def _scan(self) -> Candidate | None:
        loop = asyncio.get_running_loop()
        self._window = loop.create_future()
        self._window_open = True
        self._reactive_running = False
        self._reactive_dirty = False
        try:
            unsubscribe = await self.surface.subscribe_mutations(self._on_mutation)
        except Exception as exc:
            self.log.warning(f"Observer failed to attach: {exc}")
        else:
            self.handles.add_unsubscriber(unsubscribe)
        self.handles.add_task(loop.create_task(self._poll_channel()))
        self.handles.call_later(self.config.initial_wait_ms / 1000.0, self._close_window)
        try:
            return await self._window
        finally:
            self._window_open = False
            await self.handles.release()

    def _close_window(self) -> None:
        self._window_open = False
        if self._window is not None:
            _resolve_future(self._window, None)

    def _on_mutation(self) -> None:
        if self.latch.is_set or not self._window_open:
            return
        if self._reactive_running:
            self._reactive_dirty = True
            return
        self._reactive_running = True
        loop = asyncio.get_running_loop()
        self.handles.add_task(loop.create_task(self._reactive_channel()))

    async def _reactive_channel(self) -> None:
        try:
            while True:
                self._reactive_dirty = False
                await self._check("reactive")
                if not self._reactive_dirty or self.latch.is_set or not self._window_open:
                    return
        finally:
            self._reactive_running = False

    async def _poll_channel(self) -> None:
        interval = self.config.poll_interval_ms / 1000.0
        while self._window_open and not self.latch.is_set:
            await asyncio.sleep(interval)
            await self._check("periodic")

    async def _check(self, channel: str) -> None:
        if self.latch.is_set or not self._window_open:
            return
        candidate = await self._locate()
        if candidate is None or not self._window_open:
            return
        if not self.latch.try_set(candidate):
            return
        self._resolved_by = channel
        self.log.debug(f"Found download control via {channel} channel.")
        if self._window is not None:
            _resolve_future(self._window, candidate)

    async def _resolve(self, candidate: Candidate, *, channel: str) -> None:
        self._transition(STATE_RESOLVED)
        self._candidate = candidate
        self._resolved_by = channel
        await self.teardown()
        self._activated = await self.dispatcher.activate(candidate)

    async def _reload(self) -> None:
        self._transition(STATE_RELOAD_PENDING)
        new_count = await self.ledger.increment()
        self._ledger_value = new_count
        self.log.warning(
            f"No download control found after {self.config.initial_wait_ms} ms. "
            f"Reloading (attempt {new_count} of {self.config.max_reloads})."
        )
        await self.teardown()
        try:
            await self.surface.reload()
        except Exception as exc:
            self.log.error(f"Reload failed: {exc}")

    async def _sleep(self, delay_ms: int) -> None:
        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[None] = loop.create_future()
        self.handles.call_later(delay_ms / 1000.0, _resolve_future, waiter, None)
        await waiter

    def _arm_watchdog(self) -> None:
        timer = arm_watchdog(self.watchdog, loop=asyncio.get_running_loop(), on_expire=self._on_watchdog)
        if timer is not None:
            self._watchdog_timer = timer

    def _on_watchdog(self) -> None:
        self._watchdog_timer = None
        if self.latch.is_set or self.state in TERMINAL_STATES:
            return
        self.log.debug(
            f"Watchdog reached after {self.config.watchdog_ms} ms without finding download control."
        )
        self._transition(STATE_TIMED_OUT)
        self._window_open = False
        self.handles.cancel_scheduled()
        if self._drive_task is not None and not self._drive_task.done():
            self._drive_task.cancel()

    def _transition(self, state: str) -> None:
        self.state = state
        self.history.append(state)


def build_machine(
    surface: Surface,
    config: AutoDownloadConfig,
    *,
    ledger: AttemptLedger,
    log: RunLog | None = None,
) -> RetryStateMachine:
    run_log = log or RunLog()
    return RetryStateMachine(
        surface=surface,
        locator=TargetLocator(surface, config.locator_rules, log=run_log),
        busy_detector=BusyStateDetector(
            surface,
            busy_texts=config.busy_texts,
            busy_markers=config.busy_markers,
            log=run_log,
        ),
        dispatcher=ActionDispatcher(surface, log=run_log),
        ledger=ledger,
        config=config,
        log=run_log,
    )
