"""Page-lifetime loop: one machine instance per loaded document."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from autodl.attempt_ledger import AttemptLedger, SessionStorageLedger
from autodl.config import AutoDownloadConfig
from autodl.constants import STATE_RELOAD_PENDING
from autodl.diagnostics import RunLog
from autodl.models import MachineOutcome
from autodl.retry_machine import build_machine
from autodl.web_surface import Surface


@dataclass(frozen=True)
class DriverOutcome:
    final_state: str
    instances: int
    reloads: int
    outcomes: list[MachineOutcome] = field(default_factory=list)

    @property
    def activated(self) -> bool:
        return bool(self.outcomes) and self.outcomes[-1].activated


async def run_until_settled(
    surface: Surface,
    config: AutoDownloadConfig,
    *,
    log: RunLog | None = None,
    ledger: AttemptLedger | None = None,
    max_instances: int | None = None,
) -> DriverOutcome:
    run_log = log or RunLog()
    run_ledger = ledger or SessionStorageLedger(surface, config.storage_key, log=run_log)
    # A reload that never lands (or a storage medium that drops writes) must not loop forever.
    limit = max_instances if max_instances is not None else config.max_reloads + 2
    outcomes: list[MachineOutcome] = []

    for instance in range(1, max(1, limit) + 1):
        await _wait_for_document(surface, run_log)
        if config.start_delay_ms > 0:
            await asyncio.sleep(config.start_delay_ms / 1000.0)
        run_log.debug(f"instance={instance} reloads_so_far={await run_ledger.read()}")
        machine = build_machine(surface, config, ledger=run_ledger, log=run_log)
        outcome = await machine.run()
        outcomes.append(outcome)
        run_log.info(f"instance={instance} final_state={outcome.state}")
        if outcome.state != STATE_RELOAD_PENDING:
            break
    else:
        run_log.warning(f"Stopped after {limit} page instances without settling.")

    return DriverOutcome(
        final_state=outcomes[-1].state,
        instances=len(outcomes),
        reloads=await run_ledger.read(),
        outcomes=outcomes,
    )


async def _wait_for_document(surface: Surface, log: RunLog) -> None:
    try:
        await surface.wait_until_loaded()
    except Exception as exc:
        log.debug(f"Load state wait failed, continuing: {exc}")
