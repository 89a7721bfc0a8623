"""Run artifacts: per-run directory, log file, report and latest-run status."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from autodl.models import RunReport

REPORT_NAME = "report.json"
LOG_NAME = "autodl.log"


def runs_root() -> Path:
    return Path(os.getenv("AUTODL_RUNS_DIR", "runs"))


def status_path() -> Path:
    return runs_root() / "status.json"


@dataclass(frozen=True)
class RunContext:
    run_id: str
    run_dir: Path
    log_path: Path
    report_path: Path


def create_run_context() -> RunContext:
    root = runs_root()
    root.mkdir(parents=True, exist_ok=True)
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    for attempt in range(100):
        run_id = f"dl-{stamp}" + (f"-{attempt:02d}" if attempt else "")
        run_dir = root / run_id
        try:
            run_dir.mkdir()
        except FileExistsError:
            continue
        return RunContext(
            run_id=run_id,
            run_dir=run_dir,
            log_path=run_dir / LOG_NAME,
            report_path=run_dir / REPORT_NAME,
        )
    raise RuntimeError(f"Could not allocate a run directory under {root}")


def append_log(path: Path, message: str) -> None:
    with path.open("a", encoding="utf-8") as fh:
        fh.write(message.rstrip() + "\n")


def _write_json(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False)
        fh.write("\n")


def write_report(run_dir: Path, report: RunReport) -> Path:
    path = run_dir / REPORT_NAME
    _write_json(path, report.to_dict())
    return path


def write_run_status(run_dir: Path, report: RunReport, *, state: str = "completed") -> None:
    """Record ``report`` as the latest run in the shared status file."""
    _write_json(
        status_path(),
        {
            "run_id": report.run_id,
            "run_dir": str(run_dir),
            "url": report.url,
            "state": state,
            "result": report.result,
            "final_state": report.final_state,
            "reloads": report.reloads,
            "instances": report.instances,
            "downloads": list(report.downloads),
            "report_path": str(run_dir / REPORT_NAME),
            "updated_at_utc": datetime.now(timezone.utc).isoformat(),
        },
    )


def status_payload() -> dict[str, Any]:
    path = status_path()
    if not path.exists():
        return {"status": "no-runs"}
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def tail_lines(path: Path, line_count: int) -> list[str]:
    if not path.exists():
        return []
    with path.open("r", encoding="utf-8") as fh:
        lines = fh.readlines()
    return [line.rstrip("\n") for line in lines[-line_count:]]
