import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from autodl.config import AutoDownloadConfig
from autodl.diagnostics import RunLog
from autodl.models import MachineOutcome
from autodl.web_backend import build_report, run_auto_download
from autodl.web_run_loop import DriverOutcome


def _outcome(*states: str, activated: bool = True) -> DriverOutcome:
    outcomes = [
        MachineOutcome(state=state, history=("init", "scanning", state)) for state in states[:-1]
    ]
    outcomes.append(
        MachineOutcome(
            state=states[-1],
            candidate="<button> 'Download' (tier 2, button)" if states[-1] == "resolved" else "",
            activated=activated and states[-1] == "resolved",
            resolved_by="init" if states[-1] == "resolved" else "",
            history=("init", states[-1]),
        )
    )
    return DriverOutcome(final_state=states[-1], instances=len(states), reloads=len(states) - 1, outcomes=outcomes)


class BuildReportTests(unittest.TestCase):
    def _build(self, outcome: DriverOutcome):
        return build_report(
            run_id="r1",
            url="https://h.test/d",
            outcome=outcome,
            observations=[],
            downloads=[],
            log_path=None,
        )

    def test_activated_resolution_is_success(self) -> None:
        report = self._build(_outcome("reload_pending", "resolved"))
        self.assertEqual(report.result, "success")
        self.assertEqual(report.reloads, 1)
        self.assertEqual(report.instances, 2)
        self.assertIn("via=init", report.observations[-1])

    def test_failed_activation_is_partial(self) -> None:
        self.assertEqual(self._build(_outcome("resolved", activated=False)).result, "partial")

    def test_give_up_and_timeout_are_failed(self) -> None:
        self.assertEqual(self._build(_outcome("given_up")).result, "failed")
        self.assertEqual(self._build(_outcome("timed_out")).result, "failed")


class RunAutoDownloadTests(unittest.TestCase):
    def test_missing_playwright_exits(self) -> None:
        with patch("autodl.web_backend.playwright_available", return_value=False):
            with self.assertRaises(SystemExit):
                run_auto_download("https://h.test/d", Path("."), config=AutoDownloadConfig(), log=RunLog())

    def test_browser_failure_still_writes_failed_report_and_status(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            run_dir = Path(tmp) / "r9"
            run_dir.mkdir()
            status_path = Path(tmp) / "status.json"

            async def _boom(*args, **kwargs):
                raise RuntimeError("browser crashed")

            with patch("autodl.web_backend.playwright_available", return_value=True), patch(
                "autodl.web_backend._execute_playwright", side_effect=_boom
            ), patch.dict("os.environ", {"AUTODL_RUNS_DIR": tmp}):
                log = RunLog()
                report = run_auto_download(
                    "https://h.test/d", run_dir, config=AutoDownloadConfig(), log=log
                )

            self.assertEqual(report.result, "failed")
            self.assertTrue(any("browser crashed" in line for line in report.observations))
            saved = json.loads((run_dir / "report.json").read_text(encoding="utf-8"))
            self.assertEqual(saved["result"], "failed")
            status = json.loads(status_path.read_text(encoding="utf-8"))
            self.assertEqual(status["result"], "failed")
            self.assertEqual(status["run_id"], "r9")
            self.assertEqual(status["state"], "completed")
            self.assertEqual(status["report_path"], str(run_dir / "report.json"))
            self.assertTrue(any("browser crashed" in msg for msg in log.messages("error")))


if __name__ == "__main__":
    unittest.main()
