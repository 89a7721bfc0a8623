"""Browser session for an auto-download run using Playwright."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

from autodl.config import AutoDownloadConfig
from autodl.constants import STATE_RESOLVED
from autodl.diagnostics import RunLog
from autodl.models import RunReport
from autodl.storage import write_report, write_run_status
from autodl.web_common import is_same_document, playwright_available, safe_page_title
from autodl.web_run_loop import DriverOutcome, run_until_settled
from autodl.web_surface import PlaywrightSurface


def run_auto_download(
    url: str,
    run_dir: Path,
    *,
    config: AutoDownloadConfig,
    log: RunLog,
    cdp_url: str | None = None,
    headed: bool = False,
    linger_seconds: float = 0.0,
) -> RunReport:
    if not playwright_available():
        raise SystemExit(
            "Playwright Python package is not installed. "
            "Install it (and run `playwright install chromium`) to use autodl."
        )

    observations: list[str] = []
    downloads: list[str] = []
    report: RunReport | None = None
    try:
        outcome = asyncio.run(
            _execute_playwright(
                url,
                config=config,
                log=log,
                observations=observations,
                downloads=downloads,
                cdp_url=cdp_url,
                headed=headed,
                linger_seconds=linger_seconds,
            )
        )
        report = build_report(
            run_id=run_dir.name,
            url=url,
            outcome=outcome,
            observations=observations,
            downloads=downloads,
            log_path=log.path,
        )
    except Exception as exc:
        msg = str(exc) or exc.__class__.__name__
        log.error(f"Browser session aborted: {msg}")
        observations.append(f"browser session aborted before completion: {msg}")
        report = RunReport(
            run_id=run_dir.name,
            url=url,
            final_state="",
            result="failed",
            reloads=0,
            instances=0,
            observations=observations,
            downloads=downloads,
            log_path=str(log.path or ""),
        )
    finally:
        if report is not None:
            try:
                write_report(run_dir, report)
                write_run_status(run_dir, report)
            except OSError as exc:
                log.error(f"Could not write run artifacts: {exc}")
    return report


def build_report(
    *,
    run_id: str,
    url: str,
    outcome: DriverOutcome,
    observations: list[str],
    downloads: list[str],
    log_path: Path | None,
) -> RunReport:
    if outcome.final_state == STATE_RESOLVED and outcome.activated:
        result = "success"
    elif outcome.final_state == STATE_RESOLVED:
        result = "partial"
    else:
        result = "failed"
    for idx, item in enumerate(outcome.outcomes, start=1):
        line = f"instance {idx}: {' -> '.join(item.history)}"
        if item.candidate:
            line += f" | control={item.candidate} via={item.resolved_by}"
        if item.busy_backoffs:
            line += f" | busy_backoffs={item.busy_backoffs}"
        observations.append(line)
    return RunReport(
        run_id=run_id,
        url=url,
        final_state=outcome.final_state,
        result=result,
        reloads=outcome.reloads,
        instances=outcome.instances,
        observations=observations,
        downloads=downloads,
        log_path=str(log_path or ""),
    )


async def _execute_playwright(
    url: str,
    *,
    config: AutoDownloadConfig,
    log: RunLog,
    observations: list[str],
    downloads: list[str],
    cdp_url: str | None,
    headed: bool,
    linger_seconds: float,
) -> DriverOutcome:
    from playwright.async_api import async_playwright

    async with async_playwright() as p:
        attached = bool(cdp_url)
        if attached:
            browser = await p.chromium.connect_over_cdp(cdp_url)
            context = browser.contexts[0] if browser.contexts else await browser.new_context(accept_downloads=True)
            page = context.pages[0] if context.pages else await context.new_page()
        else:
            browser = await _launch_browser(p, headed=headed)
            context = await browser.new_context(accept_downloads=True)
            page = await context.new_page()

        def on_download(download: Any) -> None:
            name = str(getattr(download, "suggested_filename", "") or "")
            downloads.append(name)
            log.info(f"Download started: {name}")

        page.on("download", on_download)

        if attached and is_same_document(page.url, url):
            observations.append("Navigation skipped (already at target)")
        else:
            await page.goto(url, wait_until="domcontentloaded")
            observations.append(f"Opened URL: {url}")
        observations.append(f"Page title: {await safe_page_title(page)}")

        outcome = await run_until_settled(PlaywrightSurface(page), config, log=log)

        if outcome.final_state == STATE_RESOLVED and linger_seconds > 0:
            await page.wait_for_timeout(int(linger_seconds * 1000))
        if not attached:
            await browser.close()
    return outcome


async def _launch_browser(playwright_obj: Any, *, headed: bool = False) -> Any:
    kwargs: dict[str, Any] = {"headless": not headed}
    try:
        return await playwright_obj.chromium.launch(channel="chrome", **kwargs)
    except Exception:
        return await playwright_obj.chromium.launch(**kwargs)
