"""CLI entrypoint for autodl."""

from __future__ import annotations

import argparse
import json
from pathlib import Path

from autodl.config import AutoDownloadConfig
from autodl.diagnostics import RunLog
from autodl.storage import (
    LOG_NAME,
    append_log,
    create_run_context,
    status_payload,
    tail_lines,
)
from autodl.web_backend import run_auto_download
from autodl.web_common import is_valid_url, normalize_url
from autodl.web_target_preflight import ensure_host_reachable


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    if args.command == "run":
        run_command(
            args.url,
            cdp_url=args.cdp_url,
            headed=args.headed,
            linger_seconds=args.linger_seconds,
            skip_preflight=args.skip_preflight,
            verbose=args.verbose,
            overrides={
                "max_reloads": args.max_reloads,
                "initial_wait_ms": args.initial_wait_ms,
                "poll_interval_ms": args.poll_interval_ms,
                "watchdog_ms": args.watchdog_ms,
            },
        )
        return
    if args.command == "status":
        print(json.dumps(status_payload(), indent=2, ensure_ascii=False))
        return
    if args.command == "logs":
        logs_command(args.tail)
        return

    parser.print_help()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="autodl",
        description="Wait for a page's download control and trigger it.",
    )
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", help="Run against a page: autodl run <url>")
    run_parser.add_argument("url", type=str)
    run_parser.add_argument(
        "--cdp-url",
        default=None,
        help="Attach to a running Chromium over CDP instead of launching one.",
    )
    run_parser.add_argument("--headed", action="store_true", help="Show the launched browser window.")
    run_parser.add_argument(
        "--linger-seconds",
        type=float,
        default=5.0,
        help="Keep the page open this long after the click so the download can start.",
    )
    run_parser.add_argument("--max-reloads", type=int, default=None)
    run_parser.add_argument("--initial-wait-ms", type=int, default=None)
    run_parser.add_argument("--poll-interval-ms", type=int, default=None)
    run_parser.add_argument("--watchdog-ms", type=int, default=None)
    run_parser.add_argument(
        "--skip-preflight",
        action="store_true",
        help="Do not check that the target host accepts connections first.",
    )
    run_parser.add_argument("--verbose", action="store_true", help="Echo the run log to stderr.")

    subparsers.add_parser("status", help="Show latest run status")

    logs_parser = subparsers.add_parser("logs", help="Tail the log of the latest run")
    logs_parser.add_argument("--tail", type=int, default=200)
    return parser


def run_command(
    url: str,
    *,
    cdp_url: str | None = None,
    headed: bool = False,
    linger_seconds: float = 0.0,
    skip_preflight: bool = False,
    verbose: bool = False,
    overrides: dict[str, int | None] | None = None,
) -> None:
    target = normalize_url(url)
    if not is_valid_url(target):
        raise SystemExit(f"autodl requires an http(s) URL, got: {url}")
    if cdp_url and not is_valid_url(cdp_url):
        raise SystemExit(f"Invalid --cdp-url: {cdp_url}")
    try:
        config = AutoDownloadConfig.from_env().with_overrides(**(overrides or {}))
    except (TypeError, ValueError) as exc:
        raise SystemExit(f"Invalid configuration: {exc}") from exc
    endpoint = None
    if not skip_preflight:
        endpoint = ensure_host_reachable(target)

    ctx = create_run_context()
    append_log(ctx.log_path, f"run_id={ctx.run_id}")
    append_log(ctx.log_path, f"url={target}")
    if endpoint is not None:
        append_log(ctx.log_path, f"preflight={endpoint[0]}:{endpoint[1]} reachable")
    append_log(
        ctx.log_path,
        f"initial_wait_ms={config.initial_wait_ms} poll_interval_ms={config.poll_interval_ms} "
        f"watchdog_ms={config.watchdog_ms} max_reloads={config.max_reloads}",
    )
    log = RunLog(ctx.log_path, echo=verbose)

    report = run_auto_download(
        target,
        ctx.run_dir,
        config=config,
        log=log,
        cdp_url=cdp_url,
        headed=headed,
        linger_seconds=linger_seconds,
    )
    print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))


def logs_command(tail_count: int) -> None:
    payload = status_payload()
    if payload.get("status") == "no-runs":
        raise SystemExit("No runs available yet.")
    run_dir = Path(payload["run_dir"])
    print("\n".join(tail_lines(run_dir / LOG_NAME, tail_count)))


if __name__ == "__main__":
    main()
