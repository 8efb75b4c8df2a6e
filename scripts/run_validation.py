#!/usr/bin/env python3
"""Run the change-feed validation suite against a live backend.

Writes tagged synthetic detections (``TEST-``, ``MULTI-TEST-``,
``NET-TEST-``) and checks that the change feed reports them in time.

Usage
-----
Set environment variables and run::

    export ICEWATCH_URL="https://abc.supabase.co"
    export ICEWATCH_API_KEY="anon-key"
    python scripts/run_validation.py

Options::

    --check NAME         Run a single check (response, alerts, network)
    --json               Output results as machine-readable JSON
    --verbose, -v        Enable debug logging

Exits 0 when every check passed, 1 otherwise, 2 on configuration errors.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from icewatch import CheckResult, CheckStatus, IcewatchClient, IcewatchConfig, IcewatchError  # noqa: E402

_STATUS_MARK = {
    CheckStatus.IDLE: " ",
    CheckStatus.RUNNING: "…",
    CheckStatus.PASSED: "✓",
    CheckStatus.FAILED: "✗",
}


def _print_update(result: CheckResult) -> None:
    if result.status == CheckStatus.IDLE:
        return
    detail = f" - {result.details}" if result.details else ""
    print(f"[{_STATUS_MARK[result.status]}] {result.name.value} ({result.constraint}){detail}")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Validate change-feed delivery against a live backend.")
    parser.add_argument(
        "--check",
        choices=["response", "alerts", "network"],
        help="Run a single check instead of the full suite.",
    )
    parser.add_argument("--json", action="store_true", dest="json_mode", help="Output machine-readable JSON")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> int:
    config = IcewatchConfig.from_env()
    async with IcewatchClient(config) as client:
        harness = client.harness(on_update=None if args.json_mode else _print_update)
        if args.check is None:
            report = await harness.run_all()
            results = report.results
            passed = report.all_passed
            summary = report.summary()
        else:
            runner = {
                "response": harness.run_notification_response,
                "alerts": harness.run_multiple_alerts,
                "network": harness.run_network_robustness,
            }[args.check]
            result = await runner()
            results = (result,)
            passed = result.status == CheckStatus.PASSED
            summary = f"{result.name.value}: {result.status.value}"

    if args.json_mode:
        print(json.dumps({"passed": passed, "results": [r.model_dump(mode="json") for r in results]}, indent=2))
    else:
        print(summary)
    return 0 if passed else 1


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        return 130
    except IcewatchError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
