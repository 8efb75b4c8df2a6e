#!/usr/bin/env python3
"""Print a live view of sensors and black-ice detections.

Loads the most recent detections and all sensors, then prints every insert
or update delivered by the change feed together with the headline stats.
Reconnects with exponential backoff when the feed connection drops.

Usage
-----
::

    export ICEWATCH_URL="https://abc.supabase.co"
    export ICEWATCH_API_KEY="anon-key"
    python scripts/live_monitor.py --duration 300
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import sys
from pathlib import Path

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from icewatch import (  # noqa: E402
    ChangeEvent,
    IcewatchClient,
    IcewatchConfig,
    IcewatchError,
    LiveView,
    ReconnectPolicy,
    Resource,
    ViewSnapshot,
)


def _format_stats(snapshot: ViewSnapshot) -> str:
    stats = snapshot.stats()
    average = f"{stats.average_temperature:.1f}°C" if stats.average_temperature is not None else "n/a"
    return (
        f"active alerts={stats.active_alerts} "
        f"sensors online={stats.online_sensors}/{stats.total_sensors} "
        f"detections={stats.total_detections} avg temp={average}"
    )


def _print_snapshot(snapshot: ViewSnapshot, *, limit: int) -> None:
    print(f"[monitor] {_format_stats(snapshot)}")
    for detection in snapshot.active_detections()[:limit]:
        detected = detection.detected_at.isoformat(timespec="seconds") if detection.detected_at else "?"
        print(
            f"  {detection.severity.value:<8} {detection.sensor_id:<20} "
            f"({detection.latitude:.4f}, {detection.longitude:.4f}) {detected}"
        )


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Live monitor for sensors and ice detections.")
    parser.add_argument(
        "--duration",
        type=float,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument("--show", type=int, default=10, help="Active detections listed at startup.")
    parser.add_argument(
        "--max-reconnects",
        type=int,
        default=None,
        help="Give up after N failed reconnect attempts (default: retry forever).",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> None:
    config = IcewatchConfig.from_env()
    async with IcewatchClient(config) as client:
        view: LiveView | None = None

        def _on_change(event: ChangeEvent) -> None:
            if event.resource == Resource.DETECTIONS:
                label = event.record.get("sensor_id")
                status = event.record.get("severity")
            else:
                label = event.record.get("name") or event.record.get("sensor_id")
                status = event.record.get("status")
            print(f"[{event.kind.value.lower():<6}] {event.resource.value}: {label} ({status})")
            if view is not None:
                print(f"[monitor] {_format_stats(view.snapshot())}")

        view = client.live_view(
            reconnect=ReconnectPolicy(max_attempts=args.max_reconnects),
            on_change=_on_change,
        )
        async with view:
            _print_snapshot(view.snapshot(), limit=args.show)
            if args.duration > 0:
                await asyncio.sleep(args.duration)
            else:
                await asyncio.Event().wait()


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        with contextlib.suppress(KeyboardInterrupt):
            asyncio.run(run(args))
    except IcewatchError as exc:
        print(f"[monitor] {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
