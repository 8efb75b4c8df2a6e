#!/usr/bin/env python3
"""Seed (or clear) demo data.

Usage
-----
::

    python scripts/seed_data.py --city Denver --count 20
    python scripts/seed_data.py --sensor MN-001 "I-35W Bridge" 44.97 -93.26
    python scripts/seed_data.py --clear

Options::

    --city NAME          City preset for generated detections (default: New York)
    --count N            Number of detections to generate (1-50)
    --interval SECONDS   Pause between generated writes (default: 0.1)
    --sensor ID NAME LAT LNG
                         Register a sensor before generating
    --clear              Delete all detections (and sensors with --clear-sensors)
    --list-cities        Print the available city presets
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Allow running from the repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from icewatch import IcewatchClient, IcewatchConfig, IcewatchError, SensorDraft  # noqa: E402
from icewatch.generate import CITIES, MAX_BULK_COUNT, generate_bulk_detections  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed or clear demo sensors and detections.")
    parser.add_argument("--city", default="New York", choices=sorted(CITIES), help="City preset")
    parser.add_argument("--count", type=int, default=0, help=f"Detections to generate (1-{MAX_BULK_COUNT})")
    parser.add_argument("--interval", type=float, default=0.1, help="Pause between generated writes")
    parser.add_argument(
        "--sensor",
        nargs=4,
        metavar=("ID", "NAME", "LAT", "LNG"),
        help="Register a sensor",
    )
    parser.add_argument("--clear", action="store_true", help="Delete all detections first")
    parser.add_argument("--clear-sensors", action="store_true", help="With --clear, delete all sensors too")
    parser.add_argument("--list-cities", action="store_true", help="Print city presets and exit")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> None:
    config = IcewatchConfig.from_env()
    async with IcewatchClient(config) as client:
        if args.clear:
            await client.clear_detections()
            print("Cleared all detections")
            if args.clear_sensors:
                await client.clear_sensors()
                print("Cleared all sensors")

        if args.sensor:
            sensor_id, name, lat, lng = args.sensor
            sensor = await client.create_sensor(
                SensorDraft(sensor_id=sensor_id, name=name, latitude=float(lat), longitude=float(lng))
            )
            print(f"Registered sensor {sensor.sensor_id} ({sensor.name}) id={sensor.id}")

        if args.count:
            created = await generate_bulk_detections(client, args.city, args.count, interval=args.interval)
            print(f"Generated {len(created)} detections in {CITIES[args.city].label}")


def main() -> int:
    args = _parse_args()
    if args.list_cities:
        for name, city in CITIES.items():
            print(f"{name:<12} {city.latitude:>9.4f} {city.longitude:>10.4f}  {city.label}")
        return 0

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(run(args))
    except (IcewatchError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
