"""Update acceptance policy for the view cache.

The default is last-arrival-wins: whatever the feed delivers last for a
record id is what the cache shows.  Readers that merge several feed
connections can opt into a monotonic version guard instead.
"""

from __future__ import annotations

from datetime import datetime

from icewatch.models.detection import Detection
from icewatch.models.sensor import Sensor


def record_version(record: Detection | Sensor) -> datetime | None:
    """Best-effort monotonic version of a record.

    Detections carry a trigger-maintained ``updated_at``; sensors only change
    status alongside ``last_ping``.
    """
    if isinstance(record, Detection):
        return record.updated_at
    return record.last_ping


def should_accept_update(
    *,
    cached: Detection | Sensor,
    incoming: Detection | Sensor,
    reject_stale: bool,
) -> bool:
    """Decide whether *incoming* may replace *cached*.

    Policy:
    - Without ``reject_stale`` every update is accepted (arrival order wins).
    - With it, an update is rejected only when both versions exist and the
      incoming one is strictly older.
    """
    if not reject_stale:
        return True
    cached_version = record_version(cached)
    incoming_version = record_version(incoming)
    if cached_version is None or incoming_version is None:
        return True
    return incoming_version >= cached_version
