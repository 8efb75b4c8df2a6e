from __future__ import annotations

import asyncio
import random
from typing import TYPE_CHECKING, Any

import pytest

from icewatch.client import IcewatchClient
from icewatch.config import HarnessTimings
from icewatch.exceptions import IcewatchBackendError, IcewatchError
from icewatch.feed import ChangeFeed
from icewatch.harness import ValidationHarness
from icewatch.models.harness import CheckName, CheckResult, CheckStatus, SuiteOutcome

if TYPE_CHECKING:
    from conftest import FakeBackend


def _harness(
    client: IcewatchClient,
    feed: ChangeFeed,
    timings: HarnessTimings,
    updates: list[CheckResult] | None = None,
    progress: list[int] | None = None,
) -> ValidationHarness:
    return ValidationHarness(
        client,
        feed,
        timings=timings,
        on_update=updates.append if updates is not None else None,
        on_progress=progress.append if progress is not None else None,
        rng=random.Random(7),
    )


def _is_multi_alert_index(record: dict[str, Any], indexes: set[str]) -> bool:
    sensor_id = str(record.get("sensor_id", ""))
    return sensor_id.startswith("MULTI-TEST-") and sensor_id.rsplit("-", 1)[1] in indexes


@pytest.mark.asyncio
async def test_notification_response_passes_within_limit(
    client: IcewatchClient, feed: ChangeFeed, backend: FakeBackend, fast_timings: HarnessTimings
) -> None:
    harness = _harness(client, feed, fast_timings)

    result = await harness.run_notification_response()

    assert result.status == CheckStatus.PASSED
    assert result.duration_ms is not None
    assert result.details == f"Notification received in {result.duration_ms}ms"
    assert result.constraint == "≤ 0.2 seconds"
    assert backend.channels == []
    written = backend.tables["ice_detections"]
    assert len(written) == 1
    assert written[0]["sensor_id"].startswith("TEST-")


@pytest.mark.asyncio
async def test_notification_response_late_delivery_fails_with_elapsed(
    client: IcewatchClient, feed: ChangeFeed, backend: FakeBackend, fast_timings: HarnessTimings
) -> None:
    backend.latency = 0.5
    harness = _harness(client, feed, fast_timings)

    result = await harness.run_notification_response()

    assert result.status == CheckStatus.FAILED
    assert result.duration_ms is not None
    assert result.duration_ms >= 450
    assert result.details == f"Response time {result.duration_ms}ms exceeded 0.2 second limit"


@pytest.mark.asyncio
async def test_notification_response_times_out(
    client: IcewatchClient, feed: ChangeFeed, backend: FakeBackend, fast_timings: HarnessTimings
) -> None:
    backend.latency = 1.0
    timings = HarnessTimings(response_limit=0.1, response_timeout=0.2)
    harness = _harness(client, feed, timings)

    result = await harness.run_notification_response()

    assert result.status == CheckStatus.FAILED
    assert result.details == "No notification received within 0.2 seconds"
    assert result.duration_ms is None
    assert backend.channels == []


@pytest.mark.asyncio
async def test_multiple_alerts_all_delivered(
    client: IcewatchClient, feed: ChangeFeed, backend: FakeBackend, fast_timings: HarnessTimings
) -> None:
    harness = _harness(client, feed, fast_timings)

    result = await harness.run_multiple_alerts()

    assert result.status == CheckStatus.PASSED
    assert result.details == "Received 10/10 notifications (100.0%)"
    assert len(backend.tables["ice_detections"]) == 10


@pytest.mark.asyncio
async def test_multiple_alerts_with_losses_fails(
    client: IcewatchClient, feed: ChangeFeed, backend: FakeBackend, fast_timings: HarnessTimings
) -> None:
    backend.drop = lambda record: _is_multi_alert_index(record, {"0", "4", "9"})
    harness = _harness(client, feed, fast_timings)

    result = await harness.run_multiple_alerts()

    assert result.status == CheckStatus.FAILED
    assert result.details == "Received 7/10 notifications (70.0%)"


@pytest.mark.asyncio
async def test_network_robustness_passes_after_resubscription(
    client: IcewatchClient, feed: ChangeFeed, backend: FakeBackend, fast_timings: HarnessTimings
) -> None:
    harness = _harness(client, feed, fast_timings)

    result = await harness.run_network_robustness()

    assert result.status == CheckStatus.PASSED
    assert result.details == "All messages delivered after resubscription"
    sensor_ids = [row["sensor_id"] for row in backend.tables["ice_detections"]]
    assert sensor_ids[0].startswith("NET-TEST-BEFORE-")
    assert sensor_ids[1].startswith("NET-TEST-AFTER-")


@pytest.mark.asyncio
async def test_network_robustness_fails_without_events(
    client: IcewatchClient, feed: ChangeFeed, backend: FakeBackend, fast_timings: HarnessTimings
) -> None:
    backend.drop = lambda record: str(record.get("sensor_id", "")).startswith("NET-TEST-AFTER-")
    harness = _harness(client, feed, fast_timings)

    result = await harness.run_network_robustness()

    assert result.status == CheckStatus.FAILED
    assert result.details == "Message loss detected: no events received after resubscription"


@pytest.mark.asyncio
async def test_write_error_fails_check_with_message(
    client: IcewatchClient, feed: ChangeFeed, backend: FakeBackend, fast_timings: HarnessTimings
) -> None:
    backend.insert_error = IcewatchBackendError("HTTP 401 from /rest/v1/ice_detections", status_code=401)
    harness = _harness(client, feed, fast_timings)

    result = await harness.run_notification_response()

    assert result.status == CheckStatus.FAILED
    assert result.details == "Error: HTTP 401 from /rest/v1/ice_detections"
    assert backend.channels == []


@pytest.mark.asyncio
async def test_run_all_resets_and_finishes_every_check(
    client: IcewatchClient, feed: ChangeFeed, backend: FakeBackend, fast_timings: HarnessTimings
) -> None:
    updates: list[CheckResult] = []
    progress: list[int] = []
    harness = _harness(client, feed, fast_timings, updates, progress)

    report = await harness.run_all()

    assert report.all_passed
    assert report.outcome == SuiteOutcome.ALL_PASSED
    assert report.summary() == "3/3 tests completed successfully"
    assert [r.name for r in report.results] == list(CheckName)
    assert progress == [0, 10, 40, 45, 75, 80, 100]
    assert harness.running is False
    assert backend.channels == []

    # Every check passes through idle -> running -> terminal.
    for name in CheckName:
        statuses = [u.status for u in updates if u.name == name]
        assert statuses[-3:-1] == [CheckStatus.IDLE, CheckStatus.RUNNING]
        assert statuses[-1].is_terminal


@pytest.mark.asyncio
async def test_run_all_reports_failures(
    client: IcewatchClient, feed: ChangeFeed, backend: FakeBackend, fast_timings: HarnessTimings
) -> None:
    backend.drop = lambda record: _is_multi_alert_index(record, {"3"})
    harness = _harness(client, feed, fast_timings)

    report = await harness.run_all()

    assert report.outcome == SuiteOutcome.ANY_FAILED
    assert report.summary() == "2/3 tests completed successfully"
    assert harness.result(CheckName.MULTIPLE_ALERTS).status == CheckStatus.FAILED
    assert harness.result(CheckName.NETWORK_ROBUSTNESS).status == CheckStatus.PASSED


@pytest.mark.asyncio
async def test_second_run_all_is_rejected_while_running(
    client: IcewatchClient, feed: ChangeFeed, fast_timings: HarnessTimings
) -> None:
    harness = _harness(client, feed, fast_timings)

    first = asyncio.create_task(harness.run_all())
    await asyncio.sleep(0)
    with pytest.raises(IcewatchError):
        await harness.run_all()

    report = await first
    assert report.all_passed


@pytest.mark.asyncio
async def test_cancelled_check_is_marked_failed(
    client: IcewatchClient, feed: ChangeFeed, backend: FakeBackend, fast_timings: HarnessTimings
) -> None:
    backend.latency = 5.0
    harness = _harness(client, feed, fast_timings)

    task = asyncio.create_task(harness.run_notification_response())
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    result = harness.result(CheckName.NOTIFICATION_RESPONSE)
    assert result.status == CheckStatus.FAILED
    assert result.details == "Cancelled before completion"
    assert backend.channels == []


def test_reset_puts_every_check_back_to_idle(client: IcewatchClient, feed: ChangeFeed) -> None:
    harness = ValidationHarness(client, feed)

    assert [r.status for r in harness.results] == [CheckStatus.IDLE] * 3
    assert [r.constraint for r in harness.results] == ["≤ 3 seconds", "100% delivery rate", "No message loss"]
