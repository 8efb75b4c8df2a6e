"""Change-feed validation harness.

Writes synthetic detections through the regular write path and watches the
change feed for them, producing a pass/fail verdict per check:

1. Notification Response Time: one write, latency must stay within
   ``HarnessTimings.response_limit``.
2. Reliability Under Multiple Alerts: a burst of tagged writes, every one
   must be delivered.
3. Network Robustness: after an idle interruption window a fresh
   subscription must receive new events.  No transport-level disconnect is
   injected, so this only proves that resubscribing works.

Checks run strictly one after another.  Each owns its subscription through
``ChangeFeed.listen`` so the connection is released on every exit path.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable

from icewatch._constants import MULTI_ALERT_TAG, NETWORK_AFTER_TAG, NETWORK_BEFORE_TAG, RESPONSE_TAG
from icewatch.config import HarnessTimings
from icewatch.exceptions import IcewatchError
from icewatch.feed import ChangeFeed
from icewatch.generate import DetectionWriter, synthetic_detection
from icewatch.models.change import ChangeEvent, ChangeKind, Resource
from icewatch.models.detection import Severity
from icewatch.models.harness import CheckName, CheckResult, CheckStatus, SuiteReport

_logger = logging.getLogger(__name__)

_CONSTRAINTS: dict[CheckName, str] = {
    CheckName.MULTIPLE_ALERTS: "100% delivery rate",
    CheckName.NETWORK_ROBUSTNESS: "No message loss",
}

#: Progress (percent) reported before and after each check of a suite run.
_PROGRESS: dict[CheckName, tuple[int, int]] = {
    CheckName.NOTIFICATION_RESPONSE: (10, 40),
    CheckName.MULTIPLE_ALERTS: (45, 75),
    CheckName.NETWORK_ROBUSTNESS: (80, 100),
}


def _seconds(value: float) -> str:
    return f"{value:g} second" if value == 1 else f"{value:g} seconds"


class _TaggedCollector:
    """Counts feed events whose ``sensor_id`` starts with a tag."""

    def __init__(self, prefix: str, *, target: int, clock: Callable[[], float]) -> None:
        self._prefix = prefix
        self._target = target
        self._clock = clock
        self.count = 0
        self.first_at: float | None = None
        self.done = asyncio.Event()

    def __call__(self, event: ChangeEvent) -> None:
        sensor_id = event.record.get("sensor_id")
        if not isinstance(sensor_id, str) or not sensor_id.startswith(self._prefix):
            return
        self.count += 1
        if self.first_at is None:
            self.first_at = self._clock()
        if self.count >= self._target:
            self.done.set()

    async def wait(self, timeout: float) -> bool:
        """Wait until the target count is reached; ``False`` on timeout."""
        if timeout <= 0:
            return self.done.is_set()
        try:
            await asyncio.wait_for(self.done.wait(), timeout)
        except TimeoutError:
            return False
        return True


class ValidationHarness:
    """Runs the change-feed checks against a backend.

    Parameters
    ----------
    writer
        Anything with ``create_detection`` (normally an
        :class:`~icewatch.client.IcewatchClient`).
    feed
        The change feed under test.
    timings
        Delays and limits; defaults reproduce the production constraints.
    on_update
        Called with every new :class:`CheckResult` state.
    on_progress
        Called with the suite progress in percent.
    """

    def __init__(
        self,
        writer: DetectionWriter,
        feed: ChangeFeed,
        *,
        timings: HarnessTimings | None = None,
        on_update: Callable[[CheckResult], None] | None = None,
        on_progress: Callable[[int], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ) -> None:
        self._writer = writer
        self._feed = feed
        self._timings = timings or HarnessTimings()
        self._on_update = on_update
        self._on_progress = on_progress
        self._clock = clock
        self._rng = rng or random.Random()
        self._running = False
        self._results: dict[CheckName, CheckResult] = {}
        self.reset()

    @property
    def timings(self) -> HarnessTimings:
        return self._timings

    @property
    def running(self) -> bool:
        return self._running

    @property
    def results(self) -> tuple[CheckResult, ...]:
        return tuple(self._results[name] for name in CheckName)

    def result(self, name: CheckName) -> CheckResult:
        return self._results[name]

    def reset(self) -> None:
        """Put every check back to ``idle`` and clear its measurements."""
        for name in CheckName:
            self._results[name] = CheckResult(name=name, constraint=self._constraint(name))
            self._notify(self._results[name])

    def _constraint(self, name: CheckName) -> str:
        if name == CheckName.NOTIFICATION_RESPONSE:
            return f"≤ {_seconds(self._timings.response_limit)}"
        return _CONSTRAINTS[name]

    def _notify(self, result: CheckResult) -> None:
        if self._on_update is not None:
            self._on_update(result)

    def _progress(self, percent: int) -> None:
        if self._on_progress is not None:
            self._on_progress(percent)

    def _set(
        self,
        name: CheckName,
        status: CheckStatus,
        details: str | None = None,
        duration_ms: int | None = None,
    ) -> CheckResult:
        result = self._results[name].model_copy(
            update={"status": status, "details": details, "duration_ms": duration_ms}
        )
        self._results[name] = result
        self._notify(result)
        if status.is_terminal:
            _logger.info("Check %r %s: %s", name.value, status.value, details)
        return result

    def _stamp(self) -> int:
        return int(time.time() * 1000)

    async def _guarded(self, name: CheckName, check: Callable[[], Awaitable[CheckResult]]) -> CheckResult:
        """Run *check* so that it always ends in a terminal state."""
        self._set(name, CheckStatus.RUNNING)
        try:
            return await check()
        except asyncio.CancelledError:
            self._set(name, CheckStatus.FAILED, "Cancelled before completion")
            raise
        except IcewatchError as exc:
            _logger.debug("Check %r failed with backend error", name.value, exc_info=True)
            return self._set(name, CheckStatus.FAILED, f"Error: {exc}")
        except Exception as exc:
            _logger.exception("Check %r raised unexpectedly", name.value)
            return self._set(name, CheckStatus.FAILED, f"Error: {exc}")

    # ------------------------------------------------------------------
    # Check 1: notification response time
    # ------------------------------------------------------------------

    async def run_notification_response(self) -> CheckResult:
        """Measure write-to-notification latency for a single detection."""
        return await self._guarded(CheckName.NOTIFICATION_RESPONSE, self._notification_response)

    async def _notification_response(self) -> CheckResult:
        name = CheckName.NOTIFICATION_RESPONSE
        timings = self._timings
        sensor_id = f"{RESPONSE_TAG}{self._stamp()}"
        collector = _TaggedCollector(sensor_id, target=1, clock=self._clock)

        async with self._feed.listen(Resource.DETECTIONS, ChangeKind.INSERT, collector, name="test-notification"):
            started = self._clock()
            await self._writer.create_detection(
                synthetic_detection(
                    sensor_id,
                    road_condition="Test detection for response time",
                    jitter=0.1,
                    rng=self._rng,
                )
            )
            remaining = timings.response_timeout - (self._clock() - started)
            arrived = await collector.wait(remaining)

        if not arrived or collector.first_at is None:
            details = f"No notification received within {_seconds(timings.response_timeout)}"
            return self._set(name, CheckStatus.FAILED, details)

        elapsed_ms = max(0, round((collector.first_at - started) * 1000))
        if elapsed_ms <= timings.response_limit * 1000:
            return self._set(name, CheckStatus.PASSED, f"Notification received in {elapsed_ms}ms", elapsed_ms)
        return self._set(
            name,
            CheckStatus.FAILED,
            f"Response time {elapsed_ms}ms exceeded {timings.response_limit:g} second limit",
            elapsed_ms,
        )

    # ------------------------------------------------------------------
    # Check 2: reliability under multiple alerts
    # ------------------------------------------------------------------

    async def run_multiple_alerts(self) -> CheckResult:
        """Write a burst of tagged detections and count their notifications."""
        return await self._guarded(CheckName.MULTIPLE_ALERTS, self._multiple_alerts)

    async def _multiple_alerts(self) -> CheckResult:
        name = CheckName.MULTIPLE_ALERTS
        timings = self._timings
        total = timings.alert_count
        prefix = f"{MULTI_ALERT_TAG}{self._stamp()}-"
        collector = _TaggedCollector(prefix, target=total, clock=self._clock)
        severities = [Severity.LOW, Severity.MEDIUM, Severity.HIGH]

        async with self._feed.listen(Resource.DETECTIONS, ChangeKind.INSERT, collector, name="test-multiple"):
            writes: list[asyncio.Task[object]] = []
            try:
                for index in range(total):
                    draft = synthetic_detection(
                        f"{prefix}{index}",
                        road_condition=f"Test alert {index + 1}",
                        severity=self._rng.choice(severities),
                        temperature=round(self._rng.random() * 10 - 5, 2),
                        humidity=round(self._rng.random() * 100, 2),
                        jitter=0.1,
                        rng=self._rng,
                    )
                    writes.append(asyncio.create_task(self._writer.create_detection(draft)))
                    await asyncio.sleep(timings.alert_interval)
                await asyncio.gather(*writes)
            except BaseException:
                for task in writes:
                    task.cancel()
                raise
            await collector.wait(timings.alert_grace)
            received = collector.count

        rate = received / total * 100 if total else 0.0
        details = f"Received {received}/{total} notifications ({rate:.1f}%)"
        status = CheckStatus.PASSED if received == total else CheckStatus.FAILED
        return self._set(name, status, details)

    # ------------------------------------------------------------------
    # Check 3: network robustness (resubscription)
    # ------------------------------------------------------------------

    async def run_network_robustness(self) -> CheckResult:
        """Verify that a fresh subscription receives events after an idle window."""
        return await self._guarded(CheckName.NETWORK_ROBUSTNESS, self._network_robustness)

    async def _network_robustness(self) -> CheckResult:
        name = CheckName.NETWORK_ROBUSTNESS
        timings = self._timings

        await self._writer.create_detection(
            synthetic_detection(
                f"{NETWORK_BEFORE_TAG}{self._stamp()}",
                road_condition="Before disconnect test",
                severity=Severity.LOW,
                temperature=-2.0,
                humidity=90.0,
            )
        )
        _logger.info("Simulating network interruption for %s", _seconds(timings.interruption))
        await asyncio.sleep(timings.interruption)

        after_id = f"{NETWORK_AFTER_TAG}{self._stamp()}"
        collector = _TaggedCollector(after_id, target=1, clock=self._clock)
        async with self._feed.listen(Resource.DETECTIONS, ChangeKind.INSERT, collector, name="test-network"):
            _logger.info("Resubscribed after interruption")
            await self._writer.create_detection(
                synthetic_detection(
                    after_id,
                    road_condition="After reconnect test",
                    severity=Severity.MEDIUM,
                    temperature=-3.0,
                    humidity=85.0,
                )
            )
            await collector.wait(timings.after_wait)

        if collector.count > 0:
            return self._set(name, CheckStatus.PASSED, "All messages delivered after resubscription")
        return self._set(name, CheckStatus.FAILED, "Message loss detected: no events received after resubscription")

    # ------------------------------------------------------------------
    # Suite
    # ------------------------------------------------------------------

    async def run_all(self) -> SuiteReport:
        """Reset every check, run them in order and report the outcome.

        Raises
        ------
        IcewatchError
            If a suite run is already in progress.
        """
        if self._running:
            raise IcewatchError("validation suite is already running")
        self._running = True
        try:
            self._progress(0)
            self.reset()
            runners = [
                (CheckName.NOTIFICATION_RESPONSE, self.run_notification_response),
                (CheckName.MULTIPLE_ALERTS, self.run_multiple_alerts),
                (CheckName.NETWORK_ROBUSTNESS, self.run_network_robustness),
            ]
            for index, (name, runner) in enumerate(runners):
                if index:
                    await asyncio.sleep(self._timings.inter_check_delay)
                before, after = _PROGRESS[name]
                self._progress(before)
                await runner()
                self._progress(after)
        finally:
            self._running = False

        report = SuiteReport(results=self.results)
        _logger.info("Validation suite finished: %s (%s)", report.outcome.value, report.summary())
        return report
