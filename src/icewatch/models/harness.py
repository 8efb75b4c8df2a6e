"""Validation harness results."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class CheckName(StrEnum):
    NOTIFICATION_RESPONSE = "Notification Response Time"
    MULTIPLE_ALERTS = "Reliability Under Multiple Alerts"
    NETWORK_ROBUSTNESS = "Network Robustness"


class CheckStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (CheckStatus.PASSED, CheckStatus.FAILED)


class SuiteOutcome(StrEnum):
    ALL_PASSED = "all_passed"
    ANY_FAILED = "any_failed"
    MIXED = "mixed"


class CheckResult(BaseModel):
    """Verdict of a single harness check.

    ``duration_ms`` is only reported by checks that measure a latency.
    """

    model_config = ConfigDict(frozen=True)

    name: CheckName
    constraint: str
    status: CheckStatus = CheckStatus.IDLE
    details: str | None = None
    duration_ms: int | None = None


class SuiteReport(BaseModel):
    model_config = ConfigDict(frozen=True)

    results: tuple[CheckResult, ...]

    @property
    def passed_count(self) -> int:
        return sum(1 for result in self.results if result.status == CheckStatus.PASSED)

    @property
    def outcome(self) -> SuiteOutcome:
        if self.results and all(result.status == CheckStatus.PASSED for result in self.results):
            return SuiteOutcome.ALL_PASSED
        if any(result.status == CheckStatus.FAILED for result in self.results):
            return SuiteOutcome.ANY_FAILED
        return SuiteOutcome.MIXED

    @property
    def all_passed(self) -> bool:
        return self.outcome == SuiteOutcome.ALL_PASSED

    def summary(self) -> str:
        return f"{self.passed_count}/{len(self.results)} tests completed successfully"
