"""Health scoring: bounded final-attempt history -> score, rates and trend.

Everything here is pure. The repository layer loads the history (newest
first, final attempts only, truncated to the overall window) and persists the
resulting snapshot.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from testwarden.exceptions import ConfigError
from testwarden.types import HealthTrend, Outcome

CRITICAL_SCORE = 50
DEGRADING_FAILURE_STREAK = 3
DEGRADING_DIVERGENCE = -15.0
IMPROVING_PASS_STREAK = 5
IMPROVING_SCORE = 80
FLAKINESS_PENALTY = 2


@dataclass(frozen=True)
class HealthConfig:
    """Window sizes and recency weight for the scorer."""

    overall_window: int = 50
    recent_window: int = 10
    recent_weight: float = 0.6

    def __post_init__(self) -> None:
        for name in ("overall_window", "recent_window"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ConfigError(f"{name} must be a positive integer, got {value!r}")
        if self.recent_window > self.overall_window:
            raise ConfigError("recent_window must not exceed overall_window")
        if not math.isfinite(self.recent_weight) or not 0.0 <= self.recent_weight <= 1.0:
            raise ConfigError(f"recent_weight must be within [0, 1], got {self.recent_weight!r}")


@dataclass(frozen=True)
class HistoryEntry:
    """The slice of a stored result the scorer needs."""

    outcome: str
    status: str
    duration_ms: int
    started_at: datetime


@dataclass(frozen=True)
class WindowStats:
    total: int = 0
    passed: int = 0
    failed: int = 0
    skipped: int = 0
    flaky: int = 0
    total_duration_ms: int = 0

    @property
    def executed(self) -> int:
        # skipped runs say nothing about reliability
        return self.passed + self.failed + self.flaky

    @property
    def pass_rate(self) -> float:
        return self.passed / self.executed * 100 if self.executed else 0.0

    @property
    def flakiness_rate(self) -> float:
        return self.flaky / self.executed * 100 if self.executed else 0.0


@dataclass(frozen=True)
class HealthSnapshot:
    """Fully derived health state for one test; maps 1:1 onto ``TestHealth``."""

    total_runs: int
    passed_count: int
    failed_count: int
    skipped_count: int
    flaky_count: int
    pass_rate: float
    flakiness_rate: float
    recent_pass_rate: float
    recent_flakiness_rate: float
    health_divergence: float
    avg_duration_ms: int
    health_score: int
    trend: str
    consecutive_passes: int
    consecutive_failures: int
    last_status: str | None
    last_run_at: datetime | None
    last_passed_at: datetime | None
    last_failed_at: datetime | None


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def window_stats(entries: Sequence[HistoryEntry]) -> WindowStats:
    """Tally outcomes and durations over a window."""
    passed = failed = skipped = flaky = duration = 0
    for entry in entries:
        if entry.outcome == Outcome.EXPECTED:
            passed += 1
        elif entry.outcome == Outcome.UNEXPECTED:
            failed += 1
        elif entry.outcome == Outcome.SKIPPED:
            skipped += 1
        elif entry.outcome == Outcome.FLAKY:
            flaky += 1
        duration += entry.duration_ms
    return WindowStats(
        total=len(entries),
        passed=passed,
        failed=failed,
        skipped=skipped,
        flaky=flaky,
        total_duration_ms=duration,
    )


def count_streaks(entries: Sequence[HistoryEntry]) -> tuple[int, int]:
    """Return ``(consecutive_passes, consecutive_failures)`` from the newest entry back.

    Flaky and skipped outcomes neither extend nor break a streak. Once one
    streak has started, the first outcome of the opposite kind ends the scan,
    so at most one of the two counts is non-zero.
    """
    passes = failures = 0
    for entry in entries:
        if entry.outcome == Outcome.EXPECTED:
            if failures:
                break
            passes += 1
        elif entry.outcome == Outcome.UNEXPECTED:
            if passes:
                break
            failures += 1
    return passes, failures


def compute_health_score(
    recent_pass_rate: float,
    overall_pass_rate: float,
    effective_flakiness: float,
    recent_weight: float,
) -> int:
    """Recency-weighted pass rate minus a double-weight flakiness penalty, floored at 0."""
    weighted = recent_pass_rate * recent_weight + overall_pass_rate * (1 - recent_weight)
    return max(0, _round_half_up(weighted - FLAKINESS_PENALTY * effective_flakiness))


def classify_trend(
    health_score: int,
    consecutive_passes: int,
    consecutive_failures: int,
    health_divergence: float,
) -> HealthTrend:
    if health_score < CRITICAL_SCORE:
        return HealthTrend.CRITICAL
    if (
        consecutive_failures >= DEGRADING_FAILURE_STREAK
        or health_divergence < DEGRADING_DIVERGENCE
    ):
        return HealthTrend.DEGRADING
    if consecutive_passes >= IMPROVING_PASS_STREAK and health_score > IMPROVING_SCORE:
        return HealthTrend.IMPROVING
    return HealthTrend.STABLE


def score_history(
    history: Sequence[HistoryEntry],
    config: HealthConfig | None = None,
) -> HealthSnapshot | None:
    """Score a newest-first history of final attempts. Returns None when empty."""
    config = config or HealthConfig()
    overall_entries = list(history[: config.overall_window])
    if not overall_entries:
        return None

    overall = window_stats(overall_entries)
    recent = window_stats(overall_entries[: config.recent_window])

    effective_flakiness = max(recent.flakiness_rate, overall.flakiness_rate)
    health_score = compute_health_score(
        recent.pass_rate, overall.pass_rate, effective_flakiness, config.recent_weight
    )
    divergence = recent.pass_rate - overall.pass_rate
    passes, failures = count_streaks(overall_entries)
    trend = classify_trend(health_score, passes, failures, divergence)

    newest = overall_entries[0]
    last_passed = next((e for e in overall_entries if e.outcome == Outcome.EXPECTED), None)
    last_failed = next((e for e in overall_entries if e.outcome == Outcome.UNEXPECTED), None)

    return HealthSnapshot(
        total_runs=overall.total,
        passed_count=overall.passed,
        failed_count=overall.failed,
        skipped_count=overall.skipped,
        flaky_count=overall.flaky,
        pass_rate=round(overall.pass_rate, 2),
        flakiness_rate=round(effective_flakiness, 2),
        recent_pass_rate=round(recent.pass_rate, 2),
        recent_flakiness_rate=round(recent.flakiness_rate, 2),
        health_divergence=round(divergence, 2),
        avg_duration_ms=_round_half_up(overall.total_duration_ms / overall.total),
        health_score=health_score,
        trend=trend.value,
        consecutive_passes=passes,
        consecutive_failures=failures,
        last_status=newest.status,
        last_run_at=newest.started_at,
        last_passed_at=last_passed.started_at if last_passed else None,
        last_failed_at=last_failed.started_at if last_failed else None,
    )
