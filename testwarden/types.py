"""Enums and type aliases for testwarden."""

from enum import StrEnum


class ResultStatus(StrEnum):
    PASSED = "passed"
    FAILED = "failed"
    TIMED_OUT = "timedOut"
    SKIPPED = "skipped"
    INTERRUPTED = "interrupted"


class Outcome(StrEnum):
    EXPECTED = "expected"
    UNEXPECTED = "unexpected"
    SKIPPED = "skipped"
    FLAKY = "flaky"


class RunStatus(StrEnum):
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


class HealthTrend(StrEnum):
    STABLE = "stable"
    IMPROVING = "improving"
    DEGRADING = "degrading"
    CRITICAL = "critical"
