"""Models for historical test insight records."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from testpulse.stream_monitor.models.test_event import utc_now

PatternType = Literal[
    "flaky", "always_fails", "slow", "memory_leak", "cascading_failure"
]


class Pattern(BaseModel):
    """A behaviour detected in a test's history."""

    type: PatternType = Field(..., description="Kind of pattern detected")
    confidence: float = Field(..., ge=0, le=1, description="Detector confidence")
    evidence: list[str] = Field(
        default_factory=list, description="Human-readable supporting facts"
    )
    suggestion: str = Field(default="", description="Suggested remedy")


class TestInsight(BaseModel):
    """Historical statistics for one test, keyed by test and file name."""

    __test__ = False

    test_name: str = Field(..., description="Test name")
    file_name: str | None = Field(default=None, description="Test file")
    failure_rate: float = Field(default=0.0, ge=0, le=1)
    average_duration: float = Field(
        default=0.0, ge=0, description="Average duration in milliseconds"
    )
    patterns: list[Pattern] = Field(default_factory=list)
    last_failures: list[datetime] = Field(
        default_factory=list, description="Most recent failure times, newest first"
    )
    correlated_tests: list[str] = Field(
        default_factory=list, description="Tests that tend to fail together"
    )
    recommended_action: str | None = Field(default=None)


class FailureRecord(BaseModel):
    """A learned pattern and solution pair for a failing test."""

    test_name: str = Field(..., description="Test name")
    file_name: str | None = Field(default=None, description="Test file")
    pattern: str = Field(..., description="Failure signature that was observed")
    solution: str = Field(..., description="Fix that resolved the failure")
    timestamp: datetime = Field(default_factory=utc_now)
