"""In-process insight store that learns from observed test executions."""

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Literal

from pydantic import BaseModel, Field

from testpulse.stream_monitor.models.insight import (
    FailureRecord,
    Pattern,
    TestInsight,
)
from testpulse.stream_monitor.models.test_event import TestEvent, utc_now
from testpulse.stream_monitor.stores.base import InsightStore

logger = logging.getLogger(__name__)

ExecutionResult = Literal["pass", "fail", "skip"]
TestKey = tuple[str, str | None]

MAX_HISTORY_PER_TEST = 100
MIN_RUNS_FOR_INSIGHT = 3
SLOW_TEST_MS = 5000
CORRELATION_WINDOW = timedelta(minutes=5)
CORRELATION_STEP = 0.1
CORRELATION_THRESHOLD = 0.5


class TestExecution(BaseModel):
    """One recorded run of a test."""

    __test__ = False

    result: ExecutionResult
    duration_ms: float = Field(default=0.0, ge=0)
    error_message: str | None = None
    timestamp: datetime = Field(default_factory=utc_now)


def detect_patterns(history: list[TestExecution]) -> list[Pattern]:
    """Detect flaky, slow and always-failing behaviour in a history.

    Args:
        history: Executions, newest first

    Returns:
        Detected patterns, possibly empty

    """
    if not history:
        return []

    patterns: list[Pattern] = []
    runs = len(history)

    alternations = sum(
        1
        for newer, older in zip(history, history[1:])
        if newer.result != older.result
        and "skip" not in (newer.result, older.result)
    )
    if alternations > runs * 0.3:
        patterns.append(
            Pattern(
                type="flaky",
                confidence=min(0.95, alternations / (runs * 0.5)),
                evidence=[
                    f"Alternates between pass/fail {alternations} times in {runs} runs"
                ],
                suggestion=(
                    "This test appears flaky. Check for timing issues, "
                    "external dependencies, or race conditions."
                ),
            )
        )

    durations = sorted((h.duration_ms for h in history), reverse=True)
    average = sum(durations) / runs
    if average > SLOW_TEST_MS:
        p95 = durations[int(runs * 0.05)]
        patterns.append(
            Pattern(
                type="slow",
                confidence=min(0.9, average / (SLOW_TEST_MS * 2)),
                evidence=[
                    f"Average duration: {average / 1000:.1f}s, P95: {p95 / 1000:.1f}s"
                ],
                suggestion=(
                    "This test is slow. Consider mocking external dependencies "
                    "or splitting into smaller tests."
                ),
            )
        )

    failure_rate = _failure_rate(history)
    if failure_rate > 0.9:
        patterns.append(
            Pattern(
                type="always_fails",
                confidence=failure_rate,
                evidence=[f"Fails {failure_rate * 100:.0f}% of the time"],
                suggestion=(
                    "This test consistently fails. It should be fixed or removed."
                ),
            )
        )

    return patterns


def _failure_rate(history: list[TestExecution]) -> float:
    if not history:
        return 0.0
    return sum(1 for h in history if h.result == "fail") / len(history)


def recommend_action(failure_rate: float, patterns: list[Pattern]) -> str | None:
    """Pick a remedy from the failure rate and detected patterns."""
    if failure_rate > 0.8:
        return "fix"
    if any(p.type == "flaky" and p.confidence > 0.7 for p in patterns):
        return "isolate"
    if any(p.type == "slow" and p.confidence > 0.8 for p in patterns):
        return "optimize"
    if failure_rate > 0.5:
        return "skip"
    return None


class HistoryInsightStore(InsightStore):
    """Insight store backed by execution history held in memory.

    Nothing is persisted; the store lives as long as the process.  Load a
    saved history with ``history_loader.load_history``.
    """

    def __init__(
        self,
        max_history: int = MAX_HISTORY_PER_TEST,
        min_runs: int = MIN_RUNS_FOR_INSIGHT,
    ) -> None:
        """Initialize an empty store."""
        self.max_history = max_history
        self.min_runs = min_runs
        self._history: dict[TestKey, list[TestExecution]] = {}
        self._correlations: dict[TestKey, dict[TestKey, float]] = defaultdict(dict)
        self._solutions: dict[TestKey, list[FailureRecord]] = defaultdict(list)

    @property
    def tracked_tests(self) -> list[TestKey]:
        """Keys of every test with recorded history."""
        return list(self._history)

    def history(
        self, test_name: str, file_name: str | None = None
    ) -> list[TestExecution]:
        """Executions for a test, newest first."""
        return list(self._history.get((test_name, file_name), []))

    def learn_from_execution(
        self,
        test_name: str,
        file_name: str | None,
        result: ExecutionResult,
        duration_ms: float = 0.0,
        error_message: str | None = None,
        timestamp: datetime | None = None,
    ) -> None:
        """Record one run of a test."""
        key = (test_name, file_name)
        if timestamp is not None and timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)
        execution = TestExecution(
            result=result,
            duration_ms=duration_ms,
            error_message=error_message,
            timestamp=timestamp or utc_now(),
        )
        history = self._history.setdefault(key, [])
        history.insert(0, execution)
        del history[self.max_history :]

        if result == "fail":
            self._update_correlations(key, execution.timestamp)

    def learn_from_event(self, event: TestEvent) -> None:
        """Record a completed test event; start events are ignored."""
        if event.kind == "start":
            return
        result: ExecutionResult = "pass" if event.kind == "complete" else event.kind
        self.learn_from_execution(
            event.test_name,
            event.file_name,
            result,
            duration_ms=event.duration_ms or 0.0,
            error_message=event.error_text,
            timestamp=event.timestamp,
        )

    async def get_insight(
        self, test_name: str, file_name: str | None
    ) -> TestInsight | None:
        """Build an insight from history, or None with too few runs."""
        key = (test_name, file_name)
        history = self._history.get(key, [])
        if len(history) < self.min_runs:
            return None

        patterns = detect_patterns(history)
        failure_rate = _failure_rate(history)
        solutions = self._solutions.get(key)
        recommended = (
            solutions[-1].solution
            if solutions
            else recommend_action(failure_rate, patterns)
        )

        return TestInsight(
            test_name=test_name,
            file_name=file_name,
            failure_rate=failure_rate,
            average_duration=sum(h.duration_ms for h in history) / len(history),
            patterns=patterns,
            last_failures=[h.timestamp for h in history if h.result == "fail"][:5],
            correlated_tests=self._correlated_tests(key),
            recommended_action=recommended,
        )

    async def record_failure(self, record: FailureRecord) -> None:
        """Remember a solution; it becomes the test's recommended action."""
        self._solutions[(record.test_name, record.file_name)].append(record)
        logger.info(f"Recorded solution for {record.test_name}: {record.pattern}")

    def solutions(
        self, test_name: str, file_name: str | None = None
    ) -> list[FailureRecord]:
        """Solutions recorded for a test, oldest first."""
        return list(self._solutions.get((test_name, file_name), []))

    def clear(self) -> None:
        """Forget all history, correlations and solutions."""
        self._history.clear()
        self._correlations.clear()
        self._solutions.clear()

    def _update_correlations(self, failed: TestKey, when: datetime) -> None:
        for key, history in self._history.items():
            if key == failed:
                continue
            co_failed = any(
                h.result == "fail" and abs(h.timestamp - when) < CORRELATION_WINDOW
                for h in history
            )
            if co_failed:
                scores = self._correlations[failed]
                scores[key] = min(1.0, scores.get(key, 0.0) + CORRELATION_STEP)

    def _correlated_tests(self, key: TestKey) -> list[str]:
        scores = self._correlations.get(key, {})
        ranked = sorted(
            (item for item in scores.items() if item[1] > CORRELATION_THRESHOLD),
            key=lambda item: item[1],
            reverse=True,
        )
        return [other[0] for other, _ in ranked[:5]]
