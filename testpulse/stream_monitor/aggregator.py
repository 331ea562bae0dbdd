"""Fold test events into running session metrics."""

import logging
import time
from collections.abc import Callable

from testpulse.stream_monitor.models.metrics import TestMetrics
from testpulse.stream_monitor.models.test_event import SuiteSummary, TestEvent

logger = logging.getLogger(__name__)


class MetricsAggregator:
    """Running counts, timing and derived rates for one monitoring session.

    Counters only grow between calls to ``reset``.  Reruns of the same test
    are counted again; nothing is deduplicated by name.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        eta_epsilon: float = 1e-3,
    ) -> None:
        """Initialize aggregator with a monotonic clock in seconds."""
        self._clock = clock
        self._eta_epsilon = eta_epsilon
        self._started_at: float | None = None
        self._clear()

    def _clear(self) -> None:
        self._current_test: str | None = None
        self._current_file: str | None = None
        self._passed = 0
        self._failed = 0
        self._skipped = 0
        self._summary_total: int | None = None
        self._test_time_ms = 0.0
        self._reported_time_ms = 0.0
        self._peak_memory: int | None = None
        self._suites_passed = 0
        self._suites_failed = 0
        self._suites_total = 0

    def reset(self) -> None:
        """Zero every aggregate and restart the session clock."""
        self._clear()
        self._started_at = self._clock()

    def apply(self, event: TestEvent | SuiteSummary) -> None:
        """Fold one event into the aggregates."""
        if self._started_at is None:
            self._started_at = self._clock()

        if isinstance(event, SuiteSummary):
            self._apply_summary(event)
            return

        if event.kind == "start":
            self._current_test = event.test_name
            if event.file_name:
                self._current_file = event.file_name
            return

        if event.kind == "fail":
            self._failed += 1
        elif event.kind == "skip":
            self._skipped += 1
        else:
            self._passed += 1

        if self._current_test == event.test_name:
            self._current_test = None
        if event.duration_ms is not None:
            self._test_time_ms += event.duration_ms
        if event.memory is not None:
            self._peak_memory = max(self._peak_memory or 0, event.memory.peak)

    def _apply_summary(self, summary: SuiteSummary) -> None:
        if summary.duration_ms is not None:
            self._reported_time_ms = max(self._reported_time_ms, summary.duration_ms)

        if summary.scope == "suites":
            self._suites_passed = max(self._suites_passed, summary.passed)
            self._suites_failed = max(self._suites_failed, summary.failed)
            if summary.total is not None:
                self._suites_total = max(self._suites_total, summary.total)
            return

        self._passed = max(self._passed, summary.passed)
        self._failed = max(self._failed, summary.failed)
        self._skipped = max(self._skipped, summary.skipped)
        if summary.total is not None:
            self._summary_total = max(self._summary_total or 0, summary.total)
            logger.debug(f"Suite total is now {self._summary_total}")

    def snapshot(self) -> TestMetrics:
        """Return an immutable copy of the current aggregates."""
        completed = self._passed + self._failed + self._skipped
        tests_per_second = self._tests_per_second(completed)

        estimated_remaining: float | None = None
        if self._summary_total is not None:
            remaining = max(self._summary_total - completed, 0)
            rate = max(tests_per_second, self._eta_epsilon)
            estimated_remaining = remaining / rate * 1000

        return TestMetrics(
            current_test=self._current_test,
            current_file=self._current_file,
            passed=self._passed,
            failed=self._failed,
            skipped=self._skipped,
            total_tests=max(self._summary_total or 0, completed),
            duration=max(self._test_time_ms, self._reported_time_ms),
            tests_per_second=tests_per_second,
            estimated_time_remaining=estimated_remaining,
            peak_memory_bytes=self._peak_memory,
            suites_passed=self._suites_passed,
            suites_failed=self._suites_failed,
            suites_total=self._suites_total,
        )

    def _tests_per_second(self, completed: int) -> float:
        if self._started_at is None or completed == 0:
            return 0.0
        elapsed = self._clock() - self._started_at
        if elapsed <= 0:
            return 0.0
        return completed / elapsed
