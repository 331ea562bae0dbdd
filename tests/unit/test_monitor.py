"""Tests for real-time test monitor."""

import asyncio
from collections.abc import Callable

import pytest

from testpulse.stream_monitor.debounce import Scheduler
from testpulse.stream_monitor.models.insight import (
    FailureRecord,
    Pattern,
    TestInsight,
)
from testpulse.stream_monitor.models.metrics import TestMetrics
from testpulse.stream_monitor.models.monitor_config import MonitorConfig
from testpulse.stream_monitor.models.test_event import MemorySample, TestEvent
from testpulse.stream_monitor.monitor import RealTimeTestMonitor
from testpulse.stream_monitor.stores.memory import HistoryInsightStore
from testpulse.stream_monitor.watchers import TestWatcher


class FakeCall:
    """Scheduled call fired manually."""

    def __init__(self, callback: Callable[[], None]) -> None:
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class FakeScheduler(Scheduler):
    """Scheduler that only fires when told to."""

    def __init__(self) -> None:
        self.calls: list[FakeCall] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeCall:
        call = FakeCall(callback)
        self.calls.append(call)
        return call

    def elapse(self) -> None:
        """Fire the latest pending timer, as if the quiet period passed."""
        if self.calls and not self.calls[-1].cancelled:
            self.calls[-1].callback()


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class Recorder(TestWatcher):
    """Watcher recording every notification."""

    def __init__(self) -> None:
        self.started: list[str] = []
        self.completed: list[tuple[str, str]] = []
        self.suites: list[TestMetrics] = []

    def on_test_start(self, event: TestEvent) -> None:
        self.started.append(event.test_name)

    def on_test_complete(self, event: TestEvent) -> None:
        self.completed.append((event.kind, event.test_name))

    def on_suite_complete(self, metrics: TestMetrics) -> None:
        self.suites.append(metrics)


@pytest.fixture
def scheduler() -> FakeScheduler:
    """Create a manually fired scheduler."""
    return FakeScheduler()


@pytest.fixture
def clock() -> FakeClock:
    """Create a manually advanced clock."""
    return FakeClock()


@pytest.fixture
def monitor(scheduler: FakeScheduler, clock: FakeClock) -> RealTimeTestMonitor:
    """Create a started monitor on fake time."""
    test_monitor = RealTimeTestMonitor(scheduler=scheduler, clock=clock)
    test_monitor.start_monitoring()
    return test_monitor


def test_running_line_sets_current_test_after_quiet_period(
    monitor: RealTimeTestMonitor, scheduler: FakeScheduler
) -> None:
    """A start line without newline is parsed when the quiet period expires."""
    monitor.feed("Running math.spec.ts")

    assert monitor.snapshot().current_test is None
    scheduler.elapse()

    metrics = monitor.snapshot()
    assert metrics.current_test == "math.spec.ts"
    assert metrics.current_file == "math.spec.ts"


def test_pass_line_counts_after_flush(monitor: RealTimeTestMonitor) -> None:
    """A pass line is counted once flushed."""
    monitor.feed("✓ should validate email (25ms)")
    monitor.flush()

    metrics = monitor.snapshot()
    assert metrics.passed == 1
    assert metrics.duration == 25


def test_rapid_feeds_produce_throughput(
    monitor: RealTimeTestMonitor, scheduler: FakeScheduler, clock: FakeClock
) -> None:
    """Ten rapid pass lines yield a positive tests/second."""
    for i in range(10):
        monitor.feed(f"✓ test {i}\n")
    clock.now += 0.1
    scheduler.elapse()

    metrics = monitor.snapshot()
    assert metrics.passed == 10
    assert metrics.tests_per_second > 0


def test_partial_total_yields_eta(
    monitor: RealTimeTestMonitor, clock: FakeClock
) -> None:
    """A partial-progress summary produces a positive ETA."""
    clock.now += 1.0
    monitor.feed("Tests: 5 passed, 5 of 20 total")
    monitor.flush()

    metrics = monitor.snapshot()
    assert metrics.total_tests == 20
    assert metrics.estimated_time_remaining is not None
    assert metrics.estimated_time_remaining > 0


async def test_optimized_order_puts_always_failing_first() -> None:
    """A test with an always-fails insight leads the optimized order."""

    class CriticalStore(HistoryInsightStore):
        async def get_insight(
            self, test_name: str, file_name: str | None
        ) -> TestInsight | None:
            if test_name != "critical":
                return None
            return TestInsight(
                test_name="critical",
                failure_rate=1.0,
                patterns=[Pattern(type="always_fails", confidence=1.0)],
            )

    test_monitor = RealTimeTestMonitor(insight_store=CriticalStore())

    predictions = await test_monitor.get_predictions(
        [{"test_name": name} for name in ["regular", "critical", "another"]]
    )

    assert predictions.optimized_order[0].test_name == "critical"
    assert predictions.context is not None


async def test_quiet_period_on_real_event_loop() -> None:
    """With real timers the buffered output is parsed after the interval."""
    test_monitor = RealTimeTestMonitor(config=MonitorConfig(debounce_interval_ms=20))
    test_monitor.start_monitoring()

    test_monitor.feed("Running math.spec.ts")
    await asyncio.sleep(0.2)

    assert test_monitor.snapshot().current_test == "math.spec.ts"


def test_mixed_output_scenario(monitor: RealTimeTestMonitor) -> None:
    """Starts, results and skips combine into consistent totals."""
    monitor.feed(
        "Running should.work.spec.ts :: should work\n"
        "✓ should work (10ms)\n"
        "○ skipped\n"
        "✗ should fail\n"
        "    Error: Expected 1, but received 2\n"
        "Starting test: incomplete\n"
    )
    monitor.flush()

    metrics = monitor.snapshot()
    assert metrics.passed == 1
    assert metrics.skipped == 1
    assert metrics.failed == 1
    assert metrics.current_test == "incomplete"
    assert metrics.total_tests >= metrics.completed


def test_jest_output(monitor: RealTimeTestMonitor) -> None:
    """A full Jest run is parsed into results and totals."""
    monitor.feed(
        "PASS src/utils/math.spec.ts\n"
        "  Math utilities\n"
        "    ✓ should add numbers (5ms)\n"
        "    ✓ should multiply numbers (2ms)\n"
        "\n"
        "Test Suites: 1 passed, 1 total\n"
        "Tests:       2 passed, 2 total\n"
        "Time:        1.234 s\n"
    )
    monitor.flush()

    metrics = monitor.snapshot()
    assert metrics.passed == 2
    assert metrics.total_tests == 2
    assert metrics.suites_passed == 1
    assert metrics.duration == pytest.approx(1234)
    assert metrics.current_file == "src/utils/math.spec.ts"


def test_mocha_output(monitor: RealTimeTestMonitor) -> None:
    """Mocha output counts failures with attached error text."""
    recorder = Recorder()
    monitor.subscribe(recorder)

    monitor.feed(
        "  User Service\n"
        "    ✓ should create user (50ms)\n"
        "    ✗ should validate email\n"
        "      AssertionError: expected false to be true\n"
        "\n"
        "  1 passing (55ms)\n"
        "  1 failing\n"
    )
    monitor.flush()

    metrics = monitor.snapshot()
    assert metrics.passed == 1
    assert metrics.failed == 1
    assert recorder.completed == [
        ("pass", "should create user"),
        ("fail", "should validate email"),
    ]


@pytest.mark.parametrize("value", [None, 42, "", b"", object()])
def test_invalid_feeds_are_ignored(
    monitor: RealTimeTestMonitor, value: object
) -> None:
    """Non-text input never raises and changes nothing."""
    monitor.feed(value)
    monitor.flush()

    assert monitor.snapshot().completed == 0


def test_malformed_output_is_ignored(monitor: RealTimeTestMonitor) -> None:
    """Garbage lines produce no events."""
    monitor.feed("!@#$%^&*()\n\x00\x01\x02\nrandom noise\n")
    monitor.flush()

    metrics = monitor.snapshot()
    assert metrics.completed == 0
    assert metrics.current_test is None


def test_watchers_receive_events_in_order(monitor: RealTimeTestMonitor) -> None:
    """Watchers see starts and completions in output order."""
    recorder = Recorder()
    monitor.subscribe(recorder)

    monitor.feed("Starting test: a\n✓ a\nStarting test: b\n✗ b\n")
    monitor.flush()

    assert recorder.started == ["a", "b"]
    assert recorder.completed == [("pass", "a"), ("fail", "b")]


def test_watcher_sees_updated_metrics(monitor: RealTimeTestMonitor) -> None:
    """Metrics are updated before watchers are notified."""
    seen: list[int] = []

    class Peeker(TestWatcher):
        def on_test_complete(self, event: TestEvent) -> None:
            seen.append(monitor.snapshot().passed)

    monitor.subscribe(Peeker())
    monitor.feed("✓ one\n✓ two\n")
    monitor.flush()

    assert seen == [1, 2]


def test_failing_watcher_does_not_break_monitor(
    scheduler: FakeScheduler, clock: FakeClock
) -> None:
    """A watcher exception goes to the error channel; parsing continues."""
    errors: list[str] = []
    test_monitor = RealTimeTestMonitor(
        scheduler=scheduler,
        clock=clock,
        error_channel=lambda e, ctx: errors.append(ctx),
    )
    test_monitor.start_monitoring()

    class Broken(TestWatcher):
        def on_test_complete(self, event: TestEvent) -> None:
            raise RuntimeError("boom")

    recorder = Recorder()
    test_monitor.subscribe(Broken())
    test_monitor.subscribe(recorder)
    test_monitor.feed("✓ a\n✓ b\n")
    test_monitor.flush()

    assert test_monitor.snapshot().passed == 2
    assert errors == ["Broken.on_test_complete", "Broken.on_test_complete"]
    assert len(recorder.completed) == 2


def test_unsubscribed_watcher_gets_nothing(monitor: RealTimeTestMonitor) -> None:
    """Unsubscribing stops notifications."""
    recorder = Recorder()
    unsubscribe = monitor.subscribe(recorder)
    unsubscribe()

    monitor.feed("✓ a\n")
    monitor.flush()

    assert recorder.completed == []


def test_summary_notifies_suite_complete(monitor: RealTimeTestMonitor) -> None:
    """A batch containing a summary triggers one suite notification."""
    recorder = Recorder()
    monitor.subscribe(recorder)

    monitor.feed("✓ a\nTests: 1 passed, 1 total\nTime: 0.5 s\n")
    monitor.flush()

    assert len(recorder.suites) == 1
    assert recorder.suites[0].total_tests == 1


def test_stop_discards_pending_output(monitor: RealTimeTestMonitor) -> None:
    """Unflushed output is dropped when monitoring stops."""
    monitor.feed("✓ never parsed\n")

    metrics = monitor.stop_monitoring()

    assert metrics.passed == 0
    assert not monitor.is_monitoring


def test_stop_flushes_when_configured(
    scheduler: FakeScheduler, clock: FakeClock
) -> None:
    """flush_on_stop parses pending output before the final snapshot."""
    test_monitor = RealTimeTestMonitor(
        config=MonitorConfig(flush_on_stop=True), scheduler=scheduler, clock=clock
    )
    test_monitor.start_monitoring()
    test_monitor.feed("✓ parsed at stop")

    assert test_monitor.stop_monitoring().passed == 1


def test_stop_notifies_watchers(monitor: RealTimeTestMonitor) -> None:
    """Stopping reports final totals to watchers."""
    recorder = Recorder()
    monitor.subscribe(recorder)
    monitor.feed("✓ a\n")
    monitor.flush()

    metrics = monitor.stop_monitoring()

    assert recorder.suites == [metrics]
    assert metrics.passed == 1


def test_stop_twice_is_safe(monitor: RealTimeTestMonitor) -> None:
    """A second stop returns the same totals without notifying again."""
    recorder = Recorder()
    monitor.subscribe(recorder)
    monitor.feed("✓ a\n")
    monitor.flush()

    first = monitor.stop_monitoring()
    second = monitor.stop_monitoring()

    assert first.passed == second.passed == 1
    assert len(recorder.suites) == 1


def test_stop_before_start_does_not_notify(
    scheduler: FakeScheduler, clock: FakeClock
) -> None:
    """Only stopping an active session reaches watchers."""
    test_monitor = RealTimeTestMonitor(scheduler=scheduler, clock=clock)
    recorder = Recorder()
    test_monitor.subscribe(recorder)

    test_monitor.stop_monitoring()
    test_monitor.start_monitoring()
    test_monitor.stop_monitoring()
    test_monitor.stop_monitoring()

    assert len(recorder.suites) == 1


def test_output_fed_before_start_is_counted(
    scheduler: FakeScheduler, clock: FakeClock
) -> None:
    """Unparsed output from before the first start lands in the new session."""
    test_monitor = RealTimeTestMonitor(scheduler=scheduler, clock=clock)
    test_monitor.feed("✓ early\n")

    test_monitor.start_monitoring()
    scheduler.elapse()

    assert test_monitor.snapshot().passed == 1


def test_restart_resets_metrics(monitor: RealTimeTestMonitor) -> None:
    """start_monitoring begins a fresh session."""
    monitor.feed("Running a.spec.ts\n✓ a\n✗ b\n")
    monitor.flush()
    monitor.stop_monitoring()

    monitor.start_monitoring()

    metrics = monitor.snapshot()
    assert monitor.is_monitoring
    assert metrics.completed == 0
    assert metrics.current_test is None
    assert metrics.current_file is None


def test_restart_drops_output_from_previous_session(
    monitor: RealTimeTestMonitor,
) -> None:
    """Buffered output does not leak into the next session."""
    monitor.feed("✓ stale\n")
    monitor.start_monitoring()
    monitor.flush()

    assert monitor.snapshot().passed == 0


def test_publish_memory_complete_event(monitor: RealTimeTestMonitor) -> None:
    """Structured completion events count as passes and track memory."""
    recorder = Recorder()
    monitor.subscribe(recorder)

    monitor.publish(
        TestEvent(
            kind="complete",
            test_name="memory heavy",
            duration_ms=100,
            memory=MemorySample(before=1_000, after=5_000, peak=8_000),
        )
    )

    metrics = monitor.snapshot()
    assert metrics.passed == 1
    assert metrics.peak_memory_bytes == 8_000
    assert recorder.completed == [("complete", "memory heavy")]


async def test_record_failure_reaches_store() -> None:
    """Learned solutions are forwarded to the insight store."""
    store = HistoryInsightStore()
    test_monitor = RealTimeTestMonitor(insight_store=store)

    accepted = await test_monitor.record_failure(
        FailureRecord(test_name="x", pattern="TimeoutError", solution="retry")
    )

    assert accepted is True
    assert len(store.solutions("x")) == 1


def test_monitor_defaults() -> None:
    """A monitor can be built with no arguments."""
    test_monitor = RealTimeTestMonitor()

    assert test_monitor.config == MonitorConfig()
    assert not test_monitor.is_monitoring
    assert test_monitor.snapshot().completed == 0
