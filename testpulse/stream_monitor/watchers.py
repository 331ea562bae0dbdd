"""Synchronous notification of test events to registered watchers."""

import logging
from collections.abc import Callable

from testpulse.stream_monitor.models.metrics import TestMetrics
from testpulse.stream_monitor.models.test_event import TestEvent
from testpulse.stream_monitor.stores.memory import HistoryInsightStore

logger = logging.getLogger(__name__)

ErrorChannel = Callable[[BaseException, str], None]


class TestWatcher:
    """Base class for watchers; override only the hooks you need."""

    __test__ = False

    def on_test_start(self, event: TestEvent) -> None:
        """Handle a test or file starting."""

    def on_test_complete(self, event: TestEvent) -> None:
        """Handle a test passing, failing or being skipped."""

    def on_suite_complete(self, metrics: TestMetrics) -> None:
        """Handle a suite summary or the end of monitoring."""


def log_watcher_error(error: BaseException, context: str) -> None:
    """Default error channel: log the failure with its traceback."""
    logger.error(
        f"Watcher failed during {context}: {type(error).__name__}: {error}",
        exc_info=error,
    )


class WatcherBus:
    """Ordered registry of watchers with a synchronous dispatch loop.

    Each watcher is called in registration order.  An exception raised by
    one watcher is passed to the error channel and dispatch continues with
    the next watcher.
    """

    def __init__(self, error_channel: ErrorChannel | None = None) -> None:
        """Initialize bus with an optional error channel."""
        self._watchers: list[object] = []
        self._error_channel = error_channel or log_watcher_error

    def __len__(self) -> int:
        return len(self._watchers)

    def subscribe(self, watcher: object) -> Callable[[], None]:
        """Register a watcher and return a function that unregisters it."""
        self._watchers.append(watcher)

        def unsubscribe() -> None:
            for index, registered in enumerate(self._watchers):
                if registered is watcher:
                    del self._watchers[index]
                    return

        return unsubscribe

    def notify_start(self, event: TestEvent) -> None:
        """Deliver a start event."""
        self._dispatch("on_test_start", event)

    def notify_complete(self, event: TestEvent) -> None:
        """Deliver a pass, fail, skip or complete event."""
        self._dispatch("on_test_complete", event)

    def notify_suite_complete(self, metrics: TestMetrics) -> None:
        """Deliver suite totals."""
        self._dispatch("on_suite_complete", metrics)

    def _dispatch(self, hook: str, payload: TestEvent | TestMetrics) -> None:
        for watcher in list(self._watchers):
            handler = getattr(watcher, hook, None)
            if handler is None:
                continue
            try:
                handler(payload)
            except Exception as e:
                name = type(watcher).__name__
                try:
                    self._error_channel(e, f"{name}.{hook}")
                except Exception:
                    logger.exception(f"Error channel failed while reporting {name}")


class HistoryRecorder(TestWatcher):
    """Teach a history store from every completed test event."""

    def __init__(self, store: HistoryInsightStore) -> None:
        """Initialize recorder with the store to teach."""
        self.store = store

    def on_test_complete(self, event: TestEvent) -> None:
        """Record the outcome in the store's history."""
        self.store.learn_from_event(event)


class ProgressLogger(TestWatcher):
    """Log progress lines as events arrive."""

    def on_test_start(self, event: TestEvent) -> None:
        """Log the test or file that started."""
        logger.info(f"▶ {event.test_name}")

    def on_test_complete(self, event: TestEvent) -> None:
        """Log the outcome with its duration."""
        suffix = ""
        if event.duration_ms is not None:
            suffix = f" ({event.duration_ms:.0f}ms)"
        if event.kind == "fail":
            logger.error(f"✗ {event.test_name}{suffix}")
            if event.error_text:
                logger.error(f"  {event.error_text.splitlines()[0]}")
        elif event.kind == "skip":
            logger.info(f"○ {event.test_name}")
        else:
            logger.info(f"✓ {event.test_name}{suffix}")

    def on_suite_complete(self, metrics: TestMetrics) -> None:
        """Log the suite totals."""
        logger.info(
            f"Suite: {metrics.passed} passed, {metrics.failed} failed, "
            f"{metrics.skipped} skipped, {metrics.total_tests} total"
        )

