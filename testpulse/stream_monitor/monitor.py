"""Real-time monitor that turns streaming test output into live metrics."""

import logging
import threading
import time
from collections.abc import Callable, Iterable, Mapping

from testpulse.stream_monitor.aggregator import MetricsAggregator
from testpulse.stream_monitor.classifier import LineClassifier
from testpulse.stream_monitor.debounce import DebounceCoordinator, Scheduler
from testpulse.stream_monitor.models.insight import FailureRecord
from testpulse.stream_monitor.models.metrics import TestMetrics
from testpulse.stream_monitor.models.monitor_config import MonitorConfig
from testpulse.stream_monitor.models.prediction import PredictionSet, TestRef
from testpulse.stream_monitor.models.test_event import SuiteSummary, TestEvent
from testpulse.stream_monitor.prediction import PredictionEngine
from testpulse.stream_monitor.stores.base import InsightStore, NullInsightStore
from testpulse.stream_monitor.watchers import ErrorChannel, WatcherBus

logger = logging.getLogger(__name__)


class RealTimeTestMonitor:
    """Parse test output as it streams in and keep live metrics.

    Output passed to ``feed`` is buffered and parsed after a quiet period.
    Each parsed event updates the metrics, then reaches every watcher in
    registration order.  Predictions are served from the insight store on
    demand.
    """

    __test__ = False

    def __init__(
        self,
        insight_store: InsightStore | None = None,
        config: MonitorConfig | None = None,
        scheduler: Scheduler | None = None,
        clock: Callable[[], float] = time.monotonic,
        error_channel: ErrorChannel | None = None,
    ) -> None:
        """Initialize monitor and wire its components."""
        self.config = config or MonitorConfig()
        self._lock = threading.RLock()
        self._monitoring = False
        self._classifier = LineClassifier()
        self._aggregator = MetricsAggregator(
            clock=clock, eta_epsilon=self.config.eta_epsilon
        )
        self._bus = WatcherBus(error_channel)
        self._debounce = DebounceCoordinator(
            self._process_lines,
            interval_ms=self.config.debounce_interval_ms,
            scheduler=scheduler,
        )
        self._predictions = PredictionEngine(
            insight_store or NullInsightStore(),
            risk_threshold=self.config.risk_threshold,
        )

    @property
    def is_monitoring(self) -> bool:
        """True between ``start_monitoring`` and ``stop_monitoring``."""
        return self._monitoring

    def start_monitoring(self) -> None:
        """Reset metrics and begin a new session.

        Output fed before the first start stays buffered and is parsed into
        the new session once its quiet period expires; if it was already
        parsed, the reset discards its counts.  Restarting an active session
        discards any unparsed output from that session.
        """
        with self._lock:
            restarting = self._monitoring
        if restarting:
            self._debounce.stop()
        with self._lock:
            self._aggregator.reset()
            self._monitoring = True
        logger.info("Monitoring started")

    def stop_monitoring(self) -> TestMetrics:
        """End the session and report final totals to watchers.

        Pending output is discarded unless ``flush_on_stop`` is configured.
        Watchers are notified only when a session was active, so repeated
        calls, or a call before ``start_monitoring``, have no side effects.

        Returns:
            Metrics at the time monitoring stopped

        """
        if self.config.flush_on_stop:
            self._debounce.flush()
        else:
            self._debounce.stop()

        with self._lock:
            was_monitoring = self._monitoring
            self._monitoring = False
            metrics = self._aggregator.snapshot()
            if was_monitoring:
                self._bus.notify_suite_complete(metrics)

        if was_monitoring:
            logger.info(
                f"Monitoring stopped: {metrics.passed} passed, "
                f"{metrics.failed} failed, {metrics.skipped} skipped"
            )
        return metrics

    def feed(self, text: object) -> None:
        """Accept a chunk of raw output; None and non-text are ignored."""
        self._debounce.feed(text)

    def flush(self) -> None:
        """Parse buffered output now instead of waiting for the quiet period."""
        self._debounce.flush()

    def publish(self, event: TestEvent | SuiteSummary) -> None:
        """Apply an already-structured event, bypassing the parser."""
        self._process_events([event])

    def snapshot(self) -> TestMetrics:
        """Return an immutable copy of the current metrics."""
        with self._lock:
            return self._aggregator.snapshot()

    def subscribe(self, watcher: object) -> Callable[[], None]:
        """Register a watcher; call the returned function to unregister it."""
        with self._lock:
            return self._bus.subscribe(watcher)

    async def get_predictions(
        self, candidates: Iterable[TestRef | Mapping[str, object]]
    ) -> PredictionSet:
        """Rank candidates by failure risk, attaching the live metrics."""
        return await self._predictions.get_predictions(
            candidates, context=self.snapshot()
        )

    async def record_failure(self, record: FailureRecord) -> bool:
        """Forward a learned pattern and solution to the insight store."""
        return await self._predictions.record_failure(record)

    def _process_lines(self, lines: list[str]) -> None:
        self._process_events(self._classifier.classify_lines(lines))

    def _process_events(self, events: Iterable[TestEvent | SuiteSummary]) -> None:
        with self._lock:
            summarized = False
            for event in events:
                self._aggregator.apply(event)
                if isinstance(event, SuiteSummary):
                    summarized = True
                elif event.is_terminal:
                    self._bus.notify_complete(event)
                else:
                    self._bus.notify_start(event)

            if summarized:
                self._bus.notify_suite_complete(self._aggregator.snapshot())
