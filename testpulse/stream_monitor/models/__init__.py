"""Data models for events, metrics, insights, predictions and configuration."""

from testpulse.stream_monitor.models.insight import (
    FailureRecord,
    Pattern,
    TestInsight,
)
from testpulse.stream_monitor.models.metrics import TestMetrics
from testpulse.stream_monitor.models.monitor_config import (
    InsightServiceConfig,
    MonitorConfig,
)
from testpulse.stream_monitor.models.prediction import (
    Prediction,
    PredictionSet,
    TestRef,
)
from testpulse.stream_monitor.models.test_event import (
    MemorySample,
    SuiteSummary,
    TestEvent,
)

__all__ = [
    "FailureRecord",
    "InsightServiceConfig",
    "MemorySample",
    "MonitorConfig",
    "Pattern",
    "Prediction",
    "PredictionSet",
    "SuiteSummary",
    "TestEvent",
    "TestInsight",
    "TestMetrics",
    "TestRef",
]
