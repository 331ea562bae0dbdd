"""Models for failure predictions."""

from pydantic import BaseModel, Field

from testpulse.stream_monitor.models.metrics import TestMetrics


class TestRef(BaseModel):
    """Reference to a test that may be scheduled."""

    __test__ = False

    test_name: str = Field(..., description="Test name")
    file_name: str | None = Field(default=None, description="Test file")


class Prediction(BaseModel):
    """Estimated failure risk for one test."""

    test_name: str
    file_name: str | None = None
    probability: float = Field(..., ge=0, le=1)
    reason: str


class PredictionSet(BaseModel):
    """Risk-ranked failures and a fail-fast execution order."""

    likely_failures: list[Prediction] = Field(
        default_factory=list, description="Risky tests, highest probability first"
    )
    optimized_order: list[TestRef] = Field(
        default_factory=list, description="All candidates, riskiest first"
    )
    context: TestMetrics | None = Field(
        default=None, description="Live metrics at prediction time"
    )
