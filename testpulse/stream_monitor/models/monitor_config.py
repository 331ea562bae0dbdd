"""Configuration models for the monitor and its collaborators."""

from pydantic import BaseModel, Field


class MonitorConfig(BaseModel):
    """Tuning knobs for a real-time monitor."""

    debounce_interval_ms: int = Field(
        default=120, ge=0, description="Quiet period before buffered output is parsed"
    )
    risk_threshold: float = Field(
        default=0.0,
        ge=0,
        le=1,
        description="Scores above this are reported as likely failures",
    )
    eta_epsilon: float = Field(
        default=1e-3, gt=0, description="Floor for tests/second in ETA estimates"
    )
    flush_on_stop: bool = Field(
        default=False, description="Parse pending output instead of discarding it"
    )


class InsightServiceConfig(BaseModel):
    """Configuration for a remote insight service."""

    base_url: str = Field(..., description="Insight service base URL")
    token: str | None = Field(default=None, description="Bearer token, if required")
    timeout_seconds: float = Field(default=10, gt=0, description="Request timeout")
