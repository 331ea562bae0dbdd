"""Models for live aggregate metrics."""

from pydantic import BaseModel, ConfigDict, Field


class TestMetrics(BaseModel):
    """Point-in-time copy of the running aggregates for one session."""

    __test__ = False

    model_config = ConfigDict(frozen=True)

    current_test: str | None = Field(default=None, description="Test now running")
    current_file: str | None = Field(default=None, description="File now running")
    passed: int = Field(default=0, ge=0)
    failed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    total_tests: int = Field(default=0, ge=0)
    duration: float = Field(
        default=0.0, ge=0, description="Reported test time in milliseconds"
    )
    tests_per_second: float = Field(default=0.0, ge=0)
    estimated_time_remaining: float | None = Field(
        default=None, description="Milliseconds left, once a total is known"
    )
    peak_memory_bytes: int | None = Field(default=None, ge=0)
    suites_passed: int = Field(default=0, ge=0)
    suites_failed: int = Field(default=0, ge=0)
    suites_total: int = Field(default=0, ge=0)

    @property
    def completed(self) -> int:
        """Number of finished test attempts."""
        return self.passed + self.failed + self.skipped
