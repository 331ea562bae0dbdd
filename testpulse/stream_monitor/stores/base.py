"""Abstract base class for historical insight stores."""

from abc import ABC, abstractmethod

from testpulse.stream_monitor.models.insight import FailureRecord, TestInsight


class InsightStore(ABC):
    """Abstract source of per-test historical statistics."""

    @abstractmethod
    async def get_insight(
        self, test_name: str, file_name: str | None
    ) -> TestInsight | None:
        """Look up the insight for a test.

        Args:
            test_name: Test name as reported by the runner
            file_name: Test file, if known

        Returns:
            The insight, or None when the test has no history

        """

    @abstractmethod
    async def record_failure(self, record: FailureRecord) -> None:
        """Store a learned pattern and solution for future predictions.

        Args:
            record: Failure pattern and the solution that fixed it

        """


class NullInsightStore(InsightStore):
    """Store with no history; every lookup returns None."""

    async def get_insight(
        self, test_name: str, file_name: str | None
    ) -> TestInsight | None:
        """Return None."""
        return None

    async def record_failure(self, record: FailureRecord) -> None:
        """Discard the record."""
