"""Insight store backed by a remote insight service."""

from collections.abc import Mapping

import aiohttp

from testpulse.stream_monitor.models.insight import FailureRecord, TestInsight
from testpulse.stream_monitor.models.monitor_config import InsightServiceConfig
from testpulse.stream_monitor.stores.base import InsightStore


class HttpInsightStore(InsightStore):
    """Read and write insights through an HTTP insight service."""

    def __init__(self, config: InsightServiceConfig) -> None:
        """Initialize store with service configuration."""
        self.config = config
        self.base_url = config.base_url.rstrip("/")

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        return headers

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.config.timeout_seconds)

    async def get_insight(
        self, test_name: str, file_name: str | None
    ) -> TestInsight | None:
        """Fetch the insight for a test; None when the service has none."""
        params = {"test_name": test_name}
        if file_name is not None:
            params["file_name"] = file_name

        async with aiohttp.ClientSession(timeout=self._timeout()) as session:
            url = f"{self.base_url}/insights"
            async with session.get(
                url, headers=self._headers(), params=params
            ) as response:
                if response.status == 404:
                    return None
                if response.status != 200:
                    text = await response.text()
                    raise RuntimeError(
                        f"Failed to get insight: {response.status} {text}"
                    )

                data: Mapping[str, object] | None = await response.json()

        if not data:
            return None
        return TestInsight.model_validate(data)

    async def record_failure(self, record: FailureRecord) -> None:
        """Post a learned pattern and solution to the service."""
        async with aiohttp.ClientSession(timeout=self._timeout()) as session:
            url = f"{self.base_url}/failures"
            payload = record.model_dump(mode="json")

            async with session.post(
                url, headers=self._headers(), json=payload
            ) as response:
                if response.status not in {200, 201, 204}:
                    text = await response.text()
                    raise RuntimeError(
                        f"Failed to record failure: {response.status} {text}"
                    )
