"""Tests for insight store base classes."""

import pytest

from testpulse.stream_monitor.models.insight import FailureRecord
from testpulse.stream_monitor.stores.base import InsightStore, NullInsightStore


def test_insight_store_is_abstract() -> None:
    """InsightStore cannot be instantiated."""
    with pytest.raises(TypeError):
        InsightStore()  # type: ignore[abstract]


async def test_null_store_has_no_insights() -> None:
    """NullInsightStore returns None for every test."""
    store = NullInsightStore()

    assert await store.get_insight("anything", "file.ts") is None


async def test_null_store_accepts_records() -> None:
    """NullInsightStore silently discards failure records."""
    store = NullInsightStore()

    await store.record_failure(
        FailureRecord(test_name="x", pattern="p", solution="s")
    )
