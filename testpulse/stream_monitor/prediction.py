"""Rank tests by estimated failure risk from historical insights."""

import asyncio
import logging
from collections.abc import Iterable, Mapping

from testpulse.stream_monitor.models.insight import FailureRecord, TestInsight
from testpulse.stream_monitor.models.metrics import TestMetrics
from testpulse.stream_monitor.models.prediction import (
    Prediction,
    PredictionSet,
    TestRef,
)
from testpulse.stream_monitor.stores.base import InsightStore

logger = logging.getLogger(__name__)

RISK_PATTERNS = frozenset({"flaky", "always_fails"})


def risk_score(insight: TestInsight | None) -> float:
    """Estimate failure probability for a test.

    The historical failure rate is the base score; a flaky or always-failing
    pattern raises it to that pattern's confidence.
    """
    if insight is None:
        return 0.0
    score = insight.failure_rate
    for pattern in insight.patterns:
        if pattern.type in RISK_PATTERNS:
            score = max(score, pattern.confidence)
    return min(score, 1.0)


def explain(insight: TestInsight) -> str:
    """Describe why a test is considered risky."""
    risky = [p for p in insight.patterns if p.type in RISK_PATTERNS and p.suggestion]
    if risky:
        return max(risky, key=lambda p: p.confidence).suggestion
    for pattern in insight.patterns:
        if pattern.suggestion:
            return pattern.suggestion
    if insight.recommended_action:
        return f"Recommended action: {insight.recommended_action}"
    return f"Historical failure rate {insight.failure_rate * 100:.0f}%"


def _as_ref(candidate: TestRef | Mapping[str, object]) -> TestRef:
    if isinstance(candidate, TestRef):
        return candidate
    return TestRef.model_validate(candidate)


class PredictionEngine:
    """Combine insight-store history into risk-ranked predictions."""

    def __init__(self, store: InsightStore, risk_threshold: float = 0.0) -> None:
        """Initialize engine with the insight store to query."""
        self.store = store
        self.risk_threshold = risk_threshold

    async def get_predictions(
        self,
        candidates: Iterable[TestRef | Mapping[str, object]],
        context: TestMetrics | None = None,
    ) -> PredictionSet:
        """Predict likely failures and a fail-fast order for candidates.

        Args:
            candidates: Tests that may run, as ``TestRef`` or mappings
            context: Live metrics to attach to the result

        Returns:
            Likely failures by descending probability and every candidate
            ordered riskiest first

        """
        refs = [_as_ref(candidate) for candidate in candidates]
        insights = await self._fetch_insights(refs)

        scored = [
            (risk_score(insight), index, ref, insight)
            for index, (ref, insight) in enumerate(zip(refs, insights))
        ]

        likely = sorted(
            (
                item
                for item in scored
                if item[3] is not None and item[0] > self.risk_threshold
            ),
            key=lambda item: (-item[0], item[1]),
        )
        likely_failures = [
            Prediction(
                test_name=ref.test_name,
                file_name=ref.file_name,
                probability=score,
                reason=explain(insight),
            )
            for score, _, ref, insight in likely
            if insight is not None
        ]

        ordered = sorted(scored, key=lambda item: (-item[0], item[3] is None, item[1]))
        optimized_order = [ref for _, _, ref, _ in ordered]

        logger.info(
            f"Predicted {len(likely_failures)} likely failures "
            f"among {len(refs)} candidates"
        )
        return PredictionSet(
            likely_failures=likely_failures,
            optimized_order=optimized_order,
            context=context,
        )

    async def _fetch_insights(self, refs: list[TestRef]) -> list[TestInsight | None]:
        results = await asyncio.gather(
            *(self.store.get_insight(ref.test_name, ref.file_name) for ref in refs),
            return_exceptions=True,
        )

        insights: list[TestInsight | None] = []
        for ref, result in zip(refs, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(
                    f"Insight lookup failed for {ref.test_name}: "
                    f"{type(result).__name__}: {result}"
                )
                insights.append(None)
            else:
                insights.append(result)
        return insights

    async def record_failure(self, record: FailureRecord) -> bool:
        """Forward a learned pattern and solution to the store.

        Returns:
            True when the store accepted the record

        """
        try:
            await self.store.record_failure(record)
        except Exception as e:
            logger.warning(
                f"Failed to record failure for {record.test_name}: "
                f"{type(e).__name__}: {e}"
            )
            return False
        return True
