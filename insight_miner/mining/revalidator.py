"""Periodic revalidation of stored insights.

Markets drift, so relevant insights are re-tested against the most recent
observations. Low-confidence insights are due weekly, high-confidence ones
monthly. An insight holds if its recent success rate is at least 70% of the
stored rate; otherwise its confidence decays and, once it drops below the
floor, it is marked no longer relevant.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from insight_miner.config import MiningThresholds
from insight_miner.db.models import Insight, Observation
from insight_miner.db.store import PersistenceError, persistence_errors
from insight_miner.metrics import insights_invalidated_total
from insight_miner.mining.base import PatternMiner
from insight_miner.mining.listing_miner import ListingStructureMiner
from insight_miner.mining.observation_source import ObservationSource
from insight_miner.mining.phrase_miner import PhraseTemplateMiner
from insight_miner.mining.style_miner import StyleEffectivenessMiner
from insight_miner.utils.time import utcnow

logger = logging.getLogger(__name__)

CONFIDENCE_DECAY = 0.05
CONFIDENCE_REWARD = 0.02
MIN_RELEVANT_CONFIDENCE = 0.6
RETENTION_RATIO = 0.7          # recent rate must reach 70% of the stored rate
MIN_RECENT_SAMPLES = 5
HIGH_CONFIDENCE = 0.9
RECENT_WINDOW_DAYS = 30
DEFAULT_STORED_RATE = 0.5


@dataclass
class RevalidationResult:
    """Outcome for a single insight."""

    insight_id: int
    title: str
    previous_confidence: float
    new_confidence: float
    status: str     # validated, degraded, invalid
    reason: str
    new_success_rate: Optional[float] = None
    sample_size: int = 0


@dataclass
class RevalidationSummary:
    validated: int = 0
    degraded: int = 0
    invalidated: int = 0
    errors: list[str] = field(default_factory=list)
    results: list[RevalidationResult] = field(default_factory=list)


def assess(
    previous_confidence: float,
    stored_rate: Optional[float],
    successes: int,
    sample_size: int,
) -> tuple[float, str, str, Optional[float]]:
    """
    Decide how fresh evidence changes an insight.

    Returns:
        Tuple of (new confidence, status, reason, new success rate or None)
    """
    if sample_size < MIN_RECENT_SAMPLES:
        return (
            previous_confidence,
            "validated",
            "Insufficient recent data for validation - maintaining confidence",
            None,
        )

    expected = stored_rate if stored_rate is not None else DEFAULT_STORED_RATE
    new_rate = successes / sample_size
    if new_rate >= expected * RETENTION_RATIO:
        return (
            min(1.0, previous_confidence + CONFIDENCE_REWARD),
            "validated",
            f"Pattern validated with {round(new_rate * 100)}% success rate (n={sample_size})",
            new_rate,
        )

    new_confidence = max(0.0, previous_confidence - CONFIDENCE_DECAY)
    status = "invalid" if new_confidence < MIN_RELEVANT_CONFIDENCE else "degraded"
    return (
        new_confidence,
        status,
        f"Pattern degraded: {round(new_rate * 100)}% vs expected "
        f"{round(expected * RETENTION_RATIO * 100)}%",
        new_rate,
    )


class InsightRevalidator:
    """Re-tests due insights against recent observations."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        thresholds: Optional[MiningThresholds] = None,
    ):
        self.session_factory = session_factory
        # Only these dimensions can be re-tested from a month of observations
        self.matchers: dict[str, PatternMiner] = {
            miner.insight_type: miner
            for miner in (
                PhraseTemplateMiner(thresholds),
                StyleEffectivenessMiner(thresholds),
                ListingStructureMiner(thresholds),
            )
        }
        self.source = ObservationSource(window_days=RECENT_WINDOW_DAYS, min_engagement=0, limit=0)

    def evidence_for(self, insight: Insight, observations: Sequence[Observation]) -> tuple[int, int]:
        """Count (successes, matches) for an insight among recent observations."""
        miner = self.matchers.get(insight.insight_type)
        if miner is None:
            return 0, 0

        key = insight.pattern_key.lower()
        successes = matches = 0
        for observation in observations:
            if key in (k.lower() for k in miner.extract_keys(observation)):
                matches += 1
                if miner.is_success(observation):
                    successes += 1
        return successes, matches

    async def _due_insights(self, db: AsyncSession, now: datetime) -> list[Insight]:
        week_ago = now - timedelta(days=7)
        month_ago = now - timedelta(days=RECENT_WINDOW_DAYS)
        query = (
            select(Insight)
            .where(
                Insight.still_relevant.is_(True),
                or_(
                    and_(Insight.confidence >= HIGH_CONFIDENCE, Insight.last_validated < month_ago),
                    and_(Insight.confidence < HIGH_CONFIDENCE, Insight.last_validated < week_ago),
                ),
            )
            .order_by(Insight.id)
        )
        result = await db.execute(query)
        return list(result.scalars().all())

    async def revalidate_all(self, now: Optional[datetime] = None) -> RevalidationSummary:
        """
        Revalidate every due insight.

        Args:
            now: Reference time (defaults to the current UTC time)

        Returns:
            RevalidationSummary with per-status counts and results
        """
        now = now or utcnow()
        summary = RevalidationSummary()

        async with self.session_factory() as db:
            due = await self._due_insights(db, now)
            if not due:
                logger.info("No insights due for revalidation")
                return summary
            recent = await self.source.fetch(db)

        logger.info(f"Revalidating {len(due)} insights against {len(recent)} recent observations")

        for insight in due:
            try:
                result = await self._revalidate(insight.id, recent, now)
            except PersistenceError as e:
                logger.error(f"Failed to revalidate insight {insight.id}: {e}")
                summary.errors.append(f"Failed to validate {insight.id}: {e}")
                continue
            if result is None:
                continue

            summary.results.append(result)
            if result.status == "validated":
                summary.validated += 1
            elif result.status == "degraded":
                summary.degraded += 1
            else:
                summary.invalidated += 1

        logger.info(
            f"Revalidation complete: {summary.validated} validated, "
            f"{summary.degraded} degraded, {summary.invalidated} invalidated"
        )
        return summary

    async def _revalidate(
        self,
        insight_id: int,
        recent: Sequence[Observation],
        now: datetime,
    ) -> Optional[RevalidationResult]:
        with persistence_errors(f"revalidate insight {insight_id}"):
            async with self.session_factory() as db:
                async with db.begin():
                    result = await db.execute(
                        select(Insight).where(Insight.id == insight_id).with_for_update()
                    )
                    insight = result.scalar_one_or_none()
                    if insight is None or not insight.still_relevant:
                        return None

                    successes, matches = self.evidence_for(insight, recent)
                    previous = insight.confidence
                    new_confidence, status, reason, new_rate = assess(
                        previous, insight.success_rate, successes, matches
                    )

                    insight.confidence = new_confidence
                    insight.last_validated = now
                    insight.times_validated += 1
                    if status == "invalid":
                        insight.still_relevant = False
                        insights_invalidated_total.labels(insight_type=insight.insight_type).inc()
                    elif new_rate is not None:
                        insight.success_rate = new_rate

                    logger.debug(f"Insight {insight.id} {status}: {reason}")
                    return RevalidationResult(
                        insight_id=insight.id,
                        title=insight.title,
                        previous_confidence=previous,
                        new_confidence=new_confidence,
                        status=status,
                        reason=reason,
                        new_success_rate=new_rate,
                        sample_size=matches,
                    )
