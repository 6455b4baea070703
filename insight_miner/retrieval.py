"""Read side of the knowledge store for generation systems."""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from insight_miner.db.models import FusionCandidate, Insight, NicheAggregate
from insight_miner.db.store import top_insights
from insight_miner.market.scoring import AVOID
from insight_miner.utils.time import utcnow

logger = logging.getLogger(__name__)

TITLE_PATTERN_TYPES = ["title-structure", "listing-structure", "phrase-pattern"]
KEYWORD_TYPES = ["keyword"]
PRICE_STRATEGY_TYPES = ["price-strategy"]
STYLE_TYPES = ["design-style", "style-effectiveness"]

HIGH_CONFIDENCE = 0.9
FUSION_LIMIT = 10


@dataclass
class NicheContext:
    """Everything a generator needs to know about a niche."""

    niche: str
    title_patterns: list[Insight] = field(default_factory=list)
    keywords: list[Insight] = field(default_factory=list)
    price_strategies: list[Insight] = field(default_factory=list)
    styles: list[Insight] = field(default_factory=list)
    aggregate: Optional[NicheAggregate] = None
    fusions: list[FusionCandidate] = field(default_factory=list)


class InsightRetriever:
    """Cheap request-time queries over stored insights and aggregates."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], limit: int = 5):
        self.session_factory = session_factory
        self.limit = limit

    async def _top_for_niche(self, db: AsyncSession, types: list[str], niche: str) -> list[Insight]:
        return await top_insights(db, types, limit=self.limit, niche=niche)

    async def get_niche_context(self, niche: str) -> NicheContext:
        """
        Gather top insights, the market aggregate and open fusions for a niche.

        Reading the aggregate counts as a query against it.
        """
        niche = niche.strip().lower()
        context = NicheContext(niche=niche)

        async with self.session_factory() as db:
            async with db.begin():
                context.title_patterns = await self._top_for_niche(db, TITLE_PATTERN_TYPES, niche)
                context.keywords = await self._top_for_niche(db, KEYWORD_TYPES, niche)
                context.price_strategies = await self._top_for_niche(db, PRICE_STRATEGY_TYPES, niche)
                context.styles = await self._top_for_niche(db, STYLE_TYPES, niche)

                await db.execute(
                    update(NicheAggregate)
                    .where(NicheAggregate.niche == niche)
                    .values(
                        query_count=NicheAggregate.query_count + 1,
                        last_queried_at=utcnow(),
                    )
                )
                result = await db.execute(
                    select(NicheAggregate)
                    .where(NicheAggregate.niche == niche)
                    .execution_options(populate_existing=True)
                )
                context.aggregate = result.scalar_one_or_none()

                result = await db.execute(
                    select(FusionCandidate)
                    .where(
                        or_(FusionCandidate.niche_a == niche, FusionCandidate.niche_b == niche),
                        FusionCandidate.recommendation != AVOID,
                    )
                    .order_by(FusionCandidate.opportunity_score.desc(), FusionCandidate.id)
                    .limit(FUSION_LIMIT)
                )
                context.fusions = list(result.scalars().all())

        logger.debug(
            f"Context for '{niche}': {len(context.title_patterns)} title patterns, "
            f"{len(context.keywords)} keywords, {len(context.fusions)} fusions"
        )
        return context

    async def summary(self) -> dict:
        """Counts of relevant insights by type and category."""
        async with self.session_factory() as db:
            relevant = Insight.still_relevant.is_(True)

            by_type = await db.execute(
                select(Insight.insight_type, func.count(Insight.id))
                .where(relevant)
                .group_by(Insight.insight_type)
            )
            by_category = await db.execute(
                select(Insight.category, func.count(Insight.id))
                .where(relevant)
                .group_by(Insight.category)
            )
            high_confidence = await db.scalar(
                select(func.count(Insight.id)).where(relevant, Insight.confidence >= HIGH_CONFIDENCE)
            )
            recently_validated = await db.scalar(
                select(func.count(Insight.id)).where(
                    relevant, Insight.last_validated >= utcnow() - timedelta(days=7)
                )
            )

            types = dict(by_type.all())
            return {
                "total": sum(types.values()),
                "by_type": types,
                "by_category": dict(by_category.all()),
                "high_confidence": high_confidence or 0,
                "recently_validated": recently_validated or 0,
            }
