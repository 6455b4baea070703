"""Cross-niche fusion scanning.

A fusion is a pair of niches that each have enough standalone market data
and that already share a handful of listings. Pairs come from a fixed table
of profession/family x hobby/animal combinations plus any niche pairs the
co-occurrence miner has validated.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from insight_miner.config import settings
from insight_miner.db.models import Insight, MarketplaceListing, NicheAggregate
from insight_miner.db.store import PersistenceError, persistence_errors, upsert_fusion_candidate
from insight_miner.market.scoring import recommend_fusion, score_fusion
from insight_miner.metrics import fusion_candidates_stored_total
from insight_miner.utils.time import utcnow

logger = logging.getLogger(__name__)

FUSION_PATTERNS = [
    # Profession + Hobby
    (["nurse", "teacher", "trucker", "mechanic"], ["dog", "cat", "fishing", "coffee"]),
    # Family + Hobby
    (["dad", "mom", "grandpa", "grandma"], ["fishing", "hunting", "gardening", "golf"]),
    # Family + Animal
    (["dad", "mom"], ["dog", "cat", "horse"]),
]


def fixed_fusion_pairs() -> list[tuple[str, str]]:
    """(base, modifier) pairs from the fixed table, first occurrence only."""
    pairs = []
    seen = set()
    for bases, modifiers in FUSION_PATTERNS:
        for base in bases:
            for modifier in modifiers:
                if (base, modifier) not in seen:
                    seen.add((base, modifier))
                    pairs.append((base, modifier))
    return pairs


def _matches(term: str):
    pattern = f"%{term}%"
    return or_(MarketplaceListing.title.ilike(pattern), MarketplaceListing.niche.ilike(pattern))


class FusionScanner:
    """Scores and stores niche pairs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        min_niche_listings: Optional[int] = None,
        min_matching_listings: Optional[int] = None,
        scan_limit: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.min_niche_listings = min_niche_listings or settings.fusion_min_niche_listings
        self.min_matching_listings = min_matching_listings or settings.fusion_min_matching_listings
        self.scan_limit = scan_limit or settings.fusion_listing_scan_limit

    async def _candidate_pairs(self, db: AsyncSession) -> list[tuple[str, str]]:
        pairs = fixed_fusion_pairs()
        seen = {tuple(sorted(p)) for p in pairs}

        result = await db.execute(
            select(Insight.pattern)
            .where(Insight.insight_type == "cross-niche", Insight.still_relevant.is_(True))
            .order_by(Insight.confidence.desc(), Insight.id)
        )
        for pattern in result.scalars().all():
            niche_a = (pattern or {}).get("niche_a")
            niche_b = (pattern or {}).get("niche_b")
            if niche_a and niche_b and tuple(sorted((niche_a, niche_b))) not in seen:
                seen.add(tuple(sorted((niche_a, niche_b))))
                pairs.append((niche_a, niche_b))
        return pairs

    @staticmethod
    def _find_niche(niches: Iterable[str], term: str) -> Optional[str]:
        for niche in niches:
            if term in niche:
                return niche
        return None

    async def scan_pair(self, db: AsyncSession, base: str, modifier: str) -> Optional[dict]:
        """
        Score one pair and upsert it.

        Returns:
            The stored values, or None when too few listings match
        """
        result = await db.execute(
            select(MarketplaceListing)
            .where(and_(_matches(base), _matches(modifier)))
            .order_by(MarketplaceListing.id)
            .limit(self.scan_limit)
        )
        listings = list(result.scalars().all())
        if len(listings) < self.min_matching_listings:
            return None

        count = len(listings)
        avg_reviews = sum(l.review_count or 0 for l in listings) / count
        ranks = [l.sales_rank for l in listings if l.sales_rank is not None]
        avg_rank = round(sum(ranks) / len(ranks)) if ranks else None

        recommendation, saturation = recommend_fusion(count, avg_reviews)
        top = max(listings, key=lambda l: l.review_count or 0)
        niche_a, niche_b = sorted((base, modifier))
        now = utcnow()

        values = {
            "niche_a": niche_a,
            "niche_b": niche_b,
            "fusion_query": f"{base} {modifier}",
            "listing_count": count,
            "avg_reviews": avg_reviews,
            "avg_sales_rank": avg_rank,
            "opportunity_score": score_fusion(count, avg_reviews, avg_rank),
            "saturation": saturation,
            "recommendation": recommendation,
            "top_listing": {
                "title": top.title,
                "reviews": top.review_count,
                "price": top.price,
            },
            "estimated_audience": f"{base} professionals who are also {modifier} enthusiasts",
            "created_at": now,
            "last_validated": now,
        }
        await upsert_fusion_candidate(db, values)
        fusion_candidates_stored_total.labels(recommendation=recommendation).inc()
        return values

    async def scan(self) -> dict:
        """Scan every candidate pair whose niches both have enough data."""
        start_time = utcnow()
        stats = {"pairs_considered": 0, "stored": 0, "skipped": 0, "errors": []}

        async with self.session_factory() as db:
            result = await db.execute(
                select(NicheAggregate.niche)
                .where(NicheAggregate.total_listings >= self.min_niche_listings)
                .order_by(NicheAggregate.niche)
            )
            niches = list(result.scalars().all())
            pairs = await self._candidate_pairs(db)

        logger.info(f"Analyzing {len(niches)} niches for fusion opportunities")

        for base, modifier in pairs:
            if not self._find_niche(niches, base) or not self._find_niche(niches, modifier):
                stats["skipped"] += 1
                continue

            stats["pairs_considered"] += 1
            try:
                with persistence_errors(f"fusion scan {base}+{modifier}"):
                    async with self.session_factory() as db:
                        async with db.begin():
                            stored = await self.scan_pair(db, base, modifier)
            except PersistenceError as e:
                logger.error(str(e))
                stats["errors"].append(str(e))
                continue

            if stored:
                stats["stored"] += 1
            else:
                stats["skipped"] += 1

        duration = (utcnow() - start_time).total_seconds()
        logger.info(
            f"Fusion scan complete in {duration:.1f}s: {stats['stored']} stored, "
            f"{stats['skipped']} skipped, {len(stats['errors'])} errors"
        )
        return stats
