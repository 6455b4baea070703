"""Per-niche market aggregation.

Each run recomputes a niche's aggregate from the full current listing set;
nothing is accumulated incrementally, so the row always matches the latest
scrape.
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Optional, Sequence

from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from insight_miner.db.models import MarketplaceListing, Observation
from insight_miner.db.store import PersistenceError, persistence_errors, upsert_niche_aggregate
from insight_miner.market.keywords import most_common, title_keywords
from insight_miner.market.scoring import classify_saturation, opportunity_score, score_entry
from insight_miner.metrics import niches_analyzed_total
from insight_miner.utils.time import utcnow

logger = logging.getLogger(__name__)

TOP_LISTINGS = 20
KEYWORD_LIMIT = 20
PRICE_POINT_LIMIT = 5
STYLE_LIMIT = 5
LONG_TAIL_LIMIT = 20
GIFT_PATTERN = "gift"


@dataclass
class NicheStats:
    """Computed aggregate for one niche."""

    niche: str
    total_listings: int = 0
    amazon_listings: int = 0
    etsy_listings: int = 0
    merch_program_listings: int = 0
    design_observations: int = 0
    avg_price: Optional[float] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    avg_reviews: Optional[float] = None
    avg_rating: Optional[float] = None
    avg_sales_rank: Optional[float] = None
    saturation: str = "unknown"
    entry_recommendation: Optional[str] = None
    entry_reasoning: Optional[str] = None
    entry_confidence: Optional[int] = None
    effective_keywords: list = field(default_factory=list)
    common_price_points: list = field(default_factory=list)
    winning_design_styles: list = field(default_factory=list)
    long_tail_keywords: list = field(default_factory=list)
    market_gaps: list = field(default_factory=list)
    opportunity_score: Optional[int] = None
    rising_listings: int = 0

    def to_row(self) -> dict:
        row = asdict(self)
        row["last_analyzed"] = utcnow()
        return row


def _positive(values) -> list[float]:
    return [float(v) for v in values if v is not None and v > 0]


def _mean(values: Sequence[float]) -> Optional[float]:
    return sum(values) / len(values) if values else None


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def detect_market_gaps(listings: Sequence[MarketplaceListing]) -> list[str]:
    """Describe openings in a niche's competitive landscape."""
    gaps = []
    total = len(listings)
    if total < 50:
        gaps.append(f"Low competition: Only {total} products found")

    weak = [l for l in listings if (l.review_count or 0) < 10]
    if len(weak) > total * 0.5:
        gaps.append("Many competitors have weak listings (few reviews)")

    gift = [l for l in listings if GIFT_PATTERN in (l.title or "").lower()]
    if len(gift) < total * 0.1:
        gaps.append('Few products targeting "gift" buyers')
    return gaps


def compute_niche_stats(
    listings: Sequence[MarketplaceListing],
    niche: str,
    design_observations: int = 0,
) -> NicheStats:
    """
    Compute the aggregate for a niche from its listings.

    Args:
        listings: Every current listing in the niche
        niche: Niche key (normalized to lower case)
        design_observations: Observation count for the niche

    Returns:
        NicheStats; an empty listing set yields the "unknown" saturation
    """
    stats = NicheStats(niche=niche.strip().lower(), design_observations=design_observations)
    stats.total_listings = len(listings)
    stats.saturation = classify_saturation(len(listings))
    if not listings:
        return stats

    stats.amazon_listings = sum(1 for l in listings if l.source == "amazon")
    stats.etsy_listings = sum(1 for l in listings if l.source == "etsy")
    stats.merch_program_listings = sum(1 for l in listings if l.is_merch_program)
    stats.rising_listings = sum(1 for l in listings if l.rank_spike_detected)

    prices = _positive(l.price for l in listings)
    reviews = _positive(l.review_count for l in listings)
    ratings = _positive(l.avg_rating for l in listings)
    ranks = _positive(l.sales_rank for l in listings)

    stats.avg_price = _mean(prices)
    stats.min_price = min(prices) if prices else None
    stats.max_price = max(prices) if prices else None
    stats.avg_reviews = _mean(reviews)
    stats.avg_rating = _mean(ratings)
    stats.avg_sales_rank = _mean(ranks)

    entry = score_entry(
        len(listings), stats.saturation, stats.avg_reviews or 0.0, stats.rising_listings
    )
    stats.entry_recommendation = entry.recommendation
    stats.entry_reasoning = entry.reason
    stats.entry_confidence = entry.confidence

    # Top performers drive the derived lists
    top = sorted(listings, key=lambda l: l.review_count or 0, reverse=True)[:TOP_LISTINGS]
    stats.effective_keywords = most_common(
        (kw for l in top for kw in title_keywords(l.title)), KEYWORD_LIMIT
    )
    stats.common_price_points = most_common(
        (round_half_up(p) for p in _positive(l.price for l in top)), PRICE_POINT_LIMIT
    )
    stats.winning_design_styles = most_common(
        (l.design_style for l in top if l.design_style), STYLE_LIMIT
    )
    stats.long_tail_keywords = most_common(
        (kw for l in listings for kw in (l.primary_keywords or [])), LONG_TAIL_LIMIT, min_count=2
    )

    stats.market_gaps = detect_market_gaps(listings)
    all_reviews_avg = sum(l.review_count or 0 for l in listings) / len(listings)
    stats.opportunity_score = opportunity_score(stats.saturation, all_reviews_avg)
    return stats


class MarketAggregator:
    """Loads listings per niche, computes aggregates and upserts them."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _load(self, db: AsyncSession, niche: str) -> tuple[list[MarketplaceListing], int]:
        result = await db.execute(
            select(MarketplaceListing).where(MarketplaceListing.niche == niche)
        )
        listings = list(result.scalars().all())
        observations = await db.scalar(
            select(func.count(Observation.id)).where(
                func.lower(Observation.niche) == niche,
                Observation.is_test.is_(False),
            )
        )
        return listings, observations or 0

    async def analyze_niche(self, niche: str) -> Optional[NicheStats]:
        """
        Recompute and store the aggregate for one niche.

        Returns:
            The computed stats, or None when the niche has no listings

        Raises:
            PersistenceError: If the aggregate cannot be stored
        """
        niche = niche.strip().lower()
        with persistence_errors(f"analyze niche {niche}"):
            async with self.session_factory() as db:
                async with db.begin():
                    listings, observations = await self._load(db, niche)
                    if not listings:
                        logger.debug(f"No listings for niche '{niche}', skipping")
                        return None
                    stats = compute_niche_stats(listings, niche, observations)
                    await upsert_niche_aggregate(db, stats.to_row())

        niches_analyzed_total.labels(saturation=stats.saturation).inc()
        logger.info(
            f"Niche '{niche}': {stats.total_listings} listings, {stats.saturation} saturation, "
            f"{stats.entry_recommendation} (opportunity {stats.opportunity_score})"
        )
        return stats

    async def analyze_all(self) -> dict:
        """Recompute every niche that has listings."""
        start_time = utcnow()
        stats = {"niches_analyzed": 0, "errors": []}

        async with self.session_factory() as db:
            result = await db.execute(
                select(distinct(MarketplaceListing.niche))
                .where(MarketplaceListing.niche.is_not(None))
                .order_by(MarketplaceListing.niche)
            )
            niches = [n for n in result.scalars().all() if n]

        for niche in niches:
            try:
                if await self.analyze_niche(niche):
                    stats["niches_analyzed"] += 1
            except PersistenceError as e:
                logger.error(str(e))
                stats["errors"].append(str(e))

        duration = (utcnow() - start_time).total_seconds()
        logger.info(
            f"Market aggregation complete in {duration:.1f}s: "
            f"{stats['niches_analyzed']} niches, {len(stats['errors'])} errors"
        )
        return stats
