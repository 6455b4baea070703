"""Pattern learning from successful marketplace listings.

Looks at listings that already have traction (more than ten reviews) and
learns which title structures, keywords, price points and design styles
they share. Results are stored as insights through the materializer so the
retrieval side reads them like any other insight.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from insight_miner.config import settings
from insight_miner.db.models import MarketplaceListing
from insight_miner.db.store import PersistenceError
from insight_miner.market.aggregator import round_half_up
from insight_miner.market.keywords import title_keywords
from insight_miner.mining.base import InsightDraft, mean
from insight_miner.mining.materializer import InsightMaterializer

logger = logging.getLogger(__name__)

MIN_REVIEWS = 10
LISTING_LIMIT = 1000
MIN_PATTERN_USES = 5
KEYWORD_LIMIT = 50
PRICE_LIMIT = 10
MAX_TITLE_SUCCESS_RATIO = 2.0
EXAMPLE_LIMIT = 5

TITLE_STRUCTURES: list[tuple[str, re.Pattern]] = [
    ("{Adjective} {Topic} Shirt", re.compile(r"^(funny|cute|cool|vintage|retro)\s+.+\s+shirt$", re.I)),
    ("{Topic} Gift For {Audience}", re.compile(r".+\s+gift\s+for\s+.+", re.I)),
    ("{Topic} Lover {Item}", re.compile(r".+\s+lover\s+.+", re.I)),
    (
        "{Occasion} {Topic} Shirt",
        re.compile(r"^(christmas|birthday|halloween|mothers day|fathers day)\s+.+\s+shirt$", re.I),
    ),
]


@dataclass
class _UsageStats:
    count: int = 0
    total_reviews: int = 0
    niches: list = field(default_factory=list)

    def add(self, listing: MarketplaceListing):
        self.count += 1
        self.total_reviews += listing.review_count or 0
        if listing.niche and listing.niche not in self.niches:
            self.niches.append(listing.niche)

    @property
    def avg_reviews(self) -> float:
        return self.total_reviews / self.count if self.count else 0.0


def _draft(insight_type: str, key: str, **kwargs) -> InsightDraft:
    kwargs.setdefault("category", "listing")
    kwargs.setdefault("risk_level", "proven")
    return InsightDraft(insight_type=insight_type, pattern_key=key, **kwargs)


def learn_title_structures(listings: Sequence[MarketplaceListing]) -> list[InsightDraft]:
    overall = mean([l.review_count or 0 for l in listings])
    drafts = []
    for structure, regex in TITLE_STRUCTURES:
        matching = [l for l in listings if regex.search((l.title or "").strip())]
        if len(matching) < MIN_PATTERN_USES:
            continue
        avg_reviews = mean([l.review_count or 0 for l in matching])
        ratio = min(avg_reviews / overall, MAX_TITLE_SUCCESS_RATIO) if overall else 0.0
        drafts.append(_draft(
            "title-structure",
            structure,
            title=f'Title structure "{structure}" averages {avg_reviews:.0f} reviews',
            description=(
                f'{len(matching)} successful listings use the "{structure}" structure, '
                f"averaging {ratio:.2f}x the reviews of other successful listings."
            ),
            pattern={
                "structure": structure,
                "examples": [l.title for l in matching[:EXAMPLE_LIMIT]],
            },
            sample_size=len(matching),
            confidence=min(len(matching) / 10, 1.0),
            success_rate=ratio,
            avg_performance={"avg_reviews": avg_reviews},
        ))
    return drafts


def learn_keywords(listings: Sequence[MarketplaceListing]) -> list[InsightDraft]:
    usage: dict[str, _UsageStats] = {}
    for listing in listings:
        for keyword in title_keywords(listing.title):
            usage.setdefault(keyword, _UsageStats()).add(listing)

    ranked = sorted(
        ((kw, s) for kw, s in usage.items() if s.count >= MIN_PATTERN_USES),
        key=lambda item: item[1].avg_reviews,
        reverse=True,
    )[:KEYWORD_LIMIT]

    return [
        _draft(
            "keyword",
            keyword,
            title=f'Keyword "{keyword}" averages {stats.avg_reviews:.0f} reviews',
            description=f'"{keyword}" appears in {stats.count} successful listing titles.',
            pattern={"keyword": keyword, "best_niches": stats.niches[:EXAMPLE_LIMIT]},
            sample_size=stats.count,
            confidence=min(stats.count / 5, 1.0),
            avg_performance={"avg_reviews": stats.avg_reviews},
            niches=stats.niches[:EXAMPLE_LIMIT],
        )
        for keyword, stats in ranked
    ]


def learn_price_points(listings: Sequence[MarketplaceListing]) -> list[InsightDraft]:
    usage: dict[int, _UsageStats] = {}
    for listing in listings:
        if listing.price is None:
            continue
        price = round_half_up(listing.price)
        if 0 < price < 100:
            usage.setdefault(price, _UsageStats()).add(listing)

    ranked = sorted(
        ((p, s) for p, s in usage.items() if s.count >= MIN_PATTERN_USES),
        key=lambda item: item[1].count,
        reverse=True,
    )[:PRICE_LIMIT]

    return [
        _draft(
            "price-strategy",
            f"${price}",
            title=f"${price} price point used by {stats.count} successful listings",
            description=f"Used by {stats.count} products, avg {stats.avg_reviews:.0f} reviews",
            pattern={"price_point": price, "frequency": stats.count},
            sample_size=stats.count,
            confidence=min(stats.count / 10, 1.0),
            avg_performance={"avg_reviews": stats.avg_reviews},
            niches=stats.niches[:EXAMPLE_LIMIT],
        )
        for price, stats in ranked
    ]


def learn_design_styles(listings: Sequence[MarketplaceListing]) -> list[InsightDraft]:
    usage: dict[str, _UsageStats] = {}
    for listing in listings:
        if listing.design_style:
            usage.setdefault(listing.design_style, _UsageStats()).add(listing)

    return [
        _draft(
            "design-style",
            style,
            category="design",
            title=f'"{style}" design style across {stats.count} successful listings',
            description=(
                f'The "{style}" style averages {stats.avg_reviews:.0f} reviews on the marketplace.'
            ),
            pattern={"style": style, "best_niches": stats.niches[:10]},
            sample_size=stats.count,
            confidence=min(stats.count / 10, 1.0),
            avg_performance={"avg_reviews": stats.avg_reviews},
            niches=stats.niches[:10],
        )
        for style, stats in usage.items()
        if stats.count >= MIN_PATTERN_USES
    ]


def learn_patterns(listings: Sequence[MarketplaceListing]) -> list[InsightDraft]:
    """All marketplace pattern drafts for a batch of successful listings."""
    return (
        learn_title_structures(listings)
        + learn_keywords(listings)
        + learn_price_points(listings)
        + learn_design_styles(listings)
    )


class MarketplacePatternLearner:
    """Learns listing patterns and stores them as insights."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        materializer: Optional[InsightMaterializer] = None,
        min_listings: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.materializer = materializer or InsightMaterializer(session_factory)
        self.min_listings = (
            min_listings if min_listings is not None else settings.marketplace_learning_min_listings
        )

    async def _load(self) -> list[MarketplaceListing]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(MarketplaceListing)
                .where(MarketplaceListing.review_count > MIN_REVIEWS)
                .order_by(MarketplaceListing.review_count.desc(), MarketplaceListing.id)
                .limit(LISTING_LIMIT)
            )
            return list(result.scalars().all())

    async def learn(self) -> dict:
        """
        Run marketplace pattern learning.

        Returns:
            Dict with listing, created, updated and error counts
        """
        stats = {"listings": 0, "created": 0, "updated": 0, "errors": []}
        listings = await self._load()
        stats["listings"] = len(listings)

        if len(listings) < self.min_listings:
            logger.info(
                f"Not enough data to learn marketplace patterns "
                f"({len(listings)} < {self.min_listings} listings)"
            )
            return stats

        for draft in learn_patterns(listings):
            try:
                outcome = await self.materializer.materialize(draft)
            except PersistenceError as e:
                logger.error(str(e))
                stats["errors"].append(str(e))
                continue
            stats["created" if outcome.created else "updated"] += 1

        logger.info(
            f"Marketplace learning: {stats['created']} created, {stats['updated']} updated "
            f"from {stats['listings']} listings"
        )
        return stats
