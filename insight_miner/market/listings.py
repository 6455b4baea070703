"""Recording of scraped marketplace listings."""

import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from insight_miner.db.models import MarketplaceListing
from insight_miner.db.store import persistence_errors, upsert_listing
from insight_miner.market.keywords import title_keywords
from insight_miner.market.rank_tracker import RankChange, RankSpikeDetector, rank_spike_detector
from insight_miner.utils.time import utcnow

logger = logging.getLogger(__name__)

PRIMARY_KEYWORD_LIMIT = 10
RANK_TRACKED_SOURCES = {"amazon"}


@dataclass
class ListingSnapshot:
    """One scraped listing as delivered by a scraper."""

    source: str
    external_id: str
    title: str
    niche: str
    price: Optional[float] = None
    review_count: int = 0
    avg_rating: Optional[float] = None
    sales_rank: Optional[int] = None
    design_style: Optional[str] = None
    is_merch_program: bool = False
    primary_keywords: Optional[list[str]] = None


@dataclass
class RecordedListing:
    listing_id: int
    previous_rank: Optional[int]
    rank_change: Optional[RankChange] = None
    keywords: list = field(default_factory=list)


class ListingRecorder:
    """Upserts listings and tracks their sales rank."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        rank_detector: Optional[RankSpikeDetector] = None,
    ):
        self.session_factory = session_factory
        self.rank_detector = rank_detector or rank_spike_detector

    async def record_listing(self, snapshot: ListingSnapshot) -> RecordedListing:
        """
        Store a listing snapshot and track its rank.

        Raises:
            PersistenceError: If the listing cannot be stored
        """
        now = utcnow()
        keywords = snapshot.primary_keywords
        if keywords is None:
            keywords = title_keywords(snapshot.title)[:PRIMARY_KEYWORD_LIMIT]

        values = {
            "source": snapshot.source,
            "external_id": snapshot.external_id,
            "title": snapshot.title,
            "niche": snapshot.niche.strip().lower(),
            "price": snapshot.price,
            "review_count": snapshot.review_count or 0,
            "avg_rating": snapshot.avg_rating,
            "sales_rank": snapshot.sales_rank,
            "design_style": snapshot.design_style,
            "is_merch_program": snapshot.is_merch_program,
            "primary_keywords": keywords,
            "first_scraped_at": now,
            "last_scraped_at": now,
        }

        with persistence_errors(f"record listing {snapshot.source}:{snapshot.external_id}"):
            async with self.session_factory() as db:
                async with db.begin():
                    listing_id, previous_rank = await upsert_listing(db, values)
                    recorded = RecordedListing(
                        listing_id=listing_id, previous_rank=previous_rank, keywords=keywords
                    )

                    if snapshot.sales_rank and snapshot.source in RANK_TRACKED_SOURCES:
                        listing = await db.get(MarketplaceListing, listing_id)
                        recorded.rank_change = await self.rank_detector.record(
                            db, listing, snapshot.sales_rank, previous_rank, now=now
                        )

        return recorded
