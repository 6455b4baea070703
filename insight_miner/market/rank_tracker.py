"""Sales rank spike detection.

Lower rank numbers are better, so an improvement is a negative change.
Percent improvement is measured against the previous rank.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from insight_miner.config import settings
from insight_miner.db.models import MarketplaceListing, RankHistoryEntry
from insight_miner.db.store import rank_entry_exists_since
from insight_miner.metrics import record_rank_spike
from insight_miner.utils.time import utcnow

logger = logging.getLogger(__name__)

# (percent improvement strictly above, severity), checked in order
SPIKE_THRESHOLDS = [
    (50.0, "viral"),
    (25.0, "major"),
    (10.0, "minor"),
]


@dataclass
class RankChange:
    """Classified difference between two rank observations."""

    rank: int
    previous_rank: Optional[int] = None
    change: Optional[int] = None            # new - previous; negative = improving
    percent_change: Optional[float] = None  # improvement relative to previous
    severity: Optional[str] = None

    @property
    def is_spike(self) -> bool:
        return self.severity is not None


def classify_rank_change(new_rank: int, previous_rank: Optional[int]) -> RankChange:
    """
    Classify a rank movement.

    Args:
        new_rank: Current sales rank
        previous_rank: Last known rank, or None on first sighting

    Returns:
        RankChange with severity viral/major/minor, or None when not a spike
    """
    if previous_rank is None or previous_rank <= 0:
        return RankChange(rank=new_rank, previous_rank=previous_rank)

    change = new_rank - previous_rank
    percent = (previous_rank - new_rank) / previous_rank * 100

    severity = None
    for threshold, label in SPIKE_THRESHOLDS:
        if percent > threshold:
            severity = label
            break

    return RankChange(
        rank=new_rank,
        previous_rank=previous_rank,
        change=change,
        percent_change=percent,
        severity=severity,
    )


class RankSpikeDetector:
    """Appends rank history and flags listings that spike."""

    def __init__(self, dedup_minutes: Optional[int] = None):
        self.dedup_window = timedelta(
            minutes=dedup_minutes if dedup_minutes is not None else settings.rank_history_dedup_minutes
        )

    async def record(
        self,
        db: AsyncSession,
        listing: MarketplaceListing,
        new_rank: int,
        previous_rank: Optional[int],
        now: Optional[datetime] = None,
    ) -> Optional[RankChange]:
        """
        Record a rank observation for a listing.

        The caller owns the transaction.

        Returns:
            The classified change, or None when an entry already exists
            inside the dedup window
        """
        now = now or utcnow()
        if await rank_entry_exists_since(db, listing.id, now - self.dedup_window):
            logger.debug(f"Rank entry for listing {listing.id} inside dedup window, skipping")
            return None

        change = classify_rank_change(new_rank, previous_rank)
        db.add(RankHistoryEntry(
            listing_id=listing.id,
            sales_rank=new_rank,
            previous_rank=previous_rank,
            rank_change=change.change,
            percent_change=change.percent_change,
            is_spike=change.is_spike,
            spike_magnitude=change.severity,
            recorded_at=now,
        ))

        if change.is_spike:
            listing.rank_spike_detected = True
            listing.rank_spike_at = now
            listing.rank_change = change.change
            record_rank_spike(change.severity)
            logger.info(
                f"Rank spike ({change.severity}) on listing {listing.id}: "
                f"{previous_rank} -> {new_rank} ({change.percent_change:.1f}%)"
            )

        await db.flush()
        return change


# Global detector instance
rank_spike_detector = RankSpikeDetector()
