"""Observation batch loading."""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from insight_miner.config import settings
from insight_miner.db.models import Observation
from insight_miner.utils.time import utcnow

logger = logging.getLogger(__name__)


class ObservationSource:
    """Reads bounded, recency-ordered batches of non-test observations."""

    def __init__(
        self,
        window_days: Optional[int] = None,
        min_engagement: Optional[int] = None,
        limit: Optional[int] = None,
    ):
        self.window_days = window_days if window_days is not None else settings.observation_window_days
        self.min_engagement = (
            min_engagement if min_engagement is not None else settings.observation_min_engagement
        )
        self.limit = limit if limit is not None else settings.observation_batch_limit

    async def fetch(
        self,
        db: AsyncSession,
        window_days: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[Observation]:
        """
        Load observations newest first.

        Args:
            db: Database session
            window_days: Override the recency window
            limit: Override the batch cap (0 = no cap)

        Returns:
            Observations within the window with at least the minimum engagement
        """
        days = window_days if window_days is not None else self.window_days
        cap = limit if limit is not None else self.limit
        since = utcnow() - timedelta(days=days)

        query = (
            select(Observation)
            .where(
                Observation.is_test.is_(False),
                Observation.created_at >= since,
                Observation.views >= self.min_engagement,
            )
            .order_by(Observation.created_at.desc(), Observation.id.desc())
        )
        if cap:
            query = query.limit(cap)
        result = await db.execute(query)
        observations = list(result.scalars().all())
        logger.info(f"Loaded {len(observations)} observations from the last {days} days")
        return observations
