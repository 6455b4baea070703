"""Idempotent create-or-refresh of insights.

The first writer for an (insight_type, pattern_key) creates the row through
INSERT ... ON CONFLICT DO NOTHING. Every later writer locks the relevant row
and merges its evidence into it. Inside one process, writers for the same
key are also serialized by an asyncio.Lock.
"""

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from insight_miner.db.models import Insight
from insight_miner.db.store import (
    PersistenceError,
    insert_insight_if_absent,
    lock_relevant_insight,
    persistence_errors,
)
from insight_miner.metrics import record_materialization
from insight_miner.mining.base import InsightDraft
from insight_miner.utils.time import utcnow

logger = logging.getLogger(__name__)


@dataclass
class MaterializeOutcome:
    """Result of writing one draft."""

    insight_id: int
    created: bool


def union_preserving(existing: Optional[Iterable], incoming: Optional[Iterable]) -> list:
    """Union of two lists keeping first-seen order."""
    merged = list(existing or [])
    seen = set(merged)
    for item in incoming or []:
        if item not in seen:
            seen.add(item)
            merged.append(item)
    return merged


def _is_string_list(value) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)


def merge_pattern(existing: Optional[dict], incoming: dict) -> dict:
    """Merge payloads: string lists are unioned, everything else is replaced."""
    merged = dict(existing or {})
    for key, value in incoming.items():
        current = merged.get(key)
        if _is_string_list(value) and _is_string_list(current):
            merged[key] = union_preserving(current, value)
        else:
            merged[key] = value
    return merged


def merge_insight(insight: Insight, draft: InsightDraft, now: Optional[datetime] = None) -> None:
    """Fold fresh evidence from a draft into an existing insight row."""
    now = now or utcnow()

    # Latest run's statistics replace the stored ones
    insight.sample_size = draft.sample_size
    insight.confidence = draft.confidence
    insight.success_rate = draft.success_rate
    insight.avg_performance = draft.avg_performance
    insight.title = draft.title
    insight.description = draft.description
    insight.timeframe = draft.timeframe
    insight.risk_level = draft.risk_level
    if draft.niche is not None:
        insight.niche = draft.niche

    insight.niches = union_preserving(insight.niches, draft.niches)
    insight.source_observation_ids = union_preserving(
        insight.source_observation_ids, draft.source_observation_ids
    )
    insight.pattern = merge_pattern(insight.pattern, draft.pattern)

    insight.times_validated = (insight.times_validated or 0) + 1
    insight.last_validated = now
    insight.updated_at = now


class InsightMaterializer:
    """Writes validated drafts into the knowledge store."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._key_locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._key_users: Counter = Counter()

    @asynccontextmanager
    async def _key_lock(self, insight_type: str, pattern_key: str):
        """Hold the per-key lock; it is dropped once no writer is using it."""
        key = (insight_type, pattern_key)
        lock = self._key_locks.setdefault(key, asyncio.Lock())
        self._key_users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._key_users[key] -= 1
            if not self._key_users[key]:
                del self._key_users[key]
                del self._key_locks[key]

    async def materialize(self, draft: InsightDraft) -> MaterializeOutcome:
        """
        Create or refresh the insight for a draft.

        Args:
            draft: Validated insight draft

        Returns:
            MaterializeOutcome with the row id and whether it was created

        Raises:
            PersistenceError: If the store write fails
        """
        async with self._key_lock(draft.insight_type, draft.pattern_key):
            with persistence_errors(f"materialize {draft.insight_type}:{draft.pattern_key}"):
                async with self.session_factory() as db:
                    async with db.begin():
                        outcome = await self._write(db, draft)

        record_materialization(draft.insight_type, outcome.created)
        logger.debug(
            f"{'Created' if outcome.created else 'Refreshed'} insight "
            f"{draft.insight_type}:{draft.pattern_key} (id={outcome.insight_id})"
        )
        return outcome

    async def _write(self, db: AsyncSession, draft: InsightDraft) -> MaterializeOutcome:
        now = utcnow()
        row = draft.to_row()
        row.update({
            "times_validated": 1,
            "last_validated": now,
            "still_relevant": True,
            "created_at": now,
            "updated_at": now,
        })

        insight_id = await insert_insight_if_absent(db, row)
        if insight_id is not None:
            return MaterializeOutcome(insight_id=insight_id, created=True)

        existing = await lock_relevant_insight(db, draft.insight_type, draft.pattern_key)
        if existing is None:
            # Conflicting row was invalidated between the insert and the lock
            raise PersistenceError(
                f"Relevant insight {draft.insight_type}:{draft.pattern_key} disappeared during refresh"
            )

        merge_insight(existing, draft, now)
        return MaterializeOutcome(insight_id=existing.id, created=False)
