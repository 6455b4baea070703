"""Knowledge store operations.

Every create-or-refresh here is a single conditional statement
(INSERT ... ON CONFLICT) so concurrent runs cannot produce duplicate rows.
PostgreSQL and SQLite both support the syntax; the dialect is picked from
the session's bind.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import cast, exists, func, or_, select, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from insight_miner.db.models import (
    INSIGHT_RELEVANT_PG,
    INSIGHT_RELEVANT_SQLITE,
    FusionCandidate,
    Insight,
    MarketplaceListing,
    NicheAggregate,
    RankHistoryEntry,
)

logger = logging.getLogger(__name__)

# Aggregate columns owned by the retrieval side, never overwritten on recompute
_NICHE_PRESERVED = {"id", "niche", "query_count", "last_queried_at"}


class PersistenceError(Exception):
    """Raised when a knowledge store write fails."""

    pass


@contextmanager
def persistence_errors(operation: str):
    """Re-raise SQLAlchemy failures as PersistenceError."""
    try:
        yield
    except SQLAlchemyError as e:
        raise PersistenceError(f"{operation} failed: {e}") from e


def _dialect_name(db: AsyncSession) -> str:
    return db.get_bind().dialect.name


def dialect_insert(db: AsyncSession, model):
    """Return an INSERT construct that supports ON CONFLICT for the bound dialect."""
    if _dialect_name(db) == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


def _insight_relevant_predicate(db: AsyncSession):
    if _dialect_name(db) == "postgresql":
        return text(INSIGHT_RELEVANT_PG)
    return text(INSIGHT_RELEVANT_SQLITE)


def _applies_to_niche_predicate(db: AsyncSession, niche: str):
    """Insight has no niches (general) or lists this niche."""
    if _dialect_name(db) == "postgresql":
        niches = cast(Insight.niches, JSONB)
        return or_(func.jsonb_array_length(niches) == 0, niches.contains([niche]))

    entries = func.json_each(Insight.niches).table_valued("value")
    return or_(
        func.json_array_length(Insight.niches) == 0,
        exists().select_from(entries).where(entries.c.value == niche),
    )


# =============================================================================
# Insights
# =============================================================================


async def insert_insight_if_absent(db: AsyncSession, values: dict[str, Any]) -> Optional[int]:
    """
    Insert an insight unless a relevant row already exists for its key.

    Args:
        db: Database session
        values: Column values for the new row

    Returns:
        The new row id, or None when the key is already taken
    """
    stmt = (
        dialect_insert(db, Insight)
        .values(**values)
        .on_conflict_do_nothing(
            index_elements=["insight_type", "pattern_key"],
            index_where=_insight_relevant_predicate(db),
        )
        .returning(Insight.id)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def lock_relevant_insight(
    db: AsyncSession,
    insight_type: str,
    pattern_key: str,
) -> Optional[Insight]:
    """Load the relevant insight for a key with a row lock (no-op lock on SQLite)."""
    query = (
        select(Insight)
        .where(
            Insight.insight_type == insight_type,
            Insight.pattern_key == pattern_key,
            Insight.still_relevant.is_(True),
        )
        .with_for_update()
    )
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def top_insights(
    db: AsyncSession,
    insight_types: str | list[str],
    limit: int = 10,
    min_confidence: float = 0.0,
    niche: Optional[str] = None,
) -> list[Insight]:
    """
    Return relevant insights of the given type(s) ordered by confidence.

    Args:
        db: Database session
        insight_types: One type or a list of types
        limit: Maximum rows returned
        min_confidence: Confidence floor
        niche: When set, only general insights and those listing this niche
    """
    if isinstance(insight_types, str):
        insight_types = [insight_types]
    conditions = [
        Insight.insight_type.in_(insight_types),
        Insight.still_relevant.is_(True),
        Insight.confidence >= min_confidence,
    ]
    if niche is not None:
        conditions.append(_applies_to_niche_predicate(db, niche))
    query = (
        select(Insight)
        .where(*conditions)
        .order_by(Insight.confidence.desc(), Insight.id)
        .limit(limit)
    )
    result = await db.execute(query)
    return list(result.scalars().all())


# =============================================================================
# Marketplace listings and rank history
# =============================================================================


async def upsert_listing(db: AsyncSession, values: dict[str, Any]) -> tuple[int, Optional[int]]:
    """
    Insert or refresh a listing by (source, external_id).

    Returns:
        Tuple of (listing id, sales rank before this write)
    """
    existing = await db.execute(
        select(MarketplaceListing.sales_rank)
        .where(
            MarketplaceListing.source == values["source"],
            MarketplaceListing.external_id == values["external_id"],
        )
        .with_for_update()
    )
    previous_rank = existing.scalar_one_or_none()

    stmt = dialect_insert(db, MarketplaceListing).values(**values)
    refreshed = {
        key: stmt.excluded[key]
        for key in values
        if key not in ("source", "external_id", "first_scraped_at")
    }
    refreshed["scrape_count"] = MarketplaceListing.scrape_count + 1
    stmt = stmt.on_conflict_do_update(
        index_elements=["source", "external_id"],
        set_=refreshed,
    ).returning(MarketplaceListing.id)

    result = await db.execute(stmt)
    return result.scalar_one(), previous_rank


async def rank_entry_exists_since(db: AsyncSession, listing_id: int, since: datetime) -> bool:
    """Check whether the listing already has a rank entry inside the dedup window."""
    result = await db.execute(
        select(RankHistoryEntry.id)
        .where(
            RankHistoryEntry.listing_id == listing_id,
            RankHistoryEntry.recorded_at >= since,
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


# =============================================================================
# Niche aggregates and fusion candidates
# =============================================================================


async def upsert_niche_aggregate(db: AsyncSession, values: dict[str, Any]) -> int:
    """Replace the computed columns of a niche aggregate, creating it if needed."""
    stmt = dialect_insert(db, NicheAggregate).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=["niche"],
        set_={key: stmt.excluded[key] for key in values if key not in _NICHE_PRESERVED},
    ).returning(NicheAggregate.id)
    result = await db.execute(stmt)
    return result.scalar_one()


async def upsert_fusion_candidate(db: AsyncSession, values: dict[str, Any]) -> int:
    """Insert or refresh a fusion candidate keyed by its sorted niche pair."""
    if values["niche_a"] > values["niche_b"]:
        raise ValueError(
            f"Fusion pair must be sorted: {values['niche_a']!r} > {values['niche_b']!r}"
        )

    stmt = dialect_insert(db, FusionCandidate).values(**values)
    refreshed = {
        key: stmt.excluded[key]
        for key in values
        if key not in ("niche_a", "niche_b", "created_at", "validation_count")
    }
    refreshed["validation_count"] = FusionCandidate.validation_count + 1
    stmt = stmt.on_conflict_do_update(
        index_elements=["niche_a", "niche_b"],
        set_=refreshed,
    ).returning(FusionCandidate.id)
    result = await db.execute(stmt)
    return result.scalar_one()
