"""SQLAlchemy database models."""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from insight_miner.utils.time import utcnow

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# Predicate for the "one relevant insight per key" partial index. The same
# text is passed as index_where when inserting so the conflict target matches.
INSIGHT_RELEVANT_PG = "still_relevant = true"
INSIGHT_RELEVANT_SQLITE = "still_relevant = 1"


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class Observation(Base):
    """Historical design record used as mining evidence."""

    __tablename__ = "observations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    phrase: Mapped[str] = mapped_column(Text, nullable=False)
    niche: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    style: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    tone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    sales: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    user_rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    listing_title: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    source_query: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    is_test: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, nullable=False, index=True
    )

    __table_args__ = (
        CheckConstraint("sales >= 0", name="ck_observation_sales_nonneg"),
        CheckConstraint("views >= 0", name="ck_observation_views_nonneg"),
    )


class Insight(Base):
    """Validated, confidence-scored pattern available to downstream generation."""

    __tablename__ = "insights"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    insight_type: Mapped[str] = mapped_column(String(32), nullable=False)
    pattern_key: Mapped[str] = mapped_column(String(256), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    pattern: Mapped[dict] = mapped_column(JSONType, default=dict, nullable=False)

    sample_size: Mapped[int] = mapped_column(Integer, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    success_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    avg_performance: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    niche: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)  # timing insights
    niches: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    timeframe: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    risk_level: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    source_observation_ids: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    times_validated: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    last_validated: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    still_relevant: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    __table_args__ = (
        Index(
            "uq_insight_relevant_key",
            "insight_type",
            "pattern_key",
            unique=True,
            postgresql_where=text(INSIGHT_RELEVANT_PG),
            sqlite_where=text(INSIGHT_RELEVANT_SQLITE),
        ),
        Index("ix_insight_type_confidence", "insight_type", "confidence"),
    )


class MarketplaceListing(Base):
    """Scraped marketplace product listing."""

    __tablename__ = "marketplace_listings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False)  # amazon, etsy
    external_id: Mapped[str] = mapped_column(String(128), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    review_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    sales_rank: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    niche: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    design_style: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    is_merch_program: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    primary_keywords: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)

    rank_spike_detected: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    rank_spike_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rank_change: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    first_scraped_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    last_scraped_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    scrape_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    rank_history: Mapped[list["RankHistoryEntry"]] = relationship(
        "RankHistoryEntry", back_populates="listing", cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("source", "external_id", name="uq_listing_source_external_id"),
    )


class NicheAggregate(Base):
    """Rolling per-niche market statistics, recomputed from the full listing set."""

    __tablename__ = "niche_aggregates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    niche: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)

    # Counts by source
    total_listings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    amazon_listings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    etsy_listings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    merch_program_listings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    design_observations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Statistics (positive values only)
    avg_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    min_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    max_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    avg_reviews: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    avg_rating: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    avg_sales_rank: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Classification
    saturation: Mapped[str] = mapped_column(String(16), default="unknown", nullable=False)
    entry_recommendation: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    entry_reasoning: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    entry_confidence: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Derived lists
    effective_keywords: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    common_price_points: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    winning_design_styles: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    long_tail_keywords: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    market_gaps: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    opportunity_score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rising_listings: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    last_analyzed: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    query_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_queried_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class RankHistoryEntry(Base):
    """Append-only sales rank observation for a listing."""

    __tablename__ = "rank_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    listing_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("marketplace_listings.id"), nullable=False
    )
    sales_rank: Mapped[int] = mapped_column(Integer, nullable=False)
    previous_rank: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rank_change: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    percent_change: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    is_spike: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    spike_magnitude: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    listing: Mapped["MarketplaceListing"] = relationship(
        "MarketplaceListing", back_populates="rank_history"
    )

    __table_args__ = (
        Index("ix_rank_history_listing_recorded", "listing_id", "recorded_at"),
    )


class FusionCandidate(Base):
    """Scored combination of two niches, keyed by the sorted pair."""

    __tablename__ = "fusion_candidates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    niche_a: Mapped[str] = mapped_column(String(128), nullable=False)
    niche_b: Mapped[str] = mapped_column(String(128), nullable=False)
    fusion_query: Mapped[str] = mapped_column(String(256), nullable=False)
    listing_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    avg_reviews: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    avg_sales_rank: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    opportunity_score: Mapped[int] = mapped_column(Integer, nullable=False)
    saturation: Mapped[str] = mapped_column(String(16), nullable=False)
    recommendation: Mapped[str] = mapped_column(String(16), nullable=False)
    top_listing: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    estimated_audience: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    validation_count: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    last_validated: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("niche_a", "niche_b", name="uq_fusion_pair"),
        CheckConstraint("niche_a <= niche_b", name="ck_fusion_pair_sorted"),
    )


class MiningRun(Base):
    """Bookkeeping row for each orchestrator run."""

    __tablename__ = "mining_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    run_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    job_type: Mapped[str] = mapped_column(String(32), nullable=False)  # mining, learning, market
    trigger: Mapped[str] = mapped_column(String(16), default="manual", nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="running", nullable=False)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    observations_analyzed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    insights_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    insights_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    candidates_rejected: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    errors: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
