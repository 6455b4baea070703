"""Tests for niche aggregation."""

import pytest
from sqlalchemy import select, update

from insight_miner.db.models import NicheAggregate
from insight_miner.market.aggregator import (
    MarketAggregator,
    compute_niche_stats,
    detect_market_gaps,
    round_half_up,
)


@pytest.fixture
def fishing_dad_listings(make_listing):
    return [
        make_listing(
            "Funny Fishing Dad Shirt",
            price=20.0,
            review_count=10,
            avg_rating=4.5,
            sales_rank=1000,
            design_style="Retro",
            rank_spike_detected=True,
            primary_keywords=["fishing", "dad"],
        ),
        make_listing(
            "Fishing Dad Gift",
            source="etsy",
            price=0.0,
            review_count=0,
            design_style="Retro",
            primary_keywords=["fishing", "gift"],
        ),
        make_listing(
            "Reel Cool Dad",
            price=25.0,
            review_count=30,
            avg_rating=4.0,
            sales_rank=3000,
            is_merch_program=True,
            design_style="Vintage",
            primary_keywords=["dad"],
        ),
    ]


def test_round_half_up():
    assert round_half_up(19.5) == 20
    assert round_half_up(18.49) == 18
    assert round_half_up(24.99) == 25


def test_compute_stats_counts(fishing_dad_listings):
    stats = compute_niche_stats(fishing_dad_listings, "Dad ")
    assert stats.niche == "dad"
    assert stats.total_listings == 3
    assert stats.amazon_listings == 2
    assert stats.etsy_listings == 1
    assert stats.merch_program_listings == 1
    assert stats.rising_listings == 1


def test_compute_stats_excludes_non_positive_values(fishing_dad_listings):
    stats = compute_niche_stats(fishing_dad_listings, "dad")
    assert stats.avg_price == pytest.approx(22.5)
    assert stats.min_price == 20.0
    assert stats.max_price == 25.0
    assert stats.avg_reviews == pytest.approx(20.0)
    assert stats.avg_rating == pytest.approx(4.25)
    assert stats.avg_sales_rank == pytest.approx(2000)


def test_compute_stats_entry_and_opportunity(fishing_dad_listings):
    stats = compute_niche_stats(fishing_dad_listings, "dad")
    assert stats.saturation == "low"
    assert stats.entry_recommendation == "enter"
    assert stats.entry_confidence == 6
    assert "Some products gaining traction" in stats.entry_reasoning
    assert stats.opportunity_score == 100


def test_compute_stats_derived_lists(fishing_dad_listings):
    stats = compute_niche_stats(fishing_dad_listings, "dad")
    assert stats.effective_keywords == ["dad", "fishing", "reel", "cool", "funny", "gift"]
    assert "shirt" not in stats.effective_keywords
    assert stats.common_price_points == [25, 20]
    assert stats.winning_design_styles == ["Retro", "Vintage"]
    assert stats.long_tail_keywords == ["fishing", "dad"]
    assert stats.market_gaps == ["Low competition: Only 3 products found"]


def test_compute_stats_empty_niche():
    stats = compute_niche_stats([], "dad")
    assert stats.total_listings == 0
    assert stats.saturation == "unknown"
    assert stats.avg_price is None
    assert stats.entry_recommendation is None


def test_derived_lists_use_top_twenty_by_reviews(make_listing):
    listings = [make_listing(f"Popular Design {i}", review_count=100 + i) for i in range(20)]
    listings.append(make_listing("Obscure Wombat", review_count=1))
    stats = compute_niche_stats(listings, "dad")
    assert "wombat" not in stats.effective_keywords
    assert "popular" in stats.effective_keywords


def test_detect_market_gaps(make_listing):
    listings = [make_listing(f"Plain Design {i}", review_count=2) for i in range(60)]
    gaps = detect_market_gaps(listings)
    assert "Many competitors have weak listings (few reviews)" in gaps
    assert 'Few products targeting "gift" buyers' in gaps
    assert not any(g.startswith("Low competition") for g in gaps)


@pytest.mark.asyncio
async def test_analyze_niche_upserts_and_preserves_query_stats(
    session_factory, fishing_dad_listings, make_listing, store_observations
):
    async with session_factory() as db:
        async with db.begin():
            db.add_all(fishing_dad_listings)
    await store_observations([{"niche": "Dad"}, {"niche": "dad"}, {"niche": "dad", "is_test": True}])

    aggregator = MarketAggregator(session_factory)
    stats = await aggregator.analyze_niche("Dad")
    assert stats.total_listings == 3
    assert stats.design_observations == 2

    async with session_factory() as db:
        async with db.begin():
            await db.execute(
                update(NicheAggregate).where(NicheAggregate.niche == "dad").values(query_count=3)
            )
            db.add(make_listing("Another Dad Design", review_count=5))

    await aggregator.analyze_niche("dad")

    async with session_factory() as db:
        rows = (await db.execute(select(NicheAggregate))).scalars().all()
    assert len(rows) == 1
    assert rows[0].total_listings == 4
    assert rows[0].query_count == 3
    assert rows[0].effective_keywords[0] == "dad"


@pytest.mark.asyncio
async def test_analyze_niche_without_listings(session_factory):
    assert await MarketAggregator(session_factory).analyze_niche("nobody") is None


@pytest.mark.asyncio
async def test_analyze_all(session_factory, make_listing):
    async with session_factory() as db:
        async with db.begin():
            db.add_all([
                make_listing("Dad Joke", niche="dad"),
                make_listing("Cat Mom", niche="cat"),
                make_listing("Cat Lady", niche="cat"),
            ])

    stats = await MarketAggregator(session_factory).analyze_all()
    assert stats == {"niches_analyzed": 2, "errors": []}
