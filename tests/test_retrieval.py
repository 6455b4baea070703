"""Tests for the retrieval side of the knowledge store."""

import pytest

from insight_miner.db.models import FusionCandidate, NicheAggregate
from insight_miner.retrieval import InsightRetriever


async def _seed(session_factory, add_insight):
    await add_insight(insight_type="title-structure", pattern_key="{Adjective} {Topic} Shirt", confidence=0.9)
    await add_insight(insight_type="phrase-pattern", pattern_key="World's {adj} {noun}", confidence=0.95, niches=["dad"])
    await add_insight(insight_type="phrase-pattern", pattern_key="{topic} {state}", confidence=0.99, niches=["mom"])
    await add_insight(insight_type="listing-structure", pattern_key="gift-angle", confidence=0.85)
    await add_insight(insight_type="keyword", pattern_key="fishing", confidence=0.8, niches=["dad"])
    await add_insight(insight_type="price-strategy", pattern_key="$20", confidence=1.0)
    await add_insight(insight_type="design-style", pattern_key="Retro", confidence=0.7)
    await add_insight(
        insight_type="style-effectiveness", pattern_key="Unknown", confidence=0.9, still_relevant=False
    )

    async with session_factory() as db:
        async with db.begin():
            db.add(NicheAggregate(niche="dad", total_listings=40, saturation="low"))
            db.add_all([
                FusionCandidate(
                    niche_a="dad", niche_b="fishing", fusion_query="dad fishing",
                    opportunity_score=80, saturation="low", recommendation="enter",
                ),
                FusionCandidate(
                    niche_a="dad", niche_b="golf", fusion_query="dad golf",
                    opportunity_score=90, saturation="high", recommendation="avoid",
                ),
                FusionCandidate(
                    niche_a="dad", niche_b="dog", fusion_query="dad dog",
                    opportunity_score=60, saturation="medium", recommendation="caution",
                ),
            ])


@pytest.mark.asyncio
async def test_niche_context(session_factory, add_insight):
    await _seed(session_factory, add_insight)

    context = await InsightRetriever(session_factory).get_niche_context(" Dad ")

    assert context.niche == "dad"
    # Ordered by confidence; the mom-only template is excluded
    assert [i.pattern_key for i in context.title_patterns] == [
        "World's {adj} {noun}",
        "{Adjective} {Topic} Shirt",
        "gift-angle",
    ]
    assert [i.pattern_key for i in context.keywords] == ["fishing"]
    assert [i.pattern_key for i in context.price_strategies] == ["$20"]
    # Invalidated insights are never returned
    assert [i.pattern_key for i in context.styles] == ["Retro"]
    assert [(f.niche_b, f.recommendation) for f in context.fusions] == [
        ("fishing", "enter"),
        ("dog", "caution"),
    ]
    assert context.aggregate.total_listings == 40


@pytest.mark.asyncio
async def test_niche_context_counts_queries(session_factory, add_insight):
    await _seed(session_factory, add_insight)
    retriever = InsightRetriever(session_factory)

    first = await retriever.get_niche_context("dad")
    second = await retriever.get_niche_context("dad")

    assert first.aggregate.query_count == 1
    assert second.aggregate.query_count == 2
    assert second.aggregate.last_queried_at is not None


@pytest.mark.asyncio
async def test_niche_context_for_unknown_niche(session_factory, add_insight):
    await _seed(session_factory, add_insight)
    context = await InsightRetriever(session_factory).get_niche_context("astronomy")

    assert context.aggregate is None
    assert context.fusions == []
    # General insights still apply
    assert [i.pattern_key for i in context.title_patterns] == ["{Adjective} {Topic} Shirt", "gift-angle"]


@pytest.mark.asyncio
async def test_summary(session_factory, add_insight):
    await _seed(session_factory, add_insight)
    summary = await InsightRetriever(session_factory).summary()

    assert summary["total"] == 7
    assert summary["by_type"]["phrase-pattern"] == 2
    assert "style-effectiveness" not in summary["by_type"]
    assert summary["high_confidence"] == 4
    assert summary["recently_validated"] == 7


@pytest.mark.asyncio
async def test_niche_insights_survive_crowded_store(session_factory, add_insight):
    for i in range(25):
        await add_insight(pattern_key=f"cat-template-{i}", confidence=0.95, niches=["cat"])
    await add_insight(pattern_key="dog-only", confidence=0.85, niches=["dog"])

    context = await InsightRetriever(session_factory).get_niche_context("dog")

    assert [i.pattern_key for i in context.title_patterns] == ["dog-only"]


@pytest.mark.asyncio
async def test_niche_insights_are_capped_at_limit(session_factory, add_insight):
    for i in range(8):
        await add_insight(pattern_key=f"dog-template-{i}", confidence=0.5 + i / 100, niches=["dog", "cat"])

    context = await InsightRetriever(session_factory, limit=3).get_niche_context("dog")

    assert [i.pattern_key for i in context.title_patterns] == [
        "dog-template-7",
        "dog-template-6",
        "dog-template-5",
    ]


@pytest.mark.asyncio
async def test_fusions_match_whole_niche_names(session_factory):
    async with session_factory() as db:
        async with db.begin():
            db.add_all([
                FusionCandidate(
                    niche_a="education", niche_b="teacher", fusion_query="education teacher",
                    opportunity_score=70, saturation="low", recommendation="enter",
                ),
                FusionCandidate(
                    niche_a="cat", niche_b="coffee", fusion_query="cat coffee",
                    opportunity_score=65, saturation="low", recommendation="enter",
                ),
            ])

    context = await InsightRetriever(session_factory).get_niche_context("cat")

    assert [(f.niche_a, f.niche_b) for f in context.fusions] == [("cat", "coffee")]
