"""End-to-end tests for mining runs."""

from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from insight_miner.config import ConfigurationError, MiningThresholds, Settings
from insight_miner.db.models import Insight, MiningRun
from insight_miner.db.store import PersistenceError
from insight_miner.mining.phrase_miner import PhraseTemplateMiner
from insight_miner.mining.revalidator import RevalidationSummary
from insight_miner.mining.style_miner import StyleEffectivenessMiner
from insight_miner.worker.orchestrator import (
    InputInsufficientError,
    MiningOrchestrator,
    check_batch_size,
)

TEMPLATE = "World's {adj} {noun}"


def _orchestrator(session_factory, **overrides) -> MiningOrchestrator:
    values = {"mining_max_workers": 1, "min_confidence": 0.5}
    values.update(overrides)
    return MiningOrchestrator(session_factory, config=Settings(**values))


def _phrase_batch(weeks, approved_count):
    records = []
    for i, weeks_ago in enumerate(weeks):
        records.append({
            "phrase": f"World's Best Dad {i}",
            "weeks_ago": weeks_ago,
            "approved": i < approved_count,
        })
    return records


async def _phrase_insights(session_factory) -> list[Insight]:
    async with session_factory() as db:
        result = await db.execute(select(Insight).where(Insight.insight_type == "phrase-pattern"))
        return list(result.scalars().all())


async def _runs(session_factory) -> list[MiningRun]:
    async with session_factory() as db:
        return list((await db.execute(select(MiningRun))).scalars().all())


def test_check_batch_size(make_observation):
    thresholds = MiningThresholds()
    check_batch_size([make_observation() for _ in range(10)], thresholds)
    with pytest.raises(InputInsufficientError):
        check_batch_size([make_observation() for _ in range(9)], thresholds)


@pytest.mark.asyncio
async def test_phrase_pattern_end_to_end(session_factory, store_observations):
    await store_observations(_phrase_batch([0] * 4 + [1] * 4 + [2] * 4, approved_count=10))
    orchestrator = _orchestrator(session_factory)

    summary = await orchestrator.run_mining()

    assert summary.errors == []
    assert summary.status == "completed"
    assert summary.observations == 12
    insights = await _phrase_insights(session_factory)
    assert len(insights) == 1
    insight = insights[0]
    assert insight.pattern_key == TEMPLATE
    assert insight.sample_size == 12
    assert insight.success_rate == pytest.approx(0.833, abs=0.001)
    assert insight.confidence >= 0.5
    assert insight.times_validated == 1

    # Two more approved observations in a fourth week
    await store_observations([
        {"phrase": "World's Okayest Dad", "weeks_ago": 3, "approved": True},
        {"phrase": "World's Greatest Dad", "weeks_ago": 3, "approved": True},
    ])
    second = await orchestrator.run_mining()

    insights = await _phrase_insights(session_factory)
    assert len(insights) == 1
    assert insights[0].id == insight.id
    assert insights[0].sample_size == 14
    assert insights[0].success_rate == pytest.approx(12 / 14)
    assert insights[0].confidence > insight.confidence
    assert insights[0].times_validated == 2
    assert second.created == 0
    assert second.updated >= 1


@pytest.mark.asyncio
async def test_rerun_is_idempotent(session_factory, store_observations):
    await store_observations(_phrase_batch([0] * 4 + [1] * 4 + [2] * 4, approved_count=10))
    orchestrator = _orchestrator(session_factory)

    first = await orchestrator.run_mining()
    second = await orchestrator.run_mining()

    assert first.created == second.updated
    assert second.created == 0
    async with session_factory() as db:
        total = await db.scalar(select(func.count(Insight.id)))
    assert total == first.created


@pytest.mark.asyncio
async def test_run_is_recorded(session_factory, store_observations):
    await store_observations(_phrase_batch([0] * 4 + [1] * 4 + [2] * 4, approved_count=10))
    summary = await _orchestrator(session_factory).run_mining(trigger="scheduled")

    runs = await _runs(session_factory)
    assert len(runs) == 1
    run = runs[0]
    assert run.run_id == summary.run_id
    assert run.trigger == "scheduled"
    assert run.status == "completed"
    assert run.completed_at is not None
    assert run.observations_analyzed == 12
    assert run.insights_created == summary.created


@pytest.mark.asyncio
async def test_persistence_failure_does_not_stop_other_miners(session_factory, store_observations):
    await store_observations(_phrase_batch([0] * 4 + [1] * 4 + [2] * 4, approved_count=10))
    orchestrator = _orchestrator(session_factory)
    materialize = orchestrator.materializer.materialize

    async def flaky(draft):
        if draft.insight_type == "phrase-pattern":
            raise PersistenceError("materialize phrase-pattern failed: disk full")
        return await materialize(draft)

    with patch.object(orchestrator.materializer, "materialize", side_effect=flaky):
        summary = await orchestrator.run_mining()

    assert summary.status == "partial"
    assert len(summary.errors) == 1
    assert "disk full" in summary.errors[0]
    assert summary.per_miner["phrase-pattern"].errors
    assert summary.per_miner["style-effectiveness"].created == 1
    assert await _phrase_insights(session_factory) == []

    runs = await _runs(session_factory)
    assert runs[0].status == "partial"
    assert runs[0].error_count == 1


@pytest.mark.asyncio
async def test_crashing_miner_is_reported(session_factory, store_observations):
    class BrokenMiner(PhraseTemplateMiner):
        insight_type = "broken"

        def mine(self, observations):
            raise RuntimeError("boom")

    await store_observations(_phrase_batch([0] * 4 + [1] * 4 + [2] * 4, approved_count=10))
    thresholds = MiningThresholds(min_confidence=0.5)
    orchestrator = MiningOrchestrator(
        session_factory,
        thresholds=thresholds,
        miners=[BrokenMiner(thresholds), StyleEffectivenessMiner(thresholds)],
        max_workers=2,
    )

    summary = await orchestrator.run_mining()

    assert summary.errors == ["broken: boom"]
    assert summary.created == 1
    assert summary.status == "partial"


@pytest.mark.asyncio
async def test_invalid_configuration_aborts_before_writes(session_factory, store_observations):
    await store_observations(_phrase_batch([0] * 4 + [1] * 4 + [2] * 4, approved_count=10))
    orchestrator = _orchestrator(session_factory, min_confidence=2.0)

    with pytest.raises(ConfigurationError):
        await orchestrator.run_mining()

    assert await _runs(session_factory) == []
    assert await _phrase_insights(session_factory) == []


@pytest.mark.asyncio
async def test_insufficient_input_is_a_no_op(session_factory, store_observations):
    await store_observations(_phrase_batch([0, 1, 2, 0, 1], approved_count=5))

    summary = await _orchestrator(session_factory).run_mining()

    assert summary.status == "completed"
    assert summary.created == 0
    assert summary.errors == []
    assert "Insufficient data" in summary.notes[0]
    assert await _runs(session_factory) == []


@pytest.mark.asyncio
async def test_test_records_are_excluded(session_factory, store_observations):
    records = _phrase_batch([0] * 4 + [1] * 4 + [2] * 4, approved_count=10)
    for values in records:
        values["is_test"] = True
    await store_observations(records)

    summary = await _orchestrator(session_factory).run_mining()
    assert summary.observations == 0
    assert summary.notes


@pytest.mark.asyncio
async def test_learning_cycle(session_factory, store_observations):
    await store_observations(_phrase_batch([0] * 4 + [1] * 4 + [2] * 4, approved_count=10))

    stats = await _orchestrator(session_factory).run_learning_cycle()

    assert stats["mining"].created >= 1
    assert stats["marketplace"]["listings"] == 0
    assert isinstance(stats["revalidation"], RevalidationSummary)
    # Fresh insights are not due yet
    assert stats["revalidation"].results == []


@pytest.mark.asyncio
async def test_learning_cycle_without_revalidation(session_factory):
    stats = await _orchestrator(session_factory, revalidation_enabled=False).run_learning_cycle()
    assert stats["revalidation"] is None


@pytest.mark.asyncio
async def test_market_analysis(session_factory, make_listing):
    async with session_factory() as db:
        async with db.begin():
            db.add_all([make_listing(f"Fishing Dad {i}", niche="dad") for i in range(3)])

    stats = await _orchestrator(session_factory).run_market_analysis()

    assert stats["aggregation"]["niches_analyzed"] == 1
    assert stats["fusions"]["stored"] == 0


def _locked_database_error() -> OperationalError:
    return OperationalError("UPDATE mining_runs", {}, Exception("database is locked"))


@pytest.mark.asyncio
async def test_run_bookkeeping_failure_still_returns_summary(session_factory, store_observations):
    await store_observations(_phrase_batch([0] * 4 + [1] * 4 + [2] * 4, approved_count=10))
    orchestrator = _orchestrator(session_factory)

    with patch.object(orchestrator, "_finish_run", side_effect=_locked_database_error()):
        summary = await orchestrator.run_mining()

    assert summary.created >= 1
    assert len(summary.errors) == 1
    assert "record mining run result failed" in summary.errors[0]
    assert summary.status == "partial"
    assert len(await _phrase_insights(session_factory)) == 1


@pytest.mark.asyncio
async def test_run_start_failure_does_not_block_mining(session_factory, store_observations):
    await store_observations(_phrase_batch([0] * 4 + [1] * 4 + [2] * 4, approved_count=10))
    orchestrator = _orchestrator(session_factory)

    with patch.object(orchestrator, "_start_run", side_effect=_locked_database_error()):
        summary = await orchestrator.run_mining()

    assert summary.created >= 1
    assert "record mining run start failed" in summary.errors[0]
    assert await _runs(session_factory) == []


@pytest.mark.asyncio
async def test_unreadable_observations_return_failed_summary(session_factory):
    orchestrator = _orchestrator(session_factory)

    with patch.object(orchestrator, "_load_observations", side_effect=_locked_database_error()):
        summary = await orchestrator.run_mining()

    assert summary.status == "failed"
    assert summary.observations == 0
    assert "load observations failed" in summary.errors[0]


@pytest.mark.asyncio
async def test_observation_window_comes_from_injected_settings(session_factory, store_observations):
    await store_observations(_phrase_batch([0] * 4 + [1] * 4 + [2] * 4, approved_count=10))

    summary = await _orchestrator(session_factory, observation_window_days=7).run_mining()

    # Only the most recent week falls inside the window
    assert summary.observations == 4
    assert summary.notes
    assert await _runs(session_factory) == []
