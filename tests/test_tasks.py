"""Tests for the task runner and scheduler wiring."""

from unittest.mock import AsyncMock

import pytest

from insight_miner.config import Settings
from insight_miner.worker.scheduler import setup_scheduler
from insight_miner.worker.tasks import TaskRunner


@pytest.fixture
def lock_manager():
    manager = AsyncMock()
    manager.acquire_lock.return_value = "token-1"
    manager.safe_unlock.return_value = True
    manager.get_lock_info.return_value = {"run_id": "other", "ttl_seconds": 120}
    return manager


@pytest.mark.asyncio
async def test_run_locked_skips_when_lock_held(lock_manager):
    lock_manager.acquire_lock.return_value = None
    runner = TaskRunner(lock_manager=lock_manager)
    job = AsyncMock()

    result = await runner.run_locked("mining", job)

    assert result is None
    job.assert_not_called()
    lock_manager.safe_unlock.assert_not_called()


@pytest.mark.asyncio
async def test_run_locked_runs_and_releases(lock_manager):
    runner = TaskRunner(lock_manager=lock_manager)
    job = AsyncMock(return_value={"stored": 3})

    result = await runner.run_locked("fusion_scan", job)

    assert result == {"stored": 3}
    job.assert_awaited_once()
    job_name, run_id = lock_manager.acquire_lock.call_args.args
    assert job_name == "fusion_scan"
    lock_manager.safe_unlock.assert_awaited_once_with("fusion_scan", run_id, "token-1")


@pytest.mark.asyncio
async def test_run_locked_releases_on_failure(lock_manager):
    runner = TaskRunner(lock_manager=lock_manager)
    job = AsyncMock(side_effect=RuntimeError("db down"))

    with pytest.raises(RuntimeError):
        await runner.run_locked("niche_analysis", job)

    lock_manager.safe_unlock.assert_awaited_once()


@pytest.mark.asyncio
async def test_learning_cycle_survives_bad_configuration(session_factory, lock_manager):
    runner = TaskRunner(lock_manager=lock_manager)
    await runner.initialize(session_factory)
    runner.orchestrator.config = Settings(min_confidence=1.5)

    await runner.learning_cycle()

    lock_manager.safe_unlock.assert_awaited_once()


def test_scheduler_registers_jobs(lock_manager):
    runner = TaskRunner(lock_manager=lock_manager)
    scheduler = setup_scheduler(runner, Settings(niche_analysis_interval_hours=4))

    assert {job.id for job in scheduler.get_jobs()} == {
        "learning_cycle",
        "niche_analysis",
        "fusion_scan",
    }
    assert all(job.max_instances == 1 for job in scheduler.get_jobs())
