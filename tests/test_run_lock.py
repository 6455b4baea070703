"""Tests for run lock behavior."""

import pytest
import redis.asyncio as redis

from insight_miner.config import settings
from insight_miner.worker.run_lock import RunLockManager, lock_key

JOB = "test_mining"


async def _redis_available() -> bool:
    try:
        client = redis.from_url(settings.redis_url, decode_responses=True)
        await client.ping()
        await client.aclose()
        return True
    except Exception:
        return False


def test_lock_key_is_per_job():
    assert lock_key("mining") == "insights:mining:lock"
    assert lock_key("fusion_scan") != lock_key("mining")


@pytest.mark.asyncio
async def test_lock_acquire_release():
    if not await _redis_available():
        pytest.skip("Redis not available")

    manager = RunLockManager(redis_url=settings.redis_url)
    await manager.force_unlock(JOB)

    run_id = "test_run_lock"
    token = await manager.acquire_lock(JOB, run_id, ttl_seconds=30)
    assert token is not None

    info = await manager.get_lock_info(JOB)
    assert info is not None
    assert info.get("run_id") == run_id
    assert info.get("token") == token
    assert 0 < info.get("ttl_seconds") <= 30

    # A second worker is turned away while the lock is held
    assert await manager.acquire_lock(JOB, "other_run", ttl_seconds=30) is None

    released = await manager.safe_unlock(JOB, run_id, token)
    assert released is True

    info = await manager.get_lock_info(JOB)
    assert info is None
    await manager.close()


@pytest.mark.asyncio
async def test_lock_token_mismatch():
    if not await _redis_available():
        pytest.skip("Redis not available")

    manager = RunLockManager(redis_url=settings.redis_url)
    await manager.force_unlock(JOB)

    run_id = "test_run_token"
    token = await manager.acquire_lock(JOB, run_id, ttl_seconds=30)
    assert token is not None

    released = await manager.safe_unlock(JOB, run_id, "bad_token")
    assert released is False
    assert (await manager.get_lock_info(JOB))["token"] == token

    await manager.force_unlock(JOB)
    assert await manager.get_lock_info(JOB) is None
    await manager.close()


@pytest.mark.asyncio
async def test_unlock_without_token_is_refused():
    manager = RunLockManager(redis_url=settings.redis_url)
    assert await manager.safe_unlock(JOB, "run", None) is False
