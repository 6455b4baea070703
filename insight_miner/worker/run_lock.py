"""Redis-based distributed lock so only one worker runs a job at a time."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

import redis.asyncio as redis

from insight_miner.config import settings

logger = logging.getLogger(__name__)

LOCK_KEY_TEMPLATE = "insights:{job}:lock"

# 0 = not found/already released, 1 = deleted, 2 = mismatch
SAFE_UNLOCK_SCRIPT = """
local lock_value = redis.call('GET', KEYS[1])
if not lock_value then
    return 0
end

local cjson = require('cjson')
local success, data = pcall(cjson.decode, lock_value)
if not success then
    return 2
end

if data.run_id == ARGV[1] and data.token == ARGV[2] then
    redis.call('DEL', KEYS[1])
    return 1
else
    return 2
end
"""


def lock_key(job: str) -> str:
    return LOCK_KEY_TEMPLATE.format(job=job)


class RunLockManager:
    """
    Manages per-job run locks using Redis.

    Features:
    - TTL-based expiration so a crashed worker never blocks forever
    - Token-based ownership verification on release
    - Lock info retrieval for diagnostics
    """

    def __init__(self, redis_url: Optional[str] = None):
        """
        Initialize lock manager.

        Args:
            redis_url: Redis connection URL (defaults to settings)
        """
        self.redis_url = redis_url or settings.redis_url
        self._redis: Optional[redis.Redis] = None

    async def _get_redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._redis

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def acquire_lock(
        self,
        job: str,
        run_id: str,
        ttl_seconds: Optional[int] = None,
    ) -> Optional[str]:
        """
        Acquire the lock for a job.

        Args:
            job: Job name (mining, niche_analysis, fusion_scan)
            run_id: Unique run identifier (UUID hex)
            ttl_seconds: Time-to-live in seconds (defaults to settings)

        Returns:
            Token string if lock acquired, None if already held
        """
        redis_client = await self._get_redis()
        ttl = ttl_seconds or settings.run_lock_ttl_seconds

        token = uuid4().hex
        lock_value = json.dumps({
            "run_id": run_id,
            "token": token,
            "started_at": datetime.now(timezone.utc).isoformat(),
        })

        acquired = await redis_client.set(lock_key(job), lock_value, nx=True, ex=ttl)
        if acquired:
            logger.info(f"Acquired {job} lock for run_id: {run_id[:16]}...")
            return token

        existing_value = await redis_client.get(lock_key(job))
        if existing_value:
            try:
                existing_run_id = json.loads(existing_value).get("run_id", "unknown")
                logger.debug(f"{job} lock already held by run_id: {existing_run_id[:16]}...")
            except (json.JSONDecodeError, AttributeError):
                logger.warning(f"{job} lock exists but value is invalid: {existing_value}")
        return None

    async def safe_unlock(self, job: str, run_id: str, token: Optional[str]) -> bool:
        """
        Release the lock only if run_id and token match (atomic).

        Returns:
            True if released or already gone, False on mismatch or error
        """
        if not token:
            logger.warning(f"Unlock of {job} requested without token; refusing")
            return False

        redis_client = await self._get_redis()
        try:
            result = await redis_client.eval(SAFE_UNLOCK_SCRIPT, 1, lock_key(job), run_id, token)
        except redis.RedisError as e:
            logger.error(f"Error executing safe_unlock script for {job}: {e}")
            return False

        if result == 0:
            logger.debug(f"{job} lock already released")
            return True
        if result == 1:
            logger.info(f"Released {job} lock for run_id: {run_id[:16]}...")
            return True

        logger.warning(
            f"Attempted to release {job} lock with mismatched token/run_id: "
            f"requested={run_id[:16]}..."
        )
        return False

    async def force_unlock(self, job: str) -> bool:
        """Force unlock without token verification (admin use)."""
        redis_client = await self._get_redis()
        try:
            await redis_client.delete(lock_key(job))
        except redis.RedisError as e:
            logger.error(f"Failed to force unlock {job}: {e}")
            return False
        logger.warning(f"Force-cleared {job} lock")
        return True

    async def get_lock_info(self, job: str) -> Optional[Dict[str, Any]]:
        """
        Get current lock information.

        Returns:
            Dict with run_id, token, started_at, ttl_seconds, or None if no lock
        """
        redis_client = await self._get_redis()
        value = await redis_client.get(lock_key(job))
        if not value:
            return None
        ttl = await redis_client.ttl(lock_key(job))

        try:
            data = json.loads(value)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid {job} lock value format: {e}")
            return {"raw_value": value, "ttl_seconds": ttl if ttl > 0 else None}

        return {
            "run_id": data.get("run_id"),
            "token": data.get("token"),
            "started_at": data.get("started_at"),
            "ttl_seconds": ttl if ttl > 0 else None,
        }


run_lock_manager = RunLockManager()
