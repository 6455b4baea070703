"""Scheduled task runner.

Every job takes a Redis run lock first so two workers never mine, aggregate
or scan at the same time. A job whose lock is held is skipped, not queued.
"""

import logging
import time
from contextlib import suppress
from typing import Any, Awaitable, Callable, Optional
from uuid import uuid4

from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from insight_miner.config import ConfigurationError
from insight_miner.market.fusion import FusionScanner
from insight_miner.metrics import record_scheduler_run
from insight_miner.worker.orchestrator import MiningOrchestrator
from insight_miner.worker.run_lock import RunLockManager, run_lock_manager

logger = logging.getLogger(__name__)


class TaskRunner:
    """Runner for background jobs."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        lock_manager: Optional[RunLockManager] = None,
    ):
        self.session_factory = session_factory
        self.lock_manager = lock_manager or run_lock_manager
        self.orchestrator: Optional[MiningOrchestrator] = None

    async def initialize(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        """Bind the session factory; defaults to the application database."""
        if session_factory is not None:
            self.session_factory = session_factory
        if self.session_factory is None:
            from insight_miner.db.session import AsyncSessionLocal

            self.session_factory = AsyncSessionLocal
        self.orchestrator = MiningOrchestrator(self.session_factory)
        logger.info("Task runner initialized")

    async def close(self):
        """Clean up resources."""
        await self.lock_manager.close()

    async def run_locked(
        self,
        job: str,
        func: Callable[[], Awaitable[Any]],
    ) -> Optional[Any]:
        """
        Run a job under its run lock.

        Args:
            job: Job name, used as the lock key and metrics label
            func: Coroutine function doing the work

        Returns:
            The job's result, or None when the lock was held
        """
        run_id = uuid4().hex
        lock_token = await self.lock_manager.acquire_lock(job, run_id)
        if not lock_token:
            lock_info = await self.lock_manager.get_lock_info(job)
            logger.info(
                "%s already running; skipping (lock_run_id: %s, ttl_s: %s)",
                job,
                (lock_info.get("run_id") or "")[:16] if lock_info else None,
                lock_info.get("ttl_seconds") if lock_info else None,
            )
            return None

        start = time.monotonic()
        success = False
        try:
            result = await func()
            success = True
            return result
        finally:
            record_scheduler_run(job, success, time.monotonic() - start)
            released = False
            with suppress(RedisError):
                released = await self.lock_manager.safe_unlock(job, run_id, lock_token)
            if not released:
                logger.warning(f"Failed to release {job} lock for run_id: {run_id[:16]}...")

    async def learning_cycle(self):
        """Weekly mining, marketplace learning and revalidation."""
        try:
            stats = await self.run_locked(
                "mining", lambda: self.orchestrator.run_learning_cycle(trigger="scheduled")
            )
        except ConfigurationError as e:
            logger.error(f"Learning cycle aborted, invalid configuration: {e}")
            return
        if stats:
            mining = stats["mining"]
            logger.info(
                f"Learning cycle done: {mining.created} created, {mining.updated} updated, "
                f"{mining.rejected} rejected, {len(mining.errors)} errors"
            )

    async def niche_analysis(self):
        """Recompute every niche aggregate."""
        await self.run_locked(
            "niche_analysis", lambda: self.orchestrator.run_market_analysis(include_fusions=False)
        )

    async def fusion_scan(self):
        """Rescan fusion candidates."""
        await self.run_locked("fusion_scan", FusionScanner(self.session_factory).scan)


task_runner = TaskRunner()
