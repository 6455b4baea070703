"""Worker entry point: creates tables, starts the scheduler and runs until stopped."""

import asyncio
import logging
import signal

from prometheus_client import start_http_server

from insight_miner.config import settings
from insight_miner.db.models import Base
from insight_miner.db.session import AsyncSessionLocal, engine
from insight_miner.logging_config import setup_logging
from insight_miner.worker.scheduler import setup_scheduler
from insight_miner.worker.tasks import task_runner

logger = logging.getLogger(__name__)


async def run_worker():
    """Run the scheduler until SIGINT/SIGTERM."""
    logger.info("Starting insight miner worker...")

    # Initialize database
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await task_runner.initialize(AsyncSessionLocal)

    if settings.metrics_port:
        start_http_server(settings.metrics_port)
        logger.info(f"Prometheus metrics on port {settings.metrics_port}")

    scheduler = setup_scheduler(task_runner)
    scheduler.start()
    logger.info("Scheduler started")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        scheduler.shutdown()
        await task_runner.close()
        await engine.dispose()
        logger.info("Shutdown complete")


def main():
    setup_logging()
    asyncio.run(run_worker())


if __name__ == "__main__":
    main()
