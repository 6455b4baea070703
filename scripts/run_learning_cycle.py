#!/usr/bin/env python3
"""
Run a learning cycle by hand, outside the scheduler.

Takes the same Redis run lock the scheduled jobs use, so a manual run never
overlaps a scheduled one.

Usage: python scripts/run_learning_cycle.py [--mining-only | --market | --summary | --unlock]
"""

import asyncio
import json
import sys

from insight_miner.config import ConfigurationError
from insight_miner.db.models import Base
from insight_miner.db.session import AsyncSessionLocal, engine
from insight_miner.logging_config import setup_logging
from insight_miner.retrieval import InsightRetriever
from insight_miner.worker.run_lock import run_lock_manager
from insight_miner.worker.tasks import task_runner


def print_mining_summary(summary) -> None:
    print(f"Run {summary.run_id[:16]}: {summary.observations} observations")
    print(f"  candidates analyzed: {summary.candidates_analyzed}")
    print(f"  created:  {summary.created}")
    print(f"  updated:  {summary.updated}")
    print(f"  rejected: {summary.rejected}")
    print(f"  elapsed:  {summary.elapsed_seconds:.1f}s")
    for note in summary.notes:
        print(f"  note: {note}")
    for error in summary.errors:
        print(f"  error: {error}")


async def run(mode: str) -> int:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    await task_runner.initialize(AsyncSessionLocal)
    orchestrator = task_runner.orchestrator
    try:
        if mode == "--summary":
            stats = await InsightRetriever(AsyncSessionLocal).summary()
            print(json.dumps(stats, indent=2, default=str))
            return 0

        if mode == "--unlock":
            await run_lock_manager.force_unlock("mining")
            print("Cleared mining lock")
            return 0

        if mode == "--market":
            stats = await task_runner.run_locked("niche_analysis", orchestrator.run_market_analysis)
            if stats is None:
                print("Market analysis already running; try again later")
                return 1
            print(json.dumps(stats, indent=2, default=str))
            return 0

        if mode == "--mining-only":
            summary = await task_runner.run_locked(
                "mining", lambda: orchestrator.run_mining(trigger="manual")
            )
            if summary is None:
                print("Mining already running; try again later")
                return 1
            print_mining_summary(summary)
            return 0 if summary.status != "failed" else 1

        stats = await task_runner.run_locked(
            "mining", lambda: orchestrator.run_learning_cycle(trigger="manual")
        )
        if stats is None:
            print("Mining already running; try again later")
            return 1
        print_mining_summary(stats["mining"])
        print(f"Marketplace learning: {json.dumps(stats['marketplace'], default=str)}")
        if stats["revalidation"] is not None:
            print(f"Revalidation: {stats['revalidation']}")
        return 0 if stats["mining"].status != "failed" else 1

    except ConfigurationError as e:
        print(f"Invalid configuration: {e}")
        return 2
    finally:
        await task_runner.close()
        await engine.dispose()


if __name__ == "__main__":
    setup_logging()
    option = sys.argv[1] if len(sys.argv) > 1 else ""
    if option == "--help":
        print("Usage: python run_learning_cycle.py [OPTIONS]")
        print("")
        print("Options:")
        print("  --mining-only  Mine observations only")
        print("  --market       Recompute niche aggregates and fusion candidates")
        print("  --summary      Print stored insight counts")
        print("  --unlock       Force-clear a stuck mining lock")
        print("  --help         Show this help message")
        print("")
        print("With no options, runs the full learning cycle")
    elif option not in ("", "--mining-only", "--market", "--summary", "--unlock"):
        print(f"Unknown option: {option}")
        sys.exit(2)
    else:
        sys.exit(asyncio.run(run(option)))
