"""Mining run orchestration.

Runs every miner over one observation batch, bounded by a semaphore sized to
the connection pool, and folds their outcomes into a single summary. A miner
that fails is recorded and does not stop the others; only configuration
problems abort a run, and they do so before anything is written.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Optional, Sequence
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from insight_miner.config import MiningThresholds, Settings, settings
from insight_miner.db.models import MiningRun, Observation
from insight_miner.db.store import PersistenceError, persistence_errors
from insight_miner.logging_config import get_logger
from insight_miner.market.aggregator import MarketAggregator
from insight_miner.market.fusion import FusionScanner
from insight_miner.metrics import record_miner_error, record_rejection
from insight_miner.mining.base import PatternMiner
from insight_miner.mining.cross_niche_miner import CrossNicheMiner
from insight_miner.mining.listing_miner import ListingStructureMiner
from insight_miner.mining.marketplace_learner import MarketplacePatternLearner
from insight_miner.mining.materializer import InsightMaterializer
from insight_miner.mining.observation_source import ObservationSource
from insight_miner.mining.phrase_miner import PhraseTemplateMiner
from insight_miner.mining.revalidator import InsightRevalidator
from insight_miner.mining.style_miner import StyleEffectivenessMiner
from insight_miner.mining.timing_miner import NicheTimingMiner
from insight_miner.utils.time import utcnow

MAX_RECORDED_ERRORS = 20


class InputInsufficientError(Exception):
    """Raised when a batch is too small for any mining to be meaningful."""

    pass


@dataclass
class MinerReport:
    """Outcome of one miner within a run."""

    miner: str
    candidates: int = 0
    created: int = 0
    updated: int = 0
    rejected: int = 0
    errors: list[str] = field(default_factory=list)


@dataclass
class RunSummary:
    """Structured result of a mining run, returned even on partial failure."""

    run_id: str
    job_type: str = "mining"
    observations: int = 0
    candidates_analyzed: int = 0
    created: int = 0
    updated: int = 0
    rejected: int = 0
    per_miner: dict[str, MinerReport] = field(default_factory=dict)
    elapsed_seconds: float = 0.0
    errors: list[str] = field(default_factory=list)
    notes: list[str] = field(default_factory=list)

    def absorb(self, report: MinerReport):
        self.per_miner[report.miner] = report
        self.candidates_analyzed += report.candidates
        self.created += report.created
        self.updated += report.updated
        self.rejected += report.rejected
        self.errors.extend(report.errors)

    @property
    def status(self) -> str:
        if not self.errors:
            return "completed"
        if self.created or self.updated:
            return "partial"
        return "failed"


def check_batch_size(observations: Sequence[Observation], thresholds: MiningThresholds) -> None:
    """Raise InputInsufficientError when the batch is below the minimum sample size."""
    if len(observations) < thresholds.min_sample_size:
        raise InputInsufficientError(
            f"Insufficient data - need at least {thresholds.min_sample_size} "
            f"observations, got {len(observations)}"
        )


def default_miners(thresholds: MiningThresholds) -> list[PatternMiner]:
    return [
        PhraseTemplateMiner(thresholds),
        StyleEffectivenessMiner(thresholds),
        NicheTimingMiner(thresholds),
        ListingStructureMiner(thresholds),
        CrossNicheMiner(thresholds),
    ]


class MiningOrchestrator:
    """
    Coordinates mining, learning and market analysis jobs.

    The session factory is the only storage handle; every component that
    writes gets it explicitly.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        thresholds: Optional[MiningThresholds] = None,
        miners: Optional[Sequence[PatternMiner]] = None,
        max_workers: Optional[int] = None,
        source: Optional[ObservationSource] = None,
        config: Settings = settings,
    ):
        self.session_factory = session_factory
        self.config = config
        self._thresholds = thresholds
        self._miners = list(miners) if miners is not None else None
        self.max_workers = max_workers or config.mining_max_workers
        self.source = source or ObservationSource(
            window_days=config.observation_window_days,
            min_engagement=config.observation_min_engagement,
            limit=config.observation_batch_limit,
        )
        self.materializer = InsightMaterializer(session_factory)

    def resolve_thresholds(self) -> MiningThresholds:
        """Thresholds for this run; raises ConfigurationError when invalid."""
        if self._thresholds is None:
            self._thresholds = MiningThresholds.from_settings(self.config)
        return self._thresholds

    def miners(self) -> list[PatternMiner]:
        if self._miners is None:
            self._miners = default_miners(self.resolve_thresholds())
        return self._miners

    async def _load_observations(self) -> list[Observation]:
        async with self.session_factory() as db:
            return await self.source.fetch(db)

    async def _start_run(self, run_id: str, job_type: str, trigger: str) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                db.add(MiningRun(run_id=run_id, job_type=job_type, trigger=trigger))

    async def _finish_run(self, summary: RunSummary) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                result = await db.execute(select(MiningRun).where(MiningRun.run_id == summary.run_id))
                run = result.scalar_one_or_none()
                if run is None:
                    return
                run.status = summary.status
                run.completed_at = utcnow()
                run.observations_analyzed = summary.observations
                run.insights_created = summary.created
                run.insights_updated = summary.updated
                run.candidates_rejected = summary.rejected
                run.error_count = len(summary.errors)
                run.errors = summary.errors[:MAX_RECORDED_ERRORS]

    async def _run_miner(
        self,
        miner: PatternMiner,
        observations: Sequence[Observation],
        semaphore: asyncio.Semaphore,
        log,
    ) -> MinerReport:
        async with semaphore:
            result = miner.mine(observations)
            report = MinerReport(
                miner=miner.name,
                candidates=result.candidates,
                rejected=result.rejected,
            )
            record_rejection(miner.insight_type, result.rejected)

            for draft in result.drafts:
                try:
                    outcome = await self.materializer.materialize(draft)
                except PersistenceError as e:
                    log.error(f"{miner.name}: {e}")
                    record_miner_error(miner.name)
                    report.errors.append(f"{miner.name}: {e}")
                    continue
                if outcome.created:
                    report.created += 1
                else:
                    report.updated += 1
            return report

    async def run_mining(self, trigger: str = "manual") -> RunSummary:
        """
        Mine every dimension over the current observation batch.

        Args:
            trigger: What started the run (manual, scheduled)

        Returns:
            RunSummary with created/updated/rejected counts and errors

        Raises:
            ConfigurationError: If the thresholds are invalid (before any write)
        """
        thresholds = self.resolve_thresholds()
        miners = self.miners()

        run_id = uuid4().hex
        log = get_logger(__name__, run_id=run_id)
        summary = RunSummary(run_id=run_id)
        start = time.monotonic()

        try:
            with persistence_errors("load observations"):
                observations = await self._load_observations()
        except PersistenceError as e:
            log.error(str(e))
            summary.errors.append(str(e))
            summary.elapsed_seconds = time.monotonic() - start
            return summary
        summary.observations = len(observations)

        try:
            check_batch_size(observations, thresholds)
        except InputInsufficientError as e:
            log.info(str(e))
            summary.notes.append(str(e))
            summary.elapsed_seconds = time.monotonic() - start
            return summary

        try:
            with persistence_errors("record mining run start"):
                await self._start_run(run_id, "mining", trigger)
        except PersistenceError as e:
            # Mining still runs; only the bookkeeping row is missing
            log.error(str(e))
            summary.errors.append(str(e))
        log.info(f"Mining {len(observations)} observations with {len(miners)} miners")

        semaphore = asyncio.Semaphore(self.max_workers)
        results = await asyncio.gather(
            *(self._run_miner(m, observations, semaphore, log) for m in miners),
            return_exceptions=True,
        )

        for miner, result in zip(miners, results):
            if isinstance(result, Exception):
                log.error(f"Miner {miner.name} failed: {result}", exc_info=result)
                record_miner_error(miner.name)
                report = MinerReport(miner=miner.name, errors=[f"{miner.name}: {result}"])
            else:
                report = result
            summary.absorb(report)

        summary.elapsed_seconds = time.monotonic() - start
        try:
            with persistence_errors("record mining run result"):
                await self._finish_run(summary)
        except PersistenceError as e:
            log.error(str(e))
            summary.errors.append(str(e))

        log.info(
            f"Mining complete in {summary.elapsed_seconds:.1f}s: "
            f"{summary.created} created, {summary.updated} updated, "
            f"{summary.rejected} rejected, {len(summary.errors)} errors"
        )
        return summary

    async def run_learning_cycle(self, trigger: str = "manual") -> dict:
        """
        Full learning cycle: mining, marketplace pattern learning, revalidation.

        Returns:
            Dict with the mining summary and the other stages' stats
        """
        mining = await self.run_mining(trigger=trigger)

        learner = MarketplacePatternLearner(self.session_factory, materializer=self.materializer)
        marketplace = await learner.learn()

        revalidation = None
        if self.config.revalidation_enabled:
            revalidator = InsightRevalidator(self.session_factory, self.resolve_thresholds())
            revalidation = await revalidator.revalidate_all()

        return {
            "mining": mining,
            "marketplace": marketplace,
            "revalidation": revalidation,
        }

    async def run_market_analysis(self, include_fusions: bool = True) -> dict:
        """Recompute niche aggregates, then rescan fusion candidates."""
        stats = {"aggregation": await MarketAggregator(self.session_factory).analyze_all()}
        if include_fusions:
            stats["fusions"] = await FusionScanner(self.session_factory).scan()
        return stats
