"""Shared shape for pattern miners.

A miner turns a batch of observations into insight drafts in four steps:
extract pattern keys per observation, group observations into candidates,
validate each candidate against the thresholds, and describe the survivors.
Persistence is left to the materializer.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Sequence

from insight_miner.config import MiningThresholds
from insight_miner.db.models import Observation
from insight_miner.mining.confidence import calculate_confidence
from insight_miner.mining.temporal import count_distinct_periods

logger = logging.getLogger(__name__)


class ValidationRejected(Exception):
    """Raised when a candidate does not clear the validation thresholds."""

    def __init__(self, insight_type: str, pattern_key: str, reason: str):
        super().__init__(f"{insight_type}:{pattern_key} rejected ({reason})")
        self.insight_type = insight_type
        self.pattern_key = pattern_key
        self.reason = reason


@dataclass
class PatternCandidate:
    """Provisional grouping of observations under one pattern key."""

    insight_type: str
    pattern_key: str
    observations: list = field(default_factory=list)
    successes: int = 0
    total: int = 0
    details: dict = field(default_factory=dict)     # miner-specific stats
    _seen_ids: set = field(default_factory=set, repr=False)

    def add(self, observation, success: bool) -> bool:
        """Add an observation once; repeated identities are ignored."""
        if observation.id in self._seen_ids:
            return False
        self._seen_ids.add(observation.id)
        self.observations.append(observation)
        self.total += 1
        if success:
            self.successes += 1
        return True

    def attach(self, observation) -> None:
        """Record a contributing observation without counting a trial."""
        if observation.id not in self._seen_ids:
            self._seen_ids.add(observation.id)
            self.observations.append(observation)

    @property
    def success_rate(self) -> float:
        return self.successes / self.total if self.total else 0.0

    @property
    def observation_ids(self) -> list[int]:
        return [o.id for o in self.observations]

    def time_periods(self) -> int:
        return count_distinct_periods(self.observations)


@dataclass
class InsightDraft:
    """Validated pattern ready to be materialized."""

    insight_type: str
    pattern_key: str
    category: str
    title: str
    description: str
    pattern: dict
    sample_size: int
    confidence: float
    success_rate: Optional[float] = None
    avg_performance: Optional[dict] = None
    niche: Optional[str] = None
    niches: list = field(default_factory=list)
    timeframe: str = "year-round"
    risk_level: str = "proven"
    source_observation_ids: list = field(default_factory=list)

    def to_row(self) -> dict[str, Any]:
        """Column values for a fresh Insight row."""
        return {
            "insight_type": self.insight_type,
            "pattern_key": self.pattern_key,
            "category": self.category,
            "title": self.title,
            "description": self.description,
            "pattern": self.pattern,
            "sample_size": self.sample_size,
            "confidence": self.confidence,
            "success_rate": self.success_rate,
            "avg_performance": self.avg_performance,
            "niche": self.niche,
            "niches": list(self.niches),
            "timeframe": self.timeframe,
            "risk_level": self.risk_level,
            "source_observation_ids": list(self.source_observation_ids),
        }


@dataclass
class MiningResult:
    """Output of one miner over one batch."""

    insight_type: str
    candidates: int = 0
    rejected: int = 0
    drafts: list[InsightDraft] = field(default_factory=list)


def mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


class PatternMiner(ABC):
    """Base class for the per-dimension miners."""

    insight_type: str = ""
    category: str = "evergreen"

    def __init__(self, thresholds: Optional[MiningThresholds] = None):
        self.thresholds = thresholds or MiningThresholds()

    @property
    def name(self) -> str:
        return self.insight_type

    def extract(self, observation: Observation) -> Optional[str]:
        """Pattern key for an observation, or None when it does not apply."""
        keys = self.extract_keys(observation)
        return keys[0] if keys else None

    @abstractmethod
    def extract_keys(self, observation: Observation) -> list[str]:
        """All pattern keys an observation contributes to (possibly none)."""

    def is_success(self, observation: Observation) -> bool:
        return observation.approved or observation.sales > 0

    def group(self, observations: Iterable[Observation]) -> dict[str, PatternCandidate]:
        candidates: dict[str, PatternCandidate] = {}
        for observation in observations:
            for key in self.extract_keys(observation):
                candidate = candidates.get(key)
                if candidate is None:
                    candidate = PatternCandidate(self.insight_type, key)
                    candidates[key] = candidate
                candidate.add(observation, self.is_success(observation))
        return candidates

    def reject(self, candidate: PatternCandidate, reason: str) -> ValidationRejected:
        return ValidationRejected(self.insight_type, candidate.pattern_key, reason)

    def validate(self, candidate: PatternCandidate) -> float:
        """
        Check a candidate against the thresholds.

        Returns:
            The candidate's confidence

        Raises:
            ValidationRejected: If any threshold is not met
        """
        t = self.thresholds
        if candidate.total < t.min_sample_size:
            raise self.reject(candidate, f"sample size {candidate.total} < {t.min_sample_size}")

        periods = candidate.time_periods()
        candidate.details["time_periods"] = periods
        if periods < t.min_time_periods:
            raise self.reject(candidate, f"{periods} distinct weeks < {t.min_time_periods}")

        confidence = calculate_confidence(candidate.successes, candidate.total, periods, t)
        if confidence < t.min_confidence:
            raise self.reject(candidate, f"confidence {confidence:.3f} < {t.min_confidence}")
        return confidence

    @abstractmethod
    def describe(self, candidate: PatternCandidate, confidence: float) -> InsightDraft:
        """Build the insight payload for a validated candidate."""

    def mine(self, observations: Sequence[Observation]) -> MiningResult:
        """Run extract, group, validate and describe over a batch."""
        candidates = self.group(observations)
        result = MiningResult(insight_type=self.insight_type, candidates=len(candidates))

        for candidate in candidates.values():
            try:
                confidence = self.validate(candidate)
            except ValidationRejected as e:
                logger.debug(str(e))
                result.rejected += 1
                continue
            result.drafts.append(self.describe(candidate, confidence))

        logger.info(
            f"{self.insight_type}: {len(candidates)} candidates, "
            f"{len(result.drafts)} validated, {result.rejected} rejected"
        )
        return result
