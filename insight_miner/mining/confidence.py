"""Confidence estimation for mined patterns.

The shared estimator is a Wilson-score lower bound on the observed success
rate plus two small bounded boosts: one for sample volume and one for
recurrence across distinct calendar periods. Using the lower bound rather
than the raw rate keeps small samples from scoring high.
"""

import math
from typing import Optional

from insight_miner.config import MiningThresholds

_DEFAULT_THRESHOLDS = MiningThresholds()


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def wilson_lower_bound(successes: int, total: int, z: float = 1.96) -> float:
    """
    Lower bound of the Wilson score interval for a binomial proportion.

    Args:
        successes: Number of successful trials
        total: Number of trials
        z: Standard normal quantile (1.96 ~ 95%)

    Returns:
        Lower bound in [0, 1], or 0.0 when there are no trials
    """
    if total <= 0:
        return 0.0

    successes = _clamp(successes, 0, total)
    p = successes / total
    z2 = z * z
    denominator = 1 + z2 / total
    center = p + z2 / (2 * total)
    margin = z * math.sqrt((p * (1 - p) + z2 / (4 * total)) / total)
    return _clamp((center - margin) / denominator, 0.0, 1.0)


def sample_size_boost(total: int, thresholds: MiningThresholds = _DEFAULT_THRESHOLDS) -> float:
    """Logarithmic bonus for volume relative to the minimum sample size."""
    if total <= 0:
        return 0.0
    boost = math.log10(total / thresholds.min_sample_size) * 0.05
    return _clamp(boost, 0.0, thresholds.sample_boost_cap)


def temporal_boost(time_periods: int, thresholds: MiningThresholds = _DEFAULT_THRESHOLDS) -> float:
    """Linear bonus for each distinct period beyond the required minimum."""
    boost = (time_periods - thresholds.min_time_periods) * 0.025
    return _clamp(boost, 0.0, thresholds.temporal_boost_cap)


def calculate_confidence(
    successes: int,
    total: int,
    time_periods: int,
    thresholds: Optional[MiningThresholds] = None,
) -> float:
    """
    Conservative confidence score for a pattern.

    Args:
        successes: Contributing observations counted as successes
        total: All contributing observations
        time_periods: Distinct ISO weeks the observations span
        thresholds: Threshold set (defaults to the standard thresholds)

    Returns:
        Score in [0, 1]; 0.0 when total is 0
    """
    if total <= 0:
        return 0.0

    thresholds = thresholds or _DEFAULT_THRESHOLDS
    score = (
        wilson_lower_bound(successes, total, thresholds.z)
        + sample_size_boost(total, thresholds)
        + temporal_boost(time_periods, thresholds)
    )
    return _clamp(score, 0.0, 1.0)


def timing_confidence(total_samples: int) -> float:
    """Seasonality confidence: grows with sample count, capped at 0.95."""
    return min(0.95, 0.7 + (total_samples / 100) * 0.1)


def co_occurrence_confidence(pair_count: int) -> float:
    """Niche co-occurrence confidence: grows with pair count, capped at 0.9."""
    return min(0.9, 0.7 + (pair_count / 50) * 0.1)
