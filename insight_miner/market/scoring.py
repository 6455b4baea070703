"""Heuristic market scores.

All functions here are pure step functions over listing counts and review
averages. The weights are fixed; they mirror how crowded a niche looks and
how entrenched its competitors are.
"""

from dataclasses import dataclass
from typing import Optional

SATURATION_UNKNOWN = "unknown"
SATURATION_LOW = "low"
SATURATION_MEDIUM = "medium"
SATURATION_HIGH = "high"
SATURATION_OVERSATURATED = "oversaturated"

ENTER = "enter"
CAUTION = "caution"
AVOID = "avoid"

# (score delta, reason) per saturation tier for entry recommendations
_ENTRY_SATURATION_DELTAS = {
    SATURATION_LOW: (25, "Low competition"),
    SATURATION_MEDIUM: (10, "Moderate competition"),
    SATURATION_HIGH: (-15, "High competition"),
    SATURATION_OVERSATURATED: (-30, "Oversaturated market"),
}

_OPPORTUNITY_SATURATION_DELTAS = {
    SATURATION_LOW: 30,
    SATURATION_MEDIUM: 10,
    SATURATION_HIGH: -10,
    SATURATION_OVERSATURATED: -30,
}


@dataclass
class EntryRecommendation:
    """Enter/caution/avoid verdict for a niche."""

    recommendation: str
    reason: str
    confidence: int     # 0-100, grows with listing count
    score: int


def _clamp_score(score: float) -> int:
    return int(max(0, min(100, score)))


def classify_saturation(listing_count: int) -> str:
    """Step function over listing count."""
    if listing_count > 500:
        return SATURATION_OVERSATURATED
    if listing_count > 200:
        return SATURATION_HIGH
    if listing_count > 50:
        return SATURATION_MEDIUM
    if listing_count > 0:
        return SATURATION_LOW
    return SATURATION_UNKNOWN


def score_entry(
    listing_count: int,
    saturation: str,
    avg_reviews: float,
    rising_count: int,
) -> EntryRecommendation:
    """
    Weighted entry heuristic for a niche.

    Args:
        listing_count: Listings currently in the niche
        saturation: Saturation label for the niche
        avg_reviews: Mean review count over listings with reviews
        rising_count: Listings flagged with a rank spike

    Returns:
        EntryRecommendation (enter >= 70, caution >= 40, otherwise avoid)
    """
    score = 50
    reasons = []

    delta, reason = _ENTRY_SATURATION_DELTAS.get(saturation, (0, None))
    score += delta
    if reason:
        reasons.append(reason)

    if avg_reviews < 20:
        score += 20
        reasons.append("Weak competitors (low reviews)")
    elif avg_reviews > 100:
        score -= 20
        reasons.append("Strong entrenched competitors")

    if rising_count > 5:
        score += 15
        reasons.append("Multiple rising products (trending)")
    elif rising_count > 0:
        score += 5
        reasons.append("Some products gaining traction")

    if score >= 70:
        recommendation = ENTER
    elif score >= 40:
        recommendation = CAUTION
    else:
        recommendation = AVOID

    return EntryRecommendation(
        recommendation=recommendation,
        reason=". ".join(reasons),
        confidence=min(100, max(0, listing_count * 2)),
        score=score,
    )


def opportunity_score(saturation: str, avg_reviews: float) -> int:
    """Niche opportunity on a 0-100 scale."""
    score = 50 + _OPPORTUNITY_SATURATION_DELTAS.get(saturation, 0)
    if avg_reviews < 20:
        score += 20
    elif avg_reviews > 100:
        score -= 20
    return _clamp_score(score)


def score_fusion(count: int, avg_engagement: float, avg_rank: Optional[float]) -> int:
    """
    Opportunity score for a niche pair.

    Args:
        count: Listings matching both niches
        avg_engagement: Mean review count of the matches
        avg_rank: Mean sales rank of the matches, if any are ranked

    Returns:
        Score clamped to 0-100
    """
    score = 50

    if count < 10:
        score += 25
    elif count < 25:
        score += 10
    elif count > 50:
        score -= 15

    if avg_engagement < 20:
        score += 20
    elif avg_engagement < 50:
        score += 10
    elif avg_engagement > 200:
        score -= 20

    if avg_rank is not None:
        if avg_rank < 100_000:
            score += 15
        elif avg_rank < 500_000:
            score += 5

    return _clamp_score(score)


def recommend_fusion(count: int, avg_engagement: float) -> tuple[str, str]:
    """Return (recommendation, saturation) for a niche pair."""
    if count < 10 and avg_engagement < 50:
        return ENTER, SATURATION_LOW
    if count > 50 or avg_engagement > 200:
        return AVOID, SATURATION_HIGH
    return CAUTION, SATURATION_MEDIUM
