"""Listing title structure mining."""

import re

from insight_miner.db.models import Observation
from insight_miner.mining.base import InsightDraft, PatternCandidate, PatternMiner, mean

# Independent tests; a title may match any number of them
TITLE_PATTERNS: dict[str, re.Pattern] = {
    "gift-angle": re.compile(r"gift|present|for (him|her|mom|dad|nurse|teacher)", re.I),
    "funny-angle": re.compile(r"funny|humor|hilarious|joke", re.I),
    "profession-first": re.compile(r"^(nurse|teacher|doctor|lawyer|mom|dad)", re.I),
    "quote-style": re.compile(r"[\"']"),
}

PATTERN_DESCRIPTIONS = {
    "gift-angle": 'Titles framed as "gift for X" or "present for Y"',
    "funny-angle": "Titles emphasizing humor (funny, hilarious, etc.)",
    "profession-first": "Titles starting with profession/identity",
    "quote-style": "Titles containing quotes or saying-style text",
}

EXAMPLE_LIMIT = 5


def classify_title(title: str) -> list[str]:
    """Every title pattern the text matches."""
    text = (title or "").strip().lower()
    if not text:
        return []
    return [name for name, regex in TITLE_PATTERNS.items() if regex.search(text)]


class ListingStructureMiner(PatternMiner):
    """Measures which listing title framings convert to sales."""

    insight_type = "listing-structure"
    category = "listing"

    def extract_keys(self, observation: Observation) -> list[str]:
        return classify_title(observation.listing_title)

    def is_success(self, observation: Observation) -> bool:
        return observation.sales > 0

    def describe(self, candidate: PatternCandidate, confidence: float) -> InsightDraft:
        pattern = candidate.pattern_key
        rate = candidate.success_rate
        avg_sales = mean([o.sales for o in candidate.observations])

        return InsightDraft(
            insight_type=self.insight_type,
            pattern_key=pattern,
            category=self.category,
            title=f'"{pattern}" title pattern converts at {round(rate * 100)}%',
            description=(
                f"{PATTERN_DESCRIPTIONS[pattern]}. This approach shows {round(rate * 100)}% "
                f"conversion with avg {avg_sales:.1f} sales per design."
            ),
            pattern={
                "pattern_type": pattern,
                "description": PATTERN_DESCRIPTIONS[pattern],
                "example_titles": [
                    o.listing_title for o in candidate.observations[:EXAMPLE_LIMIT]
                ],
                "avg_sales": avg_sales,
            },
            sample_size=candidate.total,
            confidence=confidence,
            success_rate=rate,
            avg_performance={"avg_sales": avg_sales},
            source_observation_ids=candidate.observation_ids,
        )
