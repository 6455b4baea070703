"""Phrase template mining.

Matches design phrases against a fixed, ordered set of structural templates
("World's {adj} {noun}", "{descriptor} {profession}", ...). The first
matching template wins.
"""

import re
from typing import Optional

from insight_miner.db.models import Observation
from insight_miner.mining.base import InsightDraft, PatternCandidate, PatternMiner

PHRASE_TEMPLATES: list[tuple[re.Pattern, str]] = [
    (re.compile(r"^World'?s\s+(Best|Okayest|Greatest|Worst)\s+(.+)$", re.I), "World's {adj} {noun}"),
    (re.compile(r"^(.+)\s+(Mom|Dad|Nurse|Teacher|Boss)$", re.I), "{descriptor} {profession}"),
    (re.compile(r"^(I|We)\s+(Love|Hate|Need|Want)\s+(.+)$", re.I), "{pronoun} {verb} {noun}"),
    (re.compile(r"^(.+)\s+(Mode|Life|Vibes|Energy)$", re.I), "{topic} {state}"),
    (re.compile(r"^(Powered|Fueled|Running)\s+(By|On)\s+(.+)$", re.I), "Powered by {noun}"),
    (re.compile(r"^(Just|Simply|Always)\s+(.+)$", re.I), "{adverb} {action}"),
]

EXAMPLE_LIMIT = 5


def match_phrase_template(phrase: str) -> Optional[str]:
    """Return the first template the phrase matches, if any."""
    phrase = (phrase or "").strip()
    for regex, template in PHRASE_TEMPLATES:
        if regex.match(phrase):
            return template
    return None


class PhraseTemplateMiner(PatternMiner):
    """Finds phrase templates that keep getting approved or selling."""

    insight_type = "phrase-pattern"
    category = "evergreen"

    def extract_keys(self, observation: Observation) -> list[str]:
        template = match_phrase_template(observation.phrase)
        return [template] if template else []

    def niche_breakdown(self, candidate: PatternCandidate) -> dict[str, dict[str, int]]:
        breakdown: dict[str, dict[str, int]] = {}
        for observation in candidate.observations:
            stats = breakdown.setdefault(observation.niche, {"success": 0, "total": 0})
            stats["total"] += 1
            if self.is_success(observation):
                stats["success"] += 1
        return breakdown

    def applicable_niches(self, breakdown: dict[str, dict[str, int]]) -> list[str]:
        t = self.thresholds
        return [
            niche
            for niche, stats in breakdown.items()
            if stats["total"] >= t.applicable_niche_min_samples
            and stats["success"] / stats["total"] >= t.applicable_niche_min_rate
        ]

    def describe(self, candidate: PatternCandidate, confidence: float) -> InsightDraft:
        template = candidate.pattern_key
        rate = candidate.success_rate
        periods = candidate.details.get("time_periods", candidate.time_periods())
        breakdown = self.niche_breakdown(candidate)

        return InsightDraft(
            insight_type=self.insight_type,
            pattern_key=template,
            category=self.category,
            title=f'Phrase template "{template}" shows {round(rate * 100)}% success rate',
            description=(
                f'The phrase pattern "{template}" has been validated across '
                f"{candidate.total} designs over {periods} time periods. This template "
                f"consistently performs well and can be adapted for multiple niches."
            ),
            pattern={
                "template": template,
                "example_phrases": [o.phrase for o in candidate.observations[:EXAMPLE_LIMIT]],
                "niche_breakdown": breakdown,
            },
            sample_size=candidate.total,
            confidence=confidence,
            success_rate=rate,
            niches=self.applicable_niches(breakdown),
            source_observation_ids=candidate.observation_ids,
        )
