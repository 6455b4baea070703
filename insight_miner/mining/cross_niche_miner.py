"""Cross-niche co-occurrence mining.

Observations are grouped by their originating query. Every unordered pair of
niches touched by the same group counts as one co-occurrence; it is a
success when any observation of the pair in that group sold.
"""

from itertools import combinations

from insight_miner.db.models import Observation
from insight_miner.mining.base import InsightDraft, PatternCandidate, PatternMiner
from insight_miner.mining.confidence import co_occurrence_confidence

DEFAULT_GROUP = "general"
SOURCE_ID_LIMIT = 20


def pair_key(niche_a: str, niche_b: str) -> str:
    first, second = sorted((niche_a, niche_b))
    return f"{first}+{second}"


def split_pair_key(key: str) -> tuple[str, str]:
    first, _, second = key.partition("+")
    return first, second


class CrossNicheMiner(PatternMiner):
    """Finds niche pairs that keep showing up together."""

    insight_type = "cross-niche"
    category = "evergreen"

    def extract_keys(self, observation: Observation) -> list[str]:
        # Grouping key rather than a pattern key; pairs are built in group()
        return [(observation.source_query or "").strip() or DEFAULT_GROUP]

    def is_success(self, observation: Observation) -> bool:
        return observation.sales > 0

    def group(self, observations) -> dict[str, PatternCandidate]:
        groups: dict[str, dict[str, list[Observation]]] = {}
        for observation in observations:
            niche = (observation.niche or "").strip().lower()
            if not niche:
                continue
            by_niche = groups.setdefault(self.extract_keys(observation)[0], {})
            by_niche.setdefault(niche, []).append(observation)

        candidates: dict[str, PatternCandidate] = {}
        for by_niche in groups.values():
            if len(by_niche) < 2:
                continue
            for niche_a, niche_b in combinations(sorted(by_niche), 2):
                key = pair_key(niche_a, niche_b)
                candidate = candidates.get(key)
                if candidate is None:
                    candidate = PatternCandidate(self.insight_type, key)
                    candidates[key] = candidate

                contributing = by_niche[niche_a] + by_niche[niche_b]
                candidate.total += 1
                if any(self.is_success(o) for o in contributing):
                    candidate.successes += 1
                for observation in contributing:
                    candidate.attach(observation)
        return candidates

    def validate(self, candidate: PatternCandidate) -> float:
        t = self.thresholds
        if candidate.total < t.cross_niche_min_pairs:
            raise self.reject(
                candidate, f"{candidate.total} co-occurrences < {t.cross_niche_min_pairs}"
            )
        confidence = co_occurrence_confidence(candidate.total)
        if confidence < t.min_confidence:
            raise self.reject(candidate, f"confidence {confidence:.3f} < {t.min_confidence}")
        return confidence

    def describe(self, candidate: PatternCandidate, confidence: float) -> InsightDraft:
        niche_a, niche_b = split_pair_key(candidate.pattern_key)

        return InsightDraft(
            insight_type=self.insight_type,
            pattern_key=candidate.pattern_key,
            category=self.category,
            title=f'"{niche_a}" + "{niche_b}" crossover opportunity',
            description=(
                f'Users interested in "{niche_a}" also show interest in "{niche_b}". '
                f"Consider creating designs that combine both audiences "
                f'(e.g., "{niche_a} who loves {niche_b}").'
            ),
            pattern={
                "niche_a": niche_a,
                "niche_b": niche_b,
                "co_occurrence": candidate.total,
                "crossover_ideas": [
                    f"{niche_a} who also {niche_b}",
                    f"{niche_b} {niche_a} combo",
                ],
            },
            sample_size=candidate.total,
            confidence=confidence,
            success_rate=candidate.success_rate,
            niches=[niche_a, niche_b],
            risk_level="emerging",
            source_observation_ids=candidate.observation_ids[:SOURCE_ID_LIMIT],
        )
