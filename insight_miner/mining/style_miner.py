"""Visual style effectiveness mining."""

from insight_miner.db.models import Observation
from insight_miner.mining.base import InsightDraft, PatternCandidate, PatternMiner, mean

UNKNOWN_STYLE = "Unknown"


class StyleEffectivenessMiner(PatternMiner):
    """Scores style tags by approval rate.

    Observations without a style land in the "Unknown" bucket, which is scored
    like any other bucket but flagged in its payload.
    """

    insight_type = "style-effectiveness"
    category = "design"

    def extract_keys(self, observation: Observation) -> list[str]:
        style = (observation.style or "").strip()
        return [style or UNKNOWN_STYLE]

    def is_success(self, observation: Observation) -> bool:
        return observation.approved

    def describe(self, candidate: PatternCandidate, confidence: float) -> InsightDraft:
        style = candidate.pattern_key
        rate = candidate.success_rate
        avg_views = mean([o.views for o in candidate.observations])
        avg_sales = mean([o.sales for o in candidate.observations])

        return InsightDraft(
            insight_type=self.insight_type,
            pattern_key=style,
            category=self.category,
            title=f'"{style}" style achieves {round(rate * 100)}% approval rate',
            description=(
                f'Designs using the "{style}" visual style achieve a {round(rate * 100)}% '
                f"approval rate based on {candidate.total} samples. Average performance: "
                f"{avg_views:.1f} views, {avg_sales:.1f} sales."
            ),
            pattern={
                "style": style,
                "is_unknown_bucket": style == UNKNOWN_STYLE,
                "approval_rate": rate,
                "avg_views": avg_views,
                "avg_sales": avg_sales,
            },
            sample_size=candidate.total,
            confidence=confidence,
            success_rate=rate,
            avg_performance={"avg_views": avg_views, "avg_sales": avg_sales},
            source_observation_ids=candidate.observation_ids,
        )
