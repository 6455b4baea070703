"""Niche seasonality mining.

For each niche, monthly mean sales are compared against the mean of all
qualifying months (months with enough samples). Months at or above the peak
multiplier are reported as peaks. Confidence here grows with sample count
rather than going through the Wilson estimator, since the unit of evidence
is a month rather than a week.
"""

import calendar

from insight_miner.db.models import Observation
from insight_miner.mining.base import InsightDraft, PatternCandidate, PatternMiner, mean
from insight_miner.mining.confidence import timing_confidence
from insight_miner.mining.temporal import partition_by_month


class NicheTimingMiner(PatternMiner):
    """Detects months in which a niche sells noticeably better."""

    insight_type = "niche-timing"
    category = "seasonal"

    def extract_keys(self, observation: Observation) -> list[str]:
        niche = (observation.niche or "").strip().lower()
        return [niche] if niche else []

    def is_success(self, observation: Observation) -> bool:
        return observation.sales > 0

    def monthly_stats(self, candidate: PatternCandidate) -> list[dict]:
        """Per-month stats for months with enough samples, in first-seen order."""
        stats = []
        for month, observations in partition_by_month(candidate.observations).items():
            if len(observations) < self.thresholds.timing_min_month_samples:
                continue
            stats.append({
                "month": month,
                "avg_sales": mean([o.sales for o in observations]),
                "sample_size": len(observations),
            })
        return stats

    def validate(self, candidate: PatternCandidate) -> float:
        t = self.thresholds
        months = self.monthly_stats(candidate)
        if len(months) < t.timing_min_months:
            raise self.reject(candidate, f"{len(months)} qualifying months < {t.timing_min_months}")

        overall = mean([m["avg_sales"] for m in months])
        if overall == 0:
            raise self.reject(candidate, "no sales in qualifying months")

        peaks = [m for m in months if m["avg_sales"] >= overall * t.timing_peak_multiplier]
        if not peaks:
            raise self.reject(candidate, "no peak month")

        total_samples = sum(m["sample_size"] for m in months)
        if total_samples < t.min_sample_size:
            raise self.reject(candidate, f"sample size {total_samples} < {t.min_sample_size}")

        confidence = timing_confidence(total_samples)
        if confidence < t.min_confidence:
            raise self.reject(candidate, f"confidence {confidence:.3f} < {t.min_confidence}")

        candidate.details.update({
            "months": months,
            "overall_avg": overall,
            "peaks": peaks,
            "total_samples": total_samples,
        })
        return confidence

    def describe(self, candidate: PatternCandidate, confidence: float) -> InsightDraft:
        niche = candidate.pattern_key
        peaks = candidate.details["peaks"]
        overall = candidate.details["overall_avg"]
        peak_months = [p["month"] for p in peaks]
        peak_names = ", ".join(calendar.month_name[m] for m in peak_months)
        multiplier = max(p["avg_sales"] / overall for p in peaks)

        return InsightDraft(
            insight_type=self.insight_type,
            pattern_key=niche,
            category=self.category,
            title=f'"{niche}" peaks in {peak_names} ({multiplier:.1f}x sales)',
            description=(
                f'The "{niche}" niche shows {multiplier:.1f}x higher sales during {peak_names} '
                f"compared to average. Plan inventory and marketing campaigns accordingly."
            ),
            pattern={
                "peak_months": peak_months,
                "multiplier": multiplier,
                "monthly_breakdown": candidate.details["months"],
            },
            sample_size=candidate.details["total_samples"],
            confidence=confidence,
            success_rate=candidate.success_rate,
            niche=niche,
            niches=[niche],
            timeframe="multi-seasonal" if len(peak_months) > 1 else "seasonal",
            source_observation_ids=candidate.observation_ids,
        )
