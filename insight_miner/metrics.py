"""Prometheus metrics for the insight miner."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("insight_miner", "Insight miner application info")
app_info.info({"version": "0.1.0", "name": "insight-miner"})

# Mining metrics
insights_created_total = Counter(
    "insights_created_total",
    "Total number of insights created",
    ["insight_type"],
)

insights_updated_total = Counter(
    "insights_updated_total",
    "Total number of existing insights refreshed with new evidence",
    ["insight_type"],
)

candidates_rejected_total = Counter(
    "candidates_rejected_total",
    "Total number of pattern candidates that failed validation",
    ["insight_type"],
)

miner_errors_total = Counter(
    "miner_errors_total",
    "Total number of miner or persistence errors",
    ["miner"],
)

mining_run_duration_seconds = Histogram(
    "mining_run_duration_seconds",
    "Time spent in a mining run",
    ["job_type"],
    buckets=[1.0, 5.0, 15.0, 30.0, 60.0, 120.0, 300.0, 900.0],
)

insights_invalidated_total = Counter(
    "insights_invalidated_total",
    "Total number of insights marked no longer relevant by revalidation",
    ["insight_type"],
)

# Market metrics
rank_spikes_total = Counter(
    "rank_spikes_total",
    "Total number of rank spikes detected",
    ["severity"],
)

niches_analyzed_total = Counter(
    "niches_analyzed_total",
    "Total number of niche aggregates recomputed",
    ["saturation"],
)

fusion_candidates_stored_total = Counter(
    "fusion_candidates_stored_total",
    "Total number of fusion candidates upserted",
    ["recommendation"],
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler runs",
    ["job_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["job_type"],
)


def record_materialization(insight_type: str, created: bool):
    """Record an insight write."""
    if created:
        insights_created_total.labels(insight_type=insight_type).inc()
    else:
        insights_updated_total.labels(insight_type=insight_type).inc()


def record_rejection(insight_type: str, count: int = 1):
    """Record rejected candidates."""
    if count:
        candidates_rejected_total.labels(insight_type=insight_type).inc(count)


def record_miner_error(miner: str):
    """Record a miner failure."""
    miner_errors_total.labels(miner=miner).inc()


def record_rank_spike(severity: str):
    """Record a detected rank spike."""
    rank_spikes_total.labels(severity=severity).inc()


def record_scheduler_run(job_type: str, success: bool, duration: float | None = None):
    """Record a scheduler job run."""
    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())
    if duration is not None:
        mining_run_duration_seconds.labels(job_type=job_type).observe(duration)
