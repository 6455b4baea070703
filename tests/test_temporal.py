"""Tests for calendar partitioning."""

from datetime import datetime, timedelta, timezone

from insight_miner.mining.temporal import (
    count_distinct_periods,
    month_key,
    partition_by_month,
    partition_by_week,
    week_key,
)


def test_week_key_is_iso_monday():
    assert week_key(datetime(2024, 3, 4, 0, 0)) == "2024-03-04"
    assert week_key(datetime(2024, 3, 10, 23, 59)) == "2024-03-04"
    assert week_key(datetime(2024, 3, 11, 0, 0)) == "2024-03-11"


def test_week_key_converts_aware_timestamps_to_utc():
    # 01:00 Monday at UTC+5 is still Sunday in UTC
    ts = datetime(2024, 3, 4, 1, 0, tzinfo=timezone(timedelta(hours=5)))
    assert week_key(ts) == "2024-02-26"


def test_week_key_crosses_year_boundary():
    assert week_key(datetime(2025, 1, 1)) == "2024-12-30"


def test_month_key_is_one_based():
    assert month_key(datetime(2024, 1, 15)) == 1
    assert month_key(datetime(2024, 12, 31, 23, 0)) == 12


def test_partition_by_week(make_observation):
    observations = [
        make_observation(week=0),
        make_observation(week=1),
        make_observation(week=0),
    ]
    buckets = partition_by_week(observations)
    assert list(buckets) == ["2024-03-04", "2024-03-11"]
    assert len(buckets["2024-03-04"]) == 2


def test_partition_by_month_keeps_first_seen_order(make_observation):
    observations = [
        make_observation(created_at=datetime(2024, 6, 1)),
        make_observation(created_at=datetime(2024, 1, 1)),
        make_observation(created_at=datetime(2024, 6, 20)),
    ]
    buckets = partition_by_month(observations)
    assert list(buckets) == [6, 1]
    assert len(buckets[6]) == 2


def test_partitioning_is_deterministic(make_observation):
    observations = [make_observation(week=w % 3) for w in range(9)]
    assert partition_by_week(observations) == partition_by_week(observations)


def test_count_distinct_periods(make_observation):
    observations = [make_observation(week=w) for w in (0, 0, 1, 3)]
    assert count_distinct_periods(observations) == 3
    assert count_distinct_periods([]) == 0


def test_count_distinct_periods_custom_timestamp():
    stamps = [datetime(2024, 3, 4), datetime(2024, 3, 12)]
    assert count_distinct_periods(stamps, timestamp_of=lambda ts: ts) == 2
