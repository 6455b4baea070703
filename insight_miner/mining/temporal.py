"""Calendar partitioning of observations.

All keys are computed in UTC. Aware datetimes are converted; naive ones are
taken to already be UTC (that is how the DateTime columns store them).
Partitions keep the order in which each period was first seen.
"""

from datetime import datetime, timedelta
from typing import Callable, Iterable, TypeVar

from insight_miner.utils.time import to_naive_utc

T = TypeVar("T")


def week_key(ts: datetime) -> str:
    """ISO week start (Monday) as YYYY-MM-DD."""
    ts = to_naive_utc(ts)
    monday = ts.date() - timedelta(days=ts.weekday())
    return monday.isoformat()


def month_key(ts: datetime) -> int:
    """Calendar month, 1-12."""
    return to_naive_utc(ts).month


def _partition(
    items: Iterable[T],
    key_fn: Callable[[datetime], object],
    timestamp_of: Callable[[T], datetime],
) -> dict:
    buckets: dict = {}
    for item in items:
        buckets.setdefault(key_fn(timestamp_of(item)), []).append(item)
    return buckets


def _created_at(item) -> datetime:
    return item.created_at


def partition_by_week(
    items: Iterable[T],
    timestamp_of: Callable[[T], datetime] = _created_at,
) -> dict[str, list[T]]:
    return _partition(items, week_key, timestamp_of)


def partition_by_month(
    items: Iterable[T],
    timestamp_of: Callable[[T], datetime] = _created_at,
) -> dict[int, list[T]]:
    return _partition(items, month_key, timestamp_of)


def count_distinct_periods(
    items: Iterable[T],
    timestamp_of: Callable[[T], datetime] = _created_at,
) -> int:
    """Number of distinct ISO weeks covered by the items."""
    return len({week_key(timestamp_of(item)) for item in items})
