from __future__ import annotations

import dataclasses
import datetime as dt
from collections.abc import Sequence

from .analysis_aggregate import fold
from .analysis_modes import Mode, rank_contributors
from .models import Aggregate, CommitRecord, ContributorStats, Identity

YEAR = "year"
MONTH = "month"
DAY = "day"

_DAY_S = 86_400


@dataclasses.dataclass(frozen=True)
class Bucket:
    label: str
    start: dt.datetime  # inclusive, UTC
    end: dt.datetime  # exclusive, UTC
    aggregate: Aggregate

    def leader(self, mode: Mode) -> tuple[Identity, ContributorStats] | None:
        ranked = rank_contributors(self.aggregate.contributors, mode)
        return ranked[0] if ranked else None


def choose_resolution(first_ts: int, last_ts: int) -> str:
    span = last_ts - first_ts
    if span > 5 * 365 * _DAY_S:
        return YEAR
    if span > 60 * _DAY_S:
        return MONTH
    return DAY


def bucket_start(ts: int, resolution: str) -> dt.datetime:
    d = dt.datetime.fromtimestamp(ts, tz=dt.timezone.utc)
    if resolution == YEAR:
        return dt.datetime(d.year, 1, 1, tzinfo=dt.timezone.utc)
    if resolution == MONTH:
        return dt.datetime(d.year, d.month, 1, tzinfo=dt.timezone.utc)
    return dt.datetime(d.year, d.month, d.day, tzinfo=dt.timezone.utc)


def next_start(start: dt.datetime, resolution: str) -> dt.datetime:
    if resolution == YEAR:
        return start.replace(year=start.year + 1)
    if resolution == MONTH:
        if start.month == 12:
            return start.replace(year=start.year + 1, month=1)
        return start.replace(month=start.month + 1)
    return start + dt.timedelta(days=1)


def bucket_label(start: dt.datetime, resolution: str) -> str:
    if resolution == YEAR:
        return f"{start.year:04d}"
    if resolution == MONTH:
        return f"{start.year:04d}-{start.month:02d}"
    return start.date().isoformat()


def build_buckets(records: Sequence[CommitRecord], resolution: str | None = None) -> list[Bucket]:
    """
    Group already-filtered, identity-resolved commits into calendar buckets.

    The resolution is picked from the span of the records unless given. Empty
    buckets between the first and last commit are kept so gaps stay visible.
    """
    if not records:
        return []
    first_ts = min(r.timestamp for r in records)
    last_ts = max(r.timestamp for r in records)
    res = resolution or choose_resolution(first_ts, last_ts)

    grouped: dict[dt.datetime, list[CommitRecord]] = {}
    for r in records:
        grouped.setdefault(bucket_start(r.timestamp, res), []).append(r)

    buckets: list[Bucket] = []
    start = bucket_start(first_ts, res)
    stop = bucket_start(last_ts, res)
    while start <= stop:
        end = next_start(start, res)
        buckets.append(
            Bucket(
                label=bucket_label(start, res),
                start=start,
                end=end,
                aggregate=fold(grouped.get(start, ()), None),
            )
        )
        start = end
    return buckets
