from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import CohortRow, PeriodRow, RangeOption


def _coerce_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        raise ValueError(f"Unrecognised period value {value!r}") from None


def _coerce_count(value: Any) -> int:
    if value is None:
        return 0
    return int(float(value))


def period_key(value: Any, interval: str) -> Tuple[date, str]:
    """
    Parse a period cell returned by the backend.

    Returns ``(period, label)``; the label is ``MM-DD`` for day/week buckets
    and ``YYYY-MM`` for month buckets.
    """

    period = _coerce_date(value)
    if interval == "month":
        return period.replace(day=1), period.strftime("%Y-%m")
    return period, period.strftime("%m-%d")


def parse_trend(
    rows: Iterable[Sequence[Any]],
    interval: str,
    event_map: Mapping[str, str],
) -> List[PeriodRow]:
    """
    Pivot ``(period, event, count)`` rows into one ``PeriodRow`` per period.

    Every key of ``event_map`` is present on every row (0 when the backend
    returned nothing for it). Events missing from ``event_map`` are ignored.
    """

    buckets: Dict[date, Dict[str, int]] = {}
    labels: Dict[date, str] = {}
    for period_value, event, count in rows:
        period, label = period_key(period_value, interval)
        if period not in buckets:
            buckets[period] = {key: 0 for key in event_map.values()}
            labels[period] = label
        key = event_map.get(event)
        if key is not None:
            buckets[period][key] += _coerce_count(count)
    return [PeriodRow(period=period, label=labels[period], counts=buckets[period]) for period in sorted(buckets)]


def parse_count(rows: Iterable[Sequence[Any]]) -> Dict[str, int]:
    totals: Dict[str, int] = {}
    for event, count in rows:
        totals[str(event)] = _coerce_count(count)
    return totals


def parse_cohorts(rows: Iterable[Sequence[Any]]) -> List[CohortRow]:
    """
    Build a retention matrix from ``(cohort, week_offset, users)`` rows.

    Retention for each offset is the percentage of week-0 users; cohorts
    without a week-0 bucket have no retention values.
    """

    matrix: Dict[date, Dict[int, int]] = defaultdict(dict)
    for cohort_value, offset, users in rows:
        offset_value = _coerce_count(offset)
        if offset_value < 0:
            continue
        matrix[_coerce_date(cohort_value)][offset_value] = _coerce_count(users)

    cohorts: List[CohortRow] = []
    for cohort in sorted(matrix):
        offsets = matrix[cohort]
        width = max(offsets) + 1
        users = [offsets.get(index, 0) for index in range(width)]
        size = users[0]
        retention = [users[index] / size * 100 if size > 0 else None for index in range(width)]
        cohorts.append(CohortRow(cohort=cohort, size=size, retention=retention, users=users))
    return cohorts


def bucket_start(day: date, interval: str) -> date:
    """Truncate ``day`` the way the backend buckets periods (weeks start on Sunday)."""

    if interval == "month":
        return day.replace(day=1)
    if interval == "week":
        return day - timedelta(days=(day.weekday() + 1) % 7)
    return day


def window_start(option: RangeOption, as_of: date) -> date:
    return bucket_start(as_of - timedelta(days=option.days), option.interval)


def rows_between(rows: Iterable[PeriodRow], start: Optional[date], end: Optional[date]) -> List[PeriodRow]:
    """Rows with ``start <= period < end``; either bound may be open."""

    return [
        row
        for row in rows
        if (start is None or row.period >= start) and (end is None or row.period < end)
    ]


def previous_period(comparison: Sequence[PeriodRow], option: RangeOption, as_of: date) -> List[PeriodRow]:
    """
    Rows of the comparison series covering the window right before the current one.

    The comparison query spans the current window plus the one before it, so
    the current window is cut off and the remaining rows are limited to a
    window of the same length.
    """

    current_start = window_start(option, as_of)
    previous_start = bucket_start(current_start - timedelta(days=option.days), option.prev_interval)
    return rows_between(comparison, previous_start, current_start)


def trailing_weeks(rows: Sequence[PeriodRow], before: date, weeks: int) -> List[List[PeriodRow]]:
    """
    Split daily rows into ``weeks`` consecutive 7-day windows ending at ``before``.

    The most recent window comes first.
    """

    windows: List[List[PeriodRow]] = []
    end = before
    for _ in range(weeks):
        start = end - timedelta(days=7)
        windows.append(rows_between(rows, start, end))
        end = start
    return windows


def sum_key(rows: Iterable[PeriodRow], key: str) -> int:
    return sum(row.get(key) for row in rows)
