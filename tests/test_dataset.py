from datetime import date, datetime

import pytest

from backend.analytics_dashboard.dataset import (
    bucket_start,
    parse_cohorts,
    parse_count,
    parse_trend,
    period_key,
    previous_period,
    trailing_weeks,
    window_start,
)
from backend.analytics_dashboard.models import PeriodRow
from backend.analytics_dashboard.queries import MOBILE_EVENT_MAP
from backend.analytics_dashboard.ranges import find_range


def test_period_key_accepts_backend_formats():
    assert period_key("2024-03-04", "week") == (date(2024, 3, 4), "03-04")
    assert period_key("2024-03-04T00:00:00Z", "day") == (date(2024, 3, 4), "03-04")
    assert period_key(datetime(2024, 3, 4, 12), "day") == (date(2024, 3, 4), "03-04")
    assert period_key("2024-03-01 00:00:00", "month") == (date(2024, 3, 1), "2024-03")
    with pytest.raises(ValueError):
        period_key("last tuesday", "day")


def test_parse_trend_pivots_and_fills_missing_keys():
    rows = [
        ["2024-03-10", "rc_renewal_event", "7"],
        ["2024-03-03", "rc_trial_started_event", 4],
        ["2024-03-03", "rc_renewal_event", 2],
        ["2024-03-03", "some_other_event", 99],
    ]
    series = parse_trend(rows, "week", MOBILE_EVENT_MAP)

    assert [row.label for row in series] == ["03-03", "03-10"]
    first, second = series
    assert first.get("trials") == 4
    assert first.get("renewals") == 2
    assert first.get("cancellations") == 0
    assert second.get("renewals") == 7
    assert set(first.counts) == set(MOBILE_EVENT_MAP.values())


def test_parse_trend_orders_across_year_boundary():
    rows = [["2024-01-01", "rc_renewal_event", 1], ["2023-12-25", "rc_renewal_event", 1]]
    series = parse_trend(rows, "day", MOBILE_EVENT_MAP)
    assert [row.period for row in series] == [date(2023, 12, 25), date(2024, 1, 1)]


def test_parse_count():
    assert parse_count([["paywall_shown", "12"], ["rc_renewal_event", 3.0]]) == {
        "paywall_shown": 12,
        "rc_renewal_event": 3,
    }


def test_parse_cohorts_builds_retention_matrix():
    cohorts = parse_cohorts(
        [
            ["2024-03-10", 0, 50],
            ["2024-03-03", 0, 100],
            ["2024-03-03", 2, 20],
            ["2024-03-17", 1, 5],
        ]
    )

    assert [cohort.cohort for cohort in cohorts] == [date(2024, 3, 3), date(2024, 3, 10), date(2024, 3, 17)]
    assert cohorts[0].users == [100, 0, 20]
    assert cohorts[0].retention == [100.0, 0.0, 20.0]
    assert cohorts[1].retention == [100.0]
    assert cohorts[2].size == 0
    assert cohorts[2].retention == [None, None]


def test_bucket_start_uses_sunday_weeks():
    wednesday = date(2024, 3, 6)
    assert bucket_start(wednesday, "week") == date(2024, 3, 3)
    assert bucket_start(date(2024, 3, 3), "week") == date(2024, 3, 3)
    assert bucket_start(wednesday, "month") == date(2024, 3, 1)
    assert bucket_start(wednesday, "day") == wednesday


def _row(day: date, **counts) -> PeriodRow:
    return PeriodRow(period=day, label=day.strftime("%m-%d"), counts=counts)


def test_previous_period_cuts_current_window(as_of):
    option = find_range("30D")
    assert window_start(option, as_of) == date(2024, 2, 25)

    comparison = [
        _row(date(2024, 1, 14), purchases=1),
        _row(date(2024, 1, 21), purchases=2),
        _row(date(2024, 2, 18), purchases=3),
        _row(date(2024, 2, 25), purchases=4),
    ]
    previous = previous_period(comparison, option, as_of)
    assert [row.period for row in previous] == [date(2024, 1, 21), date(2024, 2, 18)]


def test_trailing_weeks_newest_first():
    rows = [_row(date(2024, 3, day), renewals=day) for day in range(1, 24)]
    weeks = trailing_weeks(rows, date(2024, 3, 24), 3)

    assert [row.period.day for row in weeks[0]] == list(range(17, 24))
    assert [row.period.day for row in weeks[1]] == list(range(10, 17))
    assert [row.period.day for row in weeks[2]] == list(range(3, 10))


def test_previous_period_for_monthly_ranges(as_of):
    six_months = find_range("6M")
    assert window_start(six_months, as_of) == date(2023, 10, 1)
    comparison = [
        _row(date(2023, 3, 1), purchases=1),
        _row(date(2023, 4, 1), purchases=2),
        _row(date(2023, 9, 1), purchases=3),
        _row(date(2023, 10, 1), purchases=4),
    ]
    previous = previous_period(comparison, six_months, as_of)
    assert [row.period for row in previous] == [date(2023, 4, 1), date(2023, 9, 1)]

    twelve_months = find_range("12M")
    assert window_start(twelve_months, as_of) == date(2023, 4, 1)
    comparison = [
        _row(date(2022, 3, 1), purchases=1),
        _row(date(2022, 4, 1), purchases=2),
        _row(date(2023, 3, 1), purchases=3),
        _row(date(2023, 4, 1), purchases=4),
    ]
    previous = previous_period(comparison, twelve_months, as_of)
    assert [row.period for row in previous] == [date(2022, 4, 1), date(2023, 3, 1)]
