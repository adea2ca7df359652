import pytest

from backend.analytics_dashboard.queries import (
    MOBILE_EVENTS,
    QueryBuildError,
    cohort_retention_query,
    event_list,
    multi_count_query,
    multi_trend_query,
    period_expression,
    query_payload,
    to_interval,
    unique_trend_query,
    unique_users_query,
)


@pytest.mark.parametrize(
    "value, expected",
    [("-7d", "7 DAY"), ("-365d", "365 DAY"), ("-6m", "6 MONTH"), ("-12M", "12 MONTH"), ("30d", "30 DAY")],
)
def test_to_interval(value, expected):
    assert to_interval(value) == expected


@pytest.mark.parametrize("value", ["", "-0d", "-7w", "seven days", "-7d; DROP TABLE events"])
def test_to_interval_rejects_bad_values(value):
    with pytest.raises(QueryBuildError):
        to_interval(value)


def test_period_expression():
    assert period_expression("day") == "toDate(timestamp)"
    assert period_expression("week") == "toStartOfWeek(timestamp)"
    assert period_expression("month") == "toStartOfMonth(timestamp)"
    with pytest.raises(QueryBuildError):
        period_expression("quarter")


def test_event_list_quotes_each_event():
    assert event_list(["paywall_shown", "$pageview"]) == "'paywall_shown','$pageview'"


def test_event_list_rejects_injection_and_empty():
    with pytest.raises(QueryBuildError):
        event_list(["paywall_shown') OR 1=1 --"])
    with pytest.raises(QueryBuildError):
        event_list([])


def test_multi_trend_query_daily():
    sql = multi_trend_query("-7d", "day", ["rc_renewal_event", "paywall_shown"])
    assert sql == (
        "SELECT toDate(timestamp) AS period, event, count() AS cnt "
        "FROM events WHERE event IN ('rc_renewal_event','paywall_shown') "
        "AND timestamp >= now() - INTERVAL 7 DAY "
        "GROUP BY period, event ORDER BY period ASC"
    )


def test_multi_trend_query_defaults_to_mobile_events():
    sql = multi_trend_query("-180d", "month")
    assert "toStartOfMonth(timestamp) AS period" in sql
    assert "INTERVAL 180 DAY" in sql
    for event in MOBILE_EVENTS:
        assert f"'{event}'" in sql


def test_multi_count_query():
    sql = multi_count_query("-30d", ["rc_trial_started_event"])
    assert sql == (
        "SELECT event, count() AS cnt FROM events WHERE event IN ('rc_trial_started_event') "
        "AND timestamp >= now() - INTERVAL 30 DAY GROUP BY event"
    )


def test_unique_queries_count_distinct_people():
    assert "count(DISTINCT person_id) AS cnt" in unique_users_query("-30d")
    sql = unique_trend_query("-90d", "week")
    assert sql.startswith("SELECT toStartOfWeek(timestamp) AS period, event, count(DISTINCT person_id)")
    assert "'signup_completed'" in sql


def test_cohort_retention_query():
    sql = cohort_retention_query("-90d")
    assert "INNER JOIN (SELECT person_id, min(toStartOfWeek(timestamp)) AS cohort" in sql
    assert "WHERE event = 'signup_completed' AND timestamp >= now() - INTERVAL 90 DAY" in sql
    assert "events.event IN ('signup_completed','$pageview')" in sql
    assert "dateDiff('week', cohorts.cohort, toStartOfWeek(events.timestamp)) AS week_offset" in sql
    assert sql.endswith("ORDER BY cohort ASC, week_offset ASC")


def test_query_payload():
    assert query_payload("SELECT 1") == {"query": {"kind": "HogQLQuery", "query": "SELECT 1"}}
