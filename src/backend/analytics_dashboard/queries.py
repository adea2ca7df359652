"""
HogQL query construction.

Every query the dashboard issues is built here from a relative range value
(``-30d``), a bucketing interval and a list of event names. Inputs are
validated before they are interpolated so nothing user-supplied reaches the
backend verbatim.
"""

from __future__ import annotations

import re
from typing import Any, Dict, Sequence, Tuple

MOBILE_EVENTS: Tuple[str, ...] = (
    "rc_trial_started_event",
    "rc_trial_converted_event",
    "rc_trial_cancelled_event",
    "rc_initial_purchase_event",
    "rc_renewal_event",
    "rc_cancellation_event",
    "rc_expiration_event",
    "rc_billing_issue_event",
    "rc_uncancellation_event",
    "paywall_shown",
)

MOBILE_EVENT_MAP: Dict[str, str] = {
    "rc_trial_started_event": "trials",
    "rc_trial_converted_event": "converted",
    "rc_trial_cancelled_event": "trialCancelled",
    "rc_initial_purchase_event": "purchases",
    "rc_renewal_event": "renewals",
    "rc_cancellation_event": "cancellations",
    "rc_expiration_event": "expirations",
    "rc_billing_issue_event": "billingIssues",
    "rc_uncancellation_event": "uncancellations",
    "paywall_shown": "paywall",
}

# (series key, event, funnel label)
WEB_FUNNEL_STEPS: Tuple[Tuple[str, str, str], ...] = (
    ("visits", "$pageview", "Landing visit"),
    ("signupStarted", "signup_started", "Signup started"),
    ("signups", "signup_completed", "Account created"),
    ("onboarded", "onboarding_completed", "Onboarding done"),
    ("subscribed", "subscription_created", "Subscribed"),
)
WEB_EVENTS: Tuple[str, ...] = tuple(event for _, event, _ in WEB_FUNNEL_STEPS)
WEB_EVENT_MAP: Dict[str, str] = {event: key for key, event, _ in WEB_FUNNEL_STEPS}
WEB_COHORT_EVENT = "signup_completed"
WEB_RETURN_EVENT = "$pageview"

_RELATIVE_RE = re.compile(r"^-?(\d+)([dDmM])$")
_EVENT_RE = re.compile(r"^[$A-Za-z0-9_.:\- ]+$")
_PERIOD_EXPRESSIONS = {
    "day": "toDate(timestamp)",
    "week": "toStartOfWeek(timestamp)",
    "month": "toStartOfMonth(timestamp)",
}


class QueryBuildError(ValueError):
    """Raised when a query cannot be built from the supplied inputs."""


def to_interval(value: str) -> str:
    match = _RELATIVE_RE.match(value or "")
    if not match:
        raise QueryBuildError(f"Unsupported relative range {value!r}")
    amount, unit = match.groups()
    if int(amount) <= 0:
        raise QueryBuildError(f"Range must be positive, got {value!r}")
    return f"{int(amount)} {'DAY' if unit.lower() == 'd' else 'MONTH'}"


def period_expression(interval: str) -> str:
    try:
        return _PERIOD_EXPRESSIONS[interval]
    except KeyError:
        raise QueryBuildError(f"Unsupported interval {interval!r}") from None


def quote_literal(value: str) -> str:
    if not _EVENT_RE.match(value or ""):
        raise QueryBuildError(f"Invalid event name {value!r}")
    return f"'{value}'"


def event_list(events: Sequence[str]) -> str:
    if not events:
        raise QueryBuildError("At least one event is required")
    return ",".join(quote_literal(event) for event in events)


def _window(date_from: str) -> str:
    return f"timestamp >= now() - INTERVAL {to_interval(date_from)}"


def multi_trend_query(date_from: str, interval: str, events: Sequence[str] = MOBILE_EVENTS) -> str:
    return (
        f"SELECT {period_expression(interval)} AS period, event, count() AS cnt "
        f"FROM events WHERE event IN ({event_list(events)}) AND {_window(date_from)} "
        "GROUP BY period, event ORDER BY period ASC"
    )


def multi_count_query(date_from: str, events: Sequence[str] = MOBILE_EVENTS) -> str:
    return (
        "SELECT event, count() AS cnt "
        f"FROM events WHERE event IN ({event_list(events)}) AND {_window(date_from)} "
        "GROUP BY event"
    )


def unique_users_query(date_from: str, events: Sequence[str] = WEB_EVENTS) -> str:
    return (
        "SELECT event, count(DISTINCT person_id) AS cnt "
        f"FROM events WHERE event IN ({event_list(events)}) AND {_window(date_from)} "
        "GROUP BY event"
    )


def unique_trend_query(date_from: str, interval: str, events: Sequence[str] = WEB_EVENTS) -> str:
    return (
        f"SELECT {period_expression(interval)} AS period, event, count(DISTINCT person_id) AS cnt "
        f"FROM events WHERE event IN ({event_list(events)}) AND {_window(date_from)} "
        "GROUP BY period, event ORDER BY period ASC"
    )


def cohort_retention_query(
    date_from: str,
    cohort_event: str = WEB_COHORT_EVENT,
    return_event: str = WEB_RETURN_EVENT,
) -> str:
    """
    Weekly cohorts keyed by each person's first ``cohort_event``.

    Returns ``(cohort, week_offset, users)`` rows where ``users`` counts the
    distinct cohort members that fired ``return_event`` ``week_offset`` weeks
    after their cohort week. Offset 0 is the cohort size.
    """

    window = _window(date_from)
    return (
        "SELECT cohorts.cohort AS cohort, "
        "dateDiff('week', cohorts.cohort, toStartOfWeek(events.timestamp)) AS week_offset, "
        "count(DISTINCT events.person_id) AS users "
        "FROM events "
        "INNER JOIN ("
        "SELECT person_id, min(toStartOfWeek(timestamp)) AS cohort "
        f"FROM events WHERE event = {quote_literal(cohort_event)} AND {window} "
        "GROUP BY person_id"
        ") AS cohorts ON events.person_id = cohorts.person_id "
        f"WHERE events.event IN ({event_list([cohort_event, return_event])}) "
        f"AND events.{window} "
        "AND toStartOfWeek(events.timestamp) >= cohorts.cohort "
        "GROUP BY cohort, week_offset ORDER BY cohort ASC, week_offset ASC"
    )


def query_payload(sql: str) -> Dict[str, Any]:
    return {"query": {"kind": "HogQLQuery", "query": sql}}
