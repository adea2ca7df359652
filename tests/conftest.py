from __future__ import annotations

from datetime import date
from typing import Dict, List

import pytest

from backend.analytics_dashboard.repository import QueryExecutor


class FakeExecutor(QueryExecutor):
    """Answers queries from canned rows, matched by a substring of the SQL."""

    def __init__(self, answers: Dict[str, list] | None = None, error: Exception | None = None):
        self.answers = answers or {}
        self.error = error
        self.queries: List[str] = []

    def execute(self, sql: str) -> list:
        self.queries.append(sql)
        if self.error is not None:
            raise self.error
        for fragment, rows in self.answers.items():
            if fragment in sql:
                return rows
        return []


@pytest.fixture
def as_of() -> date:
    return date(2024, 3, 31)


@pytest.fixture
def mobile_current_trend() -> list:
    return [
        ["2024-02-25", "rc_initial_purchase_event", 5],
        ["2024-02-25", "rc_renewal_event", 15],
        ["2024-02-25", "rc_cancellation_event", 2],
        ["2024-03-03", "rc_initial_purchase_event", 5],
        ["2024-03-03", "rc_renewal_event", 15],
        ["2024-03-03", "rc_expiration_event", 3],
        ["2024-03-03", "rc_trial_started_event", 20],
        ["2024-03-03", "rc_trial_converted_event", 8],
        ["2024-03-03", "rc_trial_cancelled_event", 10],
        ["2024-03-03", "rc_billing_issue_event", 2],
    ]


@pytest.fixture
def mobile_comparison_trend() -> list:
    return [
        ["2024-01-14", "rc_cancellation_event", 50],
        ["2024-01-21", "rc_initial_purchase_event", 10],
        ["2024-01-21", "rc_renewal_event", 30],
        ["2024-01-28", "rc_cancellation_event", 4],
        ["2024-01-28", "rc_expiration_event", 6],
        ["2024-03-03", "rc_cancellation_event", 100],
    ]


@pytest.fixture
def mobile_counts() -> list:
    return [
        ["paywall_shown", 100],
        ["rc_trial_started_event", 20],
        ["rc_trial_converted_event", 8],
        ["rc_trial_cancelled_event", 10],
        ["rc_initial_purchase_event", 10],
        ["rc_renewal_event", 30],
        ["rc_cancellation_event", 2],
        ["rc_expiration_event", 3],
        ["rc_billing_issue_event", 2],
        ["rc_uncancellation_event", 1],
    ]


@pytest.fixture
def web_users() -> list:
    return [
        ["$pageview", 1000],
        ["signup_started", 200],
        ["signup_completed", 120],
        ["onboarding_completed", 60],
        ["subscription_created", 15],
    ]


@pytest.fixture
def web_current_trend() -> list:
    return [
        ["2024-03-03", "$pageview", 500],
        ["2024-03-03", "signup_started", 100],
        ["2024-03-03", "signup_completed", 60],
        ["2024-03-03", "subscription_created", 6],
    ]


@pytest.fixture
def web_comparison_trend() -> list:
    return [
        ["2024-02-04", "$pageview", 500],
        ["2024-02-04", "signup_started", 50],
        ["2024-02-04", "signup_completed", 40],
        ["2024-03-03", "$pageview", 9999],
    ]


@pytest.fixture
def web_cohorts() -> list:
    return [
        ["2024-03-03", 0, 100],
        ["2024-03-03", 1, 30],
        ["2024-03-10", 0, 50],
        ["2024-03-10", 1, 10],
        ["2024-03-24", 0, 20],
    ]
