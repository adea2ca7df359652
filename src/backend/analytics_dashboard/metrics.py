"""
Ratio derivation and presentation helpers shared by both dashboard views.

All ratios are percentages. A ratio whose denominator is zero is ``None``
("no data") rather than 0, so an empty window never reads as a 0% churn.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, fields
from typing import Iterable, List, Mapping, Optional, Sequence

from .dataset import sum_key
from .models import Alert, HealthSummary, PeriodRow, RateChip

RED = "red"
AMBER = "amber"
GREEN = "green"

PLACEHOLDER = "—"


def ratio(numerator: Optional[float], denominator: Optional[float]) -> Optional[float]:
    if numerator is None or denominator is None or denominator <= 0:
        return None
    return numerator / denominator * 100


def diff(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    if current is None or previous is None:
        return None
    return current - previous


def negate(value: Optional[float]) -> Optional[float]:
    return None if value is None else -value


def average(values: Iterable[Optional[float]]) -> Optional[float]:
    present = [value for value in values if value is not None]
    if not present:
        return None
    return sum(present) / len(present)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def fmt(value: Optional[float]) -> str:
    """Compact count: ``1234`` -> ``1.2k``, ``12.5`` -> ``13``."""

    if value is None:
        return PLACEHOLDER
    if value >= 1000:
        return f"{value / 1000:.1f}k"
    return str(_round_half_up(value))


def pct(value: Optional[float]) -> str:
    if value is None:
        return PLACEHOLDER
    return f"{value:.1f}%"


@dataclass(frozen=True)
class RateSet:
    churn: Optional[float] = None
    renewal: Optional[float] = None
    trial_conv: Optional[float] = None
    trial_cancel: Optional[float] = None
    billing: Optional[float] = None

    def delta(self, previous: "RateSet") -> "RateSet":
        return RateSet(**{f.name: diff(getattr(self, f.name), getattr(previous, f.name)) for f in fields(self)})

    @classmethod
    def average(cls, rate_sets: Sequence["RateSet"]) -> "RateSet":
        return cls(**{f.name: average(getattr(rates, f.name) for rates in rate_sets) for f in fields(cls)})


def calc_rates(rows: Sequence[PeriodRow]) -> RateSet:
    """Subscription rates over every period in ``rows``."""

    purchases = sum_key(rows, "purchases")
    renewals = sum_key(rows, "renewals")
    cancellations = sum_key(rows, "cancellations")
    expirations = sum_key(rows, "expirations")
    trials = sum_key(rows, "trials")
    transactions = purchases + renewals
    return RateSet(
        churn=ratio(cancellations + expirations, transactions),
        renewal=ratio(renewals, renewals + cancellations + expirations),
        trial_conv=ratio(sum_key(rows, "converted"), trials),
        trial_cancel=ratio(sum_key(rows, "trialCancelled"), trials),
        billing=ratio(sum_key(rows, "billingIssues"), transactions),
    )


@dataclass(frozen=True)
class AlertRule:
    """
    Traffic-light thresholds for one metric.

    With ``higher_is_better`` the metric turns red below ``red`` and amber
    below ``amber``; otherwise it turns red above ``red`` and amber above
    ``amber``. ``messages`` holds the red, amber and green texts in that order.
    """

    key: str
    label: str
    red: float
    amber: float
    higher_is_better: bool
    messages: Sequence[str]
    negate_delta: bool = False

    def evaluate(self, value: float) -> str:
        if self.higher_is_better:
            if value < self.red:
                return RED
            if value < self.amber:
                return AMBER
            return GREEN
        if value > self.red:
            return RED
        if value > self.amber:
            return AMBER
        return GREEN

    def message(self, status: str) -> str:
        return self.messages[(RED, AMBER, GREEN).index(status)]


MOBILE_ALERT_RULES: Sequence[AlertRule] = (
    AlertRule("churn", "Churn Rate", 12, 7, False, ("High — needs attention", "Elevated — monitor", "Healthy"), negate_delta=True),
    AlertRule("renewal", "Renewal Rate", 70, 82, True, ("Low — investigate", "Below target", "On track")),
    AlertRule("trial_cancel", "Trial Cancels", 60, 45, False, ("Most trials cancelling", "Above average", "Normal range")),
    AlertRule("billing", "Billing Issues", 6, 3, False, ("High — revenue at risk", "Worth watching", "Low")),
    AlertRule("trial_conv", "Trial Conv.", 30, 50, True, ("Low conversion", "Room to improve", "Good")),
)

WEB_ALERT_RULES: Sequence[AlertRule] = (
    AlertRule("visit_signup", "Visit → Signup", 5, 10, True, ("Few visitors start signing up", "Below target", "On track")),
    AlertRule("signup_completion", "Signup Completion", 40, 60, True, ("Most signups abandoned", "Form friction", "Healthy")),
    AlertRule("overall", "Visit → Paid", 1, 2, True, ("Low end-to-end conversion", "Room to improve", "Good")),
    AlertRule("week1_retention", "Week-1 Retention", 15, 25, True, ("New accounts not returning", "Worth watching", "Sticky")),
)


def metric_status(rules: Sequence[AlertRule], key: str, value: Optional[float]) -> Optional[str]:
    """Traffic light for ``value`` under the rule named ``key``; ``None`` without a value or a rule."""

    if value is None:
        return None
    for rule in rules:
        if rule.key == key:
            return rule.evaluate(value)
    return None


def build_alerts(
    values: Mapping[str, Optional[float]],
    rules: Sequence[AlertRule],
    deltas: Optional[Mapping[str, Optional[float]]] = None,
) -> List[Alert]:
    """One alert per rule whose metric has a value; absent metrics are skipped."""

    alerts: List[Alert] = []
    for rule in rules:
        value = values.get(rule.key)
        if value is None:
            continue
        status = rule.evaluate(value)
        delta = (deltas or {}).get(rule.key)
        alerts.append(
            Alert(
                key=rule.key,
                label=rule.label,
                status=status,
                value=value,
                display=pct(value),
                message=rule.message(status),
                delta=negate(delta) if rule.negate_delta else delta,
            )
        )
    return alerts


def health_summary(alerts: Sequence[Alert]) -> HealthSummary:
    reds = sum(1 for alert in alerts if alert.status == RED)
    ambers = sum(1 for alert in alerts if alert.status == AMBER)
    if reds:
        return HealthSummary(RED, "Action Needed", f"{reds} metric{'s' if reds > 1 else ''} need attention", reds, ambers)
    if ambers:
        return HealthSummary(AMBER, "Heads Up", f"{ambers} metric{'s' if ambers > 1 else ''} to watch", reds, ambers)
    return HealthSummary(GREEN, "All Clear", "All metrics healthy", reds, ambers)


def rate_chip(label: str, value: Optional[float], good: float, inverted: bool = False) -> Optional[RateChip]:
    """
    Small coloured badge under the journey map.

    Green when the value meets ``good`` (at or below it when ``inverted``),
    amber when it is above 70% of ``good``, red otherwise.
    """

    if value is None:
        return None
    is_good = value <= good if inverted else value >= good
    if is_good:
        status = GREEN
    elif value > good * 0.7:
        status = AMBER
    else:
        status = RED
    return RateChip(label=label, value=value, status=status)
