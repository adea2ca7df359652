from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence

from . import metrics
from .dataset import (
    parse_cohorts,
    parse_count,
    parse_trend,
    previous_period,
    sum_key,
    trailing_weeks,
    window_start,
)
from .metrics import RateSet, calc_rates, fmt, pct, ratio
from .models import (
    CardMetric,
    CohortRow,
    DashboardSection,
    DashboardView,
    FunnelBreakdown,
    FunnelStage,
    JourneySplit,
    JourneyStage,
    PeriodRow,
    RangeOption,
    RateChip,
    TrendPoint,
    TrendSeries,
)
from .queries import MOBILE_EVENT_MAP, MOBILE_EVENTS, WEB_EVENT_MAP, WEB_FUNNEL_STEPS
from .repository import MobileQueryResults, WebQueryResults

FOUR_WEEK_WINDOWS = 3
RETENTION_OFFSETS = (1, 4)


@dataclass
class _MobileTotals:
    paywall: int
    trials: int
    converted: int
    trial_cancelled: int
    purchases: int
    renewals: int
    cancellations: int
    expirations: int
    billing_issues: int
    uncancellations: int

    @classmethod
    def from_counts(cls, counts: Dict[str, int]) -> "_MobileTotals":
        def get(event: str) -> int:
            return counts.get(event, 0)

        return cls(
            paywall=get("paywall_shown"),
            trials=get("rc_trial_started_event"),
            converted=get("rc_trial_converted_event"),
            trial_cancelled=get("rc_trial_cancelled_event"),
            purchases=get("rc_initial_purchase_event"),
            renewals=get("rc_renewal_event"),
            cancellations=get("rc_cancellation_event"),
            expirations=get("rc_expiration_event"),
            billing_issues=get("rc_billing_issue_event"),
            uncancellations=get("rc_uncancellation_event"),
        )


@dataclass
class _MobileRates:
    churn: Optional[float]
    renewal: Optional[float]
    trial_conv: Optional[float]
    trial_cancel: Optional[float]
    paywall_trial: Optional[float]
    overall_conv: Optional[float]
    billing: Optional[float]


def comparison_labels(option: RangeOption) -> Dict[str, str]:
    if option.is_weekly:
        return {"delta": "vs last week", "comparison": "last week + 4w avg"}
    return {"delta": f"vs prev {option.short_display}", "comparison": f"prev {option.short_display}"}


def _card(
    key: str,
    label: str,
    value: Optional[float],
    display: str,
    unit: Optional[str] = "%",
    delta: Optional[float] = None,
    delta_label: Optional[str] = None,
    average_4w: Optional[float] = None,
    description: Optional[str] = None,
    status: Optional[str] = None,
) -> CardMetric:
    return CardMetric(
        key=key,
        label=label,
        value=value,
        display=display,
        unit=unit,
        delta=delta,
        delta_label=delta_label if delta is not None else None,
        average_4w=average_4w,
        description=description,
        status=status,
    )


def _series(
    name: str,
    rows: Sequence[PeriodRow],
    columns: Dict[str, str],
    unit: str = "events",
    sign: Optional[Dict[str, int]] = None,
) -> TrendSeries:
    """
    Chart-ready series; ``columns`` maps a display key to one or more
    ``+``-joined counter keys (``cancellations+expirations``).
    """

    sign = sign or {}
    points = []
    for row in rows:
        values: Dict[str, Optional[float]] = {}
        for column, expression in columns.items():
            total = sum(row.get(part) for part in expression.split("+"))
            values[column] = total * sign.get(column, 1)
        points.append(TrendPoint(period=row.period, label=row.label, values=values))
    return TrendSeries(name=name, keys=list(columns), points=points, unit=unit)


def _funnel(name: str, steps: Sequence[tuple]) -> FunnelBreakdown:
    """``steps`` is a sequence of ``(label, count, event)``; rates are step-over-step."""

    stages: List[FunnelStage] = []
    previous: Optional[int] = None
    for label, count, event in steps:
        conversion = ratio(count, previous) if previous is not None else None
        drop_off = None if conversion is None else 100 - conversion
        stages.append(FunnelStage(label=label, count=count, event=event, conversion_rate=conversion, drop_off=drop_off))
        previous = count
    overall = ratio(steps[-1][1], steps[0][1]) if steps else None
    return FunnelBreakdown(name=name, stages=stages, overall_conversion=overall)


class DataDashboardService:
    """
    Turns raw query rows into the two dashboard views.

    The service is pure: it never talks to the backend, so the repository
    decides how and when rows are fetched.
    """

    def __init__(self, generated_at: Optional[datetime] = None) -> None:
        self.generated_at = generated_at

    def _now(self) -> datetime:
        return self.generated_at or datetime.now(timezone.utc)

    # ------------------------------------------------------------------ mobile

    def build_mobile(self, results: MobileQueryResults) -> DashboardView:
        option = results.range
        series = parse_trend(results.current_trend, option.interval, MOBILE_EVENT_MAP)
        comparison = parse_trend(results.comparison_trend, option.prev_interval, MOBILE_EVENT_MAP)
        previous = previous_period(comparison, option, results.as_of)
        counts = parse_count(results.current_counts)
        totals = _MobileTotals.from_counts(counts)

        current_rates = calc_rates(series)
        previous_rates = calc_rates(previous)
        deltas = current_rates.delta(previous_rates)
        four_week = self._four_week_average(series, comparison, option, results.as_of)
        rates = _MobileRates(
            churn=current_rates.churn,
            renewal=current_rates.renewal,
            trial_conv=ratio(totals.converted, totals.trials),
            trial_cancel=ratio(totals.trial_cancelled, totals.trials),
            paywall_trial=ratio(totals.trials, totals.paywall),
            overall_conv=ratio(totals.purchases, totals.paywall),
            billing=ratio(totals.billing_issues, totals.purchases + totals.renewals),
        )
        labels = comparison_labels(option)

        alerts = metrics.build_alerts(
            {
                "churn": rates.churn,
                "renewal": rates.renewal,
                "trial_cancel": rates.trial_cancel,
                "billing": rates.billing,
                "trial_conv": rates.trial_conv,
            },
            metrics.MOBILE_ALERT_RULES,
            deltas={"churn": deltas.churn, "renewal": deltas.renewal},
        )

        overview = DashboardSection(
            cards=self._mobile_cards(rates, totals, deltas, four_week, labels["delta"]),
            funnels=[
                _funnel(
                    "Paywall funnel",
                    [
                        ("Paywall", totals.paywall, "paywall_shown"),
                        ("Trial", totals.trials, "rc_trial_started_event"),
                        ("Converted", totals.converted, "rc_trial_converted_event"),
                        ("Purchased", totals.purchases, "rc_initial_purchase_event"),
                    ],
                )
            ],
        )
        trends = DashboardSection(
            trends=[
                _series(
                    "Subscription Health",
                    series,
                    {"Renewals": "renewals", "New Subs": "purchases", "Cancels": "cancellations+expirations"},
                    sign={"Cancels": -1},
                ),
                _series(
                    "Trial Funnel",
                    series,
                    {"Started": "trials", "Converted": "converted", "Cancelled": "trialCancelled"},
                ),
                _series(
                    "Churn Signals",
                    series,
                    {"Cancellations": "cancellations", "Expirations": "expirations", "Billing Issues": "billingIssues"},
                ),
            ]
        )
        journey = DashboardSection(journey=self._journey(rates, totals), chips=self._rate_chips(rates))

        return DashboardView(
            view="mobile",
            range=option,
            generated_at=self._now(),
            sections={"overview": overview, "trends": trends, "journey": journey},
            health=metrics.health_summary(alerts),
            alerts=alerts,
            totals={event: counts.get(event, 0) for event in MOBILE_EVENTS},
            labels=labels,
        )

    @staticmethod
    def _four_week_average(
        series: Sequence[PeriodRow],
        comparison: Sequence[PeriodRow],
        option: RangeOption,
        as_of: date,
    ) -> Optional[RateSet]:
        if not option.is_weekly:
            return None
        weeks = trailing_weeks(comparison, window_start(option, as_of), FOUR_WEEK_WINDOWS)
        return RateSet.average([calc_rates(series)] + [calc_rates(week) for week in weeks])

    @staticmethod
    def _mobile_cards(
        rates: _MobileRates,
        totals: _MobileTotals,
        deltas: RateSet,
        four_week: Optional[RateSet],
        delta_label: str,
    ) -> List[CardMetric]:
        def avg(field_name: str) -> Optional[float]:
            return getattr(four_week, field_name) if four_week is not None else None

        def status(key: str, value: Optional[float]) -> Optional[str]:
            return metrics.metric_status(metrics.MOBILE_ALERT_RULES, key, value)

        return [
            _card(
                "churn",
                "Churn Rate",
                rates.churn,
                pct(rates.churn),
                delta=metrics.negate(deltas.churn),
                delta_label=delta_label,
                average_4w=avg("churn"),
                description="(cancels + exp.) ÷ (renewals + purchases)",
                status=status("churn", rates.churn),
            ),
            _card(
                "renewal",
                "Renewal Rate",
                rates.renewal,
                pct(rates.renewal),
                delta=deltas.renewal,
                delta_label=delta_label,
                average_4w=avg("renewal"),
                description="renewals ÷ (renewals + cancels + exp.)",
                status=status("renewal", rates.renewal),
            ),
            _card(
                "trial_conv",
                "Trial → Paid Conv.",
                rates.trial_conv,
                pct(rates.trial_conv),
                delta=deltas.trial_conv,
                delta_label=delta_label,
                average_4w=avg("trial_conv"),
                description="rc_trial_converted ÷ rc_trial_started",
                status=status("trial_conv", rates.trial_conv),
            ),
            _card(
                "billing",
                "Billing Issue Rate",
                rates.billing,
                pct(rates.billing),
                delta=deltas.billing,
                delta_label=delta_label,
                average_4w=avg("billing"),
                description="billing issues ÷ total transactions",
                status=status("billing", rates.billing),
            ),
            _card(
                "paywall_trial",
                "Paywall → Trial",
                rates.paywall_trial,
                pct(rates.paywall_trial),
                description="of paywall impressions started a trial",
            ),
            _card(
                "trial_cancel",
                "Trial Cancel Rate",
                rates.trial_cancel,
                pct(rates.trial_cancel),
                delta=deltas.trial_cancel,
                delta_label=delta_label,
                average_4w=avg("trial_cancel"),
                description="rc_trial_cancelled ÷ rc_trial_started",
                status=status("trial_cancel", rates.trial_cancel),
            ),
            _card(
                "overall_conv",
                "End-to-End Conv.",
                rates.overall_conv,
                pct(rates.overall_conv),
                description="paywall view → initial purchase",
            ),
            _card(
                "win_backs",
                "Win-backs",
                totals.uncancellations,
                fmt(totals.uncancellations),
                unit=None,
                description="rc_uncancellation_event",
            ),
        ]

    @staticmethod
    def _journey(rates: _MobileRates, totals: _MobileTotals) -> List[JourneyStage]:
        def good(value: Optional[float], threshold: float) -> Optional[bool]:
            return None if value is None else value > threshold

        return [
            JourneyStage("Download", "User installs from App Store", ["App Store install"]),
            JourneyStage("Paywall", "Shown during onboarding", ["paywall_shown"], metric=totals.paywall),
            JourneyStage(
                "Trial Start",
                "7-day free trial begins",
                ["rc_trial_started_event"],
                metric=totals.trials,
                rate=rates.paywall_trial,
                rate_label="of paywall views",
                rate_good=good(rates.paywall_trial, 40),
            ),
            JourneyStage(
                "Trial Active",
                "User experiences product",
                ["rc_trial_converted", "rc_trial_cancelled"],
                splits=[
                    JourneySplit("convert", totals.converted, rates.trial_conv),
                    JourneySplit("cancel trial", totals.trial_cancelled, rates.trial_cancel),
                ],
            ),
            JourneyStage(
                "Subscriber",
                "First payment processed",
                ["rc_initial_purchase_event"],
                metric=totals.purchases,
                rate=rates.overall_conv,
                rate_label="end-to-end conv.",
                rate_good=good(rates.overall_conv, 5),
            ),
            JourneyStage(
                "Renewal",
                "Recurring billing succeeds",
                ["rc_renewal_event"],
                metric=totals.renewals,
                rate=rates.renewal,
                rate_label="renewal rate",
                rate_good=good(rates.renewal, 82),
            ),
            JourneyStage(
                "At Risk",
                "Billing fail or cancellation",
                ["rc_billing_issue", "rc_cancellation"],
                splits=[
                    JourneySplit("billing issue", totals.billing_issues, rates.billing),
                    JourneySplit("cancelled", totals.cancellations),
                ],
            ),
            JourneyStage(
                "End State",
                "Expired or won back",
                ["rc_expiration", "rc_uncancellation"],
                splits=[
                    JourneySplit("expired", totals.expirations),
                    JourneySplit("win-back", totals.uncancellations),
                ],
            ),
        ]

    @staticmethod
    def _rate_chips(rates: _MobileRates) -> List[RateChip]:
        chips = [
            metrics.rate_chip("Paywall→Trial", rates.paywall_trial, 40),
            metrics.rate_chip("Trial→Paid", rates.trial_conv, 50),
            metrics.rate_chip("Trial cancel", rates.trial_cancel, 45, inverted=True),
            metrics.rate_chip("Renewal rate", rates.renewal, 82),
            metrics.rate_chip("Billing issues", rates.billing, 3, inverted=True),
        ]
        return [chip for chip in chips if chip is not None]

    # --------------------------------------------------------------------- web

    def build_web(self, results: WebQueryResults) -> DashboardView:
        option = results.range
        series = parse_trend(results.current_trend, option.interval, WEB_EVENT_MAP)
        comparison = parse_trend(results.comparison_trend, option.prev_interval, WEB_EVENT_MAP)
        previous = previous_period(comparison, option, results.as_of)
        users = parse_count(results.current_users)
        cohorts = parse_cohorts(results.cohorts)
        labels = comparison_labels(option)
        if option.is_weekly:
            labels["comparison"] = "last week"

        counts = {key: users.get(event, 0) for key, event, _ in WEB_FUNNEL_STEPS}
        series_counts = {key: sum_key(series, key) for key, _, _ in WEB_FUNNEL_STEPS}
        previous_counts = {key: sum_key(previous, key) for key, _, _ in WEB_FUNNEL_STEPS}
        current_ratios = self._web_ratios(counts)
        series_ratios = self._web_ratios(series_counts)
        previous_ratios = self._web_ratios(previous_counts)
        deltas = {key: metrics.diff(value, previous_ratios[key]) for key, value in series_ratios.items()}
        retention = {
            f"week{offset}_retention": self._average_retention(cohorts, offset, results.as_of)
            for offset in RETENTION_OFFSETS
        }

        watched = {**current_ratios, **retention}
        alerts = metrics.build_alerts(watched, metrics.WEB_ALERT_RULES, deltas=deltas)

        def status(key: str) -> Optional[str]:
            return metrics.metric_status(metrics.WEB_ALERT_RULES, key, watched.get(key))

        funnel = _funnel("Signup funnel", [(label, counts[key], event) for key, event, label in WEB_FUNNEL_STEPS])
        cards = [
            _card(
                "signups",
                "Signups",
                counts["signups"],
                fmt(counts["signups"]),
                unit=None,
                delta=metrics.diff(series_counts["signups"], previous_counts["signups"]),
                delta_label=labels["delta"],
                description="people completing signup_completed",
            ),
            _card(
                "visit_signup",
                "Visit → Signup",
                current_ratios["visit_signup"],
                pct(current_ratios["visit_signup"]),
                delta=deltas["visit_signup"],
                delta_label=labels["delta"],
                description="signup_started ÷ landing visitors",
                status=status("visit_signup"),
            ),
            _card(
                "signup_completion",
                "Signup Completion",
                current_ratios["signup_completion"],
                pct(current_ratios["signup_completion"]),
                delta=deltas["signup_completion"],
                delta_label=labels["delta"],
                description="signup_completed ÷ signup_started",
                status=status("signup_completion"),
            ),
            _card(
                "activation",
                "Onboarding Rate",
                current_ratios["activation"],
                pct(current_ratios["activation"]),
                delta=deltas["activation"],
                delta_label=labels["delta"],
                description="onboarding_completed ÷ signup_completed",
            ),
            _card(
                "overall",
                "Visit → Paid",
                current_ratios["overall"],
                pct(current_ratios["overall"]),
                delta=deltas["overall"],
                delta_label=labels["delta"],
                description="subscription_created ÷ landing visitors",
                status=status("overall"),
            ),
            _card(
                "week1_retention",
                "Week-1 Retention",
                retention["week1_retention"],
                pct(retention["week1_retention"]),
                description="cohort average, returning visitors one week after signup",
                status=status("week1_retention"),
            ),
            _card(
                "week4_retention",
                "Week-4 Retention",
                retention["week4_retention"],
                pct(retention["week4_retention"]),
                description="cohort average, returning visitors four weeks after signup",
            ),
        ]

        conversion_points = [
            TrendPoint(
                period=row.period,
                label=row.label,
                values={
                    "Visit → Signup": ratio(row.get("signupStarted"), row.get("visits")),
                    "Signup → Paid": ratio(row.get("subscribed"), row.get("signups")),
                },
            )
            for row in series
        ]
        trends = DashboardSection(
            trends=[
                _series(
                    "Signups",
                    series,
                    {"Visitors": "visits", "Signups": "signups", "Subscribed": "subscribed"},
                    unit="people",
                ),
                TrendSeries(
                    name="Conversion",
                    keys=["Visit → Signup", "Signup → Paid"],
                    points=conversion_points,
                    unit="%",
                ),
            ]
        )

        return DashboardView(
            view="web",
            range=option,
            generated_at=self._now(),
            sections={
                "overview": DashboardSection(cards=cards, funnels=[funnel]),
                "trends": trends,
                "retention": DashboardSection(cohorts=cohorts),
            },
            health=metrics.health_summary(alerts),
            alerts=alerts,
            totals={event: users.get(event, 0) for _, event, _ in WEB_FUNNEL_STEPS},
            labels=labels,
        )

    @staticmethod
    def _web_ratios(counts: Dict[str, int]) -> Dict[str, Optional[float]]:
        return {
            "visit_signup": ratio(counts["signupStarted"], counts["visits"]),
            "signup_completion": ratio(counts["signups"], counts["signupStarted"]),
            "activation": ratio(counts["onboarded"], counts["signups"]),
            "overall": ratio(counts["subscribed"], counts["visits"]),
        }

    @staticmethod
    def _average_retention(cohorts: Sequence[CohortRow], offset: int, as_of: date) -> Optional[float]:
        """
        Size-weighted retention at ``offset`` weeks across cohorts whose ``offset`` week is over.
        """

        eligible = [cohort for cohort in cohorts if cohort.cohort + timedelta(weeks=offset + 1) <= as_of]
        retained = sum(cohort.users[offset] if len(cohort.users) > offset else 0 for cohort in eligible)
        size = sum(cohort.size for cohort in eligible)
        return ratio(retained, size)
