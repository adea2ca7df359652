from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence


@dataclass(frozen=True)
class RangeOption:
    """
    One entry of the time-range picker.

    ``value`` and ``prev_value`` use the relative notation understood by the
    query builder (``-30d``, ``-6m``). ``prev_value`` covers the current window
    plus the comparison window so one query feeds both the previous-period
    deltas and the four-week average.
    """

    label: str
    value: str
    display: str
    interval: str
    prev_value: str
    prev_interval: str

    @property
    def days(self) -> int:
        return _relative_days(self.value)

    @property
    def prev_days(self) -> int:
        return _relative_days(self.prev_value)

    @property
    def is_weekly(self) -> bool:
        return self.value == "-7d"

    @property
    def short_display(self) -> str:
        return self.display.replace("Last ", "")


def _relative_days(value: str) -> int:
    amount = value.lstrip("-")
    if amount.lower().endswith("m"):
        return int(amount[:-1]) * 30
    return int(amount.rstrip("dD"))


@dataclass(frozen=True)
class PeriodRow:
    """Event counts for one period bucket (day, week or month)."""

    period: date
    label: str
    counts: Dict[str, int] = field(default_factory=dict)

    def get(self, key: str) -> int:
        return self.counts.get(key, 0)


@dataclass(frozen=True)
class CohortRow:
    cohort: date
    size: int
    retention: Sequence[Optional[float]]
    users: Sequence[int]


@dataclass(frozen=True)
class CardMetric:
    key: str
    label: str
    value: Optional[float]
    display: str
    unit: Optional[str] = None
    delta: Optional[float] = None
    delta_label: Optional[str] = None
    average_4w: Optional[float] = None
    description: Optional[str] = None
    status: Optional[str] = None


@dataclass(frozen=True)
class TrendPoint:
    period: date
    label: str
    values: Dict[str, Optional[float]]


@dataclass(frozen=True)
class TrendSeries:
    name: str
    keys: Sequence[str]
    points: Iterable[TrendPoint]
    unit: Optional[str] = None


@dataclass(frozen=True)
class FunnelStage:
    label: str
    count: int
    event: Optional[str] = None
    conversion_rate: Optional[float] = None
    drop_off: Optional[float] = None


@dataclass(frozen=True)
class FunnelBreakdown:
    name: str
    stages: Sequence[FunnelStage]
    overall_conversion: Optional[float] = None


@dataclass(frozen=True)
class JourneySplit:
    label: str
    value: int
    rate: Optional[float] = None


@dataclass(frozen=True)
class JourneyStage:
    stage: str
    description: str
    events: Sequence[str]
    metric: Optional[int] = None
    rate: Optional[float] = None
    rate_label: Optional[str] = None
    rate_good: Optional[bool] = None
    splits: Sequence[JourneySplit] = field(default_factory=list)


@dataclass(frozen=True)
class RateChip:
    label: str
    value: float
    status: str


@dataclass(frozen=True)
class Alert:
    key: str
    label: str
    status: str
    value: Optional[float]
    display: str
    message: str
    delta: Optional[float] = None


@dataclass(frozen=True)
class HealthSummary:
    status: str
    headline: str
    detail: str
    red: int = 0
    amber: int = 0


@dataclass(frozen=True)
class DashboardSection:
    cards: Sequence[CardMetric] = field(default_factory=list)
    trends: Sequence[TrendSeries] = field(default_factory=list)
    funnels: Sequence[FunnelBreakdown] = field(default_factory=list)
    journey: Sequence[JourneyStage] = field(default_factory=list)
    chips: Sequence[RateChip] = field(default_factory=list)
    cohorts: Sequence[CohortRow] = field(default_factory=list)


@dataclass(frozen=True)
class DashboardView:
    view: str
    range: RangeOption
    generated_at: datetime
    sections: Dict[str, DashboardSection]
    health: HealthSummary
    alerts: Sequence[Alert] = field(default_factory=list)
    totals: Dict[str, int] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)

    def as_dict(self) -> Dict[str, Any]:
        """
        Convert the nested dataclasses into a JSON-serialisable structure.

        Keys are camelCased for the browser; dates become ISO strings.
        """

        return _serialize(self)


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _serialize(obj: Any) -> Any:
    if isinstance(obj, RangeOption):
        return {
            "label": obj.label,
            "value": obj.value,
            "display": obj.display,
            "interval": obj.interval,
            "days": obj.days,
        }
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if hasattr(obj, "__dataclass_fields__"):
        return {_camel(name): _serialize(getattr(obj, name)) for name in obj.__dataclass_fields__}
    if isinstance(obj, dict):
        return {str(key): _serialize(value) for key, value in obj.items()}
    if isinstance(obj, Iterable) and not isinstance(obj, (str, bytes)):
        return [_serialize(item) for item in obj]
    return obj


def serialize_ranges(ranges: Sequence[RangeOption]) -> List[Dict[str, Any]]:
    return [_serialize(option) for option in ranges]
