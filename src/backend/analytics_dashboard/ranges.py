from __future__ import annotations

from typing import Optional, Sequence

from .models import RangeOption

RANGES: Sequence[RangeOption] = (
    RangeOption("7D", "-7d", "Last 7 days", "day", "-28d", "day"),
    RangeOption("30D", "-30d", "Last 30 days", "week", "-60d", "week"),
    RangeOption("90D", "-90d", "Last 90 days", "week", "-180d", "week"),
    RangeOption("6M", "-180d", "Last 6 months", "month", "-360d", "month"),
    RangeOption("12M", "-365d", "Last 12 months", "month", "-730d", "month"),
)
DEFAULT_RANGE = RANGES[2]


def find_range(key: Optional[str]) -> RangeOption:
    """
    Resolve a range by picker label (``30D``) or relative value (``-30d``).

    ``None`` or an empty string yields the default range.
    """

    if not key:
        return DEFAULT_RANGE
    needle = key.strip()
    for option in RANGES:
        if needle.upper() == option.label or needle.lower() == option.value:
            return option
    raise ValueError(f"Unknown range {key!r}; expected one of {', '.join(r.label for r in RANGES)}")
