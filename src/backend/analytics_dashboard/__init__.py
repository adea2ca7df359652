"""
Backend analytics dashboard helpers.

This package builds the analytical queries behind the mobile subscription and
web signup dashboards, reshapes the tabular results into per-period series and
derives the business ratios shown on the KPI cards.
"""

from .models import (  # noqa: F401
    Alert,
    CardMetric,
    CohortRow,
    DashboardSection,
    DashboardView,
    FunnelBreakdown,
    FunnelStage,
    HealthSummary,
    JourneyStage,
    PeriodRow,
    RangeOption,
    TrendPoint,
    TrendSeries,
)
from .queries import QueryBuildError  # noqa: F401
from .ranges import DEFAULT_RANGE, RANGES, find_range  # noqa: F401
from .repository import (  # noqa: F401
    DashboardDataRepository,
    HogQLQueryExecutor,
    MobileQueryResults,
    QueryError,
    QueryExecutor,
    RepositoryConfig,
    SQLQueryExecutor,
    WebQueryResults,
    build_repository_from_env,
)
from .service import DataDashboardService  # noqa: F401
