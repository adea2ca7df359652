from __future__ import annotations

import asyncio
import json
import logging
import os
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, List, Optional, Sequence

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from .models import RangeOption
from .queries import (
    MOBILE_EVENTS,
    WEB_EVENTS,
    cohort_retention_query,
    multi_count_query,
    multi_trend_query,
    query_payload,
    unique_trend_query,
    unique_users_query,
)

logger = logging.getLogger(__name__)

DEFAULT_HOST = "https://us.posthog.com"
DEFAULT_PROJECT_ID = "@current"
ERROR_SNIPPET_LENGTH = 120
DEFAULT_TIMEOUT_SECONDS = 30.0

Rows = List[List[Any]]


class QueryError(RuntimeError):
    """The analytics backend rejected a query or could not be reached."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class QueryExecutor:
    """
    Runs one analytical query and returns its tabular result.

    Rows are plain lists in the column order of the ``SELECT``.
    """

    def execute(self, sql: str) -> Rows:
        raise NotImplementedError


class HogQLQueryExecutor(QueryExecutor):
    """Send queries to the hosted analytics API's HogQL endpoint."""

    def __init__(
        self,
        api_key: str,
        host: str = DEFAULT_HOST,
        project_id: str = DEFAULT_PROJECT_ID,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        self.api_key = api_key
        self.host = host.rstrip("/")
        self.project_id = project_id
        self.timeout = timeout

    @property
    def url(self) -> str:
        return f"{self.host}/api/projects/{self.project_id}/query"

    def execute(self, sql: str) -> Rows:
        request = urllib.request.Request(
            self.url,
            data=json.dumps(query_payload(sql)).encode("utf-8"),
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            method="POST",
        )
        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                body = response.read()
        except urllib.error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")[:ERROR_SNIPPET_LENGTH]
            logger.warning("Analytics query failed with HTTP %s: %s", exc.code, detail)
            raise QueryError(detail or f"HTTP {exc.code}", status=exc.code) from exc
        except urllib.error.URLError as exc:
            logger.warning("Analytics backend unreachable [%s]: %s", self.url, exc.reason)
            raise QueryError(f"Analytics backend unreachable: {exc.reason}") from exc
        except TimeoutError as exc:
            logger.warning("Analytics query timed out after %ss [%s]", self.timeout, self.url)
            raise QueryError(f"Analytics backend timed out after {self.timeout}s", status=504) from exc
        except OSError as exc:
            logger.warning("Analytics backend connection failed [%s]: %s", self.url, exc)
            raise QueryError(f"Analytics backend unreachable: {exc}") from exc

        try:
            payload = json.loads(body or b"{}")
        except json.JSONDecodeError as exc:
            raise QueryError("Analytics backend returned invalid JSON") from exc
        return [list(row) for row in payload.get("results") or []]


class SQLQueryExecutor(QueryExecutor):
    """
    Run the same queries against a warehouse mirror of the ``events`` table.

    The engine must speak the backend's dialect (``toStartOfWeek``,
    ``dateDiff`` ...), e.g. a ClickHouse export reached through a SQLAlchemy
    driver.
    """

    def __init__(self, engine: Engine):
        self.engine = engine

    def execute(self, sql: str) -> Rows:
        with self.engine.connect() as connection:
            rows = connection.execute(text(sql)).fetchall()
        return [list(row) for row in rows]


@dataclass(frozen=True)
class MobileQueryResults:
    """Raw rows backing the mobile subscription view for one range."""

    range: RangeOption
    as_of: date
    current_trend: Rows = field(default_factory=list)
    comparison_trend: Rows = field(default_factory=list)
    current_counts: Rows = field(default_factory=list)


@dataclass(frozen=True)
class WebQueryResults:
    """Raw rows backing the web signup funnel view for one range."""

    range: RangeOption
    as_of: date
    current_trend: Rows = field(default_factory=list)
    comparison_trend: Rows = field(default_factory=list)
    current_users: Rows = field(default_factory=list)
    cohorts: Rows = field(default_factory=list)


class DashboardDataRepository:
    """Issue the queries each view needs and collect the raw rows."""

    def __init__(self, executor: QueryExecutor):
        self.executor = executor

    @staticmethod
    def mobile_queries(option: RangeOption) -> Sequence[str]:
        return (
            multi_trend_query(option.value, option.interval, MOBILE_EVENTS),
            multi_trend_query(option.prev_value, option.prev_interval, MOBILE_EVENTS),
            multi_count_query(option.value, MOBILE_EVENTS),
        )

    @staticmethod
    def web_queries(option: RangeOption) -> Sequence[str]:
        return (
            unique_trend_query(option.value, option.interval, WEB_EVENTS),
            unique_trend_query(option.prev_value, option.prev_interval, WEB_EVENTS),
            unique_users_query(option.value, WEB_EVENTS),
            cohort_retention_query(option.value),
        )

    def load_mobile(self, option: RangeOption, as_of: Optional[date] = None) -> MobileQueryResults:
        rows = [self.executor.execute(sql) for sql in self.mobile_queries(option)]
        return MobileQueryResults(option, as_of or _today(), *rows)

    def load_web(self, option: RangeOption, as_of: Optional[date] = None) -> WebQueryResults:
        rows = [self.executor.execute(sql) for sql in self.web_queries(option)]
        return WebQueryResults(option, as_of or _today(), *rows)

    async def aload_mobile(self, option: RangeOption, as_of: Optional[date] = None) -> MobileQueryResults:
        rows = await self._gather(self.mobile_queries(option))
        return MobileQueryResults(option, as_of or _today(), *rows)

    async def aload_web(self, option: RangeOption, as_of: Optional[date] = None) -> WebQueryResults:
        rows = await self._gather(self.web_queries(option))
        return WebQueryResults(option, as_of or _today(), *rows)

    async def _gather(self, queries: Sequence[str]) -> List[Rows]:
        tasks = [asyncio.to_thread(self.executor.execute, sql) for sql in queries]
        return list(await asyncio.gather(*tasks))


def _today() -> date:
    return datetime.now(timezone.utc).date()


def env_timeout_seconds(name: str = "POSTHOG_TIMEOUT_SECONDS") -> float:
    """Positive number of seconds from the environment; anything else falls back to the default."""

    raw = os.getenv(name)
    if not raw:
        return DEFAULT_TIMEOUT_SECONDS
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_TIMEOUT_SECONDS
    return value if value > 0 else DEFAULT_TIMEOUT_SECONDS


@dataclass(frozen=True)
class RepositoryConfig:
    database_url: Optional[str] = None
    api_key: Optional[str] = None
    host: str = DEFAULT_HOST
    project_id: str = DEFAULT_PROJECT_ID
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls) -> "RepositoryConfig":
        return cls(
            database_url=os.getenv("DASHBOARD_DATABASE_URL"),
            api_key=os.getenv("POSTHOG_API_KEY"),
            host=os.getenv("POSTHOG_HOST", DEFAULT_HOST),
            project_id=os.getenv("POSTHOG_PROJECT_ID", DEFAULT_PROJECT_ID),
            timeout_seconds=env_timeout_seconds(),
        )


def build_repository_from_env(config: Optional[RepositoryConfig] = None) -> Optional[DashboardDataRepository]:
    cfg = config or RepositoryConfig.from_env()
    if cfg.database_url:
        engine = create_engine(cfg.database_url)
        return DashboardDataRepository(SQLQueryExecutor(engine))
    if cfg.api_key:
        return DashboardDataRepository(
            HogQLQueryExecutor(cfg.api_key, host=cfg.host, project_id=cfg.project_id, timeout=cfg.timeout_seconds)
        )
    return None
