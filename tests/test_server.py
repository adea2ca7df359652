"""Tests for the dashboard API (backend queries faked)."""
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from backend.analytics_dashboard import server
from backend.analytics_dashboard.repository import DashboardDataRepository, HogQLQueryExecutor, QueryError

from .conftest import FakeExecutor


@pytest.fixture
def client():
    return TestClient(server.app)


@pytest.fixture
def fake_repository(monkeypatch, mobile_current_trend, mobile_counts, web_users):
    executor = FakeExecutor(
        {
            "SELECT event, count(DISTINCT person_id)": web_users,
            "toStartOfWeek(timestamp) AS period, event, count() AS cnt": mobile_current_trend,
            "SELECT event, count() AS cnt": mobile_counts,
        }
    )
    repository = DashboardDataRepository(executor)
    monkeypatch.setattr(server, "repository", repository)
    return repository


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_ranges(client):
    r = client.get("/ranges")
    assert r.status_code == 200
    body = r.json()
    assert body["default"] == "90D"
    assert [item["label"] for item in body["ranges"]] == ["7D", "30D", "90D", "6M", "12M"]
    assert body["ranges"][0]["days"] == 7


def test_mobile_view(client, fake_repository):
    r = client.get("/views/mobile", params={"range": "30D"})
    assert r.status_code == 200
    body = r.json()
    assert body["source"] == "FakeExecutor"
    assert body["data"]["view"] == "mobile"
    assert body["data"]["range"]["label"] == "30D"
    assert body["data"]["totals"]["paywall_shown"] == 100
    assert len(fake_repository.executor.queries) == 3


def test_web_view_defaults_to_90_days(client, fake_repository):
    r = client.get("/views/web")
    assert r.status_code == 200
    data = r.json()["data"]
    assert data["range"]["label"] == "90D"
    assert data["totals"]["$pageview"] == 1000
    stages = data["sections"]["overview"]["funnels"][0]["stages"]
    assert stages[1]["conversionRate"] == pytest.approx(20.0)


def test_unknown_range_is_rejected(client, fake_repository):
    r = client.get("/views/mobile", params={"range": "2Y"})
    assert r.status_code == 400
    assert "Unknown range" in r.json()["detail"]


def test_missing_repository(client, monkeypatch):
    monkeypatch.setattr(server, "repository", None)
    r = client.get("/views/web")
    assert r.status_code == 503


def test_backend_failure_maps_to_bad_gateway(client, monkeypatch):
    failing = DashboardDataRepository(FakeExecutor(error=QueryError("Query timed out", status=504)))
    monkeypatch.setattr(server, "repository", failing)
    r = client.get("/views/mobile")
    assert r.status_code == 502
    assert r.json()["detail"] == "Query timed out"


def test_backend_timeout_maps_to_bad_gateway(client, monkeypatch):
    slow = DashboardDataRepository(HogQLQueryExecutor("phx_secret", timeout=1))
    monkeypatch.setattr(server, "repository", slow)
    with patch("backend.analytics_dashboard.repository.urllib.request.urlopen", side_effect=TimeoutError("timed out")):
        r = client.get("/views/mobile")
    assert r.status_code == 502
    assert "timed out" in r.json()["detail"]
