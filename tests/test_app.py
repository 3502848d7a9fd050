"""HTTP contract tests: startup ingestion and status code mapping."""
from __future__ import annotations

import datetime as dt

import pytest
from fastapi.testclient import TestClient

from conftest import cur_row
from cur_service import app as app_module
from cur_service.analytics import TabularStore
from cur_service.analytics.errors import IngestSourceUnavailableError, QueryExecutionError
from cur_service.config import reset_settings, update_settings


def _iso(day: dt.date, hour: int = 0) -> str:
    return f"{day.isoformat()}T{hour:02d}:00:00Z"


@pytest.fixture
def client(db_path, write_cur_csv):
    today = dt.datetime.now(dt.timezone.utc).date()
    recent = today - dt.timedelta(days=2)
    rows = [
        cur_row(resource_id="i-a", account_id="111", start=_iso(recent), end=_iso(recent, 1), cost=1.0,
                line_item_type="DiscountedUsage", product_instance_type="m5.large"),
        cur_row(resource_id="i-b", account_id="111", start=_iso(recent), end=_iso(recent, 1), cost=2.0,
                currency="EUR", product_instance_type="t3.micro"),
        cur_row(resource_id="i-w", account_id="222", region="us-west-1", start=_iso(recent), end=_iso(recent, 1)),
    ]
    update_settings({"db_path": db_path, "source_path": write_cur_csv(rows)})
    with TestClient(app_module.app) as c:
        yield c
    reset_settings()


# ============================================================================
# Startup & Health
# ============================================================================

class TestStartup:
    def test_missing_source_aborts_startup(self, db_path, tmp_path):
        update_settings({"db_path": db_path, "source_path": str(tmp_path / "missing.csv")})
        try:
            with pytest.raises(IngestSourceUnavailableError):
                with TestClient(app_module.app):
                    pass
        finally:
            reset_settings()


class TestHealth:
    def test_healthy(self, client):
        r = client.get("/api/health")
        assert r.status_code == 200
        assert r.json()["store"]["status"] == "ok"

    def test_broken_store_is_503(self, client, tmp_path, monkeypatch):
        monkeypatch.setattr(app_module, "_store", TabularStore(str(tmp_path)))
        r = client.get("/api/health")
        assert r.status_code == 503
        assert r.json()["store"]["status"] == "error"


# ============================================================================
# Line Item Routes
# ============================================================================

class TestLineItemRoutes:
    def test_source_preview(self, client):
        r = client.get("/api/source", params={"limit": 2})
        assert r.status_code == 200
        assert len(r.json()["rows"]) == 2

    def test_rows(self, client):
        r = client.get("/api/rows")
        assert r.status_code == 200
        assert r.json()["total"] == 3

    def test_region_found(self, client):
        r = client.get("/api/region/us-west-1")
        assert r.status_code == 200
        assert [item["resource_id"] for item in r.json()["items"]] == ["i-w"]

    def test_region_not_found(self, client):
        r = client.get("/api/region/eu-central-1")
        assert r.status_code == 404
        assert r.json()["detail"]["code"] == "NOT_FOUND"

    def test_query_failure_is_500(self, client, monkeypatch):
        def broken(compiled):
            raise QueryExecutionError("database disk image is malformed")

        monkeypatch.setattr(app_module._store, "execute", broken)
        r = client.get("/api/region/us-east-2")
        assert r.status_code == 500
        assert r.json()["detail"]["code"] == "QUERY_FAILED"


# ============================================================================
# Cost Routes
# ============================================================================

class TestCostRoutes:
    def test_cost_30_days(self, client):
        r = client.get("/api/costs/region/us-east-2")
        assert r.status_code == 200
        assert [(i["resource_id"], i["currency"]) for i in r.json()["items"]] == [("i-a", "USD"), ("i-b", "EUR")]

    def test_resource_totals(self, client):
        r = client.get("/api/costs/region/us-east-2/resources")
        assert r.status_code == 200
        assert [i["total_cost"] for i in r.json()["items"]] == [1.0, 2.0]

    def test_summary_keeps_currencies_apart(self, client):
        r = client.get("/api/costs/region/us-east-2/total")
        assert r.status_code == 200
        summary = r.json()["summary"]
        assert summary["total_cost_by_currency"] == {"EUR": 2.0, "USD": 1.0}
        assert summary["resource_count"] == 2

    def test_summary_outside_window_is_404(self, client):
        r = client.get("/api/costs/region/us-east-2/total", params={"from": "2020-01-01", "until": "2020-12-31"})
        assert r.status_code == 404

    def test_invalid_date_is_400(self, client):
        r = client.get("/api/costs/region/us-east-2/resources", params={"from": "yesterday"})
        assert r.status_code == 400
        assert r.json()["detail"]["code"] == "INVALID_DATE"


# ============================================================================
# Enrichment Routes
# ============================================================================

class TestEnrichmentRoutes:
    def test_discover_and_enrich(self, client):
        r = client.get("/api/resources/cost-discount-info")
        assert r.status_code == 200
        body = r.json()
        assert body["total"] == 3
        first = body["records"][0]
        assert first["resource_id"] == "i-a"
        assert first["has_discount"] is True
        assert first["snapshot"]["instance_type"] == "m5.large"

    def test_enrich_given_ids(self, client):
        r = client.post("/api/resources/cost-discount-info", json={"resource_ids": ["i-b"], "account_ids": ["111"]})
        assert r.status_code == 200
        assert r.json()["records"][0]["currency"] == "EUR"

    def test_no_ids_is_404(self, client):
        r = client.post("/api/resources/cost-discount-info", json={"resource_ids": [], "account_ids": ["111"]})
        assert r.status_code == 404


# ============================================================================
# Root
# ============================================================================

class TestRoot:
    def test_service_info(self, client):
        r = client.get("/")
        assert r.status_code == 200
        assert set(r.json()) == {"service", "status", "timestamp", "table_name"}

    def test_no_cross_origin_headers(self, client):
        r = client.get("/api/health", headers={"Origin": "http://localhost:5173"})
        assert "access-control-allow-origin" not in r.headers
