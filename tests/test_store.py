"""Contract tests for the line item store.

Verifies that:
- Ingestion is idempotent and reads the source at most once
- A failed load leaves no table behind
- Scans are capped and ordered by insertion
- The health probe reports a broken store
"""
from __future__ import annotations

import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

import pytest

from conftest import cur_row
from cur_service.analytics import MetadataRepository, ScanFilter, TabularStore
from cur_service.analytics.errors import (
    IngestLoadError,
    IngestSourceUnavailableError,
    QueryExecutionError,
)
from cur_service.ingestion import read_line_items


class CountingReader:
    def __init__(self) -> None:
        self.calls = 0

    def __call__(self, path: str):
        self.calls += 1
        return read_line_items(path)


# ============================================================================
# Ingestion
# ============================================================================

class TestEnsureTable:
    def test_creates_table(self, db_path, write_cur_csv):
        source = write_cur_csv([cur_row(resource_id="i-1"), cur_row(resource_id="i-2")])
        store = TabularStore(db_path)
        report = store.ensure_table(source)
        assert report.created is True
        assert report.row_count == 2
        assert store.table_exists()
        assert store.row_count() == 2

    def test_idempotent_within_process(self, db_path, write_cur_csv):
        source = write_cur_csv([cur_row()])
        reader = CountingReader()
        store = TabularStore(db_path, reader=reader)
        first = store.ensure_table(source)
        second = store.ensure_table(source)
        assert reader.calls == 1
        assert second.created is False
        assert second.row_count == first.row_count
        assert [c.safe_name for c in second.columns] == [c.safe_name for c in first.columns]

    def test_idempotent_across_store_instances(self, db_path, write_cur_csv):
        source = write_cur_csv([cur_row(), cur_row()])
        TabularStore(db_path).ensure_table(source)
        reader = CountingReader()
        report = TabularStore(db_path, reader=reader).ensure_table(source)
        assert reader.calls == 0
        assert report.created is False
        assert report.row_count == 2

    def test_missing_source_raises(self, db_path, tmp_path):
        store = TabularStore(db_path)
        with pytest.raises(IngestSourceUnavailableError):
            store.ensure_table(str(tmp_path / "missing.csv"))
        assert not store.table_exists()

    def test_bad_row_leaves_no_table(self, db_path, write_cur_csv):
        source = write_cur_csv([cur_row(), cur_row(start="not-a-date")])
        store = TabularStore(db_path)
        with pytest.raises(IngestLoadError):
            store.ensure_table(source)
        assert not store.table_exists()

    def test_failed_write_rolls_back(self, db_path, write_cur_csv, monkeypatch):
        def boom(self, table_name, columns):
            raise sqlite3.OperationalError("disk I/O error")

        monkeypatch.setattr(MetadataRepository, "register_columns", boom)
        store = TabularStore(db_path)
        with pytest.raises(IngestLoadError):
            store.ensure_table(write_cur_csv([cur_row()]))
        assert not store.table_exists()

    def test_oversized_integer_is_load_error(self, db_path, write_cur_csv):
        source = write_cur_csv([cur_row(), cur_row(term_in_months="99999999999999999999")])
        store = TabularStore(db_path)
        with pytest.raises(IngestLoadError):
            store.ensure_table(source)
        assert not store.table_exists()

    def test_concurrent_calls_on_one_store_create_once(self, db_path, write_cur_csv):
        source = write_cur_csv([cur_row(resource_id=f"i-{i}") for i in range(50)])
        reader = CountingReader()
        store = TabularStore(db_path, reader=reader)
        with ThreadPoolExecutor(max_workers=6) as pool:
            reports = list(pool.map(lambda _: store.ensure_table(source), range(6)))
        assert sum(r.created for r in reports) == 1
        assert reader.calls == 1
        assert {r.row_count for r in reports} == {50}

    def test_concurrent_stores_on_one_file_create_once(self, db_path, write_cur_csv):
        source = write_cur_csv([cur_row(resource_id=f"i-{i}") for i in range(50)])
        with ThreadPoolExecutor(max_workers=6) as pool:
            reports = list(pool.map(lambda _: TabularStore(db_path).ensure_table(source), range(6)))
        assert sum(r.created for r in reports) == 1
        assert TabularStore(db_path).row_count() == 50

    def test_unreadable_source_is_load_error(self, db_path, write_cur_csv):
        def broken_reader(path: str):
            raise ValueError("unexpected end of data")

        store = TabularStore(db_path, reader=broken_reader)
        with pytest.raises(IngestLoadError):
            store.ensure_table(write_cur_csv([cur_row()]))

    def test_registers_columns_and_profile(self, db_path, write_cur_csv):
        store = TabularStore(db_path)
        store.ensure_table(write_cur_csv([cur_row(cost=1.5), cur_row(cost=2.5)]))
        columns = store.columns()
        assert columns["line_item_usage_start_date"].logical_type == "date"
        profile = store.profile()
        assert profile is not None
        assert profile.row_count == 2
        assert profile.columns["line_item_unblended_cost"].max_value == pytest.approx(2.5)


# ============================================================================
# Scans
# ============================================================================

class TestScan:
    def test_region_filter_example(self, db_path, write_cur_csv):
        store = TabularStore(db_path)
        store.ensure_table(write_cur_csv([
            cur_row(resource_id="i-east", region="us-east-2"),
            cur_row(resource_id="i-west", region="us-west-1"),
        ]))

        east = store.scan([ScanFilter(column="product_from_region_code", operator="eq", value="us-east-2")])
        assert not east.failed
        assert [item.resource_id for item in east.data] == ["i-east"]

        none = store.scan([ScanFilter(column="product_from_region_code", operator="eq", value="eu-central-1")])
        assert not none.failed
        assert none.data == []

    def test_row_cap_keeps_first_rows_in_insertion_order(self, db_path, write_cur_csv):
        rows = [cur_row(resource_id="i-west", region="us-west-1") for _ in range(3)]
        rows += [cur_row(resource_id=f"i-{i:05d}") for i in range(10_000)]
        store = TabularStore(db_path)
        store.ensure_table(write_cur_csv(rows))

        result = store.scan([ScanFilter(column="product_from_region_code", operator="eq", value="us-east-2")])
        assert len(result.data) == 500
        assert [item.resource_id for item in result.data] == [f"i-{i:05d}" for i in range(500)]
        assert [item.source_row_number for item in result.data] == list(range(4, 504))

    def test_limit_never_exceeds_cap(self, db_path, write_cur_csv):
        store = TabularStore(db_path, row_cap=3)
        store.ensure_table(write_cur_csv([cur_row() for _ in range(5)]))
        assert len(store.scan(limit=100).data) == 3
        assert len(store.scan(limit=2).data) == 2

    def test_decodes_typed_values(self, db_path, write_cur_csv):
        store = TabularStore(db_path)
        store.ensure_table(write_cur_csv([cur_row(start="2024-01-01T00:00:00Z", resourcename="web-1")]))
        item = store.scan().data[0]
        assert item.usage_start == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert item.account_id == "111111111111"
        assert item.attributes["resourcename"] == "web-1"

    def test_scan_before_ingestion_reports_error(self, db_path):
        result = TabularStore(db_path).scan()
        assert result.failed
        assert isinstance(result.error, QueryExecutionError)
        assert result.data == []


# ============================================================================
# Health
# ============================================================================

class TestHealthCheck:
    def test_healthy_store(self, db_path):
        assert TabularStore(db_path).health_check() is True

    def test_directory_path_is_unhealthy(self, tmp_path):
        assert TabularStore(str(tmp_path)).health_check() is False
