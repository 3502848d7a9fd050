"""Contract tests for dataset profiling and result validation."""
from __future__ import annotations

from datetime import datetime, timezone

import pandas as pd

from conftest import cur_row
from cur_service.analytics.models import CostSummary, DatasetProfile
from cur_service.analytics.profiler import profile_dataframe
from cur_service.analytics.validator import validate_summary
from cur_service.ingestion import build_line_item_frame


# ============================================================================
# Profiler
# ============================================================================

class TestProfiler:
    def _profile(self, rows) -> DatasetProfile:
        frame, columns = build_line_item_frame(pd.DataFrame(rows))
        return profile_dataframe(frame, columns)

    def test_profile_basic(self):
        profile = self._profile([
            cur_row(resource_id="i-a", cost=1.0),
            cur_row(resource_id="i-b", cost=None),
        ])
        assert profile.row_count == 2
        assert "_source_row_number" not in profile.columns
        cost = profile.columns["line_item_unblended_cost"]
        assert cost.null_ratio == 0.5
        assert cost.min_value == 1
        assert profile.columns["line_item_resource_id"].distinct_count == 2

    def test_records_currencies_regions_and_span(self):
        profile = self._profile([
            cur_row(currency="USD", region="us-east-2", start="2024-01-01T00:00:00Z", end="2024-01-01T01:00:00Z"),
            cur_row(currency="EUR", region="eu-west-1", start="2024-02-01T00:00:00Z", end="2024-02-03T00:00:00Z"),
        ])
        assert profile.currencies == ["EUR", "USD"]
        assert profile.regions == ["eu-west-1", "us-east-2"]
        assert profile.usage_start_min == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert profile.usage_end_max == datetime(2024, 2, 3, tzinfo=timezone.utc)


# ============================================================================
# Result Validation
# ============================================================================

class TestValidateSummary:
    def test_consistent_summary_has_no_warnings(self):
        profile = DatasetProfile(row_count=10, currencies=["USD"])
        summary = CostSummary(account_count=1, row_count=3, resource_count=2, total_cost_by_currency={"USD": 4.0})
        assert validate_summary(summary, profile) == []

    def test_flags_unknown_currency_and_counts(self):
        profile = DatasetProfile(row_count=2, currencies=["USD"])
        summary = CostSummary(account_count=4, row_count=3, resource_count=1, total_cost_by_currency={"JPY": 1.0})
        warnings = validate_summary(summary, profile)
        assert len(warnings) == 3
        assert any("JPY" in w for w in warnings)

    def test_without_profile(self):
        assert validate_summary(CostSummary(), None) == []
