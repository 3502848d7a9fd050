"""Shared fixtures: cost-and-usage rows written to CSV sources."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Callable

import pandas as pd
import pytest

CUR_HEADERS = [
    "line_item_resource_id",
    "line_item_usage_account_id",
    "product_from_region_code",
    "line_item_usage_start_date",
    "line_item_usage_end_date",
    "line_item_unblended_cost",
    "line_item_currency_code",
    "line_item_line_item_type",
]


def cur_row(
    resource_id: str | None = "i-aaa",
    account_id: str | None = "111111111111",
    region: str | None = "us-east-2",
    start: str = "2024-01-01T00:00:00Z",
    end: str = "2024-01-01T01:00:00Z",
    cost: float | None = 1.0,
    currency: str | None = "USD",
    line_item_type: str = "Usage",
    **extra: Any,
) -> dict[str, Any]:
    row = {
        "line_item_resource_id": resource_id,
        "line_item_usage_account_id": account_id,
        "product_from_region_code": region,
        "line_item_usage_start_date": start,
        "line_item_usage_end_date": end,
        "line_item_unblended_cost": cost,
        "line_item_currency_code": currency,
        "line_item_line_item_type": line_item_type,
    }
    row.update(extra)
    return row


@pytest.fixture
def write_cur_csv(tmp_path: Path) -> Callable[..., str]:
    """Write rows to a CSV file under tmp_path and return its path."""
    def _write(rows: list[dict[str, Any]], name: str = "cur2.csv") -> str:
        df = pd.DataFrame(rows)
        for header in CUR_HEADERS:
            if header not in df.columns:
                df[header] = None
        path = tmp_path / name
        df.to_csv(path, index=False)
        return str(path)
    return _write


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    return str(tmp_path / "cur.db")
