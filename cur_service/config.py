from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any
import os

from dotenv import load_dotenv

load_dotenv()


def _getenv_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    db_path: str
    source_path: str
    table_name: str
    scan_row_cap: int
    cost_30_day_group_cap: int
    enrichment_max_concurrency: int
    default_currency: str
    discount_window_days: int
    cost_window_days: int
    summary_from_date: str


settings = Settings(
    db_path=os.getenv("DB_PATH", "cur.db"),
    source_path=os.getenv("CUR_SOURCE_PATH", "data/cur2.csv"),
    table_name=os.getenv("CUR_TABLE_NAME", "cur2"),
    scan_row_cap=_getenv_int("SCAN_ROW_CAP", 500),
    cost_30_day_group_cap=_getenv_int("COST_30_DAY_GROUP_CAP", 2),
    enrichment_max_concurrency=_getenv_int("ENRICHMENT_MAX_CONCURRENCY", 8),
    default_currency=os.getenv("DEFAULT_CURRENCY", "USD"),
    discount_window_days=_getenv_int("DISCOUNT_WINDOW_DAYS", 5),
    cost_window_days=_getenv_int("COST_WINDOW_DAYS", 30),
    summary_from_date=os.getenv("SUMMARY_FROM_DATE", "2023-01-01"),
)

_INT_KEYS = {
    "scan_row_cap",
    "cost_30_day_group_cap",
    "enrichment_max_concurrency",
    "discount_window_days",
    "cost_window_days",
}

_RUNTIME_OVERRIDES: dict[str, Any] = {}


def get_settings() -> Settings:
    if not _RUNTIME_OVERRIDES:
        return settings
    return replace(settings, **_RUNTIME_OVERRIDES)


def update_settings(overrides: dict[str, Any]) -> Settings:
    normalized: dict[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        if key not in Settings.__dataclass_fields__:
            raise KeyError(f"Unknown setting: {key}")
        normalized[key] = int(value) if key in _INT_KEYS else value
    _RUNTIME_OVERRIDES.update(normalized)
    return get_settings()


def reset_settings() -> Settings:
    _RUNTIME_OVERRIDES.clear()
    return settings
