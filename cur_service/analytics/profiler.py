"""Compute the line item dataset profile at ingestion time."""
from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Sequence

import pandas as pd

from .models import (
    ColumnMetadata,
    ColumnProfile,
    CURRENCY,
    DatasetProfile,
    REGION,
    SOURCE_ROW_NUMBER,
    USAGE_END,
    USAGE_START,
)

logger = logging.getLogger(__name__)

_RANGED_TYPES = ("integer", "float", "date")


def profile_dataframe(
    df: pd.DataFrame,
    columns: Sequence[ColumnMetadata],
) -> DatasetProfile:
    """Profile a normalized line item frame.

    Values are expected in their stored form (epoch seconds for dates), so
    column min/max describe what the table holds. Besides per-column
    statistics the profile records the currencies and regions present and
    the overall usage span, which result validation checks against.
    """
    profiles: dict[str, ColumnProfile] = {}
    for meta in columns:
        if meta.safe_name == SOURCE_ROW_NUMBER or meta.safe_name not in df.columns:
            continue
        profiles[meta.original_name] = _profile_column(df[meta.safe_name], meta)

    profile = DatasetProfile(
        row_count=len(df),
        columns=profiles,
        currencies=_distinct_text(df, CURRENCY),
        regions=_distinct_text(df, REGION),
        usage_start_min=_epoch_bound(df, USAGE_START, "min"),
        usage_end_max=_epoch_bound(df, USAGE_END, "max"),
    )
    logger.info(
        "Profiled %d row(s): %d currenc(ies), %d region(s), usage %s to %s",
        profile.row_count, len(profile.currencies), len(profile.regions),
        profile.usage_start_min, profile.usage_end_max,
    )
    return profile


def _profile_column(series: pd.Series, meta: ColumnMetadata) -> ColumnProfile:
    total = len(series)
    non_null = series.dropna()
    min_value: Any = None
    max_value: Any = None
    if meta.logical_type in _RANGED_TYPES and not non_null.empty:
        numeric = pd.to_numeric(non_null, errors="coerce").dropna()
        if not numeric.empty:
            min_value = _to_json_safe(numeric.min())
            max_value = _to_json_safe(numeric.max())

    return ColumnProfile(
        logical_type=meta.logical_type,
        null_ratio=round((total - len(non_null)) / total, 6) if total else 0.0,
        distinct_count=int(non_null.nunique()),
        min_value=min_value,
        max_value=max_value,
    )


def _distinct_text(df: pd.DataFrame, column: str) -> list[str]:
    if column not in df.columns:
        return []
    return sorted({str(v) for v in df[column].dropna()})


def _epoch_bound(df: pd.DataFrame, column: str, which: str) -> dt.datetime | None:
    if column not in df.columns:
        return None
    values = pd.to_numeric(df[column], errors="coerce").dropna()
    if values.empty:
        return None
    bound = values.min() if which == "min" else values.max()
    return dt.datetime.fromtimestamp(int(bound), tz=dt.timezone.utc)


def _to_json_safe(val: Any) -> int | float | str | None:
    if val is None:
        return None
    try:
        f = float(val)
    except (ValueError, TypeError):
        return str(val)
    return int(f) if f.is_integer() else f
