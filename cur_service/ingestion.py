"""
Tabular file reading and normalization for line item ingestion.

Reads a cost-and-usage export (CSV, or XLSX through openpyxl) with pandas,
maps headers to safe SQLite column names, types each column and normalizes
every cell into its stored representation (epoch seconds for dates, 0/1 for
booleans). Materialization into SQLite lives in analytics/store.py.
"""
from __future__ import annotations

import datetime as dt
import logging
import re
from pathlib import Path
from typing import Any

import pandas as pd

from .analytics.errors import IngestLoadError
from .analytics.models import (
    ColumnMetadata,
    IDENTIFIER_COLUMNS,
    KNOWN_COLUMN_TYPES,
    LogicalType,
    REQUIRED_COLUMNS,
    SOURCE_ROW_NUMBER,
    SQLITE_TYPE_MAP,
    USAGE_END,
    USAGE_START,
)

logger = logging.getLogger(__name__)

_ISO_DATE_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}([T ]\d{2}:\d{2}(:\d{2}(\.\d+)?)?)?(Z|[+-]\d{2}:?\d{2})?$")
_TRUE_STRINGS = {"true", "t", "yes", "y", "1"}
_FALSE_STRINGS = {"false", "f", "no", "n", "0"}


# ============================================================================
# Reading
# ============================================================================

def _is_excel(path: Path) -> bool:
    return path.suffix.lower() in {".xlsx", ".xlsm"}


def read_line_items(source_path: str, nrows: int | None = None) -> pd.DataFrame:
    """Read the whole source (or its first ``nrows`` rows) into a DataFrame.

    Identifier columns are always read as text so that numeric-looking
    account ids keep their exact spelling.
    """
    path = Path(source_path)
    if _is_excel(path):
        header = pd.read_excel(path, sheet_name=0, nrows=0)
        dtypes = {c: str for c in header.columns if str(c).strip().lower() in IDENTIFIER_COLUMNS}
        return pd.read_excel(path, sheet_name=0, dtype=dtypes, nrows=nrows)

    header = pd.read_csv(path, nrows=0)
    dtypes = {c: str for c in header.columns if str(c).strip().lower() in IDENTIFIER_COLUMNS}
    return pd.read_csv(path, dtype=dtypes, nrows=nrows)


def preview_source(source_path: str, limit: int) -> list[dict[str, Any]]:
    """First ``limit`` rows of the raw source, untyped beyond what pandas infers."""
    df = read_line_items(source_path, nrows=limit)
    df = df.astype(object).where(pd.notnull(df), None)
    return [
        {str(k): _to_json_safe(v) for k, v in record.items()}
        for record in df.to_dict(orient="records")
    ]


def _to_json_safe(value: Any) -> Any:
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    if hasattr(value, "item"):
        return value.item()
    return value


# ============================================================================
# Type inference and cell normalization
# ============================================================================

def _infer_logical_type(series: pd.Series) -> LogicalType:
    """Infer a LogicalType from a raw pandas column."""
    non_null = series.dropna()
    if non_null.empty:
        return "string"

    if pd.api.types.is_bool_dtype(series):
        return "boolean"
    if pd.api.types.is_datetime64_any_dtype(series):
        return "date"
    if pd.api.types.is_integer_dtype(series):
        return "integer"
    if pd.api.types.is_float_dtype(series):
        return "float"

    sample = non_null.iloc[0]
    if isinstance(sample, bool):
        return "boolean" if non_null.map(lambda v: isinstance(v, bool)).all() else "string"
    if isinstance(sample, (dt.datetime, dt.date, pd.Timestamp)):
        return "date"

    as_text = non_null.astype(str).str.strip()
    if as_text.map(lambda v: bool(_ISO_DATE_PREFIX.match(v))).all():
        return "date"
    return "string"


def _to_epoch(value: Any) -> int:
    if isinstance(value, dt.date) and not isinstance(value, dt.datetime):
        value = dt.datetime(value.year, value.month, value.day)
    ts = pd.Timestamp(value)
    if ts is pd.NaT:
        raise ValueError(f"Invalid date: {value!r}")
    if ts.tzinfo is None:
        ts = ts.tz_localize("UTC")
    else:
        ts = ts.tz_convert("UTC")
    return int(ts.timestamp())


def _normalize_cell_value(value: Any, logical_type: LogicalType) -> Any:
    """Convert a cell value into its stored SQLite representation.

    Dates become UTC epoch seconds, booleans 0/1. Raises ValueError when a
    value does not fit its column type.
    """
    if value is None:
        return None
    try:
        if pd.isna(value):
            return None
    except (TypeError, ValueError):
        pass

    if logical_type == "date":
        if isinstance(value, str):
            value = value.strip()
        return _to_epoch(value)

    if logical_type == "boolean":
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_STRINGS:
                return 1
            if lowered in _FALSE_STRINGS:
                return 0
            raise ValueError(f"Invalid boolean: {value!r}")
        return 1 if bool(value) else 0

    if logical_type == "integer":
        return int(float(str(value).strip()))

    if logical_type == "float":
        return float(str(value).strip())

    text = str(value).strip()
    return text if text else None


def decode_cell_value(value: Any, logical_type: str) -> Any:
    """Inverse of ``_normalize_cell_value`` for values read back from SQLite."""
    if value is None:
        return None
    if logical_type == "date":
        return dt.datetime.fromtimestamp(int(value), tz=dt.timezone.utc)
    if logical_type == "boolean":
        return bool(value)
    return value


# ============================================================================
# Column mapping
# ============================================================================

def _build_safe_column_mapping(original_headers: list[str]) -> dict[str, str]:
    used: set[str] = set()
    mapping: dict[str, str] = {}

    for raw in original_headers:
        if raw == SOURCE_ROW_NUMBER:
            mapping[raw] = raw
            used.add(raw)
            continue

        base = re.sub(r"[^a-zA-Z0-9_]+", "_", str(raw).strip().lower())
        base = re.sub(r"_+", "_", base).strip("_")
        base = base or "col"
        if base[0].isdigit():
            base = f"c_{base}"

        unique = base
        suffix = 2
        while unique in used:
            unique = f"{base}_{suffix}"
            suffix += 1

        used.add(unique)
        mapping[str(raw)] = unique

    return mapping


def build_line_item_frame(df: pd.DataFrame) -> tuple[pd.DataFrame, list[ColumnMetadata]]:
    """Type and normalize a raw source frame for storage.

    Returns the normalized frame (columns renamed to safe names, hidden
    ``_source_row_number`` first) and the column metadata in storage order.
    Raises IngestLoadError on missing required columns or bad cells; a single
    bad row fails the whole load.
    """
    original_headers = [str(c) for c in df.columns]
    augmented_headers = [SOURCE_ROW_NUMBER, *original_headers]
    original_to_safe = _build_safe_column_mapping(augmented_headers)

    missing = [c for c in REQUIRED_COLUMNS if c not in original_to_safe.values()]
    if missing:
        raise IngestLoadError(f"Source is missing required column(s): {', '.join(missing)}")

    df2 = df.copy()
    df2.insert(0, SOURCE_ROW_NUMBER, range(1, len(df2) + 1))
    df2.columns = [original_to_safe[h] for h in augmented_headers]

    columns: list[ColumnMetadata] = []
    for header in augmented_headers:
        safe = original_to_safe[header]
        if header == SOURCE_ROW_NUMBER:
            logical: LogicalType = "integer"
        else:
            logical = KNOWN_COLUMN_TYPES.get(safe) or _infer_logical_type(df2[safe])
        columns.append(ColumnMetadata(
            column_name=header,
            logical_type=logical,
            sqlite_type=SQLITE_TYPE_MAP[logical],
            nullable=header != SOURCE_ROW_NUMBER,
            original_name=header,
            safe_name=safe,
        ))

    df2 = df2.astype(object).where(pd.notnull(df2), None)
    for meta in columns:
        try:
            df2[meta.safe_name] = df2[meta.safe_name].map(
                lambda v, lt=meta.logical_type: _normalize_cell_value(v, lt)
            )
        except (ValueError, TypeError, OverflowError) as exc:
            raise IngestLoadError(
                f"Column '{meta.original_name}' has a value that is not a valid {meta.logical_type}: {exc}"
            ) from exc
    df2 = df2.astype(object).where(pd.notnull(df2), None)

    for required_date in (USAGE_START, USAGE_END):
        null_rows = df2.index[df2[required_date].isna()]
        if len(null_rows):
            first = int(df2.loc[null_rows[0], SOURCE_ROW_NUMBER])
            raise IngestLoadError(f"Row {first} has no {required_date}")

    logger.info("Prepared %d line item row(s) across %d column(s)", len(df2), len(columns))
    return df2, columns
