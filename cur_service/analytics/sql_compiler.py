"""Compile fixed line item queries into parameterized SQL + params.

Key invariant: all date filtering is compiled to epoch ranges by this
module. Callers pass calendar dates; a window [start, end] always means
``col >= start 00:00 UTC AND col < (end + 1 day) 00:00 UTC``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Mapping

from .errors import SqlCompilationError
from .models import (
    ACCOUNT_ID,
    AggregationRequest,
    ColumnMetadata,
    CURRENCY,
    DATE_ONLY_OPS,
    DISCOUNTED_USAGE,
    LINE_ITEM_TYPE,
    REGION,
    RESOURCE_ID,
    ScanFilter,
    SOURCE_ROW_NUMBER,
    UNBLENDED_COST,
    USAGE_END,
    USAGE_START,
)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_SECONDS_PER_DAY = 86400


@dataclass(frozen=True)
class CompiledSql:
    sql: str
    parameters: list[Any]


# ------------------------------------------------------------------
# Identifier and epoch helpers
# ------------------------------------------------------------------

def quote_identifier(name: str) -> str:
    if not _IDENTIFIER.match(name):
        raise SqlCompilationError(f"Unsafe identifier: {name!r}")
    return f'"{name}"'


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError as exc:
        raise SqlCompilationError(f"Invalid ISO date: {value!r}") from exc


def day_start_epoch(day: date) -> int:
    """UTC epoch seconds at midnight of ``day``."""
    return int(datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp())


def trailing_window(today: date, days: int) -> tuple[date, date]:
    """Inclusive calendar window ending today: [today - days, today]."""
    return today - timedelta(days=days), today


def compile_on_or_after(safe_col: str, start_date: Any) -> tuple[str, list[Any]]:
    return f"{safe_col} >= ?", [day_start_epoch(_as_date(start_date))]


def compile_on_or_before(safe_col: str, end_date: Any) -> tuple[str, list[Any]]:
    """Inclusive of the whole end day (half-open: end_date + 1 day)."""
    return f"{safe_col} < ?", [day_start_epoch(_as_date(end_date)) + _SECONDS_PER_DAY]


def compile_between_dates(safe_col: str, start_date: Any, end_date: Any) -> tuple[str, list[Any]]:
    """Inclusive of both endpoints (half-open: end_date + 1 day)."""
    start_epoch = day_start_epoch(_as_date(start_date))
    end_epoch = day_start_epoch(_as_date(end_date)) + _SECONDS_PER_DAY
    return f"({safe_col} >= ? AND {safe_col} < ?)", [start_epoch, end_epoch]


def _compile_in(safe_col: str, values: Iterable[Any]) -> tuple[str, list[Any]]:
    params = list(values)
    if not params:
        return "1 = 0", []
    placeholders = ", ".join(["?"] * len(params))
    return f"{safe_col} IN ({placeholders})", params


# ------------------------------------------------------------------
# Filter compilation
# ------------------------------------------------------------------

def _resolve_column(name: str, columns: Mapping[str, ColumnMetadata]) -> ColumnMetadata:
    if name in columns:
        return columns[name]
    for meta in columns.values():
        if meta.original_name == name:
            return meta
    raise SqlCompilationError(f"Unknown column: {name}")


def _compile_single_filter(
    filt: ScanFilter,
    columns: Mapping[str, ColumnMetadata],
) -> tuple[str, list[Any]]:
    meta = _resolve_column(filt.column, columns)
    safe_col = quote_identifier(meta.safe_name)
    op = filt.operator

    if op in {"is_null", "is_not_null"}:
        kw = "IS NOT NULL" if op == "is_not_null" else "IS NULL"
        return f"{safe_col} {kw}", []

    if filt.value is None:
        raise SqlCompilationError(f"Value required for operator '{op}'")

    if op in DATE_ONLY_OPS and meta.logical_type != "date":
        raise SqlCompilationError(
            f"Operator '{op}' not valid for {meta.logical_type} column '{filt.column}'"
        )

    if op == "on_or_after":
        return compile_on_or_after(safe_col, filt.value)

    if op == "on_or_before":
        return compile_on_or_before(safe_col, filt.value)

    if op == "between_dates":
        if not isinstance(filt.value, list) or len(filt.value) != 2:
            raise SqlCompilationError("between_dates requires a list of two ISO dates")
        return compile_between_dates(safe_col, filt.value[0], filt.value[1])

    if op == "in":
        values = filt.value if isinstance(filt.value, list) else [filt.value]
        return _compile_in(safe_col, values)

    value = filt.value
    if meta.logical_type == "date":
        value = day_start_epoch(_as_date(value))
    elif meta.logical_type == "boolean" and isinstance(value, bool):
        value = int(value)

    if op == "eq":
        return f"{safe_col} = ?", [value]
    if op == "neq":
        return f"{safe_col} != ?", [value]

    raise SqlCompilationError(f"Unsupported operator: {op}")


def compile_where(
    filters: list[ScanFilter],
    columns: Mapping[str, ColumnMetadata],
) -> tuple[str, list[Any]]:
    if not filters:
        return "", []

    clauses: list[str] = []
    params: list[Any] = []
    for f in filters:
        clause, p = _compile_single_filter(f, columns)
        clauses.append(clause)
        params.extend(p)

    return "WHERE " + " AND ".join(clauses), params


# ------------------------------------------------------------------
# Store-level statements
# ------------------------------------------------------------------

def compile_scan(
    filters: list[ScanFilter],
    *,
    table_name: str,
    columns: Mapping[str, ColumnMetadata],
    limit: int,
) -> CompiledSql:
    """Filtered rows in insertion order, at most ``limit`` of them."""
    table = quote_identifier(table_name)
    where_sql, params = compile_where(filters, columns)
    order_col = quote_identifier(SOURCE_ROW_NUMBER)
    sql = f"SELECT * FROM {table} {where_sql} ORDER BY {order_col} ASC LIMIT ?;"
    return CompiledSql(sql=sql, parameters=[*params, max(1, limit)])


def compile_row_count(*, table_name: str) -> CompiledSql:
    return CompiledSql(sql=f"SELECT COUNT(1) AS count FROM {quote_identifier(table_name)};", parameters=[])


def compile_distinct_identifiers(*, table_name: str) -> CompiledSql:
    table = quote_identifier(table_name)
    account = quote_identifier(ACCOUNT_ID)
    resource = quote_identifier(RESOURCE_ID)
    sql = (
        f"SELECT DISTINCT {account} AS account_id, {resource} AS resource_id "
        f"FROM {table} "
        f"WHERE {resource} IS NOT NULL AND {account} IS NOT NULL;"
    )
    return CompiledSql(sql=sql, parameters=[])


# ------------------------------------------------------------------
# Aggregate shapes
# ------------------------------------------------------------------

def _request_where(
    request: AggregationRequest,
    *,
    window_on_end_only: bool,
    per_resource: bool,
) -> tuple[str, list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []

    if request.region is not None:
        clauses.append(f"{quote_identifier(REGION)} = ?")
        params.append(request.region)

    start_col = quote_identifier(USAGE_START)
    end_col = quote_identifier(USAGE_END)
    if window_on_end_only:
        if request.window_start is not None and request.window_end is not None:
            clause, p = compile_between_dates(end_col, request.window_start, request.window_end)
            clauses.append(clause)
            params.extend(p)
    else:
        if request.window_start is not None:
            clause, p = compile_on_or_after(start_col, request.window_start)
            clauses.append(clause)
            params.extend(p)
        if request.window_end is not None:
            clause, p = compile_on_or_before(end_col, request.window_end)
            clauses.append(clause)
            params.extend(p)

    if per_resource:
        clauses.append(f"{quote_identifier(RESOURCE_ID)} IS NOT NULL")
        clauses.append(f"{quote_identifier(ACCOUNT_ID)} IS NOT NULL")

    if not clauses:
        return "", params
    return "WHERE " + " AND ".join(clauses), params


def compile_grouped_cost(
    request: AggregationRequest,
    *,
    table_name: str,
    cost_alias: str,
    window_on_end_only: bool,
    limit: int | None = None,
) -> CompiledSql:
    """SUM(unblended cost) grouped by ``request.group_by``, ordered by the group keys.

    ``window_on_end_only`` selects the trailing-window semantics (usage-end
    within the window) over the span semantics (usage-start on or after the
    window start and usage-end on or before the window end).
    """
    if not request.group_by:
        raise SqlCompilationError("grouped cost requires at least one group_by column")
    if not _IDENTIFIER.match(cost_alias):
        raise SqlCompilationError(f"Unsafe alias: {cost_alias!r}")

    table = quote_identifier(table_name)
    group_cols = [quote_identifier(c) for c in request.group_by]
    where_sql, params = _request_where(
        request, window_on_end_only=window_on_end_only, per_resource=RESOURCE_ID in request.group_by
    )
    group_sql = ", ".join(group_cols)

    sql = (
        f"SELECT {group_sql}, SUM({quote_identifier(UNBLENDED_COST)}) AS {cost_alias} "
        f"FROM {table} "
        f"{where_sql} "
        f"GROUP BY {group_sql} "
        f"ORDER BY {group_sql}"
    )
    if limit is not None:
        sql += " LIMIT ?"
        params.append(max(1, limit))
    return CompiledSql(sql=sql + ";", parameters=params)


def compile_cost_summary(request: AggregationRequest, *, table_name: str) -> CompiledSql:
    """Distinct accounts, rows, distinct resources and per-currency totals in one statement.

    Every output row repeats the three counts; one row per currency. No rows
    means nothing matched.
    """
    table = quote_identifier(table_name)
    where_sql, params = _request_where(request, window_on_end_only=False, per_resource=False)
    account = quote_identifier(ACCOUNT_ID)
    resource = quote_identifier(RESOURCE_ID)
    currency = quote_identifier(CURRENCY)
    cost = quote_identifier(UNBLENDED_COST)

    sql = (
        f"WITH matched AS (SELECT {account} AS account_id, {resource} AS resource_id, "
        f"{currency} AS currency, {cost} AS cost FROM {table} {where_sql}) "
        f"SELECT "
        f"(SELECT COUNT(DISTINCT account_id) FROM matched) AS account_count, "
        f"(SELECT COUNT(1) FROM matched) AS row_count, "
        f"(SELECT COUNT(DISTINCT resource_id) FROM matched) AS resource_count, "
        f"currency, SUM(cost) AS total_cost "
        f"FROM matched GROUP BY currency ORDER BY currency;"
    )
    return CompiledSql(sql=sql, parameters=params)


# ------------------------------------------------------------------
# Per-resource probes
# ------------------------------------------------------------------

def _resource_scope(resource_id: str, account_ids: Iterable[str]) -> tuple[list[str], list[Any]]:
    in_clause, in_params = _compile_in(quote_identifier(ACCOUNT_ID), sorted(account_ids))
    return [f"{quote_identifier(RESOURCE_ID)} = ?", in_clause], [resource_id, *in_params]


def compile_discount_probe(
    resource_id: str,
    account_ids: Iterable[str],
    *,
    table_name: str,
    today: date,
    window_days: int,
) -> CompiledSql:
    clauses, params = _resource_scope(resource_id, account_ids)
    start, end = trailing_window(today, window_days)
    window_clause, window_params = compile_between_dates(quote_identifier(USAGE_END), start, end)
    sql = (
        f"SELECT COUNT(1) > 0 AS has_discount FROM {quote_identifier(table_name)} "
        f"WHERE {quote_identifier(LINE_ITEM_TYPE)} = ? AND {' AND '.join(clauses)} AND {window_clause};"
    )
    return CompiledSql(sql=sql, parameters=[DISCOUNTED_USAGE, *params, *window_params])


def compile_resource_cost_probe(
    resource_id: str,
    account_ids: Iterable[str],
    *,
    table_name: str,
    today: date,
    window_days: int,
) -> CompiledSql:
    clauses, params = _resource_scope(resource_id, account_ids)
    start, end = trailing_window(today, window_days)
    window_clause, window_params = compile_between_dates(quote_identifier(USAGE_END), start, end)
    currency = quote_identifier(CURRENCY)
    sql = (
        f"SELECT {currency} AS currency, SUM({quote_identifier(UNBLENDED_COST)}) AS cost "
        f"FROM {quote_identifier(table_name)} "
        f"WHERE {' AND '.join(clauses)} AND {window_clause} "
        f"GROUP BY {currency} ORDER BY {currency};"
    )
    return CompiledSql(sql=sql, parameters=[*params, *window_params])


def compile_snapshot_probe(
    resource_id: str,
    account_ids: Iterable[str],
    *,
    table_name: str,
) -> CompiledSql:
    clauses, params = _resource_scope(resource_id, account_ids)
    sql = (
        f"SELECT * FROM {quote_identifier(table_name)} "
        f"WHERE {' AND '.join(clauses)} "
        f"ORDER BY {quote_identifier(USAGE_END)} DESC, {quote_identifier(SOURCE_ROW_NUMBER)} DESC "
        f"LIMIT 1;"
    )
    return CompiledSql(sql=sql, parameters=params)
