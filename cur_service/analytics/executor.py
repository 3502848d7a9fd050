"""Run the fixed cost aggregations against the line item store."""
from __future__ import annotations

import datetime as dt
import logging
from typing import Any, Callable, Iterable, TypeVar

from .errors import QueryExecutionError
from .models import (
    ACCOUNT_ID,
    AggregationRequest,
    CostSummary,
    CURRENCY,
    CurrencyCost,
    DATASOURCE,
    INSTANCE_TYPE,
    LineItem,
    PLATFORM,
    PRICING_PLAN_COLUMNS,
    PricingPlan,
    QueryResult,
    REGION,
    RESOURCE_ID,
    RESOURCE_NAME,
    RESOURCE_TYPE,
    ResourceCost,
    ResourceSnapshot,
    ResourceTotalCost,
    ScanFilter,
    TENANCY,
    TERM_IN_MONTHS,
    UID,
)
from .sql_compiler import (
    compile_cost_summary,
    compile_discount_probe,
    compile_grouped_cost,
    compile_resource_cost_probe,
    compile_snapshot_probe,
    trailing_window,
)
from .store import TabularStore
from .validator import validate_request, validate_summary

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utc_today() -> dt.date:
    return dt.datetime.now(dt.timezone.utc).date()


class AggregationExecutor:
    """Issues the pre-defined aggregate queries and per-resource probes.

    The four aggregate shapes never raise on query failure: they log and
    return a QueryResult with empty data and the error attached. The probes
    raise QueryExecutionError and leave defaulting to the caller.
    """

    def __init__(
        self,
        store: TabularStore,
        *,
        today: Callable[[], dt.date] = utc_today,
        cost_window_days: int = 30,
        discount_window_days: int = 5,
        cost_30_day_group_cap: int = 2,
    ) -> None:
        self._store = store
        self._today = today
        self._cost_window_days = cost_window_days
        self._discount_window_days = discount_window_days
        self._group_cap = cost_30_day_group_cap

    @property
    def store(self) -> TabularStore:
        return self._store

    def _run(self, label: str, empty: T, fn: Callable[[], T]) -> QueryResult[T]:
        try:
            return QueryResult(data=fn())
        except QueryExecutionError as exc:
            logger.error("%s failed: %s", label, exc)
            return QueryResult(data=empty, error=exc)
        except (ValueError, TypeError) as exc:
            logger.error("%s returned undecodable rows: %s", label, exc)
            return QueryResult(data=empty, error=QueryExecutionError(str(exc)))

    # ------------------------------------------------------------------
    # Aggregate shapes
    # ------------------------------------------------------------------

    def by_region(self, region: str) -> QueryResult[list[LineItem]]:
        result = self._store.scan([ScanFilter(column=REGION, operator="eq", value=region)])
        logger.info("Region query returned %d row(s) for region %s", len(result.data), region)
        return result

    def cost_30_days(self, region: str) -> QueryResult[list[ResourceCost]]:
        start, end = trailing_window(self._today(), self._cost_window_days)
        request = AggregationRequest(region=region, window_start=start, window_end=end)

        def run() -> list[ResourceCost]:
            validate_request(request, self._store.columns())
            compiled = compile_grouped_cost(
                request,
                table_name=self._store.table_name,
                cost_alias="cost",
                window_on_end_only=True,
                limit=self._group_cap,
            )
            return [
                ResourceCost(resource_id=r[RESOURCE_ID], currency=r[CURRENCY], cost=float(r["cost"] or 0.0))
                for r in self._store.execute(compiled)
            ]

        result = self._run(f"30-day cost query for region {region}", [], run)
        logger.info("30-day cost query returned %d group(s) for region %s", len(result.data), region)
        return result

    def total_cost_between(
        self, region: str, from_date: dt.date, until_date: dt.date
    ) -> QueryResult[list[ResourceTotalCost]]:
        request = AggregationRequest(region=region, window_start=from_date, window_end=until_date)
        if request.is_empty_window:
            return QueryResult(data=[])

        def run() -> list[ResourceTotalCost]:
            validate_request(request, self._store.columns())
            compiled = compile_grouped_cost(
                request,
                table_name=self._store.table_name,
                cost_alias="total_cost",
                window_on_end_only=False,
            )
            return [
                ResourceTotalCost(
                    resource_id=r[RESOURCE_ID], currency=r[CURRENCY], total_cost=float(r["total_cost"] or 0.0)
                )
                for r in self._store.execute(compiled)
            ]

        result = self._run(f"Total cost query for region {region}", [], run)
        logger.info(
            "Total cost query returned %d group(s) for region %s between %s and %s",
            len(result.data), region, from_date, until_date,
        )
        return result

    def cost_summary_between(
        self, region: str, from_date: dt.date, until_date: dt.date
    ) -> QueryResult[CostSummary]:
        request = AggregationRequest(region=region, window_start=from_date, window_end=until_date)
        if request.is_empty_window:
            return QueryResult(data=CostSummary())

        def run() -> CostSummary:
            self._store.columns()
            compiled = compile_cost_summary(request, table_name=self._store.table_name)
            rows = self._store.execute(compiled)
            if not rows:
                return CostSummary()
            totals: dict[str, float] = {}
            for r in rows:
                if r["currency"] is None:
                    logger.warning("Skipping %s cost total without a currency code", r["total_cost"])
                    continue
                totals[str(r["currency"])] = float(r["total_cost"] or 0.0)
            first = rows[0]
            return CostSummary(
                account_count=int(first["account_count"]),
                row_count=int(first["row_count"]),
                resource_count=int(first["resource_count"]),
                total_cost_by_currency=totals,
            )

        result = self._run(f"Cost summary query for region {region}", CostSummary(), run)
        if not result.failed:
            try:
                validate_summary(result.data, self._store.profile())
            except QueryExecutionError as exc:
                logger.warning("Result validation skipped: %s", exc)
            logger.info(
                "Cost summary for region %s between %s and %s: accounts=%d rows=%d resources=%d totals=%s",
                region, from_date, until_date, result.data.account_count, result.data.row_count,
                result.data.resource_count, result.data.total_cost_by_currency,
            )
        return result

    # ------------------------------------------------------------------
    # Per-resource probes
    # ------------------------------------------------------------------

    def has_recent_discount(self, resource_id: str, account_ids: Iterable[str]) -> bool:
        """Whether a DiscountedUsage line item ended within the discount window."""
        compiled = compile_discount_probe(
            resource_id,
            account_ids,
            table_name=self._store.table_name,
            today=self._today(),
            window_days=self._discount_window_days,
        )
        rows = self._store.execute(compiled)
        return bool(rows[0]["has_discount"]) if rows else False

    def resource_costs_30_days(self, resource_id: str, account_ids: Iterable[str]) -> list[CurrencyCost]:
        """Trailing-window cost per currency, ordered by currency code."""
        compiled = compile_resource_cost_probe(
            resource_id,
            account_ids,
            table_name=self._store.table_name,
            today=self._today(),
            window_days=self._cost_window_days,
        )
        return [
            CurrencyCost(currency=r["currency"], cost=float(r["cost"] or 0.0))
            for r in self._store.execute(compiled)
            if r["currency"] is not None
        ]

    def latest_snapshot(self, resource_id: str, account_ids: Iterable[str]) -> ResourceSnapshot | None:
        compiled = compile_snapshot_probe(resource_id, account_ids, table_name=self._store.table_name)
        rows = self._store.execute(compiled)
        if not rows:
            return None
        values = self._store.decode_row(rows[0])
        try:
            return _snapshot_from_values(resource_id, values)
        except ValueError as exc:
            raise QueryExecutionError(f"Cannot build snapshot for {resource_id}: {exc}") from exc


def _snapshot_from_values(resource_id: str, values: dict[str, Any]) -> ResourceSnapshot:
    plans = {
        key: PricingPlan(hourly_cost=values.get(hourly), upfront_charge=values.get(upfront))
        for key, (hourly, upfront) in PRICING_PLAN_COLUMNS.items()
    }
    return ResourceSnapshot(
        account=values.get(ACCOUNT_ID),
        instance_id=resource_id,
        instance_type=values.get(INSTANCE_TYPE),
        name=values.get(RESOURCE_NAME),
        platform=values.get(PLATFORM),
        region=values.get(REGION),
        tenancy=values.get(TENANCY),
        term_in_months=values.get(TERM_IN_MONTHS),
        type=values.get(RESOURCE_TYPE),
        uid=values.get(UID),
        datasource=values.get(DATASOURCE),
        **plans,
    )
