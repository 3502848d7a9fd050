from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from typing import Generic, Literal, TypeVar, Union

from pydantic import BaseModel, Field, model_validator

from .errors import QueryExecutionError


LogicalType = Literal["string", "integer", "float", "date", "boolean"]

FilterOperator = Literal[
    "eq", "neq", "in",
    "on_or_after", "on_or_before", "between_dates",
    "is_null", "is_not_null",
]

DATE_ONLY_OPS: set[str] = {"on_or_after", "on_or_before", "between_dates"}

SQLITE_TYPE_MAP: dict[str, str] = {
    "string": "TEXT",
    "integer": "INTEGER",
    "float": "REAL",
    "date": "INTEGER",
    "boolean": "INTEGER",
}

# ------------------------------------------------------------------
# Line item columns (cur2 naming)
# ------------------------------------------------------------------

SOURCE_ROW_NUMBER = "_source_row_number"

RESOURCE_ID = "line_item_resource_id"
ACCOUNT_ID = "line_item_usage_account_id"
REGION = "product_from_region_code"
USAGE_START = "line_item_usage_start_date"
USAGE_END = "line_item_usage_end_date"
UNBLENDED_COST = "line_item_unblended_cost"
CURRENCY = "line_item_currency_code"
LINE_ITEM_TYPE = "line_item_line_item_type"
TERM_IN_MONTHS = "term_in_months"

INSTANCE_TYPE = "product_instance_type"
RESOURCE_NAME = "resourcename"
PLATFORM = "platform"
TENANCY = "tenancy"
RESOURCE_TYPE = "resourcetype"
UID = "uid"
DATASOURCE = "datasource"

PRICING_PLAN_COLUMNS: dict[str, tuple[str, str]] = {
    "all_upfront": ("allupfront_hourlycost", "allupfront_upfrontcharge"),
    "no_upfront": ("noupfront_hourlycost", "noupfront_upfrontcharge"),
    "partial_upfront": ("partialupfront_hourlycost", "partialupfront_upfrontcharge"),
}

DISCOUNTED_USAGE = "DiscountedUsage"

# Columns every fixed query depends on; ingestion fails without them.
REQUIRED_COLUMNS: tuple[str, ...] = (
    RESOURCE_ID,
    ACCOUNT_ID,
    REGION,
    USAGE_START,
    USAGE_END,
    UNBLENDED_COST,
    CURRENCY,
    LINE_ITEM_TYPE,
)

IDENTIFIER_COLUMNS: tuple[str, ...] = (RESOURCE_ID, ACCOUNT_ID, UID)

# Known columns are typed up front; everything else is inferred from the data.
KNOWN_COLUMN_TYPES: dict[str, LogicalType] = {
    RESOURCE_ID: "string",
    ACCOUNT_ID: "string",
    REGION: "string",
    USAGE_START: "date",
    USAGE_END: "date",
    UNBLENDED_COST: "float",
    CURRENCY: "string",
    LINE_ITEM_TYPE: "string",
    TERM_IN_MONTHS: "integer",
    INSTANCE_TYPE: "string",
    RESOURCE_NAME: "string",
    PLATFORM: "string",
    TENANCY: "string",
    RESOURCE_TYPE: "string",
    UID: "string",
    DATASOURCE: "string",
    **{col: "float" for pair in PRICING_PLAN_COLUMNS.values() for col in pair},
}

_LINE_ITEM_FIELDS: dict[str, str] = {
    RESOURCE_ID: "resource_id",
    ACCOUNT_ID: "account_id",
    REGION: "region",
    USAGE_START: "usage_start",
    USAGE_END: "usage_end",
    UNBLENDED_COST: "unblended_cost",
    CURRENCY: "currency",
    LINE_ITEM_TYPE: "line_item_type",
    TERM_IN_MONTHS: "term_in_months",
}

CellValue = Union[str, int, float, bool, dt.datetime, None]


@dataclass(frozen=True)
class ColumnMetadata:
    """Typed column descriptor persisted in the registry."""
    column_name: str
    logical_type: LogicalType
    sqlite_type: str
    nullable: bool
    original_name: str
    safe_name: str


class ScanFilter(BaseModel):
    """Typed predicate on a single column; the store compiles these to SQL."""
    column: str
    operator: FilterOperator
    value: Union[str, int, float, bool, dt.date, list[Union[str, int, float, dt.date]], None] = None


class AggregationRequest(BaseModel):
    """Parameters of a windowed, grouped aggregation.

    ``window_start``/``window_end`` are calendar dates, both inclusive.
    """
    region: str | None = None
    window_start: dt.date | None = None
    window_end: dt.date | None = None
    group_by: list[str] = Field(default_factory=lambda: [RESOURCE_ID, CURRENCY])

    @model_validator(mode="before")
    @classmethod
    def _coerce_nulls(cls, values: dict) -> dict:
        if isinstance(values, dict) and values.get("group_by") is None:
            values["group_by"] = [RESOURCE_ID, CURRENCY]
        return values

    @property
    def is_empty_window(self) -> bool:
        if self.window_start is None or self.window_end is None:
            return False
        return self.window_start > self.window_end


# ------------------------------------------------------------------
# Result records
# ------------------------------------------------------------------

class LineItem(BaseModel):
    """One stored row: the known fields typed, every other column in ``attributes``."""
    source_row_number: int
    resource_id: str | None = None
    account_id: str | None = None
    region: str | None = None
    usage_start: dt.datetime | None = None
    usage_end: dt.datetime | None = None
    unblended_cost: float | None = None
    currency: str | None = None
    line_item_type: str | None = None
    term_in_months: int | None = None
    attributes: dict[str, CellValue] = Field(default_factory=dict)

    @classmethod
    def from_values(cls, values: dict[str, CellValue], columns: dict[str, ColumnMetadata]) -> "LineItem":
        """Build from decoded values keyed by safe column name."""
        known: dict[str, CellValue] = {}
        attributes: dict[str, CellValue] = {}
        for safe_name, value in values.items():
            if safe_name == SOURCE_ROW_NUMBER:
                known["source_row_number"] = value
            elif safe_name in _LINE_ITEM_FIELDS:
                known[_LINE_ITEM_FIELDS[safe_name]] = value
            else:
                meta = columns.get(safe_name)
                attributes[meta.original_name if meta else safe_name] = value
        return cls(**known, attributes=attributes)


class ResourceCost(BaseModel):
    """Trailing 30-day cost for one (resource, currency) group."""
    resource_id: str
    currency: str | None
    cost: float


class ResourceTotalCost(BaseModel):
    """Date-range total for one (resource, currency) group."""
    resource_id: str
    currency: str | None
    total_cost: float


class CostSummary(BaseModel):
    account_count: int = 0
    row_count: int = 0
    resource_count: int = 0
    total_cost_by_currency: dict[str, float] = Field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return self.row_count == 0


class CurrencyCost(BaseModel):
    currency: str
    cost: float


class PricingPlan(BaseModel):
    hourly_cost: float | None = None
    upfront_charge: float | None = None


class ResourceSnapshot(BaseModel):
    """Descriptive projection of the most recent line item for a resource."""
    account: str | None = None
    instance_id: str
    instance_type: str | None = None
    name: str | None = None
    platform: str | None = None
    region: str | None = None
    tenancy: str | None = None
    term_in_months: int | None = None
    type: str | None = None
    uid: str | None = None
    datasource: str | None = None
    all_upfront: PricingPlan = Field(default_factory=PricingPlan)
    no_upfront: PricingPlan = Field(default_factory=PricingPlan)
    partial_upfront: PricingPlan = Field(default_factory=PricingPlan)


class ResourceCostDiscountRecord(BaseModel):
    """Discount flag, 30-day cost and latest snapshot merged for one resource."""
    resource_id: str
    has_discount: bool = False
    cost: float | None = None
    currency: str | None = None
    costs_by_currency: list[CurrencyCost] = Field(default_factory=list)
    snapshot: ResourceSnapshot | None = None


@dataclass(frozen=True)
class DiscoveredIdentifiers:
    resource_ids: frozenset[str] = frozenset()
    account_ids: frozenset[str] = frozenset()


# ------------------------------------------------------------------
# Profiles
# ------------------------------------------------------------------

class ColumnProfile(BaseModel):
    """Per-column statistics."""
    logical_type: str
    null_ratio: float
    distinct_count: int
    min_value: float | int | str | None = None
    max_value: float | int | str | None = None


class DatasetProfile(BaseModel):
    """Aggregate statistics for the ingested table."""
    row_count: int
    columns: dict[str, ColumnProfile] = Field(default_factory=dict)
    currencies: list[str] = Field(default_factory=list)
    regions: list[str] = Field(default_factory=list)
    usage_start_min: dt.datetime | None = None
    usage_end_max: dt.datetime | None = None


# ------------------------------------------------------------------
# Operation outcomes
# ------------------------------------------------------------------

T = TypeVar("T")


@dataclass(frozen=True)
class QueryResult(Generic[T]):
    """Result of a read: data, or empty data plus the error that produced it."""
    data: T
    error: QueryExecutionError | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class IngestReport:
    table_name: str
    created: bool
    row_count: int
    columns: list[ColumnMetadata] = field(default_factory=list)
