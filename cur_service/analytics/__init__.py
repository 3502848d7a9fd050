"""Line item storage, fixed cost aggregations and per-resource enrichment."""
from .errors import (
    CostAnalyticsError,
    IngestError,
    IngestSourceUnavailableError,
    IngestLoadError,
    QueryError,
    QueryExecutionError,
    SqlCompilationError,
    PipelineError,
)
from .models import (
    AggregationRequest,
    ColumnMetadata,
    ColumnProfile,
    CostSummary,
    CurrencyCost,
    DatasetProfile,
    DiscoveredIdentifiers,
    IngestReport,
    LineItem,
    LogicalType,
    PricingPlan,
    QueryResult,
    ResourceCost,
    ResourceCostDiscountRecord,
    ResourceSnapshot,
    ResourceTotalCost,
    ScanFilter,
    SQLITE_TYPE_MAP,
)
from .store import TabularStore
from .executor import AggregationExecutor
from .discovery import discover_identifiers
from .enrichment import ResourceEnrichmentPipeline
from .metadata_repository import MetadataRepository
from .profiler import profile_dataframe
from .validator import validate_request, validate_schema, validate_summary

__all__ = [
    "CostAnalyticsError",
    "IngestError",
    "IngestSourceUnavailableError",
    "IngestLoadError",
    "QueryError",
    "QueryExecutionError",
    "SqlCompilationError",
    "PipelineError",
    "AggregationRequest",
    "ColumnMetadata",
    "ColumnProfile",
    "CostSummary",
    "CurrencyCost",
    "DatasetProfile",
    "DiscoveredIdentifiers",
    "IngestReport",
    "LineItem",
    "LogicalType",
    "PricingPlan",
    "QueryResult",
    "ResourceCost",
    "ResourceCostDiscountRecord",
    "ResourceSnapshot",
    "ResourceTotalCost",
    "ScanFilter",
    "SQLITE_TYPE_MAP",
    "TabularStore",
    "AggregationExecutor",
    "discover_identifiers",
    "ResourceEnrichmentPipeline",
    "MetadataRepository",
    "profile_dataframe",
    "validate_request",
    "validate_schema",
    "validate_summary",
]
