from __future__ import annotations


class CostAnalyticsError(Exception):
    """Base error class for cost-and-usage analytics."""


class IngestError(CostAnalyticsError):
    """Raised when the line item table cannot be materialized."""


class IngestSourceUnavailableError(IngestError):
    """Raised when the tabular source file cannot be located or opened."""


class IngestLoadError(IngestError):
    """Raised when reading or materializing the source fails after it was opened."""


class QueryError(CostAnalyticsError):
    """Base class for read-side failures."""


class QueryExecutionError(QueryError):
    """Raised when SQLite execution fails."""


class SqlCompilationError(CostAnalyticsError):
    """Raised when a filter or column request cannot be compiled into safe SQL."""


class PipelineError(CostAnalyticsError):
    """Raised for an unusable enrichment pipeline configuration; probe errors never surface as this."""
