"""Validate ingested schemas, aggregation requests and results."""
from __future__ import annotations

import logging
from typing import Mapping

from .errors import IngestLoadError, SqlCompilationError
from .models import (
    AggregationRequest,
    ColumnMetadata,
    CostSummary,
    DatasetProfile,
    KNOWN_COLUMN_TYPES,
    REQUIRED_COLUMNS,
)

logger = logging.getLogger(__name__)


def validate_schema(columns: Mapping[str, ColumnMetadata]) -> None:
    """Check that every column the fixed queries read exists with its expected type.

    Raises IngestLoadError on any violation.
    """
    for name in REQUIRED_COLUMNS:
        meta = columns.get(name)
        if meta is None:
            raise IngestLoadError(f"Required column '{name}' not found")
        expected = KNOWN_COLUMN_TYPES[name]
        if meta.logical_type != expected:
            raise IngestLoadError(
                f"Column '{name}' is '{meta.logical_type}', expected '{expected}'"
            )


def validate_request(
    request: AggregationRequest,
    columns: Mapping[str, ColumnMetadata],
) -> None:
    """Reject group-by columns the table does not have."""
    for col in request.group_by:
        if col not in columns:
            raise SqlCompilationError(f"group_by column '{col}' not found in columns")


def validate_summary(summary: CostSummary, profile: DatasetProfile | None) -> list[str]:
    """Sanity-check a cost summary against the dataset profile.

    Returns the warnings it logged; never raises, since the result is
    already computed.
    """
    if profile is None:
        return []

    warnings: list[str] = []
    if summary.row_count > profile.row_count:
        warnings.append(f"Summary row_count ({summary.row_count}) exceeds profile row_count ({profile.row_count})")

    for label, count in (("account_count", summary.account_count), ("resource_count", summary.resource_count)):
        if count > summary.row_count:
            warnings.append(f"Summary {label} ({count}) exceeds matched rows ({summary.row_count})")

    unknown = sorted(set(summary.total_cost_by_currency) - set(profile.currencies))
    if unknown:
        warnings.append(f"Summary has currencies not seen at ingestion: {', '.join(unknown)}")

    for message in warnings:
        logger.warning(message)
    return warnings
