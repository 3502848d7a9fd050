"""Derive the resource/account identifier universe from the line item table."""
from __future__ import annotations

import logging

from .errors import QueryExecutionError
from .models import DiscoveredIdentifiers
from .sql_compiler import compile_distinct_identifiers
from .store import TabularStore

logger = logging.getLogger(__name__)


def discover_identifiers(store: TabularStore) -> DiscoveredIdentifiers:
    """Distinct resource ids and account ids over rows where both are present.

    The two sets are collected independently (a union over rows, not pairs).
    A failed scan yields two empty sets.
    """
    try:
        rows = store.execute(compile_distinct_identifiers(table_name=store.table_name))
    except QueryExecutionError as exc:
        logger.error("Error getting account IDs and resource IDs from '%s': %s", store.table_name, exc)
        return DiscoveredIdentifiers()

    resource_ids: set[str] = set()
    account_ids: set[str] = set()
    for row in rows:
        account_ids.add(str(row["account_id"]))
        resource_ids.add(str(row["resource_id"]))

    logger.info("Found %d account ID(s) and %d resource ID(s)", len(account_ids), len(resource_ids))
    return DiscoveredIdentifiers(resource_ids=frozenset(resource_ids), account_ids=frozenset(account_ids))
