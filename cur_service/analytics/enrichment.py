"""Per-resource cost/discount enrichment.

For every requested resource three independent probes run against the
store (recent discount, trailing 30-day cost, latest descriptive snapshot)
and are merged into one record. A failed probe falls back to its default
and never affects another probe, another resource, or the pipeline.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Iterable, TypeVar

from .discovery import discover_identifiers
from .errors import PipelineError
from .executor import AggregationExecutor
from .models import CurrencyCost, ResourceCostDiscountRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResourceEnrichmentPipeline:
    """Fans out the three probes per resource with bounded concurrency."""

    def __init__(
        self,
        executor: AggregationExecutor,
        *,
        max_concurrency: int = 8,
        default_currency: str = "USD",
    ) -> None:
        if max_concurrency < 1:
            raise PipelineError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self._executor = executor
        self._max_concurrency = max_concurrency
        self._default_currency = default_currency

    async def enrich(
        self, resource_ids: Iterable[str], account_ids: Iterable[str]
    ) -> list[ResourceCostDiscountRecord]:
        """One record per distinct resource id, sorted by resource id."""
        requested = sorted(set(resource_ids))
        if not requested:
            return []

        accounts = frozenset(account_ids)
        semaphore = asyncio.Semaphore(self._max_concurrency)
        records = await asyncio.gather(
            *(self._enrich_one(resource_id, accounts, semaphore) for resource_id in requested)
        )
        logger.info("Enriched %d resource(s) across %d account(s)", len(records), len(accounts))
        return list(records)

    async def enrich_all(self) -> list[ResourceCostDiscountRecord]:
        """Discover every resource/account id in the store and enrich them all."""
        identifiers = await asyncio.to_thread(discover_identifiers, self._executor.store)
        return await self.enrich(identifiers.resource_ids, identifiers.account_ids)

    async def _enrich_one(
        self,
        resource_id: str,
        accounts: frozenset[str],
        semaphore: asyncio.Semaphore,
    ) -> ResourceCostDiscountRecord:
        failed_cost = [CurrencyCost(currency=self._default_currency, cost=0.0)]
        has_discount, costs, snapshot = await asyncio.gather(
            self._probe("Discount", self._executor.has_recent_discount, resource_id, accounts, semaphore, False),
            self._probe("Cost", self._executor.resource_costs_30_days, resource_id, accounts, semaphore, failed_cost),
            self._probe("Snapshot", self._executor.latest_snapshot, resource_id, accounts, semaphore, None),
        )

        if len(costs) > 1:
            logger.info("Resource %s has costs in %d currencies", resource_id, len(costs))

        return ResourceCostDiscountRecord(
            resource_id=resource_id,
            has_discount=has_discount,
            cost=costs[0].cost if costs else None,
            currency=costs[0].currency if costs else None,
            costs_by_currency=costs,
            snapshot=snapshot,
        )

    async def _probe(
        self,
        label: str,
        probe: Callable[[str, frozenset[str]], T],
        resource_id: str,
        accounts: frozenset[str],
        semaphore: asyncio.Semaphore,
        default: T,
    ) -> T:
        async with semaphore:
            try:
                return await asyncio.to_thread(probe, resource_id, accounts)
            except Exception as exc:
                logger.warning("%s probe failed for resource %s: %s", label, resource_id, exc)
                return default
