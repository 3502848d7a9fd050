"""
Health check service.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Literal

from ..analytics import TabularStore

HealthStatusType = Literal["ok", "error", "unavailable"]


@dataclass(frozen=True)
class ServiceHealth:
    status: HealthStatusType
    message: str | None = None
    latency_ms: int | None = None


@dataclass(frozen=True)
class HealthReport:
    backend: ServiceHealth
    store: ServiceHealth

    @property
    def healthy(self) -> bool:
        return self.store.status == "ok"


class HealthService:
    """Liveness of the service and its line item store."""

    def __init__(self, store: TabularStore | None) -> None:
        self._store = store

    async def check_all(self) -> HealthReport:
        return HealthReport(ServiceHealth("ok", "Backend is running"), await self._check_store())

    async def _check_store(self) -> ServiceHealth:
        if self._store is None:
            return ServiceHealth("unavailable", "Store is not initialized")
        start = time.perf_counter()
        ok = await asyncio.to_thread(self._store.health_check)
        latency = int((time.perf_counter() - start) * 1000)
        if ok:
            return ServiceHealth("ok", "Store is healthy", latency)
        return ServiceHealth("error", "Store is not healthy")
