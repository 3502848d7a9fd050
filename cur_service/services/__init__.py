"""Services layer for cur-service."""
from .health_service import HealthService, HealthReport, ServiceHealth

__all__ = ["HealthService", "HealthReport", "ServiceHealth"]
