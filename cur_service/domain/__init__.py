"""Domain layer for cur-service."""
from .types import ErrorCode

__all__ = ["ErrorCode"]
