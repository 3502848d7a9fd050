"""
Core type definitions and constants.
"""
from __future__ import annotations


class ErrorCode:
    NOT_FOUND = "NOT_FOUND"
    QUERY_FAILED = "QUERY_FAILED"
    INVALID_DATE = "INVALID_DATE"
    SOURCE_UNAVAILABLE = "SOURCE_UNAVAILABLE"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
