"""
Salesboard: OneUp invoice sync and sales dashboard backend.

This package contains the shared logic used by the web/ package:
- exceptions: Custom exception hierarchy
- validators: Input validation functions
- config: Centralized configuration
- sync_service / query_service: Sync pipeline and read-side aggregates
"""

# Import in dependency order
from salesboard.exceptions import (
    SalesboardError,
    UpstreamError,
    UpstreamUnavailable,
    UpstreamAPIError,
    UpstreamProtocolError,
    ReconciliationSkip,
    StoreError,
    StoreWriteFailure,
    SyncConflictError,
    NoActiveSyncError,
    QueryError,
    DashboardAPIError,
    ValidationError,
)

from salesboard.validators import (
    validate_page,
    validate_page_size,
    validate_sort_key,
    validate_currency,
    validate_period,
)

from salesboard.config import config

__all__ = [
    # Exceptions
    "SalesboardError",
    "UpstreamError",
    "UpstreamUnavailable",
    "UpstreamAPIError",
    "UpstreamProtocolError",
    "ReconciliationSkip",
    "StoreError",
    "StoreWriteFailure",
    "SyncConflictError",
    "NoActiveSyncError",
    "QueryError",
    "DashboardAPIError",
    "ValidationError",
    # Validators
    "validate_page",
    "validate_page_size",
    "validate_sort_key",
    "validate_currency",
    "validate_period",
    # Config
    "config",
]
