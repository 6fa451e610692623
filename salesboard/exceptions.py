"""
Custom exception hierarchy for the invoice sync pipeline.

Exception Hierarchy:
    SalesboardError (base)
    ├── UpstreamError
    │   ├── UpstreamUnavailable     - Network/timeout/5xx, retries exhausted
    │   ├── UpstreamAPIError        - API rejected the request (4xx)
    │   └── UpstreamProtocolError   - Response body has unexpected structure
    ├── ReconciliationSkip          - A single upstream record could not be used
    ├── StoreError
    │   └── StoreWriteFailure       - Batch could not be persisted
    ├── SyncConflictError           - A sync run is already active
    ├── NoActiveSyncError           - Stop requested with nothing running
    ├── QueryError                  - Dashboard query failed (not "no data")
    └── DashboardAPIError           - Dashboard client request failed

    ValidationError                 - Input validation failed
    QueryTimeoutError               - Store query exceeded timeout
"""
from typing import Any, Optional


class SalesboardError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, details: str = None):
        self.message = message
        self.details = details
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class UpstreamError(SalesboardError):
    """Base class for failures talking to the CRM API."""


class UpstreamUnavailable(UpstreamError):
    """
    Network-related errors (timeout, connection refused, 5xx).

    Retried by the client; raised to callers once attempts are exhausted.
    """

    def __init__(
        self,
        message: str,
        details: str = None,
        status_code: int = None,
        attempts: int = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code
        self.attempts = attempts


class UpstreamAPIError(UpstreamError):
    """
    API returned a client error response (authorization, validation).

    Never retried: repeating the same request yields the same answer.
    """

    def __init__(self, message: str, details: str = None, status_code: int = None):
        super().__init__(message, details)
        self.status_code = status_code


class UpstreamProtocolError(UpstreamError):
    """
    API response has unexpected structure.

    Not retried - a body that fails to parse will not parse next time either.
    """

    def __init__(self, message: str, details: str = None, expected: str = None, got: str = None):
        super().__init__(message, details)
        self.expected = expected
        self.got = got


class ReconciliationSkip(SalesboardError):
    """An upstream record could not be minimally reconciled (e.g. no id)."""

    def __init__(self, message: str, details: str = None, record: Any = None):
        super().__init__(message, details)
        self.record = record


class StoreError(SalesboardError):
    """Local store operation failed."""


class StoreWriteFailure(StoreError):
    """
    A batch write failed and was rolled back.

    Previously committed batches are untouched.
    """

    def __init__(self, message: str, details: str = None, batch_size: int = 0):
        super().__init__(message, details)
        self.batch_size = batch_size


class SyncConflictError(SalesboardError):
    """A sync run is already active; a second one was not started."""

    def __init__(self, message: str, details: str = None, active_sync_id: Optional[str] = None):
        super().__init__(message, details)
        self.active_sync_id = active_sync_id


class NoActiveSyncError(SalesboardError):
    """Cancellation was requested but no sync is running."""


class QueryError(SalesboardError):
    """
    A dashboard query failed.

    Distinct from an empty result: empty data is returned normally.
    """

    def __init__(self, message: str, details: str = None, query: str = None):
        super().__init__(message, details)
        self.query = query


class DashboardAPIError(SalesboardError):
    """
    A request from the dashboard client to the query surface failed.

    Network failures carry no status code.
    """

    def __init__(self, message: str, details: str = None, status_code: int = None, endpoint: str = None):
        super().__init__(message, details)
        self.status_code = status_code
        self.endpoint = endpoint


class ValidationError(Exception):
    """
    Input validation failed.

    Used for validating caller input before processing.
    """

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")

    def __str__(self) -> str:
        if self.value is not None:
            return f"{self.field}: {self.message} (got: {self.value!r})"
        return f"{self.field}: {self.message}"


class QueryTimeoutError(Exception):
    """
    Database query exceeded timeout.

    Indicates a long-running query that should be investigated:
    - Missing index
    - Too much data being scanned
    - Full-dataset read where an aggregate would do
    """

    def __init__(self, query: str, timeout: float, details: str = None):
        self.query = query[:200] + "..." if len(query) > 200 else query
        self.timeout = timeout
        self.details = details
        message = f"Query timed out after {timeout}s"
        if details:
            message = f"{message}: {details}"
        super().__init__(message)

    def __str__(self) -> str:
        return f"QueryTimeoutError: Query timed out after {self.timeout}s - {self.query}"
