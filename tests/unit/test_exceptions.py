"""
Tests for salesboard.exceptions module.
"""
import pytest

from salesboard.exceptions import (
    DashboardAPIError,
    NoActiveSyncError,
    QueryError,
    QueryTimeoutError,
    ReconciliationSkip,
    SalesboardError,
    StoreError,
    StoreWriteFailure,
    SyncConflictError,
    UpstreamAPIError,
    UpstreamError,
    UpstreamProtocolError,
    UpstreamUnavailable,
    ValidationError,
)


class TestSalesboardError:
    """Tests for base SalesboardError exception."""

    def test_message_only(self):
        error = SalesboardError("Something went wrong")
        assert str(error) == "Something went wrong"
        assert error.message == "Something went wrong"
        assert error.details is None

    def test_message_with_details(self):
        error = SalesboardError("Failed to fetch", "Connection timeout")
        assert str(error) == "Failed to fetch: Connection timeout"


class TestUpstreamErrors:
    @pytest.mark.parametrize("cls", [UpstreamUnavailable, UpstreamAPIError, UpstreamProtocolError])
    def test_inheritance(self, cls):
        error = cls("failed")
        assert isinstance(error, UpstreamError)
        assert isinstance(error, SalesboardError)

    def test_unavailable_carries_status_and_attempts(self):
        error = UpstreamUnavailable("API returned 503", status_code=503, attempts=3)
        assert error.status_code == 503
        assert error.attempts == 3

    def test_api_error_status(self):
        error = UpstreamAPIError("API returned 401", details="Unauthorized", status_code=401)
        assert error.status_code == 401
        assert "Unauthorized" in str(error)

    def test_protocol_error_fields(self):
        error = UpstreamProtocolError("bad body", expected="array", got="dict")
        assert error.expected == "array"
        assert error.got == "dict"


class TestStoreAndSyncErrors:
    def test_write_failure_is_store_error(self):
        error = StoreWriteFailure("rolled back", batch_size=50)
        assert isinstance(error, StoreError)
        assert error.batch_size == 50

    def test_conflict_carries_active_id(self):
        error = SyncConflictError("Sync already running", active_sync_id="abc")
        assert error.active_sync_id == "abc"

    def test_no_active_sync(self):
        assert isinstance(NoActiveSyncError("nothing"), SalesboardError)

    def test_reconciliation_skip_keeps_record(self):
        error = ReconciliationSkip("no id", record={"total": 1})
        assert error.record == {"total": 1}

    def test_query_error(self):
        error = QueryError("failed", details="boom", query="list_invoices")
        assert error.query == "list_invoices"

    def test_dashboard_api_error(self):
        error = DashboardAPIError("API returned 409", status_code=409, endpoint="/sync/trigger")
        assert error.status_code == 409
        assert error.endpoint == "/sync/trigger"


class TestValidationError:
    def test_str_with_value(self):
        error = ValidationError("page", "Must be at least 1", 0)
        assert str(error) == "page: Must be at least 1 (got: 0)"

    def test_str_without_value(self):
        error = ValidationError("page", "Must be an integer")
        assert str(error) == "page: Must be an integer"

    def test_not_a_salesboard_error(self):
        assert not isinstance(ValidationError("f", "m"), SalesboardError)


class TestQueryTimeoutError:
    def test_truncates_long_query(self):
        error = QueryTimeoutError("SELECT " + "x" * 300, timeout=30.0)
        assert error.query.endswith("...")
        assert "30.0s" in str(error)
