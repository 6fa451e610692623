"""
Pytest configuration and shared fixtures.
"""
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

from salesboard.config import SyncConfig
from salesboard.models import UpstreamPage
from salesboard.repositories import Store


@pytest.fixture
def sample_invoice() -> Dict[str, Any]:
    """Sample invoice payload from the OneUp API."""
    return {
        "id": 101,
        "user_code": "INV-0101",
        "date": "2025-03-14T10:30:00Z",
        "created_at": "2025-03-14T10:35:00Z",
        "customer": {"id": 7, "name": "Acme Traders"},
        "total": "1250.50",
        "currency_iso_code": "usd",
        "employee_id": 19,
        "public_note": "Quarterly order",
        "invoice_status": 2,
    }


@pytest.fixture
def sample_invoices() -> List[Dict[str, Any]]:
    """Three USD invoices without a salesperson."""
    return [
        {"id": 1, "user_code": "A-1", "date": "2025-01-05T09:00:00Z", "total": 100, "currency": "USD"},
        {"id": 2, "user_code": "A-2", "date": "2025-01-06T09:00:00Z", "total": 200, "currency": "USD"},
        {"id": 3, "user_code": "A-3", "date": "2025-01-07T09:00:00Z", "total": 300, "currency": "USD"},
    ]


@pytest.fixture
def sample_employees() -> List[Dict[str, Any]]:
    """Employee roster payload."""
    return [
        {"id": 19, "first_name": "Sara", "last_name": "Khan", "status": "active"},
        {"id": 22, "firstName": "Omar", "lastName": "Ali", "status": "active"},
    ]


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 6, 1, 12, 0, 0)


@pytest.fixture
def sync_config() -> SyncConfig:
    """Sync settings without inter-page delay."""
    return SyncConfig(
        lease_timeout_seconds=3600,
        page_delay_seconds=0.0,
        max_pages=50,
        interval_minutes=60,
    )


class FakeOneUpClient:
    """
    In-memory stand-in for OneUpClient.

    Serves invoices in pages of page_size; pages listed in fail_on raise
    the mapped exception instead.
    """

    def __init__(
        self,
        invoices: List[Any] = None,
        employees: List[Dict[str, Any]] = None,
        page_size: int = 2,
        fail_on: Optional[Dict[int, Exception]] = None,
        employee_error: Optional[Exception] = None,
    ):
        self.invoices = list(invoices or [])
        self.employees = list(employees or [])
        self.page_size = page_size
        self.fail_on = fail_on or {}
        self.employee_error = employee_error
        self.pages_requested: List[int] = []
        self.on_page = None

    async def fetch_invoice_page(self, page_number: int, page_size: int = None) -> UpstreamPage:
        self.pages_requested.append(page_number)
        if self.on_page is not None:
            await self.on_page(page_number)
        if page_number in self.fail_on:
            raise self.fail_on[page_number]
        size = page_size or self.page_size
        start = (page_number - 1) * size
        records = self.invoices[start:start + size]
        return UpstreamPage(page_number, records, has_more=len(records) == size)

    async def fetch_employees(self, force_refresh: bool = False) -> List[Dict[str, Any]]:
        if self.employee_error is not None:
            raise self.employee_error
        return self.employees

    async def close(self) -> None:
        pass


@pytest.fixture
def fake_client(sample_invoices, sample_employees) -> FakeOneUpClient:
    return FakeOneUpClient(invoices=sample_invoices, employees=sample_employees)


@pytest_asyncio.fixture
async def store():
    """Fresh in-memory DuckDB store."""
    store = Store(":memory:")
    await store.connect()
    yield store
    await store.close()


class StepClock:
    """Deterministic clock advancing by step on every call."""

    def __init__(self, start: datetime, step: timedelta = timedelta(seconds=1)):
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        value = self.current
        self.current += self.step
        return value


@pytest.fixture
def clock(now) -> StepClock:
    return StepClock(now)


@pytest.fixture
def make_client():
    """Factory for FakeOneUpClient with custom pages or failures."""
    return FakeOneUpClient
