"""
Integration tests for QueryService over an in-memory store.
"""
from datetime import date, datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio

from salesboard.exceptions import QueryError, StoreError, ValidationError
from salesboard.models import EmployeeRecord, InvoiceRecord
from salesboard.query_service import QueryService


def make_invoice(id, total, currency="USD", when=None, employee_id=None, status="Active"):
    when = when or datetime(2025, 1, id % 28 + 1, 10, 0)
    return InvoiceRecord(
        id=id,
        invoice_number=f"INV-{id}",
        invoice_date=when,
        created_at=when,
        customer_name="Acme",
        total=Decimal(str(total)),
        currency=currency,
        employee_id=employee_id,
        status=status,
        synced_at=datetime(2025, 6, 1),
        updated_at=datetime(2025, 6, 1),
    )


@pytest_asyncio.fixture
async def populated(store):
    await store.upsert_employees([
        EmployeeRecord(19, "Sara", "Khan"),
        EmployeeRecord(22, "Omar", "Ali"),
        EmployeeRecord(30, "Idle", "Person"),
    ])
    await store.upsert_invoices([
        make_invoice(1, 100, employee_id=19, when=datetime(2025, 5, 3)),
        make_invoice(2, 300, employee_id=19, when=datetime(2025, 5, 20)),
        make_invoice(3, 5000, "PKR", employee_id=22, when=datetime(2025, 4, 10)),
        make_invoice(4, 50, when=datetime(2024, 12, 31)),
        make_invoice(5, 1000, "PKR", when=datetime(2025, 2, 2), status="Cancelled"),
    ])
    return store


class TestListInvoices:
    @pytest.mark.asyncio
    async def test_paging_metadata(self, populated):
        service = QueryService(populated)

        first = await service.list_invoices(page=1, page_size=2)
        last = await service.list_invoices(page=3, page_size=2)

        assert first.total_count == 5
        assert first.total_pages == 3
        assert first.has_next_page is True
        assert [r.id for r in first.items] == [2, 1]
        assert [r.id for r in last.items] == [4]
        assert last.has_next_page is False

    @pytest.mark.asyncio
    async def test_page_past_end_is_empty(self, populated):
        result = await QueryService(populated).list_invoices(page=9, page_size=2)

        assert result.items == []
        assert result.total_count == 5

    @pytest.mark.asyncio
    async def test_all_records(self, populated):
        result = await QueryService(populated).list_invoices(page=4, page_size=-1)

        assert len(result.items) == 5
        assert result.page == 1
        assert result.total_pages == 1
        assert result.has_next_page is False

    @pytest.mark.asyncio
    async def test_currency_filter(self, populated):
        result = await QueryService(populated).list_invoices(currency="pkr")

        assert result.total_count == 2
        assert {r.currency for r in result.items} == {"PKR"}

    @pytest.mark.asyncio
    async def test_empty_store(self, store):
        result = await QueryService(store).list_invoices()

        assert result.items == []
        assert result.total_pages == 0
        assert result.to_dict()["hasNextPage"] is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [
        {"page": 0},
        {"page_size": 0},
        {"page_size": 5000},
        {"sort_by": "total"},
        {"currency": "EUR"},
    ])
    async def test_bad_parameters(self, store, kwargs):
        with pytest.raises(ValidationError):
            await QueryService(store).list_invoices(**kwargs)

    @pytest.mark.asyncio
    async def test_store_error_becomes_query_error(self):
        store = MagicMock()
        store.count_invoices = AsyncMock(side_effect=StoreError("boom"))

        with pytest.raises(QueryError):
            await QueryService(store).list_invoices()


class TestGetInvoice:
    @pytest.mark.asyncio
    async def test_found_and_missing(self, populated):
        service = QueryService(populated)

        record = await service.get_invoice(1)

        assert record.invoice_number == "INV-1"
        assert await service.get_invoice(9999) is None

    @pytest.mark.asyncio
    async def test_store_error(self):
        store = MagicMock()
        store.get_invoice = AsyncMock(side_effect=StoreError("boom"))

        with pytest.raises(QueryError):
            await QueryService(store).get_invoice(1)


class TestSalespersonPerformance:
    @pytest.mark.asyncio
    async def test_all_time(self, populated):
        rows = await QueryService(populated).salesperson_performance()
        by_id = {r.employee_id: r for r in rows}

        assert set(by_id) == {19, 22, 30}
        assert by_id[19].total_sales == Decimal("400")
        assert by_id[19].invoice_count == 2
        assert by_id[19].average_sale == Decimal("200")
        assert by_id[30].invoice_count == 0
        assert by_id[30].average_sale == Decimal("0")
        assert rows[0].employee_id == 22

    @pytest.mark.asyncio
    async def test_per_currency_breakdown(self, populated):
        rows = await QueryService(populated).salesperson_performance()
        omar = next(r for r in rows if r.employee_id == 22)

        assert [(c.currency, c.total, c.count) for c in omar.currencies] == [
            ("PKR", Decimal("5000"), 1)
        ]
        assert omar.to_dict()["salespersonName"] == "Omar Ali"

    @pytest.mark.asyncio
    async def test_monthly_window(self, populated):
        rows = await QueryService(populated).salesperson_performance(
            "monthly", year=2025, month=5, today=date(2025, 6, 1)
        )
        by_id = {r.employee_id: r for r in rows}

        assert by_id[19].invoice_count == 2
        assert by_id[22].invoice_count == 0
        assert by_id[22].total_sales == Decimal("0")

    @pytest.mark.asyncio
    async def test_bad_month(self, store):
        with pytest.raises(ValidationError):
            await QueryService(store).salesperson_performance("monthly", month=13)


class TestRevenue:
    @pytest.mark.asyncio
    async def test_reference_currency_total(self, populated):
        summary = await QueryService(populated).revenue_in_reference_currency(
            {"PKR": Decimal("1"), "USD": Decimal("280")}, "PKR"
        )

        # 450 USD * 280 + 5000 PKR; the cancelled invoice is excluded
        assert summary.total == Decimal("131000")
        assert summary.invoice_count == 4
        assert summary.cancelled_count == 1
        assert summary.by_currency == {"USD": Decimal("450"), "PKR": Decimal("5000")}

    @pytest.mark.asyncio
    async def test_store_error(self):
        store = MagicMock()
        store.get_all_invoices = AsyncMock(side_effect=StoreError("boom"))

        with pytest.raises(QueryError):
            await QueryService(store).revenue_in_reference_currency()


class TestDatabaseStats:
    @pytest.mark.asyncio
    async def test_stats(self, populated):
        stats = await QueryService(populated).database_stats()

        assert stats["total_invoices"] == 5
        assert stats["total_employees"] == 3
        assert stats["currency_breakdown"] == {"PKR": 2, "USD": 3}
        usd = next(row for row in stats["sales_by_currency"] if row["currency"] == "USD")
        assert usd["total"] == "450"
        assert usd["count"] == 3
        assert usd["min"] == "50"
        assert usd["max"] == "300"
