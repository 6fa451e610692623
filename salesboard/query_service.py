"""
Query and aggregation layer over the local store.

Read-only. Store failures surface as QueryError so callers can tell a
broken query from an empty result; bad parameters raise ValidationError.
"""
import asyncio
import math
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from salesboard.config import config
from salesboard.exceptions import QueryError, QueryTimeoutError, StoreError
from salesboard.models import InvoiceRecord
from salesboard.observability import get_logger, timed
from salesboard.repositories import Store, get_store
from salesboard.repositories.base import clean_decimal
from salesboard.revenue import RevenueSummary, compute_revenue
from salesboard.validators import (
    validate_currency,
    validate_month,
    validate_page,
    validate_page_size,
    validate_period,
    validate_quarter,
    validate_sort_key,
    validate_year,
)

logger = get_logger(__name__)


@dataclass
class InvoicePage:
    """One page of invoices with paging metadata."""
    items: List[InvoiceRecord]
    page: int
    page_size: int
    total_count: int
    total_pages: int
    has_next_page: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": [item.to_dict() for item in self.items],
            "page": self.page,
            "pageSize": self.page_size,
            "totalCount": self.total_count,
            "totalPages": self.total_pages,
            "hasNextPage": self.has_next_page,
        }


@dataclass
class CurrencyTotal:
    currency: str
    total: Decimal
    count: int


@dataclass
class SalespersonPerformance:
    """Sales totals for one employee over a period."""
    employee_id: int
    name: str
    total_sales: Decimal = Decimal("0")
    invoice_count: int = 0
    currencies: List[CurrencyTotal] = field(default_factory=list)

    @property
    def average_sale(self) -> Decimal:
        if self.invoice_count == 0:
            return Decimal("0")
        return clean_decimal(self.total_sales / self.invoice_count)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employeeId": self.employee_id,
            "salespersonName": self.name,
            "totalSales": str(self.total_sales),
            "invoiceCount": self.invoice_count,
            "averageSale": str(self.average_sale),
            "currencies": [
                {"currency": c.currency, "total": str(c.total), "count": c.count}
                for c in self.currencies
            ],
        }


class QueryService:
    """Dashboard reads: invoice pages, salesperson aggregates, revenue, stats."""

    def __init__(self, store: Store):
        self.store = store

    @timed("list_invoices")
    async def list_invoices(
        self,
        page: int = 1,
        page_size: int = None,
        sort_by: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> InvoicePage:
        """
        One page of invoices, newest first.

        A page size of ALL_RECORDS (-1) returns every stored invoice in one page.

        Raises:
            ValidationError: On bad paging, sort or currency parameters
            QueryError: If the store query fails
        """
        page = validate_page(page)
        page_size = validate_page_size(
            page_size if page_size is not None else config.query.default_page_size
        )
        sort_column = validate_sort_key(sort_by)
        currency = validate_currency(currency)

        try:
            total_count = await self.store.count_invoices(currency)
            if page_size == config.query.all_records:
                items = await self.store.get_invoices(
                    0, config.query.all_records, sort_column, currency
                )
                return InvoicePage(
                    items=items,
                    page=1,
                    page_size=page_size,
                    total_count=total_count,
                    total_pages=1,
                    has_next_page=False,
                )

            items = await self.store.get_invoices(
                (page - 1) * page_size, page_size, sort_column, currency
            )
        except (StoreError, QueryTimeoutError) as e:
            raise QueryError("Failed to list invoices", details=str(e), query="list_invoices") from e

        total_pages = math.ceil(total_count / page_size) if total_count else 0
        return InvoicePage(
            items=items,
            page=page,
            page_size=page_size,
            total_count=total_count,
            total_pages=total_pages,
            has_next_page=page < total_pages,
        )

    async def get_invoice(self, invoice_id: int) -> Optional[InvoiceRecord]:
        """One stored invoice by upstream id, None when it has not been synced."""
        try:
            return await self.store.get_invoice(invoice_id)
        except (StoreError, QueryTimeoutError) as e:
            raise QueryError("Failed to load invoice", details=str(e), query="get_invoice") from e

    @timed("salesperson_performance")
    async def salesperson_performance(
        self,
        period: Optional[str] = None,
        year: int = 0,
        month: int = 0,
        quarter: int = 0,
        today: Optional[date] = None,
    ) -> List[SalespersonPerformance]:
        """
        Per-employee totals for a period, highest total first.

        Every employee appears, with zero totals when they have no invoices
        in the period. Unknown period names mean all-time.
        """
        parsed_period = validate_period(period)
        date_range = parsed_period.date_range(
            year=validate_year(year),
            month=validate_month(month),
            quarter=validate_quarter(quarter),
            today=today,
        )
        start, end = date_range if date_range else (None, None)

        try:
            rows = await self.store.aggregate_by_salesperson(start, end)
        except (StoreError, QueryTimeoutError) as e:
            raise QueryError(
                "Failed to aggregate salesperson sales", details=str(e), query="salesperson_performance"
            ) from e

        performance: Dict[int, SalespersonPerformance] = {}
        for employee_id, first_name, last_name, currency, count, total in rows:
            entry = performance.get(employee_id)
            if entry is None:
                name = f"{first_name or ''} {last_name or ''}".strip()
                entry = performance[employee_id] = SalespersonPerformance(employee_id, name)
            if currency is None or count == 0:
                continue
            entry.total_sales += total
            entry.invoice_count += count
            entry.currencies.append(CurrencyTotal(currency, total, count))

        return sorted(
            performance.values(),
            key=lambda p: (-p.total_sales, p.employee_id),
        )

    @timed("revenue_in_reference_currency")
    async def revenue_in_reference_currency(
        self,
        rates: Optional[Mapping[str, Decimal]] = None,
        reference: Optional[str] = None,
    ) -> RevenueSummary:
        """
        Revenue over all stored invoices, cancelled ones excluded.

        The computation runs in a worker thread on a snapshot of the store.
        """
        try:
            invoices = await self.store.get_all_invoices()
        except (StoreError, QueryTimeoutError) as e:
            raise QueryError("Failed to load invoices for revenue", details=str(e)) from e

        return await asyncio.to_thread(compute_revenue, invoices, rates, reference)

    async def database_stats(self) -> Dict[str, Any]:
        """Counts, date range, currency breakdown and per-currency sales."""
        try:
            stats = await self.store.get_stats()
            sales = await self.store.sales_by_currency()
        except (StoreError, QueryTimeoutError) as e:
            raise QueryError("Failed to load database stats", details=str(e)) from e

        stats["sales_by_currency"] = [
            {
                "currency": row["currency"],
                "count": row["count"],
                "total": str(row["total"]),
                "average": str(row["average"]),
                "min": str(row["min"]),
                "max": str(row["max"]),
            }
            for row in sales
        ]
        return stats


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_query_service: Optional[QueryService] = None


async def get_query_service() -> QueryService:
    """Get singleton query service instance."""
    global _query_service
    if _query_service is None:
        _query_service = QueryService(await get_store())
    return _query_service
