"""
Invoice repository: batch upserts and dashboard reads.
"""
from datetime import datetime
from decimal import Decimal, localcontext
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from salesboard.config import config
from salesboard.exceptions import QueryTimeoutError, StoreError, StoreWriteFailure
from salesboard.models import InvoiceRecord
from salesboard.observability import get_logger
from salesboard.repositories.base import EXACT, BaseRepository, clean_decimal

logger = get_logger(__name__)

INVOICE_COLUMNS = (
    "id, invoice_number, invoice_date, created_at, customer_name, total, currency, "
    "employee_id, salesperson_name, description, status, synced_at, updated_at"
)

SORTABLE_COLUMNS = frozenset({"invoice_date", "created_at"})


def _row_to_invoice(row: tuple) -> InvoiceRecord:
    return InvoiceRecord(
        id=row[0],
        invoice_number=row[1],
        invoice_date=row[2],
        created_at=row[3],
        customer_name=row[4],
        total=clean_decimal(row[5]),
        currency=row[6],
        employee_id=row[7],
        salesperson_name=row[8],
        description=row[9],
        status=row[10],
        synced_at=row[11],
        updated_at=row[12],
    )


class InvoicesRepository(BaseRepository):
    """Repository for invoice records."""

    async def upsert_invoices(self, records: List[InvoiceRecord]) -> int:
        """
        Upsert one batch of invoices in a single transaction.

        Re-applying the same batch leaves the store unchanged apart from
        sync timestamps. A failure rolls the whole batch back.

        Returns:
            Number of invoices written

        Raises:
            StoreWriteFailure: If the batch could not be committed
        """
        if not records:
            return 0

        rows = [{
            "id": r.id,
            "invoice_number": r.invoice_number,
            "invoice_date": r.invoice_date,
            "created_at": r.created_at,
            "customer_name": r.customer_name,
            # Stored as text so no digits are lost
            "total": str(r.total),
            "currency": r.currency,
            "employee_id": r.employee_id,
            "salesperson_name": r.salesperson_name,
            "description": r.description,
            "status": r.status,
            "synced_at": r.synced_at,
            "updated_at": r.updated_at,
        } for r in records]

        df = pd.DataFrame(rows).drop_duplicates(subset="id", keep="last")
        df["employee_id"] = df["employee_id"].astype("Int64")

        def _upsert(conn) -> int:
            conn.register("invoices_batch", df)
            try:
                conn.execute("""
                    INSERT INTO invoices
                    SELECT
                        id,
                        CAST(invoice_number AS VARCHAR),
                        CAST(invoice_date AS TIMESTAMP),
                        CAST(created_at AS TIMESTAMP),
                        CAST(customer_name AS VARCHAR),
                        CAST(total AS VARCHAR),
                        CAST(currency AS VARCHAR),
                        CAST(employee_id AS BIGINT),
                        CAST(salesperson_name AS VARCHAR),
                        CAST(description AS VARCHAR),
                        CAST(status AS VARCHAR),
                        CAST(synced_at AS TIMESTAMP),
                        CAST(updated_at AS TIMESTAMP)
                    FROM invoices_batch
                    ON CONFLICT (id) DO UPDATE SET
                        invoice_number = excluded.invoice_number,
                        invoice_date = excluded.invoice_date,
                        created_at = excluded.created_at,
                        customer_name = excluded.customer_name,
                        total = excluded.total,
                        currency = excluded.currency,
                        employee_id = excluded.employee_id,
                        salesperson_name = excluded.salesperson_name,
                        description = excluded.description,
                        status = excluded.status,
                        synced_at = excluded.synced_at,
                        updated_at = excluded.updated_at
                """)
            finally:
                conn.unregister("invoices_batch")
            return len(df)

        try:
            written = await self._transaction(_upsert, "upsert_invoices")
        except (StoreError, QueryTimeoutError) as e:
            raise StoreWriteFailure(
                "Invoice batch rolled back", details=e.details, batch_size=len(df)
            ) from e

        logger.info(f"Upserted {written} invoices")
        return written

    async def get_invoices(
        self,
        skip: int = 0,
        limit: int = 100,
        sort_column: str = "invoice_date",
        currency: Optional[str] = None,
    ) -> List[InvoiceRecord]:
        """
        Read invoices newest first.

        Args:
            skip: Rows to skip
            limit: Rows to return; the all-records sentinel returns everything
            sort_column: invoice_date or created_at
            currency: Optional currency filter
        """
        if sort_column not in SORTABLE_COLUMNS:
            raise ValueError(f"Unsupported sort column: {sort_column}")

        query = f"SELECT {INVOICE_COLUMNS} FROM invoices"
        params: List[Any] = []
        if currency:
            query += " WHERE currency = ?"
            params.append(currency)
        query += f" ORDER BY {sort_column} DESC, id DESC"

        if limit != config.query.all_records:
            query += " LIMIT ? OFFSET ?"
            params.extend([limit, skip])
        elif skip:
            query += " OFFSET ?"
            params.append(skip)

        rows = await self._fetch_all(query, params)
        return [_row_to_invoice(row) for row in rows]

    async def get_all_invoices(self) -> List[InvoiceRecord]:
        """Every stored invoice."""
        return await self.get_invoices(0, config.query.all_records)

    async def get_invoices_by_ids(self, ids: List[int]) -> Dict[int, InvoiceRecord]:
        """Stored invoices for the given ids, keyed by id."""
        if not ids:
            return {}
        placeholders = ",".join(["?" for _ in ids])
        rows = await self._fetch_all(
            f"SELECT {INVOICE_COLUMNS} FROM invoices WHERE id IN ({placeholders})",
            list(ids)
        )
        return {row[0]: _row_to_invoice(row) for row in rows}

    async def get_invoice(self, invoice_id: int) -> Optional[InvoiceRecord]:
        row = await self._fetch_one(
            f"SELECT {INVOICE_COLUMNS} FROM invoices WHERE id = ?", [invoice_id]
        )
        return _row_to_invoice(row) if row else None

    async def count_invoices(self, currency: Optional[str] = None) -> int:
        if currency:
            row = await self._fetch_one(
                "SELECT COUNT(*) FROM invoices WHERE currency = ?", [currency]
            )
        else:
            row = await self._fetch_one("SELECT COUNT(*) FROM invoices")
        return row[0] if row else 0

    async def aggregate_by_currency(self) -> Dict[str, int]:
        """Invoice count per currency."""
        rows = await self._fetch_all(
            "SELECT currency, COUNT(*) FROM invoices GROUP BY currency ORDER BY currency"
        )
        return {currency: count for currency, count in rows}

    async def sales_by_currency(self) -> List[Dict[str, Any]]:
        """Count, total, average, min and max per currency."""
        rows = await self._fetch_all("SELECT currency, total FROM invoices ORDER BY currency")

        # Exact Decimal arithmetic over the stored text
        grouped: Dict[str, List[Decimal]] = {}
        for currency, total in rows:
            grouped.setdefault(currency, []).append(Decimal(total))

        result = []
        for currency, totals in grouped.items():
            with localcontext(EXACT):
                total = sum(totals, Decimal("0"))
            result.append({
                "currency": currency,
                "count": len(totals),
                "total": clean_decimal(total),
                "average": clean_decimal(total / len(totals)),
                "min": clean_decimal(min(totals)),
                "max": clean_decimal(max(totals)),
            })
        return result

    async def aggregate_by_salesperson(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> List[Tuple[int, str, str, Optional[str], int, Decimal]]:
        """
        Per-employee, per-currency invoice counts and totals within [start, end).

        Every employee appears at least once; employees without invoices
        come back with a NULL currency, zero count and zero total.

        Returns:
            Rows of (employee_id, first_name, last_name, currency, count, total)
        """
        join_filter = ""
        params: List[Any] = []
        if start is not None:
            join_filter += " AND i.invoice_date >= ?"
            params.append(start)
        if end is not None:
            join_filter += " AND i.invoice_date < ?"
            params.append(end)

        rows = await self._fetch_all(f"""
            SELECT e.id, e.first_name, e.last_name, i.currency, i.total
            FROM employees e
            LEFT JOIN invoices i ON i.employee_id = e.id{join_filter}
            ORDER BY e.id, i.currency NULLS LAST
        """, params)

        grouped: Dict[Tuple[int, str, str, Optional[str]], Tuple[int, Decimal]] = {}
        for emp_id, first, last, currency, total in rows:
            key = (emp_id, first, last, currency)
            count, running = grouped.get(key, (0, Decimal("0")))
            if total is not None:
                count, running = count + 1, EXACT.add(running, Decimal(total))
            grouped[key] = (count, running)

        return [
            (*key, count, clean_decimal(running))
            for key, (count, running) in grouped.items()
        ]

    async def get_invoice_date_range(self) -> Tuple[Optional[datetime], Optional[datetime]]:
        """Earliest and latest invoice date, (None, None) when empty."""
        row = await self._fetch_one("SELECT MIN(invoice_date), MAX(invoice_date) FROM invoices")
        if not row:
            return None, None
        return row[0], row[1]
