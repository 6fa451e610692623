"""
Record reconciliation: raw OneUp invoice payloads into local InvoiceRecords.

Reconciliation never fails a batch because of one bad record. A record
without a usable id is skipped and counted; every other parse problem
falls back to a default and is reported in `issues`.

On update, fields the upstream leaves out are kept from the stored record.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from salesboard.config import config
from salesboard.exceptions import ReconciliationSkip
from salesboard.models import (
    DEFAULT_INVOICE_STATUS,
    NO_SALESPERSON,
    UNKNOWN_CUSTOMER,
    UNKNOWN_SALESPERSON,
    EmployeeRecord,
    InvoiceRecord,
    RawInvoice,
    parse_int,
    utcnow,
)
from salesboard.observability import get_logger

logger = get_logger(__name__)


@dataclass
class Reconciliation:
    """Result of reconciling one upstream invoice."""
    record: InvoiceRecord
    is_new: bool
    issues: List[str] = field(default_factory=list)


@dataclass
class BatchReconciliation:
    """Result of reconciling one page of upstream invoices."""
    records: List[InvoiceRecord] = field(default_factory=list)
    inserted: int = 0
    updated: int = 0
    skipped: int = 0

    @property
    def processed(self) -> int:
        return self.inserted + self.updated


class RecordReconciler:
    """Maps raw invoice payloads onto local records."""

    def __init__(self, default_currency: str = None, supported_currencies: Iterable[str] = None):
        self.default_currency = default_currency or config.currency.default
        self.supported_currencies = frozenset(supported_currencies or config.currency.supported)

    def resolve_salesperson(
        self,
        employee_id: Optional[int],
        employees: Mapping[int, EmployeeRecord],
    ) -> str:
        """Denormalized salesperson name for an employee reference."""
        if employee_id is None:
            return NO_SALESPERSON
        employee = employees.get(employee_id)
        if employee is None or not employee.full_name:
            return UNKNOWN_SALESPERSON
        return employee.full_name

    def reconcile(
        self,
        data: Any,
        existing: Optional[InvoiceRecord] = None,
        employees: Optional[Mapping[int, EmployeeRecord]] = None,
        now: Optional[datetime] = None,
    ) -> Reconciliation:
        """
        Produce the local record for one upstream invoice.

        Args:
            data: Raw upstream invoice payload
            existing: Stored record with the same id, if any
            employees: Employee directory keyed by id
            now: Timestamp for synced_at/updated_at (defaults to utcnow)

        Raises:
            ReconciliationSkip: If the payload has no usable id
        """
        now = now or utcnow()
        employees = employees or {}
        raw = RawInvoice.from_api(data)
        issues = list(raw.issues)

        if existing is not None and existing.id != raw.id:
            raise ValueError(f"Existing record {existing.id} does not match invoice {raw.id}")

        currency = raw.currency
        if currency is not None and currency not in self.supported_currencies:
            issues.append(f"currency: unsupported {currency!r}")
        if currency is None:
            currency = existing.currency if existing else self.default_currency

        total = raw.total
        if total is None:
            total = existing.total if existing else Decimal("0")

        invoice_date = raw.invoice_date
        if invoice_date is None:
            if existing is not None:
                invoice_date = existing.invoice_date
            else:
                issues.append("invoice_date: missing, using sync time")
                invoice_date = now

        created_at = raw.created_at
        if created_at is None:
            created_at = existing.created_at if existing else invoice_date

        customer_name = raw.customer_name
        if customer_name is None:
            customer_name = existing.customer_name if existing else UNKNOWN_CUSTOMER

        if raw.employee_id is not None:
            employee_id = raw.employee_id
            salesperson_name = self.resolve_salesperson(employee_id, employees)
        elif existing is not None and existing.employee_id is not None:
            employee_id = existing.employee_id
            salesperson_name = self.resolve_salesperson(employee_id, employees)
            if salesperson_name == UNKNOWN_SALESPERSON:
                salesperson_name = existing.salesperson_name
        else:
            employee_id = None
            salesperson_name = NO_SALESPERSON

        if raw.status is not None:
            status = raw.status
        elif existing is not None and existing.status is not None:
            status = existing.status
        else:
            status = DEFAULT_INVOICE_STATUS

        record = InvoiceRecord(
            id=raw.id,
            invoice_number=raw.invoice_number or (
                existing.invoice_number if existing else f"INV-{raw.id}"
            ),
            invoice_date=invoice_date,
            created_at=created_at,
            customer_name=customer_name,
            total=total,
            currency=currency,
            employee_id=employee_id,
            salesperson_name=salesperson_name,
            description=raw.description if raw.description is not None else (
                existing.description if existing else None
            ),
            status=status,
            synced_at=now,
            updated_at=now,
        )
        return Reconciliation(record=record, is_new=existing is None, issues=issues)

    def reconcile_batch(
        self,
        raw_records: Iterable[Any],
        existing: Mapping[int, InvoiceRecord],
        employees: Optional[Mapping[int, EmployeeRecord]] = None,
        now: Optional[datetime] = None,
    ) -> BatchReconciliation:
        """
        Reconcile one page. Skipped records are logged and counted.

        A page repeating the same id keeps the last occurrence.
        """
        now = now or utcnow()
        result = BatchReconciliation()
        by_id: Dict[int, InvoiceRecord] = {}

        for data in raw_records:
            try:
                stored = existing.get(parse_int(data.get("id"))) if isinstance(data, dict) else None
                reconciliation = self.reconcile(data, existing=stored, employees=employees, now=now)
            except ReconciliationSkip as e:
                result.skipped += 1
                logger.warning(f"Skipping invoice: {e}", extra={"reason": e.message})
                continue

            if reconciliation.issues:
                logger.debug(
                    f"Invoice {reconciliation.record.id} reconciled with issues",
                    extra={"invoice_id": reconciliation.record.id, "issues": reconciliation.issues}
                )

            record = reconciliation.record
            if record.id not in by_id:
                if reconciliation.is_new:
                    result.inserted += 1
                else:
                    result.updated += 1
            by_id[record.id] = record

        result.records = list(by_id.values())
        return result
