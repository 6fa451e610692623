"""
Domain models for OneUp CRM data and sync bookkeeping.

Provides type-safe dataclasses for invoices, employees and sync log entries.
Raw upstream payloads are parsed into `RawInvoice` / `RawEmployee` first:
every field is optional and a field that fails to parse is recorded in
`issues` instead of raising. Only a missing id rejects a record.

All timestamps are naive UTC datetimes.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
import uuid

from salesboard.exceptions import ReconciliationSkip


UNKNOWN_CUSTOMER = "Unknown Customer"
NO_SALESPERSON = "No Salesperson"
UNKNOWN_SALESPERSON = "Unknown Salesperson"
DEFAULT_INVOICE_STATUS = "Active"

# OneUp numeric invoice_status codes
INVOICE_STATUS_CODES = {
    2: "Invoiced",
    3: "Cancelled",
}

CANCELLED_STATUSES = frozenset({"cancelled", "canceled"})


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def is_cancelled_status(status: Optional[str]) -> bool:
    """True for any cancelled variant, case-insensitively."""
    if not status:
        return False
    return status.strip().lower() in CANCELLED_STATUSES


# ═══════════════════════════════════════════════════════════════════════════════
# FIELD PARSERS
# ═══════════════════════════════════════════════════════════════════════════════

def parse_datetime(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string (or datetime/date) into naive UTC, None on failure."""
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def parse_decimal(value: Any) -> Optional[Decimal]:
    """Parse a number or numeric string into Decimal, None on failure."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip().replace(",", ""))
        except InvalidOperation:
            return None
    else:
        return None
    return result if result.is_finite() else None


def parse_int(value: Any) -> Optional[int]:
    """Parse an integer or integer-valued string, None on failure."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        text = value.strip()
        if text.lstrip("-").isdigit():
            return int(text)
    return None


def _first_string(data: Dict[str, Any], *keys: str) -> Optional[str]:
    """First non-blank string value among keys."""
    for key in keys:
        value = data.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _customer_name(data: Dict[str, Any]) -> Optional[str]:
    """Customer name from the nested customer object, then flat fields."""
    customer = data.get("customer")
    if isinstance(customer, dict):
        name = _first_string(customer, "name", "company_name")
        if name:
            return name
    return _first_string(data, "customer_name", "client_name", "company_name", "name")


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class SyncStatus(str, Enum):
    """Sync run status. NEVER is reported when no run has been logged."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    NEVER = "never"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncStatus.COMPLETED, SyncStatus.FAILED, SyncStatus.CANCELLED)


class Period(str, Enum):
    """Reporting period for salesperson aggregates (closed set)."""
    ALL = "all"
    DAILY = "daily"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Period":
        """Parse a period name; anything unrecognized means all-time."""
        if isinstance(value, cls):
            return value
        if not value:
            return cls.ALL
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.ALL

    def date_range(
        self,
        year: int = 0,
        month: int = 0,
        quarter: int = 0,
        today: Optional[date] = None,
    ) -> Optional[Tuple[datetime, datetime]]:
        """
        Half-open [start, end) range for this period, None for all-time.

        Zero year/month/quarter means "current" relative to today.
        """
        if self is Period.ALL:
            return None

        today = today or utcnow().date()
        target_year = year if year > 0 else today.year

        if self is Period.DAILY:
            start = datetime(today.year, today.month, today.day)
            return start, start + timedelta(days=1)

        if self is Period.YEARLY:
            return datetime(target_year, 1, 1), datetime(target_year + 1, 1, 1)

        if self is Period.MONTHLY:
            target_month = month if 1 <= month <= 12 else today.month
            start = datetime(target_year, target_month, 1)
            if target_month == 12:
                return start, datetime(target_year + 1, 1, 1)
            return start, datetime(target_year, target_month + 1, 1)

        target_quarter = quarter if 1 <= quarter <= 4 else (today.month - 1) // 3 + 1
        start_month = (target_quarter - 1) * 3 + 1
        start = datetime(target_year, start_month, 1)
        if target_quarter == 4:
            return start, datetime(target_year + 1, 1, 1)
        return start, datetime(target_year, start_month + 3, 1)


# ═══════════════════════════════════════════════════════════════════════════════
# RAW UPSTREAM RECORDS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class RawInvoice:
    """Invoice as received from OneUp, every field except id optional."""
    id: int
    invoice_number: Optional[str] = None
    invoice_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    customer_name: Optional[str] = None
    total: Optional[Decimal] = None
    currency: Optional[str] = None
    employee_id: Optional[int] = None
    description: Optional[str] = None
    status: Optional[str] = None
    issues: List[str] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: Any) -> "RawInvoice":
        """
        Create RawInvoice from an OneUp API invoice object.

        Raises:
            ReconciliationSkip: If the payload has no usable id
        """
        if not isinstance(data, dict):
            raise ReconciliationSkip(
                "Invoice payload is not an object", details=type(data).__name__
            )

        invoice_id = parse_int(data.get("id"))
        if invoice_id is None or invoice_id <= 0:
            raise ReconciliationSkip(
                "Invoice has no valid id", details=repr(data.get("id")), record=data
            )

        raw = cls(id=invoice_id)
        raw.invoice_number = _first_string(data, "user_code", "invoice_number")
        raw.customer_name = _customer_name(data)
        raw.description = _first_string(data, "public_note", "description")

        if "total" in data:
            raw.total = parse_decimal(data["total"])
            if raw.total is None:
                raw.issues.append(f"total: unparseable {data['total']!r}")

        currency = _first_string(data, "currency_iso_code", "currency")
        if currency:
            raw.currency = currency.upper()

        for key in ("date", "invoice_date", "created_at"):
            if data.get(key) is None:
                continue
            parsed = parse_datetime(data[key])
            if parsed is None:
                raw.issues.append(f"{key}: unparseable {data[key]!r}")
                continue
            raw.invoice_date = parsed
            break

        if data.get("created_at") is not None:
            raw.created_at = parse_datetime(data["created_at"])

        employee = data.get("employee")
        employee_id = parse_int(data.get("employee_id"))
        if employee_id is None and isinstance(employee, dict):
            employee_id = parse_int(employee.get("id"))
        if employee_id is not None and employee_id > 0:
            raw.employee_id = employee_id
        elif data.get("employee_id") not in (None, 0, "0", ""):
            raw.issues.append(f"employee_id: unparseable {data.get('employee_id')!r}")

        status_code = parse_int(data.get("invoice_status"))
        if status_code is not None:
            raw.status = INVOICE_STATUS_CODES.get(status_code, "Unknown")
        else:
            raw.status = _first_string(data, "status")

        return raw


@dataclass
class RawEmployee:
    """Employee as received from OneUp."""
    id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    is_active: bool = True

    @classmethod
    def from_api(cls, data: Any) -> "RawEmployee":
        """
        Create RawEmployee from an OneUp API employee object.

        Raises:
            ReconciliationSkip: If the payload has no usable id
        """
        if not isinstance(data, dict):
            raise ReconciliationSkip(
                "Employee payload is not an object", details=type(data).__name__
            )

        employee_id = parse_int(data.get("id"))
        if employee_id is None or employee_id <= 0:
            raise ReconciliationSkip(
                "Employee has no valid id", details=repr(data.get("id")), record=data
            )

        status = _first_string(data, "status")
        return cls(
            id=employee_id,
            first_name=_first_string(data, "first_name", "firstName"),
            last_name=_first_string(data, "last_name", "lastName"),
            email=_first_string(data, "email"),
            phone=_first_string(data, "phone"),
            department=_first_string(data, "department"),
            position=_first_string(data, "position"),
            is_active=(status or "").lower() != "inactive",
        )


@dataclass
class UpstreamPage:
    """One page of raw invoice payloads."""
    page_number: int
    records: List[Any]
    has_more: bool


# ═══════════════════════════════════════════════════════════════════════════════
# LOCAL RECORDS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class InvoiceRecord:
    """Invoice as stored locally."""
    id: int
    invoice_number: str
    invoice_date: datetime
    created_at: datetime
    customer_name: str
    total: Decimal
    currency: str
    employee_id: Optional[int] = None
    salesperson_name: str = NO_SALESPERSON
    description: Optional[str] = None
    status: Optional[str] = None
    synced_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_cancelled(self) -> bool:
        return is_cancelled_status(self.status)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for API responses (camelCase, totals as strings)."""
        return {
            "id": self.id,
            "invoiceNumber": self.invoice_number,
            "invoiceDate": self.invoice_date.isoformat() if self.invoice_date else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "customerName": self.customer_name,
            "total": str(self.total),
            "currency": self.currency,
            "employeeId": self.employee_id,
            "salespersonName": self.salesperson_name,
            "description": self.description,
            "status": self.status,
            "syncedAt": self.synced_at.isoformat() if self.synced_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class EmployeeRecord:
    """Salesperson as stored locally."""
    id: int
    first_name: str = ""
    last_name: str = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    department: Optional[str] = None
    position: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        """First and last name, trimmed."""
        return f"{self.first_name or ''} {self.last_name or ''}".strip()

    @classmethod
    def from_raw(cls, raw: RawEmployee, now: datetime) -> "EmployeeRecord":
        return cls(
            id=raw.id,
            first_name=raw.first_name or "",
            last_name=raw.last_name or "",
            email=raw.email,
            phone=raw.phone,
            department=raw.department,
            position=raw.position,
            is_active=raw.is_active,
            created_at=now,
            updated_at=now,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "fullName": self.full_name,
            "email": self.email,
            "phone": self.phone,
            "department": self.department,
            "position": self.position,
            "isActive": self.is_active,
        }


@dataclass
class SyncLogEntry:
    """One sync run, persisted at start, after every page and at the end."""
    id: str
    sync_type: str
    start_time: datetime
    status: SyncStatus = SyncStatus.RUNNING
    end_time: Optional[datetime] = None
    total_records: int = 0
    processed_records: int = 0
    skipped_records: int = 0
    api_calls: int = 0
    duration_seconds: Optional[int] = None
    error_message: Optional[str] = None
    notes: Optional[str] = None
    last_page_processed: Optional[int] = None

    @classmethod
    def start(cls, sync_type: str = "invoices", now: Optional[datetime] = None) -> "SyncLogEntry":
        """New running entry."""
        return cls(
            id=uuid.uuid4().hex,
            sync_type=sync_type,
            start_time=now or utcnow(),
            status=SyncStatus.RUNNING,
        )

    def is_active(self, now: datetime, lease_seconds: int) -> bool:
        """Running, unterminated and started within the lease window."""
        return (
            self.status is SyncStatus.RUNNING
            and self.end_time is None
            and self.start_time > now - timedelta(seconds=lease_seconds)
        )

    def record_page(self, page: int, observed: int, processed: int, skipped: int) -> None:
        """Advance progress counters after a page has been committed."""
        self.total_records += observed
        self.processed_records += processed
        self.skipped_records += skipped
        self.last_page_processed = page

    def finalize(
        self,
        status: SyncStatus,
        now: Optional[datetime] = None,
        error_message: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> None:
        """
        Move the entry to a terminal status exactly once.

        Raises:
            ValueError: If the status is not terminal or the entry is already final
        """
        if not status.is_terminal:
            raise ValueError(f"{status.value!r} is not a terminal status")
        if self.status.is_terminal:
            raise ValueError(f"Sync {self.id} already finalized as {self.status.value}")

        self.status = status
        self.end_time = now or utcnow()
        self.duration_seconds = int((self.end_time - self.start_time).total_seconds())
        if error_message is not None:
            self.error_message = error_message
        if notes is not None:
            self.notes = notes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "syncType": self.sync_type,
            "status": self.status.value,
            "startTime": self.start_time.isoformat(),
            "endTime": self.end_time.isoformat() if self.end_time else None,
            "durationSeconds": self.duration_seconds,
            "totalRecords": self.total_records,
            "processedRecords": self.processed_records,
            "skippedRecords": self.skipped_records,
            "apiCalls": self.api_calls,
            "errorMessage": self.error_message,
            "notes": self.notes,
            "lastPageProcessed": self.last_page_processed,
        }
