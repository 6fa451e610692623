"""
Pydantic response models for API endpoints.

Field names follow the camelCase wire format the dashboard consumes.
Money amounts are decimal strings.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ═══════════════════════════════════════════════════════════════════════════════
# INVOICES
# ═══════════════════════════════════════════════════════════════════════════════

class InvoiceResponse(BaseModel):
    """One locally stored invoice."""
    id: int
    invoiceNumber: Optional[str] = None
    invoiceDate: Optional[str] = None
    createdAt: Optional[str] = None
    customerName: str
    total: str = Field(description="Decimal amount as a string")
    currency: str
    employeeId: Optional[int] = None
    salespersonName: str
    description: Optional[str] = None
    status: Optional[str] = None
    syncedAt: Optional[str] = None
    updatedAt: Optional[str] = None


class InvoicePageResponse(BaseModel):
    data: List[InvoiceResponse]
    page: int
    pageSize: int
    totalCount: int
    totalPages: int
    hasNextPage: bool


# ═══════════════════════════════════════════════════════════════════════════════
# AGGREGATES
# ═══════════════════════════════════════════════════════════════════════════════

class CurrencyTotalResponse(BaseModel):
    currency: str
    total: str
    count: int


class SalespersonResponse(BaseModel):
    employeeId: int
    salespersonName: str
    totalSales: str
    invoiceCount: int
    averageSale: str
    currencies: List[CurrencyTotalResponse] = []


class RevenueResponse(BaseModel):
    """Revenue converted into the reference currency, cancelled invoices excluded."""
    referenceCurrency: str
    total: str
    invoiceCount: int
    cancelledCount: int
    byCurrency: Dict[str, str]
    convertedByCurrency: Dict[str, str]
    unconverted: Dict[str, int] = Field(
        default_factory=dict, description="Invoice count per currency without a rate"
    )


# ═══════════════════════════════════════════════════════════════════════════════
# SYNC
# ═══════════════════════════════════════════════════════════════════════════════

class SyncStatusResponse(BaseModel):
    isRunning: bool
    lastSyncId: Optional[str] = None
    lastSyncTime: Optional[str] = None
    lastSyncStatus: str = Field(description="running, completed, failed, cancelled or never")
    lastSyncDuration: Optional[int] = None
    lastError: Optional[str] = None
    totalRecords: int = 0
    processedRecords: int = 0
    apiCalls: int = 0
    totalInvoices: int = 0
    totalEmployees: int = 0


class SyncLogResponse(BaseModel):
    id: str
    syncType: str
    status: str
    startTime: str
    endTime: Optional[str] = None
    durationSeconds: Optional[int] = None
    totalRecords: int = 0
    processedRecords: int = 0
    skippedRecords: int = 0
    apiCalls: int = 0
    errorMessage: Optional[str] = None
    notes: Optional[str] = None
    lastPageProcessed: Optional[int] = None


class SyncHistoryResponse(BaseModel):
    data: List[SyncLogResponse]
    count: int


class SyncActionResponse(BaseModel):
    message: str
    sync: SyncLogResponse


# ═══════════════════════════════════════════════════════════════════════════════
# HEALTH CHECK
# ═══════════════════════════════════════════════════════════════════════════════

class StoreHealth(BaseModel):
    """DuckDB statistics."""
    status: str
    latency_ms: Optional[float] = None
    total_invoices: Optional[int] = None
    total_employees: Optional[int] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(description="Service status: healthy or degraded")
    version: str = Field(description="Application version")
    uptime_seconds: int = Field(description="Uptime in seconds")
    correlation_id: Optional[str] = Field(None, description="Request correlation ID")
    store: StoreHealth
    scheduler: List[Dict[str, Any]] = Field(default_factory=list, description="Scheduled jobs")
