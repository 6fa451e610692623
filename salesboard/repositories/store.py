"""
Combined DuckDB store: one connection shared by every repository.
"""
from pathlib import Path
from typing import Any, Dict, Optional, Union

from salesboard.repositories.employees_repo import EmployeesRepository
from salesboard.repositories.invoices_repo import InvoicesRepository
from salesboard.repositories.sync_repo import SyncRepository


class Store(InvoicesRepository, EmployeesRepository, SyncRepository):
    """
    Async-compatible DuckDB store for invoices, employees and sync logs.

    Features:
    - Persistent storage (survives restarts)
    - Batch upserts, one transaction per batch
    - Serialized access with thread offloading
    """

    def __init__(self, db_path: Union[str, Path] = None):
        super().__init__(db_path)

    async def get_stats(self) -> Dict[str, Any]:
        """Counts, invoice date range and currency breakdown."""
        earliest, latest = await self.get_invoice_date_range()
        return {
            "total_invoices": await self.count_invoices(),
            "total_employees": await self.count_employees(),
            "date_range": {
                "earliest": earliest.isoformat() if earliest else None,
                "latest": latest.isoformat() if latest else None,
            },
            "currency_breakdown": await self.aggregate_by_currency(),
            "db_path": self.db_path,
        }


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_store_instance: Optional[Store] = None


async def get_store() -> Store:
    """
    Get singleton store instance (coroutine-safe).

    The instance is created without awaiting; concurrent callers share it
    and connect() is serialized by the store's own lock.
    """
    global _store_instance
    if _store_instance is None:
        _store_instance = Store()
    await _store_instance.connect()
    return _store_instance


async def close_store() -> None:
    """Close singleton store instance."""
    global _store_instance
    if _store_instance:
        await _store_instance.close()
        _store_instance = None
