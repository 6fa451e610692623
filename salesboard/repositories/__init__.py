"""
Repository layer for the DuckDB store.

- BaseRepository: Connection management and schema initialization
- InvoicesRepository: Invoice upserts, listings and aggregates
- EmployeesRepository: Salesperson roster
- SyncRepository: Sync logs and the active-run lease
- Store: All of the above over one connection
"""
from salesboard.repositories.base import BaseRepository
from salesboard.repositories.invoices_repo import InvoicesRepository
from salesboard.repositories.employees_repo import EmployeesRepository
from salesboard.repositories.sync_repo import SyncRepository
from salesboard.repositories.store import Store, get_store, close_store

__all__ = [
    "BaseRepository",
    "InvoicesRepository",
    "EmployeesRepository",
    "SyncRepository",
    "Store",
    "get_store",
    "close_store",
]
