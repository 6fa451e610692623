"""
Base repository with connection management and schema initialization.

All domain repositories inherit from this class. Every statement runs
under one asyncio lock (DuckDB connections are not thread-safe) and is
offloaded to a worker thread so the event loop is never blocked.
"""
import asyncio
from contextlib import asynccontextmanager
from decimal import MAX_PREC, Context, Decimal
from pathlib import Path
from typing import Any, Callable, List, Optional, TypeVar, Union

import duckdb

from salesboard.config import config
from salesboard.exceptions import QueryTimeoutError, StoreError
from salesboard.observability import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

IN_MEMORY = ":memory:"

SCHEMA_SQL = """
-- Invoices (upstream id is the primary key)
CREATE TABLE IF NOT EXISTS invoices (
    id BIGINT PRIMARY KEY,
    invoice_number VARCHAR NOT NULL,
    invoice_date TIMESTAMP NOT NULL,
    created_at TIMESTAMP NOT NULL,
    customer_name VARCHAR NOT NULL,
    total VARCHAR NOT NULL,  -- exact decimal text
    currency VARCHAR NOT NULL,
    employee_id BIGINT,
    salesperson_name VARCHAR NOT NULL,
    description VARCHAR,
    status VARCHAR,
    synced_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

-- Employees (salespersons)
CREATE TABLE IF NOT EXISTS employees (
    id BIGINT PRIMARY KEY,
    first_name VARCHAR NOT NULL DEFAULT '',
    last_name VARCHAR NOT NULL DEFAULT '',
    email VARCHAR,
    phone VARCHAR,
    department VARCHAR,
    position VARCHAR,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMP,
    updated_at TIMESTAMP
);

-- Sync run provenance
CREATE TABLE IF NOT EXISTS sync_logs (
    id VARCHAR PRIMARY KEY,
    sync_type VARCHAR NOT NULL,
    start_time TIMESTAMP NOT NULL,
    end_time TIMESTAMP,
    status VARCHAR NOT NULL,
    total_records INTEGER NOT NULL DEFAULT 0,
    processed_records INTEGER NOT NULL DEFAULT 0,
    skipped_records INTEGER NOT NULL DEFAULT 0,
    api_calls INTEGER NOT NULL DEFAULT 0,
    duration_seconds INTEGER,
    error_message VARCHAR,
    notes VARCHAR,
    last_page_processed INTEGER
);

-- Active-run lease, one row per sync type
CREATE TABLE IF NOT EXISTS sync_lease (
    name VARCHAR PRIMARY KEY,
    holder VARCHAR,
    acquired_at TIMESTAMP,
    expires_at TIMESTAMP
);
"""


# Unbounded precision: additions and normalization never round
EXACT = Context(prec=MAX_PREC)


def clean_decimal(value: Any) -> Decimal:
    """Decimal from a stored total or aggregate, without trailing zero padding."""
    if value is None:
        return Decimal("0")
    result = value if isinstance(value, Decimal) else Decimal(str(value))
    if result == result.to_integral_value():
        return result.quantize(Decimal(1), context=EXACT)
    return result.normalize(EXACT)


def _rollback(conn: duckdb.DuckDBPyConnection) -> None:
    try:
        conn.execute("ROLLBACK")
    except duckdb.InterruptException:
        # An interrupt raised between statements lands on the next one
        conn.execute("ROLLBACK")


def _consume_interrupt(conn: duckdb.DuckDBPyConnection) -> None:
    """Clear an interrupt that arrived after the worker's last statement."""
    try:
        conn.execute("SELECT 1")
    except duckdb.InterruptException:
        logger.debug("Cleared pending interrupt")


class BaseRepository:
    """
    Base repository with DuckDB connection management.

    Usage:
        class InvoicesRepository(BaseRepository):
            async def count_invoices(self):
                row = await self._fetch_one("SELECT COUNT(*) FROM invoices")
                return row[0]
    """

    def __init__(self, db_path: Union[str, Path] = None):
        self.db_path = str(db_path or config.store.db_path)
        self.query_timeout = config.store.query_timeout
        self.long_query_timeout = config.store.long_query_timeout
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = asyncio.Lock()  # Serializes all database access

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        if self._connection is not None:
            return
        if self.db_path != IN_MEMORY:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        async with self._lock:
            if self._connection is None:
                self._connection = duckdb.connect(self.db_path)
                self._connection.execute(SCHEMA_SQL)
                logger.info(f"DuckDB connected: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        async with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
                logger.info("DuckDB connection closed")

    @asynccontextmanager
    async def connection(self):
        """Get database connection with automatic reconnection.

        Acquires lock to ensure single-threaded DuckDB access.
        """
        if self._connection is None:
            await self.connect()
        async with self._lock:
            yield self._connection

    # ─── Query Execution with Timeout ────────────────────────────────────────

    async def _run(
        self,
        func: Callable[[duckdb.DuckDBPyConnection], T],
        label: str,
        timeout: float = None,
    ) -> T:
        """
        Run func(conn) in a worker thread under the connection lock.

        On timeout the running statement is interrupted and the lock is held
        until the worker thread has returned, so an open transaction is
        rolled back before anything else touches the connection.

        Raises:
            QueryTimeoutError: If the work exceeds timeout
            StoreError: On any DuckDB error
        """
        timeout = timeout or self.query_timeout
        async with self.connection() as conn:
            worker = asyncio.ensure_future(asyncio.to_thread(func, conn))
            try:
                return await asyncio.wait_for(asyncio.shield(worker), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Store operation timed out after {timeout}s: {label}")
                conn.interrupt()
                await asyncio.wait([worker])
                await asyncio.to_thread(_consume_interrupt, conn)
                if worker.exception() is None:
                    # Finished between the timeout and the interrupt
                    return worker.result()
                raise QueryTimeoutError(label, timeout, f"{label} failed") from worker.exception()
            except asyncio.CancelledError:
                conn.interrupt()
                await asyncio.wait([worker])
                await asyncio.to_thread(_consume_interrupt, conn)
                raise
            except duckdb.Error as e:
                logger.error(f"Store error in {label}: {e}")
                raise StoreError(f"Store operation failed: {label}", details=str(e)) from e

    async def _fetch_one(self, query: str, params: list = None) -> Optional[tuple]:
        """Execute query and fetch one result."""
        return await self._run(
            lambda conn: conn.execute(query, params or []).fetchone(), query
        )

    async def _fetch_all(self, query: str, params: list = None) -> List[tuple]:
        """Execute query and fetch all results."""
        return await self._run(
            lambda conn: conn.execute(query, params or []).fetchall(), query
        )

    async def _transaction(
        self,
        func: Callable[[duckdb.DuckDBPyConnection], T],
        label: str,
        timeout: float = None,
    ) -> T:
        """
        Run func(conn) inside BEGIN/COMMIT, rolling back on any exception.

        Non-DuckDB exceptions raised by func propagate unchanged after rollback.
        """
        def _in_transaction(conn: duckdb.DuckDBPyConnection) -> T:
            conn.execute("BEGIN TRANSACTION")
            try:
                result = func(conn)
            except Exception:
                _rollback(conn)
                raise
            conn.execute("COMMIT")
            return result

        return await self._run(_in_transaction, label, timeout or self.long_query_timeout)
