"""
Sync service for keeping DuckDB in sync with the OneUp CRM API.

One run walks the paginated invoice endpoint from page 1 until a short
page, reconciling and upserting each page in its own transaction and
checkpointing the sync log after every page.

Features:
- Guarded start: a persisted lease allows one running sync at a time
- Cooperative cancellation between pages
- Every run ends in a finalized log entry (completed, failed or cancelled)
- Observability: Correlation IDs and timing metrics
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from salesboard.config import SyncConfig, config
from salesboard.crm_client import OneUpClient, get_client
from salesboard.exceptions import (
    NoActiveSyncError,
    ReconciliationSkip,
    StoreWriteFailure,
    UpstreamError,
)
from salesboard.models import (
    EmployeeRecord,
    RawEmployee,
    SyncLogEntry,
    SyncStatus,
    parse_int,
    utcnow,
)
from salesboard.observability import Timer, get_logger, sync_run_context
from salesboard.reconciler import RecordReconciler
from salesboard.repositories import Store, get_store

logger = get_logger(__name__)

CANCELLED_BY_USER = "Sync cancelled by user"


@dataclass
class SyncStatusReport:
    """Current sync state as shown on the dashboard."""
    is_running: bool
    last_sync_id: Optional[str]
    last_sync_time: Optional[datetime]
    last_sync_status: str
    last_sync_duration: Optional[int]
    last_error: Optional[str]
    total_records: int
    processed_records: int
    api_calls: int
    total_invoices: int
    total_employees: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isRunning": self.is_running,
            "lastSyncId": self.last_sync_id,
            "lastSyncTime": self.last_sync_time.isoformat() if self.last_sync_time else None,
            "lastSyncStatus": self.last_sync_status,
            "lastSyncDuration": self.last_sync_duration,
            "lastError": self.last_error,
            "totalRecords": self.total_records,
            "processedRecords": self.processed_records,
            "apiCalls": self.api_calls,
            "totalInvoices": self.total_invoices,
            "totalEmployees": self.total_employees,
        }


class SyncService:
    """
    Service for syncing OneUp invoices to DuckDB.

    Usage:
        service = SyncService(store, client)
        entry = await service.run_sync()      # awaited inline
        entry = await service.trigger()       # background task
        await service.stop()                  # cooperative cancel
    """

    def __init__(
        self,
        store: Store,
        client: OneUpClient,
        reconciler: Optional[RecordReconciler] = None,
        sync_config: Optional[SyncConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.client = client
        self.reconciler = reconciler or RecordReconciler()
        self.config = sync_config or config.sync
        self._clock = clock
        self._active: Optional[SyncLogEntry] = None
        self._cancel_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        """True while this process is executing a run."""
        return self._active is not None

    # ═══════════════════════════════════════════════════════════════════════════
    # RUN LIFECYCLE
    # ═══════════════════════════════════════════════════════════════════════════

    async def _begin(self) -> SyncLogEntry:
        """Take the lease and persist the running entry, or raise SyncConflictError."""
        entry = SyncLogEntry.start(self.config.sync_type, now=self._clock())
        await self.store.try_begin_run(
            entry, self.config.lease_timeout_seconds, now=entry.start_time
        )
        self._active = entry
        self._cancel_event = asyncio.Event()
        logger.info("Sync started", extra={"sync_id": entry.id})
        return entry

    async def run_sync(self) -> SyncLogEntry:
        """
        Run one sync to completion.

        Returns:
            The finalized log entry

        Raises:
            SyncConflictError: If another run is active
        """
        entry = await self._begin()
        return await self._execute(entry)

    async def trigger(self) -> SyncLogEntry:
        """
        Start a sync in the background.

        Returns:
            The running log entry

        Raises:
            SyncConflictError: If another run is active
        """
        entry = await self._begin()
        self._task = asyncio.create_task(self._execute(entry), name=f"sync-{entry.id[:8]}")
        self._task.add_done_callback(_log_task_failure)
        return entry

    async def wait(self) -> Optional[SyncLogEntry]:
        """Wait for the background run started by trigger()."""
        if self._task is None:
            return None
        return await self._task

    async def stop(self) -> SyncLogEntry:
        """
        Request cancellation of the running sync.

        A run owned by this process stops before its next page. A running
        entry left behind by a dead process is finalized as cancelled.

        Raises:
            NoActiveSyncError: If nothing is running
        """
        if self._active is not None and self._cancel_event is not None:
            self._cancel_event.set()
            logger.info("Sync cancellation requested", extra={"sync_id": self._active.id})
            return self._active

        latest = await self.store.get_latest_sync_log(self.config.sync_type)
        if latest is None or latest.status is not SyncStatus.RUNNING:
            raise NoActiveSyncError("No sync is currently running")

        latest.finalize(SyncStatus.CANCELLED, now=self._clock(), notes=CANCELLED_BY_USER)
        await self.store.append_or_update_sync_log(latest)
        await self.store.release_run(latest.id, latest.sync_type)
        logger.warning("Orphaned sync marked cancelled", extra={"sync_id": latest.id})
        return latest

    async def _execute(self, entry: SyncLogEntry) -> SyncLogEntry:
        """Run the page loop and finalize the entry whatever happens."""
        with sync_run_context(entry.id, entry.sync_type):
            return await self._run_and_finalize(entry)

    async def _run_and_finalize(self, entry: SyncLogEntry) -> SyncLogEntry:
        try:
            with Timer("sync_run", logger):
                cancelled = await self._sync_pages(entry)
        except (UpstreamError, StoreWriteFailure) as e:
            logger.error(f"Sync failed: {e}", extra={"sync_id": entry.id})
            entry.finalize(SyncStatus.FAILED, now=self._clock(), error_message=str(e))
        except (Exception, asyncio.CancelledError) as e:
            logger.error(f"Sync crashed: {e!r}", exc_info=True, extra={"sync_id": entry.id})
            entry.finalize(
                SyncStatus.FAILED, now=self._clock(), error_message=str(e) or type(e).__name__
            )
            await self._finish(entry)
            raise
        else:
            if cancelled:
                entry.finalize(SyncStatus.CANCELLED, now=self._clock(), notes=CANCELLED_BY_USER)
            else:
                entry.finalize(
                    SyncStatus.COMPLETED,
                    now=self._clock(),
                    notes=f"Synced {entry.processed_records} invoices in {entry.api_calls} API calls",
                )
        await self._finish(entry)

        logger.info(
            f"Sync {entry.status.value}",
            extra={
                "sync_id": entry.id,
                "processed": entry.processed_records,
                "skipped": entry.skipped_records,
                "api_calls": entry.api_calls,
                "duration_seconds": entry.duration_seconds,
            }
        )
        return entry

    async def _finish(self, entry: SyncLogEntry) -> None:
        """Persist the final entry and release the lease."""
        try:
            await self.store.append_or_update_sync_log(entry)
        finally:
            self._active = None
            self._cancel_event = None
            await self.store.release_run(entry.id, entry.sync_type)

    async def _sync_pages(self, entry: SyncLogEntry) -> bool:
        """
        Fetch, reconcile and persist pages until a short page.

        Returns:
            True if the run was cancelled
        """
        await self.refresh_employees()
        employees = await self.store.get_employee_directory()

        page_number = 1
        while True:
            if self._cancel_event.is_set():
                return True

            if page_number > self.config.max_pages:
                logger.warning(f"Stopping at page limit {self.config.max_pages}")
                return False

            page = await self.client.fetch_invoice_page(page_number)
            entry.api_calls += 1

            ids = [parse_int(r.get("id")) for r in page.records if isinstance(r, dict)]
            existing = await self.store.get_invoices_by_ids([i for i in ids if i is not None])
            batch = self.reconciler.reconcile_batch(
                page.records, existing, employees, now=self._clock()
            )
            await self.store.upsert_invoices(batch.records)

            entry.record_page(page_number, len(page.records), batch.processed, batch.skipped)
            await self.store.append_or_update_sync_log(entry)

            logger.info(
                f"Page {page_number}: {batch.inserted} new, {batch.updated} updated, "
                f"{batch.skipped} skipped",
                extra={"page": page_number}
            )

            if not page.has_more:
                return False

            page_number += 1
            if await self._pause():
                return True

    async def _pause(self) -> bool:
        """Inter-page delay; returns True if cancellation arrived meanwhile."""
        delay = self.config.page_delay_seconds
        if delay <= 0:
            return self._cancel_event.is_set()
        try:
            await asyncio.wait_for(self._cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def refresh_employees(self) -> int:
        """
        Refresh the employee roster from upstream.

        Best effort: a failure is logged and the stored roster is used.
        """
        try:
            payloads = await self.client.fetch_employees(force_refresh=True)
        except UpstreamError as e:
            logger.warning(f"Employee refresh failed, using stored roster: {e}")
            return 0

        now = self._clock()
        records: List[EmployeeRecord] = []
        for data in payloads:
            try:
                records.append(EmployeeRecord.from_raw(RawEmployee.from_api(data), now))
            except ReconciliationSkip as e:
                logger.warning(f"Skipping employee: {e}")

        return await self.store.upsert_employees(records)

    # ═══════════════════════════════════════════════════════════════════════════
    # STATUS
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_status(self) -> SyncStatusReport:
        """Latest run summary plus store totals."""
        latest = await self.store.get_latest_sync_log(self.config.sync_type)
        total_invoices = await self.store.count_invoices()
        total_employees = await self.store.count_employees()

        if latest is None:
            return SyncStatusReport(
                is_running=self.is_running,
                last_sync_id=None,
                last_sync_time=None,
                last_sync_status=SyncStatus.NEVER.value,
                last_sync_duration=None,
                last_error=None,
                total_records=0,
                processed_records=0,
                api_calls=0,
                total_invoices=total_invoices,
                total_employees=total_employees,
            )

        running = self.is_running or latest.is_active(
            self._clock(), self.config.lease_timeout_seconds
        )
        return SyncStatusReport(
            is_running=running,
            last_sync_id=latest.id,
            last_sync_time=latest.start_time,
            last_sync_status=latest.status.value,
            last_sync_duration=latest.duration_seconds,
            last_error=latest.error_message,
            total_records=latest.total_records,
            processed_records=latest.processed_records,
            api_calls=latest.api_calls,
            total_invoices=total_invoices,
            total_employees=total_employees,
        )

    async def get_history(self, limit: int = None) -> List[SyncLogEntry]:
        """Most recent runs first."""
        return await self.store.get_sync_logs(
            limit or self.config.history_limit, self.config.sync_type
        )


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"Background sync task failed: {exc!r}")


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_sync_service: Optional[SyncService] = None


async def get_sync_service() -> SyncService:
    """Get singleton sync service instance."""
    global _sync_service
    if _sync_service is None:
        store = await get_store()
        _sync_service = SyncService(store, get_client())
    return _sync_service
