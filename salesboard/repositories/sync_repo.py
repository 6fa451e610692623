"""
Sync repository: run provenance (sync_logs) and the active-run lease.

The lease check and the creation of the running log entry happen in one
transaction under the store lock, so two callers can never both start a run.
"""
from datetime import datetime, timedelta
from typing import List, Optional

from salesboard.exceptions import SyncConflictError
from salesboard.models import SyncLogEntry, SyncStatus, utcnow
from salesboard.observability import get_logger
from salesboard.repositories.base import BaseRepository

logger = get_logger(__name__)

SYNC_LOG_COLUMNS = (
    "id, sync_type, start_time, end_time, status, total_records, processed_records, "
    "skipped_records, api_calls, duration_seconds, error_message, notes, last_page_processed"
)

_UPSERT_LOG_SQL = f"""
    INSERT INTO sync_logs ({SYNC_LOG_COLUMNS})
    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT (id) DO UPDATE SET
        end_time = excluded.end_time,
        status = excluded.status,
        total_records = excluded.total_records,
        processed_records = excluded.processed_records,
        skipped_records = excluded.skipped_records,
        api_calls = excluded.api_calls,
        duration_seconds = excluded.duration_seconds,
        error_message = excluded.error_message,
        notes = excluded.notes,
        last_page_processed = excluded.last_page_processed
"""


def _log_params(entry: SyncLogEntry) -> list:
    return [
        entry.id, entry.sync_type, entry.start_time, entry.end_time, entry.status.value,
        entry.total_records, entry.processed_records, entry.skipped_records,
        entry.api_calls, entry.duration_seconds, entry.error_message, entry.notes,
        entry.last_page_processed,
    ]


def _row_to_log(row: tuple) -> SyncLogEntry:
    return SyncLogEntry(
        id=row[0],
        sync_type=row[1],
        start_time=row[2],
        end_time=row[3],
        status=SyncStatus(row[4]),
        total_records=row[5],
        processed_records=row[6],
        skipped_records=row[7],
        api_calls=row[8],
        duration_seconds=row[9],
        error_message=row[10],
        notes=row[11],
        last_page_processed=row[12],
    )


class SyncRepository(BaseRepository):
    """Repository for sync logs and the run lease."""

    async def try_begin_run(
        self,
        entry: SyncLogEntry,
        lease_seconds: int,
        now: Optional[datetime] = None,
    ) -> SyncLogEntry:
        """
        Atomically take the run lease and persist the running log entry.

        Raises:
            SyncConflictError: If an unexpired lease is held or a running
                entry started within lease_seconds
        """
        now = now or utcnow()
        window_start = now - timedelta(seconds=lease_seconds)

        def _begin(conn) -> SyncLogEntry:
            lease = conn.execute(
                "SELECT holder, expires_at FROM sync_lease WHERE name = ?",
                [entry.sync_type]
            ).fetchone()
            if lease and lease[0] and lease[1] and lease[1] > now:
                raise SyncConflictError(
                    "Sync already running", details=lease[0], active_sync_id=lease[0]
                )

            running = conn.execute("""
                SELECT id FROM sync_logs
                WHERE sync_type = ? AND status = ? AND end_time IS NULL AND start_time > ?
                ORDER BY start_time DESC
                LIMIT 1
            """, [entry.sync_type, SyncStatus.RUNNING.value, window_start]).fetchone()
            if running:
                raise SyncConflictError(
                    "Sync already running", details=running[0], active_sync_id=running[0]
                )

            conn.execute(_UPSERT_LOG_SQL, _log_params(entry))
            conn.execute("""
                INSERT INTO sync_lease (name, holder, acquired_at, expires_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (name) DO UPDATE SET
                    holder = excluded.holder,
                    acquired_at = excluded.acquired_at,
                    expires_at = excluded.expires_at
            """, [entry.sync_type, entry.id, now, now + timedelta(seconds=lease_seconds)])
            return entry

        result = await self._transaction(_begin, "try_begin_run")
        logger.info(f"Sync lease acquired by {entry.id}", extra={"sync_id": entry.id})
        return result

    async def release_run(self, sync_id: str, sync_type: str = "invoices") -> None:
        """Release the lease if this run still holds it."""
        await self._run(
            lambda conn: conn.execute("""
                UPDATE sync_lease
                SET holder = NULL, expires_at = NULL
                WHERE name = ? AND holder = ?
            """, [sync_type, sync_id]),
            "release_run",
        )

    async def append_or_update_sync_log(self, entry: SyncLogEntry) -> None:
        """Insert the entry or overwrite its progress fields."""
        await self._run(
            lambda conn: conn.execute(_UPSERT_LOG_SQL, _log_params(entry)),
            "append_or_update_sync_log",
        )

    async def get_latest_sync_log(self, sync_type: str = "invoices") -> Optional[SyncLogEntry]:
        row = await self._fetch_one(f"""
            SELECT {SYNC_LOG_COLUMNS} FROM sync_logs
            WHERE sync_type = ?
            ORDER BY start_time DESC
            LIMIT 1
        """, [sync_type])
        return _row_to_log(row) if row else None

    async def get_sync_log(self, sync_id: str) -> Optional[SyncLogEntry]:
        row = await self._fetch_one(
            f"SELECT {SYNC_LOG_COLUMNS} FROM sync_logs WHERE id = ?", [sync_id]
        )
        return _row_to_log(row) if row else None

    async def get_sync_logs(self, limit: int = 10, sync_type: str = "invoices") -> List[SyncLogEntry]:
        """Most recent runs first."""
        rows = await self._fetch_all(f"""
            SELECT {SYNC_LOG_COLUMNS} FROM sync_logs
            WHERE sync_type = ?
            ORDER BY start_time DESC
            LIMIT ?
        """, [sync_type, limit])
        return [_row_to_log(row) for row in rows]
