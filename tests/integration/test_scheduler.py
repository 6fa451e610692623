"""
Tests for the periodic sync scheduler.
"""
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from salesboard.exceptions import SyncConflictError
from salesboard.models import SyncLogEntry, SyncStatus
from salesboard.scheduler import SYNC_JOB_ID, SyncScheduler


@pytest.fixture
def sync_service():
    return MagicMock()


class TestSyncScheduler:
    def test_no_jobs_before_start(self, sync_service):
        scheduler = SyncScheduler(sync_service, interval_minutes=15)

        assert scheduler.get_jobs() == []
        assert scheduler.is_running is False
        assert scheduler.interval_minutes == 15

    @pytest.mark.asyncio
    async def test_tick_returns_finished_entry(self, sync_service):
        entry = SyncLogEntry.start(now=datetime(2025, 6, 1))
        entry.finalize(SyncStatus.COMPLETED, now=datetime(2025, 6, 1, 0, 1))
        sync_service.run_sync = AsyncMock(return_value=entry)

        result = await SyncScheduler(sync_service, interval_minutes=5).run_sync_job()

        assert result["status"] == "completed"
        assert result["id"] == entry.id

    @pytest.mark.asyncio
    async def test_tick_skipped_while_sync_running(self, sync_service):
        sync_service.run_sync = AsyncMock(
            side_effect=SyncConflictError("Sync already running", active_sync_id="abc")
        )
        scheduler = SyncScheduler(sync_service, interval_minutes=5)

        result = await scheduler.run_sync_job()

        assert result == {"status": "skipped", "active_sync_id": "abc"}

    @pytest.mark.asyncio
    async def test_start_registers_single_job(self, sync_service):
        sync_service.run_sync = AsyncMock()
        scheduler = SyncScheduler(sync_service, interval_minutes=30)
        scheduler.start()
        try:
            scheduler.start()
            jobs = scheduler.get_jobs()

            assert scheduler.is_running
            assert len(jobs) == 1
            assert jobs[0]["id"] == SYNC_JOB_ID
            assert jobs[0]["next_run"] is not None
            assert jobs[0]["skipped_count"] == 0
        finally:
            scheduler.shutdown()

        assert scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_skip_is_counted_after_start(self, sync_service):
        sync_service.run_sync = AsyncMock(side_effect=SyncConflictError("busy", active_sync_id="x"))
        scheduler = SyncScheduler(sync_service, interval_minutes=30)
        scheduler.start()
        try:
            await scheduler.run_sync_job()
            assert scheduler.get_jobs()[0]["skipped_count"] == 1
        finally:
            scheduler.shutdown()
