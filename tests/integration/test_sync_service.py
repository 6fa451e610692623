"""
Integration tests for SyncService: fake OneUp client, real in-memory store.
"""
import asyncio
import time
from datetime import timedelta
from decimal import Decimal

import pytest

from salesboard.config import SyncConfig
from salesboard.exceptions import (
    NoActiveSyncError,
    SyncConflictError,
    UpstreamAPIError,
    UpstreamUnavailable,
)
from salesboard.models import SyncLogEntry, SyncStatus
from salesboard.query_service import QueryService
from salesboard.sync_service import CANCELLED_BY_USER, SyncService


@pytest.fixture
def service(store, fake_client, sync_config, clock):
    return SyncService(store, fake_client, sync_config=sync_config, clock=clock)


class TestRunSync:
    @pytest.mark.asyncio
    async def test_full_run_persists_every_page(self, service, store, fake_client):
        entry = await service.run_sync()

        assert entry.status is SyncStatus.COMPLETED
        assert entry.api_calls == 2
        assert entry.total_records == 3
        assert entry.processed_records == 3
        assert entry.skipped_records == 0
        assert entry.last_page_processed == 2
        assert fake_client.pages_requested == [1, 2]
        assert await store.aggregate_by_currency() == {"USD": 3}

    @pytest.mark.asyncio
    async def test_final_log_is_persisted(self, service, store):
        entry = await service.run_sync()

        stored = await store.get_sync_log(entry.id)
        assert stored.status is SyncStatus.COMPLETED
        assert stored.end_time is not None
        assert stored.duration_seconds >= 0
        assert "3 invoices" in stored.notes
        assert not service.is_running

    @pytest.mark.asyncio
    async def test_employees_without_invoices_show_zero(self, service, store):
        await service.run_sync()

        performance = await QueryService(store).salesperson_performance()

        assert {p.employee_id for p in performance} == {19, 22}
        for person in performance:
            assert person.total_sales == Decimal("0")
            assert person.invoice_count == 0

    @pytest.mark.asyncio
    async def test_second_run_is_idempotent(self, service, store):
        await service.run_sync()
        first = {r.id: (r.total, r.currency, r.invoice_number) for r in await store.get_all_invoices()}

        await service.run_sync()
        second = {r.id: (r.total, r.currency, r.invoice_number) for r in await store.get_all_invoices()}

        assert first == second
        assert await store.count_invoices() == 3

    @pytest.mark.asyncio
    async def test_upstream_change_updates_record(self, service, store, fake_client):
        await service.run_sync()
        before = await store.get_invoice(2)

        fake_client.invoices[1] = dict(fake_client.invoices[1], total=250)
        await service.run_sync()
        after = await store.get_invoice(2)

        assert after.total == Decimal("250")
        assert after.updated_at > before.updated_at
        assert after.created_at == before.created_at

    @pytest.mark.asyncio
    async def test_salesperson_name_resolved(self, store, make_client, sample_employees, sync_config, clock):
        client = make_client(
            invoices=[{"id": 9, "total": 10, "currency": "PKR", "employee_id": 19}],
            employees=sample_employees,
        )
        await SyncService(store, client, sync_config=sync_config, clock=clock).run_sync()

        record = await store.get_invoice(9)
        assert record.salesperson_name == "Sara Khan"
        assert record.employee_id == 19

    @pytest.mark.asyncio
    async def test_bad_records_are_skipped_and_counted(self, store, make_client, sync_config, clock):
        client = make_client(
            invoices=[{"id": 1, "total": 5}, {"total": 7}, "garbage"],
            page_size=5,
        )
        entry = await SyncService(store, client, sync_config=sync_config, clock=clock).run_sync()

        assert entry.status is SyncStatus.COMPLETED
        assert entry.total_records == 3
        assert entry.processed_records == 1
        assert entry.skipped_records == 2
        assert await store.count_invoices() == 1

    @pytest.mark.asyncio
    async def test_empty_upstream(self, store, make_client, sync_config, clock):
        client = make_client(invoices=[])
        entry = await SyncService(store, client, sync_config=sync_config, clock=clock).run_sync()

        assert entry.status is SyncStatus.COMPLETED
        assert entry.api_calls == 1
        assert entry.processed_records == 0

    @pytest.mark.asyncio
    async def test_page_limit_stops_run(self, store, make_client, sample_invoices, sync_config, clock):
        config = SyncConfig(
            lease_timeout_seconds=3600, page_delay_seconds=0.0, max_pages=1, interval_minutes=60
        )
        client = make_client(invoices=sample_invoices)
        entry = await SyncService(store, client, sync_config=config, clock=clock).run_sync()

        assert entry.status is SyncStatus.COMPLETED
        assert client.pages_requested == [1]
        assert await store.count_invoices() == 2


class TestFailures:
    @pytest.mark.asyncio
    async def test_upstream_failure_keeps_committed_pages(self, store, make_client, sample_invoices, sync_config, clock):
        client = make_client(invoices=sample_invoices, fail_on={2: UpstreamUnavailable("API returned 503")})
        entry = await SyncService(store, client, sync_config=sync_config, clock=clock).run_sync()

        assert entry.status is SyncStatus.FAILED
        assert "503" in entry.error_message
        assert entry.last_page_processed == 1
        assert await store.count_invoices() == 2

        stored = await store.get_sync_log(entry.id)
        assert stored.status is SyncStatus.FAILED

    @pytest.mark.asyncio
    async def test_failure_releases_lease(self, store, make_client, sample_invoices, sync_config, clock):
        client = make_client(invoices=sample_invoices, fail_on={1: UpstreamAPIError("API returned 401")})
        service = SyncService(store, client, sync_config=sync_config, clock=clock)

        failed = await service.run_sync()
        client.fail_on = {}
        completed = await service.run_sync()

        assert failed.status is SyncStatus.FAILED
        assert completed.status is SyncStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unexpected_error_finalizes_and_propagates(self, store, make_client, sample_invoices, sync_config, clock):
        client = make_client(invoices=sample_invoices, fail_on={1: RuntimeError("bug")})
        service = SyncService(store, client, sync_config=sync_config, clock=clock)

        with pytest.raises(RuntimeError):
            await service.run_sync()

        latest = await store.get_latest_sync_log()
        assert latest.status is SyncStatus.FAILED
        assert latest.error_message == "bug"
        assert not service.is_running

    @pytest.mark.asyncio
    async def test_store_timeout_finalizes_run_as_failed(self, store, make_client, sample_invoices, sync_config, clock):
        real_transaction = store._transaction

        async def stalled_upsert(func, label, timeout=None):
            if label != "upsert_invoices":
                return await real_transaction(func, label, timeout)

            def stalled(conn):
                func(conn)
                time.sleep(0.3)
                raise RuntimeError("disk stalled")

            return await real_transaction(stalled, label, 0.05)

        store._transaction = stalled_upsert
        client = make_client(invoices=sample_invoices)
        service = SyncService(store, client, sync_config=sync_config, clock=clock)

        entry = await service.run_sync()

        assert entry.status is SyncStatus.FAILED
        assert (await store.get_sync_log(entry.id)).status is SyncStatus.FAILED
        assert await store.count_invoices() == 0

        store._transaction = real_transaction
        assert (await service.run_sync()).status is SyncStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_employee_refresh_failure_is_tolerated(self, store, make_client, sample_invoices, sync_config, clock):
        client = make_client(
            invoices=sample_invoices,
            employee_error=UpstreamUnavailable("employees down"),
        )
        entry = await SyncService(store, client, sync_config=sync_config, clock=clock).run_sync()

        assert entry.status is SyncStatus.COMPLETED
        assert await store.count_employees() == 0
        assert await store.count_invoices() == 3


class TestGuardAndCancel:
    @pytest.mark.asyncio
    async def test_concurrent_start_conflicts(self, service, store, make_client, sync_config, clock):
        entry = await service._begin()
        other = SyncService(store, make_client(), sync_config=sync_config, clock=clock)

        with pytest.raises(SyncConflictError) as exc_info:
            await other.run_sync()

        assert exc_info.value.active_sync_id == entry.id

    @pytest.mark.asyncio
    async def test_stop_during_run_cancels(self, service, store, fake_client):
        async def stop_after_first(page_number):
            if page_number == 1:
                await service.stop()

        fake_client.on_page = stop_after_first
        entry = await service.run_sync()

        assert entry.status is SyncStatus.CANCELLED
        assert entry.notes == CANCELLED_BY_USER
        assert fake_client.pages_requested == [1]
        assert await store.count_invoices() == 2

    @pytest.mark.asyncio
    async def test_stop_with_nothing_running(self, service):
        with pytest.raises(NoActiveSyncError):
            await service.stop()

    @pytest.mark.asyncio
    async def test_stop_finalizes_orphaned_run(self, service, store, now):
        orphan = SyncLogEntry.start(now=now - timedelta(minutes=5))
        await store.try_begin_run(orphan, 3600, now=orphan.start_time)

        stopped = await service.stop()

        assert stopped.id == orphan.id
        assert stopped.status is SyncStatus.CANCELLED
        assert (await store.get_sync_log(orphan.id)).status is SyncStatus.CANCELLED

        entry = await service.run_sync()
        assert entry.status is SyncStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_trigger_runs_in_background(self, service, store):
        running = await service.trigger()
        assert running.status is SyncStatus.RUNNING
        assert service.is_running

        finished = await service.wait()

        assert finished.id == running.id
        assert finished.status is SyncStatus.COMPLETED
        assert await store.count_invoices() == 3

    @pytest.mark.asyncio
    async def test_wait_without_trigger(self, service):
        assert await service.wait() is None


class TestStatus:
    @pytest.mark.asyncio
    async def test_never_synced(self, service):
        report = await service.get_status()

        assert report.last_sync_status == "never"
        assert report.is_running is False
        assert report.total_invoices == 0

    @pytest.mark.asyncio
    async def test_after_run(self, service):
        entry = await service.run_sync()
        report = await service.get_status()

        assert report.last_sync_id == entry.id
        assert report.last_sync_status == "completed"
        assert report.api_calls == 2
        assert report.total_invoices == 3
        assert report.total_employees == 2
        assert report.to_dict()["lastSyncStatus"] == "completed"

    @pytest.mark.asyncio
    async def test_running_while_background_sync(self, service, fake_client):
        gate = asyncio.Event()

        async def hold(page_number):
            await gate.wait()

        fake_client.on_page = hold
        await service.trigger()
        await asyncio.sleep(0)

        report = await service.get_status()
        gate.set()
        await service.wait()

        assert report.is_running is True
        assert report.last_sync_status == "running"

    @pytest.mark.asyncio
    async def test_history(self, service):
        await service.run_sync()
        await service.run_sync()

        history = await service.get_history(limit=5)
        assert len(history) == 2
        assert history[0].start_time > history[1].start_time
