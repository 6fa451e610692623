"""
Background job scheduler using APScheduler.

Runs the invoice sync on a fixed interval (SYNC_INTERVAL_MINUTES).

Features:
- Prevents job pile-up (max_instances=1, coalesce)
- A tick that finds a sync already running is skipped, not failed
- Job execution history
- Graceful shutdown
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from apscheduler.events import (
    EVENT_JOB_ERROR,
    EVENT_JOB_EXECUTED,
    EVENT_JOB_MISSED,
    JobExecutionEvent,
)
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from salesboard.config import config
from salesboard.exceptions import SyncConflictError
from salesboard.observability import get_logger
from salesboard.sync_service import SyncService, get_sync_service

logger = get_logger(__name__)

SYNC_JOB_ID = "invoice_sync"


@dataclass
class JobInfo:
    """Information about a scheduled job."""
    id: str
    name: str
    description: str
    last_run: Optional[datetime] = None
    last_status: Optional[str] = None
    run_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    last_error: Optional[str] = None


class SyncScheduler:
    """
    Periodic sync scheduler.

    Usage:
        scheduler = SyncScheduler(sync_service)
        scheduler.start()

        # Later...
        scheduler.shutdown()
    """

    def __init__(self, sync_service: SyncService, interval_minutes: int = None):
        self.sync_service = sync_service
        self.interval_minutes = interval_minutes or config.sync.interval_minutes
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._job_info: Dict[str, JobInfo] = {}
        self._started = False

    def start(self) -> None:
        """Start the scheduler and register the sync job. Needs a running event loop."""
        if self._started:
            logger.warning("Scheduler already started")
            return

        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self._scheduler.add_listener(self._on_job_executed, EVENT_JOB_EXECUTED)
        self._scheduler.add_listener(self._on_job_error, EVENT_JOB_ERROR)
        self._scheduler.add_listener(self._on_job_missed, EVENT_JOB_MISSED)

        self._scheduler.add_job(
            self.run_sync_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id=SYNC_JOB_ID,
            name="Invoice Sync",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._job_info[SYNC_JOB_ID] = JobInfo(
            id=SYNC_JOB_ID,
            name="Invoice Sync",
            description="Pull invoices from OneUp into the local store",
        )

        self._scheduler.start()
        self._started = True
        logger.info(f"Sync scheduler started (every {self.interval_minutes} min)")

    async def run_sync_job(self) -> Dict[str, Any]:
        """One scheduled tick."""
        info = self._job_info.get(SYNC_JOB_ID)
        try:
            entry = await self.sync_service.run_sync()
        except SyncConflictError as e:
            logger.info(f"Scheduled sync skipped: {e}")
            if info:
                info.skipped_count += 1
            return {"status": "skipped", "active_sync_id": e.active_sync_id}
        return entry.to_dict()

    # ═══════════════════════════════════════════════════════════════════════════
    # JOB EVENTS
    # ═══════════════════════════════════════════════════════════════════════════

    def _on_job_executed(self, event: JobExecutionEvent) -> None:
        info = self._job_info.get(event.job_id)
        if info is None:
            return
        info.last_run = datetime.now(timezone.utc)
        retval = getattr(event, "retval", None)
        info.last_status = retval.get("status") if isinstance(retval, dict) else "success"
        info.run_count += 1

    def _on_job_error(self, event: JobExecutionEvent) -> None:
        info = self._job_info.get(event.job_id)
        if info is None:
            return
        info.last_run = datetime.now(timezone.utc)
        info.last_status = "failed"
        info.run_count += 1
        info.error_count += 1
        info.last_error = str(event.exception) if event.exception else "Unknown error"
        logger.error(
            f"Job {event.job_id} failed: {info.last_error}",
            extra={"job_id": event.job_id, "error": info.last_error}
        )

    def _on_job_missed(self, event: JobExecutionEvent) -> None:
        info = self._job_info.get(event.job_id)
        if info is None:
            return
        info.last_status = "missed"
        logger.warning(
            f"Job {event.job_id} missed scheduled execution",
            extra={"job_id": event.job_id}
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # PUBLIC API
    # ═══════════════════════════════════════════════════════════════════════════

    def get_jobs(self) -> List[Dict[str, Any]]:
        """List jobs with their status."""
        jobs = []
        for job_id, info in self._job_info.items():
            job = self._scheduler.get_job(job_id) if self._scheduler else None
            next_run = getattr(job, "next_run_time", None) if job else None
            jobs.append({
                "id": info.id,
                "name": info.name,
                "description": info.description,
                "trigger": str(job.trigger) if job else "",
                "next_run": next_run.isoformat() if next_run else None,
                "last_run": info.last_run.isoformat() if info.last_run else None,
                "last_status": info.last_status,
                "run_count": info.run_count,
                "error_count": info.error_count,
                "skipped_count": info.skipped_count,
                "last_error": info.last_error,
            })
        return jobs

    def shutdown(self, wait: bool = False) -> None:
        """Shutdown the scheduler."""
        if self._scheduler and self._started:
            self._scheduler.shutdown(wait=wait)
            self._started = False
            logger.info("Sync scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._started and self._scheduler is not None


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_scheduler: Optional[SyncScheduler] = None


def get_scheduler() -> Optional[SyncScheduler]:
    """Get the running scheduler, if any."""
    return _scheduler


async def start_scheduler() -> SyncScheduler:
    """Create and start the singleton scheduler."""
    global _scheduler
    if _scheduler is None:
        _scheduler = SyncScheduler(await get_sync_service())
    _scheduler.start()
    return _scheduler


def stop_scheduler() -> None:
    """Stop the singleton scheduler."""
    global _scheduler
    if _scheduler:
        _scheduler.shutdown()
        _scheduler = None
