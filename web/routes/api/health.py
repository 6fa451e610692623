"""Health check endpoint."""
import time

from fastapi import APIRouter

from salesboard.config import VERSION
from salesboard.observability import Timer, get_correlation_id, get_logger
from salesboard.repositories import get_store
from salesboard.scheduler import get_scheduler
from web.schemas import HealthResponse
from ._deps import START_TIME

router = APIRouter()
logger = get_logger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint for Docker/load balancer monitoring."""
    uptime_seconds = int(time.time() - START_TIME)

    store_health = {"status": "connected"}
    try:
        with Timer("health_check_db") as timer:
            store = await get_store()
            store_health["total_invoices"] = await store.count_invoices()
            store_health["total_employees"] = await store.count_employees()
        store_health["latency_ms"] = round(timer.elapsed_ms, 2)
    except Exception as e:
        logger.warning(f"Health check store query failed: {e}")
        store_health = {"status": f"error: {e}"}

    scheduler = get_scheduler()
    return {
        "status": "healthy" if store_health["status"] == "connected" else "degraded",
        "version": VERSION,
        "uptime_seconds": uptime_seconds,
        "correlation_id": get_correlation_id(),
        "store": store_health,
        "scheduler": scheduler.get_jobs() if scheduler else [],
    }
