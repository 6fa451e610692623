"""Sync control: status, trigger, stop, history and store stats."""
from fastapi import APIRouter, Depends, HTTPException, Query

from salesboard.exceptions import NoActiveSyncError, SyncConflictError
from salesboard.observability import get_logger
from salesboard.query_service import QueryService
from salesboard.sync_service import SyncService
from web.schemas import SyncActionResponse, SyncHistoryResponse, SyncStatusResponse
from ._deps import query_service_dep, require_token, sync_service_dep

router = APIRouter(prefix="/sync", dependencies=[Depends(require_token)])
logger = get_logger(__name__)


@router.get("/status", response_model=SyncStatusResponse)
async def sync_status(service: SyncService = Depends(sync_service_dep)):
    report = await service.get_status()
    return report.to_dict()


@router.post("/trigger", response_model=SyncActionResponse)
async def trigger_sync(service: SyncService = Depends(sync_service_dep)):
    """Start a sync in the background. 409 if one is already running."""
    try:
        entry = await service.trigger()
    except SyncConflictError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"message": "Sync started", "sync": entry.to_dict()}


@router.post("/stop", response_model=SyncActionResponse)
async def stop_sync(service: SyncService = Depends(sync_service_dep)):
    """Cancel the running sync. 404 if nothing is running."""
    try:
        entry = await service.stop()
    except NoActiveSyncError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"message": "Sync cancellation requested", "sync": entry.to_dict()}


@router.get("/history", response_model=SyncHistoryResponse)
async def sync_history(
    limit: int = Query(10, ge=1, le=100, description="Number of runs to return"),
    service: SyncService = Depends(sync_service_dep),
):
    entries = await service.get_history(limit)
    return {"data": [e.to_dict() for e in entries], "count": len(entries)}


@router.get("/stats")
async def store_stats(service: QueryService = Depends(query_service_dep)):
    """Counts, date range and per-currency sales of the local store."""
    return await service.database_stats()
