"""Shared dependencies for API route modules."""
import hmac
import time
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from salesboard.config import config
from salesboard.observability import get_logger
from salesboard.query_service import QueryService, get_query_service
from salesboard.repositories import Store, get_store
from salesboard.sync_service import SyncService, get_sync_service

logger = get_logger(__name__)

# Track startup time for uptime calculation
START_TIME = time.time()

_bearer = HTTPBearer(auto_error=False)


async def require_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> None:
    """Require `Authorization: Bearer <DASHBOARD_API_TOKEN>` when a token is configured."""
    expected = config.web.api_token
    if not expected:
        return
    if credentials is None or not hmac.compare_digest(credentials.credentials, expected):
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing API token",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def store_dep() -> Store:
    return await get_store()


async def query_service_dep() -> QueryService:
    return await get_query_service()


async def sync_service_dep() -> SyncService:
    return await get_sync_service()
