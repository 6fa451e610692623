"""
Cached async HTTP client for the dashboard query API.

Reads go through the two-tier ResponseCache; writes (sync trigger/stop)
are never cached and drop cached invoice data.
"""
from typing import Any, Dict, List, Optional

import httpx

from salesboard.cache import CacheTier, ResponseCache, make_cache_key
from salesboard.config import config
from salesboard.exceptions import DashboardAPIError
from salesboard.observability import Timer, get_correlation_id, get_logger

logger = get_logger(__name__)

# Cache prefixes dropped after a sync is triggered or stopped
SYNC_INVALIDATED_PREFIXES = ("/invoices", "/salespersons", "/summary", "/sync/stats")


class DashboardApiClient:
    """
    Async client for the dashboard API with response caching.

    Usage:
        async with DashboardApiClient() as api:
            first_page = await api.get_invoices(page=1, page_size=100)
            everything = await api.get_all_invoices()
    """

    def __init__(
        self,
        base_url: str = None,
        token: str = None,
        timeout: float = None,
        cache: Optional[ResponseCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or config.web.api_url).rstrip("/")
        self.token = token if token is not None else config.web.api_token
        self.timeout = timeout or config.web.client_timeout
        self.cache = cache if cache is not None else ResponseCache()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def connect(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=self.timeout,
                transport=self._transport,
            )

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "DashboardApiClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Make one HTTP request.

        Raises:
            DashboardAPIError: On network failure, non-2xx status or non-JSON body
        """
        if not self._client:
            await self.connect()

        request_headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            request_headers["X-Request-ID"] = correlation_id

        query = {k: v for k, v in (params or {}).items() if v is not None}
        try:
            with Timer(f"dashboard_api {method} {endpoint}", logger):
                response = await self._client.request(
                    method,
                    endpoint,
                    params=query or None,
                    headers=request_headers or None,
                )
        except httpx.RequestError as e:
            raise DashboardAPIError(
                f"Request failed: {method} {endpoint}", details=str(e), endpoint=endpoint
            ) from e

        if response.status_code >= 400:
            detail = response.text[:500]
            try:
                body = response.json()
                if isinstance(body, dict) and "detail" in body:
                    detail = str(body["detail"])
            except ValueError:
                pass
            raise DashboardAPIError(
                f"API returned {response.status_code}",
                details=detail,
                status_code=response.status_code,
                endpoint=endpoint,
            )

        try:
            return response.json()
        except ValueError as e:
            raise DashboardAPIError(
                "Response body is not JSON", details=response.text[:200], endpoint=endpoint
            ) from e

    async def get(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        tier: CacheTier = CacheTier.MEMORY,
        use_cache: bool = True,
        compress: bool = True,
    ) -> Any:
        """GET with read-through caching."""
        key = make_cache_key(endpoint, params)
        if use_cache:
            entry = self.cache.get_entry(key, tier)
            if entry is not None:
                return entry.value

        data = await self._request("GET", endpoint, params)
        if use_cache:
            self.cache.set(key, data, tier, compress=compress)
        return data

    # ═══════════════════════════════════════════════════════════════════════════
    # INVOICES
    # ═══════════════════════════════════════════════════════════════════════════

    @staticmethod
    def _invoice_params(
        page: int,
        page_size: int,
        sort_by: Optional[str],
        currency: Optional[str],
    ) -> Dict[str, Any]:
        return {
            "page": page,
            "pageSize": page_size,
            "sortBy": sort_by,
            "currency": None if currency in (None, "", "All") else currency,
        }

    async def get_invoices(
        self,
        page: int = 1,
        page_size: int = None,
        sort_by: Optional[str] = None,
        currency: Optional[str] = None,
        use_cache: bool = True,
    ) -> Dict[str, Any]:
        """One bounded page of invoices with paging metadata."""
        params = self._invoice_params(
            page, page_size or config.query.default_page_size, sort_by, currency
        )
        return await self.get("/invoices", params, use_cache=use_cache)

    async def get_all_invoices(
        self,
        sort_by: Optional[str] = None,
        use_cache: bool = True,
    ) -> List[Dict[str, Any]]:
        """Every invoice, cached uncompressed in the session tier."""
        params = self._invoice_params(1, config.query.all_records, sort_by, None)
        key = make_cache_key("/invoices", params)
        if use_cache:
            entry = self.cache.get_entry(key, CacheTier.SESSION)
            if entry is not None:
                return entry.value

        body = await self._request("GET", "/invoices", params)
        items = body.get("data", []) if isinstance(body, dict) else body
        if use_cache:
            self.cache.set(key, items, CacheTier.SESSION, compress=False)
        return items

    async def preload_next_page(
        self,
        current_page: int,
        page_size: int = None,
        sort_by: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> bool:
        """
        Warm the cache with the page after current_page.

        Returns:
            True if a page was fetched; failures are logged, not raised
        """
        page_size = page_size or config.query.default_page_size
        params = self._invoice_params(current_page + 1, page_size, sort_by, currency)
        if self.cache.get_entry(make_cache_key("/invoices", params)) is not None:
            return False

        try:
            await self.get("/invoices", params)
        except DashboardAPIError as e:
            logger.info(f"Preload failed for page {current_page + 1}: {e}")
            return False
        return True

    # ═══════════════════════════════════════════════════════════════════════════
    # AGGREGATES
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_salespersons(
        self,
        period: str = "all",
        year: int = 0,
        month: int = 0,
        quarter: int = 0,
    ) -> Dict[str, Any]:
        return await self.get("/salespersons", {
            "period": period,
            "year": year,
            "month": month,
            "quarter": quarter,
        })

    async def get_revenue(self) -> Dict[str, Any]:
        return await self.get("/summary/revenue")

    async def get_stats(self) -> Dict[str, Any]:
        return await self.get("/sync/stats")

    # ═══════════════════════════════════════════════════════════════════════════
    # SYNC
    # ═══════════════════════════════════════════════════════════════════════════

    async def get_sync_status(self) -> Dict[str, Any]:
        return await self.get("/sync/status", use_cache=False)

    async def get_sync_history(self, limit: int = 10) -> Dict[str, Any]:
        return await self.get("/sync/history", {"limit": limit}, use_cache=False)

    def _invalidate_synced_data(self) -> None:
        for prefix in SYNC_INVALIDATED_PREFIXES:
            self.cache.invalidate_prefix(prefix)

    async def trigger_sync(self) -> Dict[str, Any]:
        """Start a sync. Raises DashboardAPIError(409) if one is running."""
        result = await self._request("POST", "/sync/trigger")
        self._invalidate_synced_data()
        return result

    async def stop_sync(self) -> Dict[str, Any]:
        """Cancel the running sync. Raises DashboardAPIError(404) if none."""
        result = await self._request("POST", "/sync/stop")
        self._invalidate_synced_data()
        return result
