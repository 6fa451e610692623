"""
Async HTTP client for the OneUp CRM API.

Features:
- Connection pooling with httpx
- Bounded concurrency (semaphore, 2 in-flight requests by default)
- Exponential backoff retry on timeouts, connection errors and 5xx
- Request correlation IDs for tracing
- In-process employee roster cache
"""
import asyncio
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from salesboard.config import config
from salesboard.exceptions import (
    UpstreamAPIError,
    UpstreamProtocolError,
    UpstreamUnavailable,
    ValidationError,
)
from salesboard.models import UpstreamPage
from salesboard.observability import get_logger, get_correlation_id, Timer
from salesboard.resilience import RetryConfig, retry_with_backoff

logger = get_logger(__name__)


def _default_retry_config() -> RetryConfig:
    return RetryConfig(
        max_attempts=config.crm.max_attempts,
        base_delay=config.crm.retry_base_delay,
        max_delay=config.crm.retry_max_delay,
        exponential_base=2.0,
    )


class OneUpClient:
    """
    Async HTTP client for the OneUp CRM API.

    Usage:
        async with OneUpClient() as client:
            page = await client.fetch_invoice_page(1)

        # Or with manual lifecycle:
        client = OneUpClient()
        await client.connect()
        try:
            employees = await client.fetch_employees()
        finally:
            await client.close()
    """

    def __init__(
        self,
        api_email: str = None,
        api_key: str = None,
        base_url: str = None,
        timeout: float = None,
        page_size: int = None,
        max_concurrent_requests: int = None,
        retry_config: Optional[RetryConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Any] = asyncio.sleep,
    ):
        """
        Initialize OneUp client.

        Args:
            api_email: Account email for basic auth (defaults to ONEUP_API_EMAIL)
            api_key: API key for basic auth (defaults to ONEUP_API_KEY)
            base_url: API base URL (defaults to ONEUP_BASE_URL)
            timeout: Per-request timeout in seconds
            page_size: Default invoice page size
            max_concurrent_requests: Maximum in-flight requests
            retry_config: Backoff settings for transient failures
            transport: Optional httpx transport (used by tests)
            sleep: Awaitable sleep used between retries
        """
        self.api_email = api_email or config.crm.api_email
        self.api_key = api_key or config.crm.api_key
        if not self.api_email or not self.api_key:
            raise ValueError("ONEUP_API_EMAIL and ONEUP_API_KEY are required")

        self.base_url = (base_url or config.crm.base_url).rstrip("/")
        self.timeout = timeout or config.crm.request_timeout
        self.page_size = page_size or config.crm.page_size
        self.retry_config = retry_config or _default_retry_config()
        self._transport = transport
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(
            max_concurrent_requests or config.crm.max_concurrent_requests
        )
        self._client: Optional[httpx.AsyncClient] = None

        self._employees: Optional[List[Dict[str, Any]]] = None
        self._employees_fetched_at: float = 0.0
        self._employee_ttl = config.crm.employee_cache_minutes * 60

    @property
    def headers(self) -> Dict[str, str]:
        """Request headers."""
        return {
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    async def connect(self) -> None:
        """Create HTTP client with connection pooling."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                auth=httpx.BasicAuth(self.api_email, self.api_key),
                headers=self.headers,
                timeout=self.timeout,
                transport=self._transport,
                limits=httpx.Limits(
                    max_keepalive_connections=5,
                    max_connections=10,
                )
            )

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "OneUpClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        GET an endpoint with retry on transient failures.

        Raises:
            UpstreamUnavailable: Network/timeout/5xx errors after all attempts
            UpstreamAPIError: API rejected the request (4xx)
            UpstreamProtocolError: Body is not JSON
        """
        try:
            return await retry_with_backoff(
                self._do_request,
                endpoint, params,
                config=self.retry_config,
                retryable_exceptions=(UpstreamUnavailable,),
                sleep=self._sleep,
            )
        except UpstreamUnavailable as e:
            e.attempts = self.retry_config.max_attempts
            raise

    async def _do_request(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Execute a single HTTP request (called by retry wrapper)."""
        if not self._client:
            await self.connect()

        request_headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            request_headers["X-Request-ID"] = correlation_id

        try:
            async with self._semaphore:
                with Timer(f"oneup_{endpoint.split('/')[0]}", logger):
                    response = await self._client.get(
                        endpoint,
                        params=params,
                        headers=request_headers if request_headers else None,
                    )

        except httpx.TimeoutException as e:
            logger.error(
                f"Request timeout: GET {endpoint}",
                extra={"endpoint": endpoint, "timeout": self.timeout}
            )
            raise UpstreamUnavailable(
                f"Request timeout after {self.timeout}s", details=endpoint
            ) from e

        except httpx.RequestError as e:
            logger.error(
                f"Request failed: GET {endpoint} - {e}",
                extra={"endpoint": endpoint, "error": str(e)}
            )
            raise UpstreamUnavailable(str(e), details=endpoint) from e

        if response.status_code >= 500 or response.status_code == 429:
            logger.warning(
                f"Upstream unavailable {response.status_code}",
                extra={"endpoint": endpoint, "status_code": response.status_code}
            )
            raise UpstreamUnavailable(
                f"API returned {response.status_code}",
                details=response.text[:500],
                status_code=response.status_code,
            )

        if response.status_code >= 400:
            error_text = response.text[:500]
            logger.error(
                f"API error {response.status_code}: {error_text}",
                extra={"endpoint": endpoint, "status_code": response.status_code}
            )
            raise UpstreamAPIError(
                f"API returned {response.status_code}",
                details=error_text,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise UpstreamProtocolError(
                "Response body is not JSON",
                details=response.text[:200],
                expected="json",
                got=response.headers.get("content-type"),
            ) from e

    @staticmethod
    def _extract_list(body: Any, endpoint: str) -> List[Any]:
        """Accept a bare JSON array or a {"data": [...]} envelope."""
        if isinstance(body, list):
            return body
        if isinstance(body, dict) and isinstance(body.get("data"), list):
            return body["data"]
        raise UpstreamProtocolError(
            f"Unexpected response structure from {endpoint}",
            expected="array",
            got=type(body).__name__,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # INVOICE METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    async def fetch_invoice_page(self, page_number: int, page_size: int = None) -> UpstreamPage:
        """
        Fetch one page of invoices.

        Args:
            page_number: 1-based page number
            page_size: Records per page (defaults to ONEUP_PAGE_SIZE)

        Returns:
            UpstreamPage; has_more is True when the page came back full
        """
        page_size = page_size if page_size is not None else self.page_size
        if not isinstance(page_number, int) or page_number < 1:
            raise ValidationError("page_number", "Must be at least 1", page_number)
        if not isinstance(page_size, int) or page_size < 1:
            raise ValidationError("page_size", "Must be at least 1", page_size)

        params = {"offset": (page_number - 1) * page_size, "limit": page_size}
        body = await self._request("invoices", params=params)
        records = self._extract_list(body, "invoices")

        logger.debug(
            f"Fetched invoice page {page_number}",
            extra={"page": page_number, "records": len(records)}
        )
        return UpstreamPage(
            page_number=page_number,
            records=records,
            has_more=len(records) == page_size,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # EMPLOYEE METHODS
    # ═══════════════════════════════════════════════════════════════════════════

    def _employees_fresh(self) -> bool:
        return (
            self._employees is not None
            and time.monotonic() - self._employees_fetched_at < self._employee_ttl
        )

    async def fetch_employees(self, force_refresh: bool = False) -> List[Dict[str, Any]]:
        """
        Fetch the employee roster, cached for ONEUP_EMPLOYEE_CACHE_MINUTES.

        Args:
            force_refresh: Ignore the cached roster
        """
        if not force_refresh and self._employees_fresh():
            return self._employees

        body = await self._request(
            "employees", params={"limit": config.crm.employee_roster_limit}
        )
        self._employees = self._extract_list(body, "employees")
        self._employees_fetched_at = time.monotonic()

        logger.info(f"Fetched {len(self._employees)} employees")
        return self._employees


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON INSTANCE
# ═══════════════════════════════════════════════════════════════════════════════

_client_instance: Optional[OneUpClient] = None


def get_client() -> OneUpClient:
    """Get singleton OneUp client instance."""
    global _client_instance
    if _client_instance is None:
        _client_instance = OneUpClient()
    return _client_instance


async def close_client() -> None:
    """Close the singleton client's HTTP connections."""
    global _client_instance
    if _client_instance is not None:
        await _client_instance.close()
        _client_instance = None
