"""
Tests for salesboard.api_client and salesboard.dashboard_loader modules.
"""
import asyncio
import json
from decimal import Decimal

import httpx
import pytest

from salesboard.api_client import DashboardApiClient
from salesboard.cache import CacheTier, ResponseCache, TierPolicy
from salesboard.dashboard_loader import AggregateStatus, DashboardLoader
from salesboard.exceptions import DashboardAPIError

RATES = {"PKR": Decimal("1"), "USD": Decimal("280")}

INVOICES = [
    {"id": 1, "total": "10", "currency": "USD", "status": "Active"},
    {"id": 2, "total": "500", "currency": "PKR", "status": "Active"},
    {"id": 3, "total": "99", "currency": "USD", "status": "Cancelled"},
]


def page_body(page, page_size, data, total=3):
    total_pages = 1 if page_size == -1 else -(-total // page_size)
    return {
        "data": data,
        "page": page,
        "pageSize": page_size,
        "totalCount": total,
        "totalPages": total_pages,
        "hasNextPage": page_size != -1 and page < total_pages,
    }


class FakeDashboardAPI:
    """Routes requests like the web app and records them."""

    def __init__(self, fail=None):
        self.requests = []
        self.fail = fail or set()

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/api")
        if path in self.fail:
            return httpx.Response(500, json={"detail": f"{path} exploded"})

        if path == "/invoices":
            page = int(request.url.params.get("page", 1))
            size = int(request.url.params.get("pageSize", 100))
            data = INVOICES if size == -1 else INVOICES[(page - 1) * size:page * size]
            return httpx.Response(200, json=page_body(page, size, data))
        if path == "/salespersons":
            return httpx.Response(200, json=[{"employeeId": 19, "totalSales": "0"}])
        if path == "/sync/stats":
            return httpx.Response(200, json={"total_invoices": 3})
        if path == "/sync/trigger":
            return httpx.Response(409, json={"detail": "Sync already running"})
        if path == "/sync/stop":
            return httpx.Response(200, json={"message": "Sync cancellation requested"})
        return httpx.Response(404, json={"detail": "Not Found"})

    def count(self, path):
        return sum(1 for r in self.requests if r.url.path == f"/api{path}")


@pytest.fixture
def backend():
    return FakeDashboardAPI()


@pytest.fixture
def cache():
    return ResponseCache(
        policies={
            CacheTier.MEMORY: TierPolicy(60, 100),
            CacheTier.SESSION: TierPolicy(600, 10),
        },
        compression_threshold=1000,
    )


def make_api(backend, cache, token="secret-token"):
    return DashboardApiClient(
        base_url="http://dashboard.test/api",
        token=token,
        cache=cache,
        transport=httpx.MockTransport(backend),
    )


class TestDashboardApiClient:
    @pytest.mark.asyncio
    async def test_sends_bearer_token(self, backend, cache):
        async with make_api(backend, cache) as api:
            await api.get_invoices(page=1, page_size=2)

        assert backend.requests[0].headers["authorization"] == "Bearer secret-token"

    @pytest.mark.asyncio
    async def test_no_token_no_header(self, backend, cache):
        async with make_api(backend, cache, token="") as api:
            await api.get_stats()

        assert "authorization" not in backend.requests[0].headers

    @pytest.mark.asyncio
    async def test_reads_are_cached(self, backend, cache):
        async with make_api(backend, cache) as api:
            first = await api.get_invoices(page=1, page_size=2)
            second = await api.get_invoices(page=1, page_size=2)

        assert first == second
        assert backend.count("/invoices") == 1

    @pytest.mark.asyncio
    async def test_currency_all_means_no_filter(self, backend, cache):
        async with make_api(backend, cache) as api:
            await api.get_invoices(currency="All", page_size=2)

        assert "currency" not in backend.requests[0].url.params

    @pytest.mark.asyncio
    async def test_all_invoices_in_session_tier(self, backend, cache):
        async with make_api(backend, cache) as api:
            items = await api.get_all_invoices()
            await api.get_all_invoices()

        assert len(items) == 3
        assert backend.requests[0].url.params["pageSize"] == "-1"
        assert backend.count("/invoices") == 1
        assert cache.size(CacheTier.SESSION) == 1

    @pytest.mark.asyncio
    async def test_error_detail_extracted(self, cache):
        backend = FakeDashboardAPI(fail={"/salespersons"})
        async with make_api(backend, cache) as api:
            with pytest.raises(DashboardAPIError) as exc_info:
                await api.get_salespersons()

        assert exc_info.value.status_code == 500
        assert exc_info.value.details == "/salespersons exploded"

    @pytest.mark.asyncio
    async def test_trigger_conflict_raises_409(self, backend, cache):
        async with make_api(backend, cache) as api:
            with pytest.raises(DashboardAPIError) as exc_info:
                await api.trigger_sync()

        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_stop_invalidates_cached_invoices(self, backend, cache):
        async with make_api(backend, cache) as api:
            await api.get_invoices(page=1, page_size=2)
            await api.stop_sync()
            await api.get_invoices(page=1, page_size=2)

        assert backend.count("/invoices") == 2

    @pytest.mark.asyncio
    async def test_status_not_cached(self, cache):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, json={"isRunning": False})

        async with DashboardApiClient(
            base_url="http://dashboard.test/api", token="", cache=cache,
            transport=httpx.MockTransport(handler),
        ) as api:
            await api.get_sync_status()
            await api.get_sync_status()

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_null_body_is_cached(self, cache):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(200, content=b"null", headers={"content-type": "application/json"})

        async with DashboardApiClient(
            base_url="http://dashboard.test/api", token="", cache=cache,
            transport=httpx.MockTransport(handler),
        ) as api:
            assert await api.get_revenue() is None
            assert await api.get_revenue() is None

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_preload_next_page(self, backend, cache):
        async with make_api(backend, cache) as api:
            assert await api.preload_next_page(1, page_size=2)
            await api.get_invoices(page=2, page_size=2)

        assert backend.count("/invoices") == 1


class TestDashboardLoader:
    @pytest.mark.asyncio
    async def test_first_page_then_aggregates(self, backend, cache):
        async with make_api(backend, cache) as api:
            loader = DashboardLoader(api, rates=RATES, reference="PKR")
            view = await loader.load(page=1, page_size=2)

            assert view.first_page["data"][0]["id"] == 1
            assert view.first_page["hasNextPage"] is True

            await view.wait()

        assert all(state.status is AggregateStatus.READY for state in view.aggregates.values())
        revenue = view["revenue"].value
        assert revenue["total"] == "3300"
        assert revenue["cancelledCount"] == 1
        assert view["stats"].value == {"total_invoices": 3}

    @pytest.mark.asyncio
    async def test_aggregate_failure_is_isolated(self, cache):
        backend = FakeDashboardAPI(fail={"/salespersons"})
        async with make_api(backend, cache) as api:
            view = await DashboardLoader(api, rates=RATES, reference="PKR").load(page_size=2)
            await view.wait()

        assert view["salespersons"].status is AggregateStatus.ERROR
        assert isinstance(view["salespersons"].error, DashboardAPIError)
        assert view["revenue"].is_ready
        assert view["stats"].is_ready

    @pytest.mark.asyncio
    async def test_revenue_fails_with_its_source(self, cache):
        def handler(request):
            if request.url.params.get("pageSize") == "-1":
                return httpx.Response(500, json={"detail": "too big"})
            return FakeDashboardAPI()(request)

        async with DashboardApiClient(
            base_url="http://dashboard.test/api", token="", cache=cache,
            transport=httpx.MockTransport(handler),
        ) as api:
            view = await DashboardLoader(api, rates=RATES, reference="PKR").load(page_size=2)
            await view.wait()

        assert view["all_invoices"].status is AggregateStatus.ERROR
        assert view["revenue"].status is AggregateStatus.ERROR

    @pytest.mark.asyncio
    async def test_first_page_failure_cancels_aggregates(self, cache):
        def handler(request):
            if request.url.params.get("pageSize") != "-1" and request.url.path.endswith("/invoices"):
                return httpx.Response(503, json={"detail": "down"})
            return FakeDashboardAPI()(request)

        async with DashboardApiClient(
            base_url="http://dashboard.test/api", token="", cache=cache,
            transport=httpx.MockTransport(handler),
        ) as api:
            with pytest.raises(DashboardAPIError):
                await DashboardLoader(api, rates=RATES, reference="PKR").load(page_size=2)
            await asyncio.sleep(0)

    @pytest.mark.asyncio
    async def test_preload_scheduled(self, backend, cache):
        async with make_api(backend, cache) as api:
            view = await DashboardLoader(api, rates=RATES, reference="PKR").load(page_size=2)
            await view.wait()

        pages = [r.url.params.get("page") for r in backend.requests if r.url.params.get("pageSize") == "2"]
        assert pages == ["1", "2"]
