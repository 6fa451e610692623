"""
Tests for salesboard.crm_client module.
"""
import asyncio
import json

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from salesboard.crm_client import OneUpClient
from salesboard.exceptions import (
    UpstreamAPIError,
    UpstreamProtocolError,
    UpstreamUnavailable,
    ValidationError,
)
from salesboard.resilience import RetryConfig


def make_client(handler, **kwargs) -> OneUpClient:
    return OneUpClient(
        api_email="ops@example.com",
        api_key="secret",
        base_url="https://api.test/v1",
        page_size=kwargs.pop("page_size", 2),
        retry_config=RetryConfig(max_attempts=3, base_delay=0.01, jitter=0.0),
        transport=httpx.MockTransport(handler),
        sleep=AsyncMock(),
        **kwargs,
    )


def json_response(body, status_code=200):
    return httpx.Response(status_code, content=json.dumps(body), headers={"content-type": "application/json"})


class TestOneUpClientInit:
    def test_missing_credentials_raise(self):
        with patch("salesboard.crm_client.config") as mock_config:
            mock_config.crm.api_email = ""
            mock_config.crm.api_key = ""
            with pytest.raises(ValueError, match="ONEUP_API_EMAIL"):
                OneUpClient()

    @pytest.mark.asyncio
    async def test_context_manager(self):
        client = make_client(lambda request: json_response([]))
        async with client:
            assert client._client is not None
        assert client._client is None


class TestFetchInvoicePage:
    @pytest.mark.asyncio
    async def test_sends_offset_limit_and_basic_auth(self):
        seen = []

        def handler(request: httpx.Request):
            seen.append(request)
            return json_response([{"id": 1}, {"id": 2}])

        async with make_client(handler) as client:
            page = await client.fetch_invoice_page(3)

        request = seen[0]
        assert request.url.path == "/v1/invoices"
        assert request.url.params["offset"] == "4"
        assert request.url.params["limit"] == "2"
        assert request.headers["authorization"].startswith("Basic ")
        assert page.page_number == 3
        assert page.has_more is True

    @pytest.mark.asyncio
    async def test_short_page_has_no_more(self):
        async with make_client(lambda r: json_response({"data": [{"id": 1}]})) as client:
            page = await client.fetch_invoice_page(1)

        assert page.records == [{"id": 1}]
        assert page.has_more is False

    @pytest.mark.asyncio
    async def test_invalid_page_number(self):
        async with make_client(lambda r: json_response([])) as client:
            with pytest.raises(ValidationError):
                await client.fetch_invoice_page(0)

    @pytest.mark.asyncio
    async def test_retries_5xx_then_succeeds(self):
        responses = [httpx.Response(503, text="busy"), json_response([])]

        async with make_client(lambda r: responses.pop(0)) as client:
            page = await client.fetch_invoice_page(1)

        assert page.records == []
        assert client._sleep.await_count == 1

    @pytest.mark.asyncio
    async def test_exhausted_retries_raise_unavailable(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, text="down")

        async with make_client(handler) as client:
            with pytest.raises(UpstreamUnavailable) as exc_info:
                await client.fetch_invoice_page(1)

        assert len(calls) == 3
        assert exc_info.value.attempts == 3
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_rate_limit_is_transient(self):
        responses = [httpx.Response(429, text="slow down"), json_response([])]
        async with make_client(lambda r: responses.pop(0)) as client:
            page = await client.fetch_invoice_page(1)
        assert page.records == []

    @pytest.mark.asyncio
    async def test_connection_error_is_transient(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with make_client(handler) as client:
            with pytest.raises(UpstreamUnavailable):
                await client.fetch_invoice_page(1)

    @pytest.mark.asyncio
    async def test_timeout_retried_then_unavailable(self):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ReadTimeout("slow", request=request)

        async with make_client(handler) as client:
            with pytest.raises(UpstreamUnavailable):
                await client.fetch_invoice_page(1)

        assert len(calls) == 3
        assert client._sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_in_flight_requests_capped(self):
        in_flight = 0
        peak = 0

        async def handler(request):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return json_response([])

        async with make_client(handler, max_concurrent_requests=2) as client:
            pages = await asyncio.gather(*(client.fetch_invoice_page(n) for n in range(1, 7)))

        assert len(pages) == 6
        assert peak == 2

    @pytest.mark.asyncio
    async def test_4xx_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(401, text="Unauthorized")

        async with make_client(handler) as client:
            with pytest.raises(UpstreamAPIError) as exc_info:
                await client.fetch_invoice_page(1)

        assert len(calls) == 1
        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_non_json_body(self):
        async with make_client(lambda r: httpx.Response(200, text="<html>")) as client:
            with pytest.raises(UpstreamProtocolError):
                await client.fetch_invoice_page(1)

    @pytest.mark.asyncio
    async def test_unexpected_shape(self):
        async with make_client(lambda r: json_response({"items": []})) as client:
            with pytest.raises(UpstreamProtocolError):
                await client.fetch_invoice_page(1)


class TestEmployees:
    @pytest.mark.asyncio
    async def test_roster_is_cached(self, sample_employees):
        calls = []

        def handler(request):
            calls.append(request)
            return json_response(sample_employees)

        async with make_client(handler) as client:
            first = await client.fetch_employees()
            second = await client.fetch_employees()
            await client.fetch_employees(force_refresh=True)

        assert first == second == sample_employees
        assert len(calls) == 2

