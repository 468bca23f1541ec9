"""
Tests for QuoteService (Jupiter /quote) using httpx.MockTransport.
"""
import httpx
import pytest

from errors import NoRoute, RateLimited, RequestFailed
from quote_service import QuoteService
from throttle import Throttle

BASE_URL = "https://jup.test/v6"
OK_BODY = {"inAmount": "1000", "outAmount": "2500", "routePlan": []}


def make_service(handler, clock):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    throttle = Throttle(max_per_window=100, window_sec=60.0, clock=clock, sleep=clock.sleep)
    service = QuoteService(client, throttle, base_url=BASE_URL, sleep=clock.sleep)
    return service, throttle


class TestQuoteSuccess:

    @pytest.mark.asyncio
    async def test_parses_quote(self, fake_clock):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=OK_BODY)

        service, _ = make_service(handler, fake_clock)
        quote = await service.get_quote("MINT", "WSOL", 1000, 700)

        assert quote.out_amount == 2500
        assert quote.in_amount == 1000
        assert quote.raw == OK_BODY
        params = seen[0].url.params
        assert seen[0].url.path == "/v6/quote"
        assert params["amount"] == "1000"
        assert params["slippageBps"] == "700"
        assert params["onlyDirectRoutes"] == "false"
        assert "preferDirectRoutes" not in params

    @pytest.mark.asyncio
    async def test_prefer_direct_sets_route_flags(self, fake_clock):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json=OK_BODY)

        service, _ = make_service(handler, fake_clock)
        await service.get_quote("MINT", "WSOL", 1000, 1000, prefer_direct=True)

        params = seen[0].url.params
        assert params["onlyDirectRoutes"] == "true"
        assert params["preferDirectRoutes"] == "true"


class TestQuoteRateLimit:

    @pytest.mark.asyncio
    async def test_retries_429_with_exponential_backoff(self, fake_clock):
        statuses = [429, 429, 200]

        def handler(request):
            status = statuses.pop(0)
            if status == 429:
                return httpx.Response(429, text="slow down")
            return httpx.Response(200, json=OK_BODY)

        service, throttle = make_service(handler, fake_clock)
        quote = await service.get_quote("MINT", "WSOL", 1000, 700)

        assert quote.out_amount == 2500
        assert fake_clock.sleeps == [0.5, 1.0]
        # every attempt went through the throttle
        assert throttle.in_window() == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_four_retries(self, fake_clock):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(429, text="slow down")

        service, _ = make_service(handler, fake_clock)
        with pytest.raises(RateLimited):
            await service.get_quote("MINT", "WSOL", 1000, 700)

        assert len(calls) == 5
        assert fake_clock.sleeps == [0.5, 1.0, 2.0, 4.0]


class TestQuoteFailures:

    @pytest.mark.asyncio
    async def test_no_route_is_not_retried(self, fake_clock):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(
                400,
                json={"error": "Could not find any route", "errorCode": "COULD_NOT_FIND_ANY_ROUTE"},
            )

        service, _ = make_service(handler, fake_clock)
        with pytest.raises(NoRoute):
            await service.get_quote("MINT", "WSOL", 1000, 700)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_other_status_is_request_failed(self, fake_clock):
        service, _ = make_service(lambda r: httpx.Response(500, text="boom"), fake_clock)
        with pytest.raises(RequestFailed) as info:
            await service.get_quote("MINT", "WSOL", 1000, 700)
        assert info.value.status == 500
        assert info.value.body == "boom"

    @pytest.mark.asyncio
    async def test_empty_success_is_request_failed(self, fake_clock):
        service, _ = make_service(lambda r: httpx.Response(200, json={}), fake_clock)
        with pytest.raises(RequestFailed):
            await service.get_quote("MINT", "WSOL", 1000, 700)

    @pytest.mark.asyncio
    async def test_transport_error_is_request_failed(self, fake_clock):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        service, _ = make_service(handler, fake_clock)
        with pytest.raises(RequestFailed) as info:
            await service.get_quote("MINT", "WSOL", 1000, 700)
        assert info.value.status is None
