"""Unit tests for the Yahoo Finance adapter."""

import json

import httpx
import pytest

from finproxy.config import UpstreamConfig
from finproxy.data.base import DataProvider, ErrorKind
from finproxy.data.yahoo import YahooFinanceClient, coerce_interval, filter_modules
from finproxy.utils.quota import QuotaGuard, QuotaPeriod


class FakeYahoo:
    """Routes requests to canned responses and records what was asked."""

    def __init__(self):
        self.routes = {}
        self.requests = []
        self.crumbs_issued = 0

    def route(self, path, *responses):
        self.routes[path] = list(responses)

    def __call__(self, request):
        self.requests.append(request)
        if request.url.host == "fc.yahoo.com":
            return httpx.Response(404, headers={"set-cookie": "A3=session; Domain=.yahoo.com"})
        if request.url.path == "/v1/test/getcrumb":
            self.crumbs_issued += 1
            return httpx.Response(200, text=f"crumb-{self.crumbs_issued}")

        queue = self.routes.get(request.url.path)
        if not queue:
            return httpx.Response(404, json={"error": "no route"})
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, Exception):
            raise response
        return response

    def api_requests(self):
        return [r for r in self.requests if r.url.host != "fc.yahoo.com" and r.url.path != "/v1/test/getcrumb"]


def quote_body(*quotes):
    return {"quoteResponse": {"result": list(quotes), "error": None}}


class TestHelpers:
    """Test module and interval normalization."""

    def test_filter_modules(self):
        assert filter_modules(["price", "bogus", "price", "summaryDetail"]) == ["price", "summaryDetail"]
        assert filter_modules(["bogus"]) == []

    def test_coerce_interval(self):
        assert coerce_interval("5m") == "5m"
        assert coerce_interval("7m") == "1d"
        assert coerce_interval(None) == "1d"


class TestYahooFinanceClient:
    """Test adapter outcome classification."""

    @pytest.fixture
    def fake(self):
        return FakeYahoo()

    @pytest.fixture
    def quota_guard(self):
        return QuotaGuard()

    @pytest.fixture
    def client(self, fake, quota_guard):
        return YahooFinanceClient(
            UpstreamConfig(timeout_seconds=1.0, calls_per_minute=100),
            quota_guard=quota_guard,
            transport=httpx.MockTransport(fake)
        )

    @pytest.mark.asyncio
    async def test_quote_success(self, client, fake):
        fake.route("/v7/finance/quote", httpx.Response(200, json=quote_body(
            {"symbol": "AAPL", "regularMarketPrice": 190.1}
        )))

        async with client:
            response = await client.quote(["AAPL"])

        assert response.success
        assert not response.empty
        assert response.payload[0]["regularMarketPrice"] == 190.1

        request = fake.api_requests()[0]
        assert request.url.params["symbols"] == "AAPL"
        assert request.url.params["crumb"] == "crumb-1"
        assert "Mozilla" in request.headers["user-agent"]
        assert client.provider is DataProvider.YAHOO

    @pytest.mark.asyncio
    async def test_empty_quote(self, client, fake):
        fake.route("/v7/finance/quote", httpx.Response(200, json=quote_body()))

        async with client:
            response = await client.quote(["NOPE"])

        assert response.success
        assert response.empty

    @pytest.mark.asyncio
    async def test_unpriced_quote_is_empty(self, client, fake):
        """Test a quote without a market price is reported empty so it is retried."""
        fake.route("/v7/finance/quote", httpx.Response(200, json=quote_body(
            {"symbol": "AAPL", "shortName": "Apple Inc.", "marketState": "CLOSED"}
        )))

        async with client:
            response = await client.quote(["AAPL"])

        assert response.success
        assert response.empty
        assert response.payload[0]["symbol"] == "AAPL"

    @pytest.mark.asyncio
    async def test_batch_with_one_priced_quote_is_not_empty(self, client, fake):
        fake.route("/v7/finance/quote", httpx.Response(200, json=quote_body(
            {"symbol": "AAPL", "regularMarketPrice": {"raw": 190.1, "fmt": "190.10"}},
            {"symbol": "DEAD"},
        )))

        async with client:
            response = await client.quote(["AAPL", "DEAD"])

        assert not response.empty

    @pytest.mark.asyncio
    async def test_validate_flags_missing_fields(self, client, fake):
        fake.route("/v7/finance/quote", httpx.Response(200, json=quote_body({"symbol": "AAPL"})))

        async with client:
            unchecked = await client.quote(["AAPL"])
            checked = await client.quote(["AAPL"], validate=True)

        assert unchecked.warning is None
        assert checked.success
        assert "regularMarketPrice" in checked.warning
        assert checked.empty

    @pytest.mark.asyncio
    async def test_auth_failure_refreshes_once(self, client, fake):
        """Test a rejected crumb triggers one refresh and a re-issued request."""
        fake.route(
            "/v7/finance/quote",
            httpx.Response(401, json={"finance": {"error": {"code": "Unauthorized", "description": "Invalid Crumb"}}}),
            httpx.Response(200, json=quote_body({"symbol": "AAPL", "regularMarketPrice": 1.0})),
        )

        async with client:
            response = await client.quote(["AAPL"])

        assert response.success
        assert fake.crumbs_issued == 2
        assert fake.api_requests()[-1].url.params["crumb"] == "crumb-2"

    @pytest.mark.asyncio
    async def test_repeated_auth_failure(self, client, fake):
        fake.route("/v7/finance/quote", httpx.Response(403, text="Forbidden"))

        async with client:
            response = await client.quote(["AAPL"])

        assert not response.success
        assert response.error_kind is ErrorKind.AUTH_EXPIRED
        assert len(fake.api_requests()) == 2

    @pytest.mark.asyncio
    async def test_invalid_crumb_body(self, client, fake):
        fake.route(
            "/v7/finance/quote",
            httpx.Response(400, text='{"finance":{"error":{"description":"Invalid Crumb"}}}'),
            httpx.Response(200, json=quote_body({"symbol": "AAPL"})),
        )

        async with client:
            response = await client.quote(["AAPL"])

        assert response.success

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response,kind", [
        (httpx.Response(429, text="Too Many Requests"), ErrorKind.RATE_LIMITED),
        (httpx.Response(500, text="oops"), ErrorKind.UPSTREAM),
        (httpx.Response(200, text="<html>not json</html>"), ErrorKind.UPSTREAM),
    ])
    async def test_http_failures(self, client, fake, response, kind):
        fake.route("/v7/finance/quote", response)

        async with client:
            result = await client.quote(["AAPL"])

        assert not result.success
        assert result.error_kind is kind
        assert result.error_message

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, client, fake):
        request = httpx.Request("GET", "https://query1.finance.yahoo.com/v7/finance/quote")
        fake.route("/v7/finance/quote", httpx.ReadTimeout("timed out", request=request))

        async with client:
            response = await client.quote(["AAPL"])

        assert not response.success
        assert response.error_kind is ErrorKind.TRANSIENT_NETWORK
        assert "timed out" in response.error_message

    @pytest.mark.asyncio
    async def test_connect_error_is_transient(self, client, fake):
        request = httpx.Request("GET", "https://query1.finance.yahoo.com/v7/finance/quote")
        fake.route("/v7/finance/quote", httpx.ConnectError("connection refused", request=request))

        async with client:
            response = await client.quote(["AAPL"])

        assert response.error_kind is ErrorKind.TRANSIENT_NETWORK

    @pytest.mark.asyncio
    async def test_provider_error_block(self, client, fake):
        fake.route("/v10/finance/quoteSummary/ZZZZ", httpx.Response(200, json={
            "quoteSummary": {"result": None, "error": {"code": "Not Found", "description": "Quote not found for ticker symbol: ZZZZ"}}
        }))

        async with client:
            response = await client.quote_summary("ZZZZ", ["price"])

        assert not response.success
        assert response.error_kind is ErrorKind.UPSTREAM
        assert "Quote not found" in response.error_message

    @pytest.mark.asyncio
    async def test_quote_summary_filters_modules(self, client, fake):
        fake.route("/v10/finance/quoteSummary/AAPL", httpx.Response(200, json={
            "quoteSummary": {"result": [{"price": {"regularMarketPrice": {"raw": 190}}}], "error": None}
        }))

        async with client:
            response = await client.quote_summary("AAPL", ["price", "notAModule"])

        assert response.success
        assert response.payload["price"]["regularMarketPrice"]["raw"] == 190
        assert fake.api_requests()[0].url.params["modules"] == "price"

    @pytest.mark.asyncio
    async def test_quote_summary_without_valid_modules(self, client, fake):
        """Test an empty module list fails without network traffic."""
        response = await client.quote_summary("AAPL", ["bogus", "alsoBogus"])

        assert not response.success
        assert response.error_kind is ErrorKind.INVALID_PARAMETERS
        assert fake.requests == []

    @pytest.mark.asyncio
    async def test_quote_summary_validate(self, client, fake):
        fake.route("/v10/finance/quoteSummary/AAPL", httpx.Response(200, json={
            "quoteSummary": {"result": [{"price": {}}], "error": None}
        }))

        async with client:
            response = await client.quote_summary("AAPL", ["price", "assetProfile"], validate=True)

        assert response.success
        assert "assetProfile" in response.warning

    @pytest.mark.asyncio
    async def test_chart_coerces_interval(self, client, fake):
        fake.route("/v8/finance/chart/AAPL", httpx.Response(200, json={"chart": {"result": [{
            "meta": {"symbol": "AAPL"},
            "timestamp": [1704205800],
            "indicators": {"quote": [{"close": [185.6]}]},
        }], "error": None}}))

        async with client:
            response = await client.chart("AAPL", interval="7m", range_="5d")

        assert response.success
        params = fake.api_requests()[0].url.params
        assert params["interval"] == "1d"
        assert params["range"] == "5d"

    @pytest.mark.asyncio
    async def test_chart_period_window(self, client, fake):
        fake.route("/v8/finance/chart/AAPL", httpx.Response(200, json={"chart": {"result": [], "error": None}}))

        async with client:
            response = await client.chart("AAPL", period1=1700000000, period2=1700086400)

        assert response.empty
        params = fake.api_requests()[0].url.params
        assert params["period1"] == "1700000000"
        assert "range" not in params

    @pytest.mark.asyncio
    async def test_search_empty(self, client, fake):
        fake.route("/v1/finance/search", httpx.Response(200, json={"quotes": [], "news": []}))

        async with client:
            response = await client.search("zzzz")

        assert response.success
        assert response.empty

    @pytest.mark.asyncio
    async def test_trending_and_gainers(self, client, fake):
        fake.route("/v1/finance/trending/US", httpx.Response(200, json={
            "finance": {"result": [{"count": 1, "quotes": [{"symbol": "NVDA"}]}], "error": None}
        }))
        fake.route("/v1/finance/screener/predefined/saved", httpx.Response(200, json={
            "finance": {"result": [{"id": "day_gainers", "quotes": [{"symbol": "AMD"}]}], "error": None}
        }))

        async with client:
            trending = await client.trending("us", 5)
            gainers = await client.daily_gainers("US", 5)

        assert trending.payload["quotes"] == [{"symbol": "NVDA"}]
        assert gainers.payload["id"] == "day_gainers"
        screener = fake.api_requests()[-1]
        assert screener.url.params["scrIds"] == "day_gainers"

    @pytest.mark.asyncio
    async def test_quota_exhausted(self, fake, quota_guard):
        """Test an exhausted local budget fails as rate limited without calling Yahoo."""
        quota_guard.register("yahoo", 1, QuotaPeriod.MINUTE)
        client = YahooFinanceClient(
            UpstreamConfig(),
            quota_guard=quota_guard,
            transport=httpx.MockTransport(fake)
        )
        fake.route("/v7/finance/quote", httpx.Response(200, json=quote_body({"symbol": "AAPL"})))

        async with client:
            first = await client.quote(["AAPL"])
            second = await client.quote(["AAPL"])

        assert first.success
        assert not second.success
        assert second.error_kind is ErrorKind.RATE_LIMITED
        assert len(fake.api_requests()) == 1

    @pytest.mark.asyncio
    async def test_health_check(self, client, fake):
        async with client:
            assert await client.health_check()
        assert client.crumb is None
        assert not client.is_connected
