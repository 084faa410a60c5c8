"""
Yahoo Finance adapter
Talks to the public query endpoints and classifies every outcome into a
NormalizedResponse; no httpx exception leaves this module.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx

from ..config import UpstreamConfig, get_config
from ..utils import QuotaExhausted, QuotaGuard, QuotaPeriod, get_logger
from .base import DataProvider, ErrorKind, MarketDataAdapter, NormalizedResponse
from .decoding import dig, first_number

logger = get_logger(__name__)

VALID_MODULES: Tuple[str, ...] = (
    'assetProfile',
    'summaryProfile',
    'summaryDetail',
    'price',
    'incomeStatementHistory',
    'incomeStatementHistoryQuarterly',
    'balanceSheetHistory',
    'balanceSheetHistoryQuarterly',
    'cashflowStatementHistory',
    'cashflowStatementHistoryQuarterly',
    'defaultKeyStatistics',
    'financialData',
    'calendarEvents',
    'secFilings',
    'recommendationTrend',
    'upgradeDowngradeHistory',
    'institutionOwnership',
    'fundOwnership',
    'majorDirectHolders',
    'majorHoldersBreakdown',
    'insiderTransactions',
    'insiderHolders',
    'netSharePurchaseActivity',
    'earnings',
    'earningsHistory',
    'earningsTrend',
    'industryTrend',
    'indexTrend',
    'sectorTrend',
)

EARNINGS_MODULES: Tuple[str, ...] = ('earnings', 'earningsHistory', 'earningsTrend', 'calendarEvents')

VALID_INTERVALS: Tuple[str, ...] = (
    '1m', '2m', '5m', '15m', '30m', '60m', '90m', '1h', '1d', '5d', '1wk', '1mo', '3mo'
)

VALID_RANGES: Tuple[str, ...] = (
    '1d', '5d', '1mo', '3mo', '6mo', '1y', '2y', '5y', '10y', 'ytd', 'max'
)

# Keys each endpoint's payload is expected to carry; checked when validate=True
_EXPECTED_QUOTE_KEYS = ('symbol', 'regularMarketPrice')
_EXPECTED_CHART_KEYS = ('meta', 'timestamp', 'indicators')

_AUTH_MARKERS = ('invalid crumb', 'unauthorized', 'invalid cookie')

def filter_modules(modules: Iterable[str]) -> List[str]:
    """Keep allow-listed module names, de-duplicated, in first-seen order"""
    seen = []
    for module in modules:
        if module in VALID_MODULES and module not in seen:
            seen.append(module)
    return seen

def coerce_interval(interval: Optional[str]) -> str:
    return interval if interval in VALID_INTERVALS else '1d'

class _AuthFailure(Exception):
    """Internal signal: the session cookie/crumb was rejected"""

class _CallFailure(Exception):
    """Internal signal carrying an already-classified failure"""

    def __init__(self, kind: ErrorKind, message: str):
        super().__init__(message)
        self.kind = kind

class YahooFinanceClient(MarketDataAdapter):
    """
    Yahoo Finance adapter using the query1 JSON endpoints

    Requests carry browser-like headers plus a cookie and "crumb" token.
    When Yahoo rejects the session the adapter refreshes it once and
    re-issues the request; that retry does not count against the caller's
    retry budget.
    """

    def __init__(
        self,
        config: Optional[UpstreamConfig] = None,
        quota_guard: Optional[QuotaGuard] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        super().__init__(DataProvider.YAHOO)
        self.config = config or get_config().upstream
        self.quota_guard = quota_guard or QuotaGuard()
        if self.provider.value not in self.quota_guard.quotas:
            self.quota_guard.register(self.provider.value, self.config.calls_per_minute, QuotaPeriod.MINUTE)
        self._transport = transport
        self.client: Optional[httpx.AsyncClient] = None
        self.crumb: Optional[str] = None
        self._session_lock = asyncio.Lock()

    def _headers(self) -> Dict[str, str]:
        return {
            "User-Agent": self.config.user_agent,
            "Accept": "application/json,text/plain,*/*",
            "Accept-Language": "en-US,en;q=0.9",
            "Referer": "https://finance.yahoo.com/",
            "Origin": "https://finance.yahoo.com",
        }

    async def connect(self):
        """Initialize HTTP client"""
        if not self.client:
            self.client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.timeout_seconds),
                headers=self._headers(),
                follow_redirects=True,
                transport=self._transport
            )
            self.is_connected = True
            logger.info("Yahoo Finance client initialized")

    async def disconnect(self):
        """Close HTTP client"""
        if self.client:
            await self.client.aclose()
            self.client = None
            self.crumb = None
            self.is_connected = False

    async def health_check(self) -> bool:
        """Check that a session can be established"""
        try:
            await self.refresh_session()
            return self.crumb is not None
        except (httpx.HTTPError, _CallFailure) as e:
            logger.error(f"Yahoo Finance health check failed: {e}")
            return False

    async def refresh_session(self):
        """Fetch a fresh cookie and crumb"""
        if not self.client:
            await self.connect()

        async with self._session_lock:
            logger.debug("Refreshing Yahoo Finance cookie and crumb")
            # The cookie endpoint answers 404 but still sets the session cookie
            await self.client.get(self.config.cookie_url)
            response = await self.client.get(f"{self.config.base_url}/v1/test/getcrumb")
            crumb = response.text.strip()
            if response.status_code != 200 or not crumb or "<" in crumb:
                self.crumb = None
                raise _CallFailure(ErrorKind.AUTH_EXPIRED, f"crumb request failed with HTTP {response.status_code}")
            self.crumb = crumb

    async def _send(self, path: str, params: Dict[str, Any], timeout: Optional[float]) -> Any:
        if self.crumb is None:
            await self.refresh_session()

        query = dict(params)
        query["crumb"] = self.crumb
        response = await self.client.get(
            f"{self.config.base_url}{path}",
            params=query,
            timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT
        )

        body_preview = response.text[:200].lower() if response.status_code >= 400 else ""
        if response.status_code in (401, 403) or any(m in body_preview for m in _AUTH_MARKERS):
            raise _AuthFailure(f"HTTP {response.status_code}: {response.text[:120]}")
        if response.status_code == 429:
            raise _CallFailure(ErrorKind.RATE_LIMITED, "HTTP 429: too many requests")
        if response.status_code >= 400:
            raise _CallFailure(
                ErrorKind.UPSTREAM,
                f"HTTP {response.status_code}: {self._provider_error(response) or response.reason_phrase}"
            )

        try:
            return response.json()
        except ValueError as e:
            raise _CallFailure(ErrorKind.UPSTREAM, f"invalid JSON from {path}: {e}")

    @staticmethod
    def _provider_error(response: httpx.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        if not isinstance(body, dict):
            return None
        for envelope in body.values():
            error = envelope.get("error") if isinstance(envelope, dict) else None
            if isinstance(error, dict):
                return error.get("description") or error.get("code")
        return None

    async def _request(
        self,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        endpoint: str = "",
        timeout: Optional[float] = None
    ) -> Tuple[Optional[Any], Optional[NormalizedResponse]]:
        """
        Issue one GET and classify failures

        Returns (json_body, None) on HTTP success or (None, failure_response).
        """
        params = params or {}
        endpoint = endpoint or path
        try:
            self.quota_guard.consume_quota(self.provider.value, 1, endpoint)
        except QuotaExhausted as e:
            return None, NormalizedResponse.fail(ErrorKind.RATE_LIMITED, str(e))

        if not self.client:
            await self.connect()

        try:
            try:
                return await self._send(path, params, timeout), None
            except _AuthFailure as e:
                logger.warning(f"Session rejected on {endpoint} ({e}), refreshing crumb and retrying once")
                self.crumb = None
                try:
                    return await self._send(path, params, timeout), None
                except _AuthFailure as retry_error:
                    return None, NormalizedResponse.fail(
                        ErrorKind.AUTH_EXPIRED,
                        f"{endpoint}: session still rejected after refresh ({retry_error})"
                    )
        except _CallFailure as e:
            return None, NormalizedResponse.fail(e.kind, f"{endpoint}: {e}")
        except httpx.TimeoutException:
            return None, NormalizedResponse.fail(
                ErrorKind.TRANSIENT_NETWORK,
                f"{endpoint}: timed out after {timeout or self.config.timeout_seconds}s"
            )
        except httpx.HTTPError as e:
            return None, NormalizedResponse.fail(
                ErrorKind.TRANSIENT_NETWORK,
                f"{endpoint}: {type(e).__name__}: {e}"
            )

    @staticmethod
    def _envelope_error(body: Any, envelope: str) -> Optional[NormalizedResponse]:
        error = dig(body, [envelope, "error"])
        if error:
            description = error.get("description") if isinstance(error, dict) else str(error)
            return NormalizedResponse.fail(ErrorKind.UPSTREAM, f"{envelope}: {description}")
        if not isinstance(body, dict) or envelope not in body:
            return NormalizedResponse.fail(ErrorKind.UPSTREAM, f"{envelope}: unexpected payload shape")
        return None

    @staticmethod
    def _schema_warning(records: Sequence[Dict[str, Any]], expected: Sequence[str], what: str) -> Optional[str]:
        missing = sorted({key for record in records for key in expected if key not in record})
        if missing:
            return f"{what} failed validation, missing: {', '.join(missing)}"
        return None

    async def quote(self, symbols: Sequence[str], validate: bool = False) -> NormalizedResponse:
        """Quotes for one or more symbols; payload is a list of quote dicts"""
        symbols = [s for s in symbols if s]
        if not symbols:
            return NormalizedResponse.fail(ErrorKind.INVALID_PARAMETERS, "quote: no symbols given")

        body, failure = await self._request(
            "/v7/finance/quote", {"symbols": ",".join(symbols)}, endpoint="quote"
        )
        if failure:
            return failure
        failure = self._envelope_error(body, "quoteResponse")
        if failure:
            return failure

        results = dig(body, ["quoteResponse", "result"]) or []
        warning = self._schema_warning(results, _EXPECTED_QUOTE_KEYS, "quote") if validate and results else None
        # Quotes without a market price carry nothing worth caching
        priced = any(first_number(r, "regularMarketPrice") is not None for r in results if isinstance(r, dict))
        return NormalizedResponse.ok(results, warning=warning, empty=not priced)

    async def chart(
        self,
        symbol: str,
        interval: str = "1d",
        range_: Optional[str] = "1mo",
        include_pre_post: bool = False,
        period1: Optional[int] = None,
        period2: Optional[int] = None,
        validate: bool = False
    ) -> NormalizedResponse:
        """Chart series; payload is {"chart": {"result": [...], "error": None}}"""
        params: Dict[str, Any] = {
            "interval": coerce_interval(interval),
            "includePrePost": str(bool(include_pre_post)).lower(),
            "events": "div,splits",
        }
        if period1 is not None:
            params["period1"] = int(period1)
            if period2 is not None:
                params["period2"] = int(period2)
        else:
            params["range"] = range_ or "1mo"

        body, failure = await self._request(f"/v8/finance/chart/{symbol}", params, endpoint="chart")
        if failure:
            return failure
        failure = self._envelope_error(body, "chart")
        if failure:
            return failure

        results = dig(body, ["chart", "result"]) or []
        if not results or not dig(results, [0, "timestamp"]):
            return NormalizedResponse.ok(body, empty=True)
        warning = self._schema_warning(results, _EXPECTED_CHART_KEYS, "chart") if validate else None
        return NormalizedResponse.ok(body, warning=warning)

    async def search(self, query: str, quotes_count: int = 6, news_count: int = 4) -> NormalizedResponse:
        body, failure = await self._request(
            "/v1/finance/search",
            {"q": query, "quotesCount": quotes_count, "newsCount": news_count, "enableFuzzyQuery": "false"},
            endpoint="search"
        )
        if failure:
            return failure
        if not isinstance(body, dict):
            return NormalizedResponse.fail(ErrorKind.UPSTREAM, "search: unexpected payload shape")
        return NormalizedResponse.ok(body, empty=not body.get("quotes"))

    async def quote_summary(
        self,
        symbol: str,
        modules: Sequence[str],
        validate: bool = False
    ) -> NormalizedResponse:
        """
        Module-based summary; payload maps module name -> module data

        Unknown module names are dropped. If none remain the call fails
        without contacting Yahoo.
        """
        valid_modules = filter_modules(modules)
        if not valid_modules:
            return NormalizedResponse.fail(
                ErrorKind.INVALID_PARAMETERS,
                f"quoteSummary: no valid module names in {list(modules)}"
            )

        body, failure = await self._request(
            f"/v10/finance/quoteSummary/{symbol}",
            {"modules": ",".join(valid_modules), "formatted": "false"},
            endpoint="quoteSummary"
        )
        if failure:
            return failure
        failure = self._envelope_error(body, "quoteSummary")
        if failure:
            return failure

        result = dig(body, ["quoteSummary", "result", 0]) or {}
        if not result:
            return NormalizedResponse.ok({}, empty=True)

        warning = None
        if validate:
            missing = [m for m in valid_modules if m not in result]
            if missing:
                warning = f"quoteSummary failed validation, missing modules: {', '.join(missing)}"
        return NormalizedResponse.ok(result, warning=warning)

    async def earnings(self, symbol: str) -> NormalizedResponse:
        return await self.quote_summary(symbol, EARNINGS_MODULES)

    async def trending(self, region: str = "US", count: int = 10) -> NormalizedResponse:
        body, failure = await self._request(
            f"/v1/finance/trending/{region.upper()}",
            {"count": count, "lang": "en-US"},
            endpoint="trending"
        )
        if failure:
            return failure
        failure = self._envelope_error(body, "finance")
        if failure:
            return failure

        result = dig(body, ["finance", "result", 0]) or {}
        return NormalizedResponse.ok(result, empty=not result.get("quotes"))

    async def daily_gainers(self, region: str = "US", count: int = 5) -> NormalizedResponse:
        body, failure = await self._request(
            "/v1/finance/screener/predefined/saved",
            {"scrIds": "day_gainers", "count": count, "region": region.upper(), "lang": "en-US"},
            endpoint="dailyGainers"
        )
        if failure:
            return failure
        failure = self._envelope_error(body, "finance")
        if failure:
            return failure

        result = dig(body, ["finance", "result", 0]) or {}
        return NormalizedResponse.ok(result, empty=not result.get("quotes"))

    async def insights(self, symbol: str) -> NormalizedResponse:
        body, failure = await self._request(
            "/ws/insights/v2/finance/insights",
            {"symbol": symbol, "reportsCount": 2},
            endpoint="insights"
        )
        if failure:
            return failure
        failure = self._envelope_error(body, "finance")
        if failure:
            return failure

        result = dig(body, ["finance", "result"]) or {}
        return NormalizedResponse.ok(result, empty=not result)

    async def recommendations(self, symbol: str) -> NormalizedResponse:
        body, failure = await self._request(
            f"/v6/finance/recommendationsbysymbol/{symbol}", endpoint="recommendationsBySymbol"
        )
        if failure:
            return failure
        failure = self._envelope_error(body, "finance")
        if failure:
            return failure

        result = dig(body, ["finance", "result", 0]) or {}
        return NormalizedResponse.ok(result, empty=not result.get("recommendedSymbols"))

    async def options(
        self,
        symbol: str,
        expiration: Optional[int] = None,
        strike_min: Optional[float] = None,
        strike_max: Optional[float] = None
    ) -> NormalizedResponse:
        """Option chain; payload is the first optionChain result"""
        params: Dict[str, Any] = {}
        if expiration is not None:
            params["date"] = int(expiration)
        if strike_min is not None:
            params["strikeMin"] = strike_min
        if strike_max is not None:
            params["strikeMax"] = strike_max

        body, failure = await self._request(f"/v7/finance/options/{symbol}", params, endpoint="options")
        if failure:
            return failure
        failure = self._envelope_error(body, "optionChain")
        if failure:
            return failure

        result = dig(body, ["optionChain", "result", 0]) or {}
        return NormalizedResponse.ok(result, empty=not result.get("options"))
