"""
Base types for the data access layer
Shared enums, the normalized adapter response and the error taxonomy
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

class DataProvider(Enum):
    """Available data providers"""
    YAHOO = "yahoo"
    MOCK = "mock"

class DataKind(Enum):
    """Kinds of data served by the access layer; values double as cache key prefixes"""
    PRICE = "price"
    PRICES = "prices"
    HISTORY = "history"
    CHART = "chart"
    SUMMARY = "summary"
    QUOTE_SUMMARY = "quote_summary"
    ALL_INFO = "all_info"
    SEARCH = "search"
    TRENDING = "trending"
    GAINERS = "gainers"
    EARNINGS = "earnings"
    INSIGHTS = "insights"
    RECOMMENDATIONS = "recommendations"
    OPTIONS = "options"
    QUOTE_COMBINE = "quote_combine"
    SUGGESTIONS = "suggestions"

class ErrorKind(Enum):
    """Coarse classification of upstream outcomes"""
    TRANSIENT_NETWORK = "transient_network"
    RATE_LIMITED = "rate_limited"
    AUTH_EXPIRED = "auth_expired"
    VALIDATION_MISMATCH = "validation_mismatch"
    INVALID_PARAMETERS = "invalid_parameters"
    UPSTREAM = "upstream"
    EXHAUSTED = "exhausted"

    @property
    def retryable(self) -> bool:
        return self not in (ErrorKind.INVALID_PARAMETERS, ErrorKind.EXHAUSTED)

@dataclass
class NormalizedResponse:
    """
    Uniform result of every upstream call

    `empty` marks a structurally valid but empty payload (no quotes, no chart
    rows). It is a success, but callers may choose to retry it.
    """
    success: bool
    payload: Any = None
    error_message: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    warning: Optional[str] = None
    empty: bool = False

    @classmethod
    def ok(cls, payload: Any, warning: Optional[str] = None, empty: bool = False) -> 'NormalizedResponse':
        return cls(success=True, payload=payload, warning=warning, empty=empty)

    @classmethod
    def fail(cls, kind: ErrorKind, message: str) -> 'NormalizedResponse':
        return cls(success=False, error_message=message, error_kind=kind)

class FinProxyError(Exception):
    """Base class for errors surfaced by finproxy"""

class InvalidParametersError(FinProxyError, ValueError):
    """Caller-supplied symbol/module/period is structurally invalid"""
    kind = ErrorKind.INVALID_PARAMETERS

class DataUnavailableError(FinProxyError):
    """
    Raised for data that must not be fabricated (summaries, analyst insights)
    once every retry has been used up
    """
    kind = ErrorKind.EXHAUSTED

    def __init__(self, data_kind: DataKind, symbol: str, reason: str, attempts: int = 0):
        self.data_kind = data_kind
        self.symbol = symbol
        self.reason = reason
        self.attempts = attempts
        super().__init__(
            f"Unable to get {data_kind.value} data for {symbol} "
            f"after {attempts} attempt(s): {reason}"
        )

class BaseAdapter(ABC):
    """Base class for all upstream adapters"""

    def __init__(self, provider: DataProvider):
        self.provider = provider
        self.is_connected = False

    @abstractmethod
    async def connect(self):
        """Establish connection to data source"""
        pass

    @abstractmethod
    async def disconnect(self):
        """Close connection to data source"""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the adapter is healthy"""
        pass

    async def __aenter__(self):
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.disconnect()

class MarketDataAdapter(BaseAdapter):
    """Capabilities the access layer needs from a market data provider"""

    @abstractmethod
    async def quote(self, symbols: Sequence[str], validate: bool = False) -> NormalizedResponse:
        """Current quotes; payload is a list of provider quote dicts"""
        pass

    @abstractmethod
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
        """OHLCV series; payload is the provider chart envelope"""
        pass

    @abstractmethod
    async def search(self, query: str, quotes_count: int = 6, news_count: int = 4) -> NormalizedResponse:
        """Free-text search"""
        pass

    @abstractmethod
    async def quote_summary(
        self,
        symbol: str,
        modules: Sequence[str],
        validate: bool = False
    ) -> NormalizedResponse:
        """Module-based company summary; payload maps module name to data"""
        pass

    @abstractmethod
    async def trending(self, region: str = "US", count: int = 10) -> NormalizedResponse:
        pass

    @abstractmethod
    async def daily_gainers(self, region: str = "US", count: int = 5) -> NormalizedResponse:
        pass

    @abstractmethod
    async def insights(self, symbol: str) -> NormalizedResponse:
        pass

    @abstractmethod
    async def earnings(self, symbol: str) -> NormalizedResponse:
        pass

    @abstractmethod
    async def recommendations(self, symbol: str) -> NormalizedResponse:
        """Symbols Yahoo links to this one; payload has recommendedSymbols"""
        pass

    @abstractmethod
    async def options(
        self,
        symbol: str,
        expiration: Optional[int] = None,
        strike_min: Optional[float] = None,
        strike_max: Optional[float] = None
    ) -> NormalizedResponse:
        """Option chain for one expiration (epoch seconds; nearest when None)"""
        pass

# Field contracts of the public shapes. A synthetic record must carry at least these.
PRICE_FIELDS: List[str] = [
    'symbol', 'price', 'previousClose', 'change', 'changePercent',
    'volume', 'marketCap', 'lastUpdated'
]
HISTORY_ROW_FIELDS: List[str] = ['date', 'open', 'high', 'low', 'close', 'volume']
CHART_META_FIELDS: List[str] = [
    'currency', 'symbol', 'exchangeName', 'fullExchangeName', 'instrumentType',
    'firstTradeDate', 'regularMarketTime', 'hasPrePostMarketData', 'gmtoffset', 'timezone',
    'exchangeTimezoneName', 'regularMarketPrice', 'fiftyTwoWeekHigh', 'fiftyTwoWeekLow',
    'regularMarketDayHigh', 'regularMarketDayLow', 'regularMarketVolume', 'longName',
    'shortName', 'chartPreviousClose', 'priceHint', 'currentTradingPeriod',
    'dataGranularity', 'range', 'validRanges'
]
CHART_QUOTE_FIELDS: List[str] = ['open', 'high', 'low', 'close', 'volume']
SEARCH_FIELDS: List[str] = [
    'explains', 'count', 'quotes', 'news', 'nav', 'lists', 'researchReports',
    'screenerFieldResults', 'totalTime', 'timeTakenForQuotes', 'timeTakenForNews',
    'timeTakenForAlgowatchlist', 'timeTakenForPredefinedScreener', 'timeTakenForCrunchbase',
    'timeTakenForNav', 'timeTakenForResearchReports', 'timeTakenForScreenerField',
    'timeTakenForCulturalAssets'
]
SEARCH_QUOTE_FIELDS: List[str] = [
    'exchange', 'shortname', 'quoteType', 'symbol', 'index', 'score', 'typeDisp',
    'longname', 'exchDisp', 'sector', 'sectorDisp', 'industry', 'industryDisp',
    'isYahooFinance'
]
TRENDING_FIELDS: List[str] = ['count', 'quotes', 'jobTimestamp', 'startInterval']
GAINERS_FIELDS: List[str] = [
    'id', 'title', 'description', 'canonicalName', 'start', 'count', 'total', 'quotes',
    'predefinedScr', 'versionId', 'creationDate', 'lastUpdated'
]
GAINER_QUOTE_FIELDS: List[str] = [
    'language', 'region', 'quoteType', 'typeDisp', 'currency', 'exchange', 'shortName',
    'longName', 'fullExchangeName', 'marketState', 'symbol', 'regularMarketPrice',
    'regularMarketChange', 'regularMarketChangePercent', 'regularMarketVolume',
    'regularMarketPreviousClose', 'marketCap'
]
SUGGESTION_FIELDS: List[str] = ['symbol', 'name', 'exch', 'type', 'exchDisp', 'typeDisp']
EARNINGS_DATE_FIELDS: List[str] = [
    'date', 'quarterEndDate', 'epsActual', 'epsEstimate', 'epsDifference',
    'surprisePercent', 'isUpcoming'
]

def missing_fields(record: Dict[str, Any], fields: Sequence[str]) -> List[str]:
    """Names from `fields` that are absent from `record`"""
    return [f for f in fields if f not in record]
