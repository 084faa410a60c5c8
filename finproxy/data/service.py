"""
Stock data service
Cache-first access to Yahoo Finance data with retries, stale fallback and
synthetic stand-ins
"""

import asyncio
import copy
import functools
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import pytz

from ..config import CacheConfig, Config, get_config
from ..utils import get_logger, log_async_performance
from .base import (
    DataKind,
    DataUnavailableError,
    ErrorKind,
    InvalidParametersError,
    MarketDataAdapter,
    NormalizedResponse,
)
from .cache import CacheEntry, CacheStore, make_cache_key
from .decoding import to_datetime, to_number
from .fallback import FallbackGenerator
from .normalize import (
    combined_quotes,
    earnings_record,
    history_rows,
    insights_record,
    module_summary,
    option_chain_record,
    price_record,
    price_records,
    recommendations_record,
    suggestions_record,
)
from .retry import RetryController, RetryPolicy
from .yahoo import VALID_MODULES, VALID_RANGES, coerce_interval, filter_modules

logger = get_logger(__name__)

SYMBOL_PATTERN = re.compile(r'^[A-Za-z0-9.^=\-]{1,15}$')
FIELD_PATTERN = re.compile(r'^[A-Za-z][A-Za-z0-9]{0,63}$')
REGION_PATTERN = re.compile(r'^[A-Za-z]{2}$')

SUMMARY_MODULES = (
    'assetProfile',
    'financialData',
    'summaryDetail',
    'defaultKeyStatistics',
    'recommendationTrend',
)

ALL_INFO_BATCH_SIZE = 5
ALL_INFO_BATCH_PAUSE = (0.5, 1.5)

@dataclass(frozen=True)
class KindPolicy:
    """
    How one data kind behaves when Yahoo fails

    fabricate: serve synthetic data after exhaustion (otherwise raise)
    cacheable_on_fallback: store that synthetic data like a real result
    retry_empty: treat an empty-but-valid payload as a failed attempt
    accept_empty: after exhaustion, return a trailing empty payload as real
    """
    ttl_seconds: float
    cacheable_on_fallback: bool = False
    fabricate: bool = True
    retry_empty: bool = False
    accept_empty: bool = False

def default_policies(cache: CacheConfig) -> Dict[DataKind, KindPolicy]:
    return {
        DataKind.PRICE: KindPolicy(cache.price_ttl, retry_empty=True),
        DataKind.PRICES: KindPolicy(cache.price_ttl, retry_empty=True),
        DataKind.HISTORY: KindPolicy(cache.history_ttl, retry_empty=True),
        DataKind.CHART: KindPolicy(cache.chart_ttl, retry_empty=True),
        DataKind.SEARCH: KindPolicy(cache.search_ttl, retry_empty=True, accept_empty=True),
        DataKind.TRENDING: KindPolicy(cache.trending_ttl, cacheable_on_fallback=True),
        DataKind.GAINERS: KindPolicy(cache.gainers_ttl, cacheable_on_fallback=True),
        DataKind.EARNINGS: KindPolicy(cache.earnings_ttl, cacheable_on_fallback=True),
        DataKind.SUMMARY: KindPolicy(cache.summary_ttl, fabricate=False),
        DataKind.QUOTE_SUMMARY: KindPolicy(cache.summary_ttl, fabricate=False),
        DataKind.ALL_INFO: KindPolicy(cache.summary_ttl, fabricate=False),
        DataKind.INSIGHTS: KindPolicy(cache.insights_ttl, fabricate=False),
        DataKind.RECOMMENDATIONS: KindPolicy(cache.recommendations_ttl, fabricate=False),
        DataKind.OPTIONS: KindPolicy(cache.options_ttl, fabricate=False),
        DataKind.QUOTE_COMBINE: KindPolicy(cache.price_ttl, fabricate=False, retry_empty=True),
        DataKind.SUGGESTIONS: KindPolicy(cache.suggestions_ttl, retry_empty=True, accept_empty=True),
    }

def _never_empty(response: NormalizedResponse) -> bool:
    return False

def _utcnow() -> datetime:
    return datetime.now(pytz.UTC)

def validate_symbol(symbol: Any) -> str:
    if not isinstance(symbol, str) or not SYMBOL_PATTERN.match(symbol.strip()):
        raise InvalidParametersError(f"Invalid symbol: {symbol!r}")
    return symbol.strip().upper()

def validate_region(region: Any) -> str:
    if not isinstance(region, str) or not REGION_PATTERN.match(region.strip()):
        raise InvalidParametersError(f"Invalid region: {region!r}")
    return region.strip().upper()

def validate_range(value: Any, name: str = "period") -> str:
    if value not in VALID_RANGES:
        raise InvalidParametersError(f"Invalid {name} {value!r}; expected one of {', '.join(VALID_RANGES)}")
    return value

def validate_count(value: Any, name: str = "count", minimum: int = 1) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise InvalidParametersError(f"{name} must be an integer >= {minimum}, got {value!r}")
    return value

def validate_strike(value: Any, name: str) -> Optional[float]:
    if value is None:
        return None
    number = None if isinstance(value, bool) else to_number(value)
    if number is None or number < 0:
        raise InvalidParametersError(f"{name} must be a non-negative number, got {value!r}")
    return number

def validate_expiration(value: Any) -> Optional[int]:
    """Expiration as epoch seconds; accepts dates, datetimes, ISO strings and epochs"""
    if value is None:
        return None
    if isinstance(value, date) and not isinstance(value, datetime):
        value = datetime(value.year, value.month, value.day, tzinfo=pytz.UTC)
    parsed = to_datetime(value)
    if parsed is None:
        raise InvalidParametersError(f"Invalid expiration date: {value!r}")
    return int(parsed.timestamp())

def validate_symbols(symbols: Any) -> List[str]:
    if not symbols or isinstance(symbols, str):
        raise InvalidParametersError("symbols must be a non-empty list")
    return [validate_symbol(s) for s in symbols]

Fetch = Callable[[], Awaitable[NormalizedResponse]]
Build = Callable[[NormalizedResponse], Dict[str, Any]]
Fabricate = Callable[[], Dict[str, Any]]

class StockDataService:
    """
    One coroutine per data kind

    Every call goes cache -> retried upstream fetch -> store, and on
    exhaustion serves the last cached value (marked stale) before falling
    back to synthetic data. Kinds whose policy forbids fabrication raise
    DataUnavailableError instead. Concurrent misses for the same key share
    a single upstream fetch when request coalescing is enabled.
    """

    def __init__(
        self,
        client: MarketDataAdapter,
        store: CacheStore,
        retry: Optional[RetryController] = None,
        generator: Optional[FallbackGenerator] = None,
        config: Optional[Config] = None,
        policies: Optional[Dict[DataKind, KindPolicy]] = None,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.config = config or get_config()
        self.client = client
        self.store = store
        self.retry = retry or RetryController(RetryPolicy.from_config(self.config.retry))
        self.generator = generator or FallbackGenerator()
        self.policies = policies or default_policies(self.config.cache)
        self.clock = clock or _utcnow
        self.coalesce = self.config.system.coalesce_requests
        self._inflight: Dict[str, asyncio.Task] = {}

    async def close(self):
        await self.client.disconnect()

    async def __aenter__(self):
        await self.client.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    @staticmethod
    def _annotate(record: Dict[str, Any], from_cache: bool, stale: bool = False) -> Dict[str, Any]:
        record['fromCache'] = from_cache
        if stale:
            record['stale'] = True
        return record

    async def _resolve(
        self,
        kind: DataKind,
        params: Dict[str, Any],
        fetch: Fetch,
        build: Build,
        fabricate: Optional[Fabricate] = None,
        force_refresh: bool = False,
        subject: str = ""
    ) -> Dict[str, Any]:
        key = make_cache_key(kind, **params)
        subject = subject or kind.value
        # Reading past expiry evicts, so hold on to the last known entry first
        previous = self.store.get_entry(key)

        if not force_refresh:
            cached = self.store.get(key)
            if cached is not None:
                logger.debug(f"Serving cached {kind.value} for {subject}")
                return self._annotate(cached, from_cache=True)

        if not self.coalesce:
            return await self._fetch(kind, key, fetch, build, fabricate, subject, previous)

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._fetch(kind, key, fetch, build, fabricate, subject, previous))
            self._inflight[key] = task
            task.add_done_callback(functools.partial(self._finish_inflight, key))
        else:
            logger.debug(f"Joining in-flight {kind.value} fetch for {subject}")

        # A cancelled caller stops waiting; the shared fetch runs on for the others
        result = await asyncio.shield(task)
        return copy.deepcopy(result)

    def _finish_inflight(self, key: str, task: asyncio.Task):
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled():
            # Every caller may have gone; mark the exception retrieved
            task.exception()

    async def _fetch(
        self,
        kind: DataKind,
        key: str,
        fetch: Fetch,
        build: Build,
        fabricate: Optional[Fabricate],
        subject: str,
        previous: Optional[CacheEntry] = None
    ) -> Dict[str, Any]:
        policy = self.policies[kind]
        outcome = await self.retry.run(
            fetch,
            is_empty=None if policy.retry_empty else _never_empty,
            description=f"{kind.value} for {subject}"
        )
        response = outcome.response

        if outcome.rejected:
            raise InvalidParametersError(outcome.last_error or f"{kind.value} request rejected for {subject}")

        accepted_empty = (
            outcome.exhausted and policy.accept_empty
            and response is not None and response.success
        )
        if outcome.succeeded or accepted_empty:
            record = build(response)
            if response.warning:
                record['warning'] = response.warning
            self.store.set(key, record, policy.ttl_seconds)
            return self._annotate(record, from_cache=False)

        reason = outcome.last_error or "empty result"
        entry = self.store.get_entry(key) or previous
        if entry is not None:
            logger.warning(
                f"Serving stale {kind.value} for {subject} "
                f"({entry.age_seconds(self.store.clock()):.0f}s old) after: {reason}"
            )
            return self._annotate(copy.deepcopy(entry.value), from_cache=True, stale=True)

        if not policy.fabricate or fabricate is None:
            raise DataUnavailableError(kind, subject, reason, outcome.attempt_count)

        record = fabricate()
        if policy.cacheable_on_fallback:
            self.store.set(key, record, policy.ttl_seconds)
        return self._annotate(record, from_cache=False)

    @log_async_performance()
    async def get_stock_price(self, symbol: str, force_refresh: bool = False) -> Dict[str, Any]:
        """Latest quote for one symbol"""
        symbol = validate_symbol(symbol)

        def build(response: NormalizedResponse) -> Dict[str, Any]:
            return price_record(response.payload[0], symbol, self.clock())

        return await self._resolve(
            DataKind.PRICE,
            {'symbol': symbol},
            lambda: self.client.quote([symbol]),
            build,
            lambda: self.generator.stock_price(symbol),
            force_refresh,
            symbol
        )

    @log_async_performance()
    async def get_multiple_stock_prices(self, symbols: Sequence[str], force_refresh: bool = False) -> Dict[str, Any]:
        """Batch quote; the response wraps the records as {"quotes": [...]}"""
        symbols = validate_symbols(symbols)

        def build(response: NormalizedResponse) -> Dict[str, Any]:
            return {'quotes': price_records(response.payload, symbols, self.clock())}

        return await self._resolve(
            DataKind.PRICES,
            {'symbols': symbols},
            lambda: self.client.quote(symbols),
            build,
            lambda: self.generator.stock_prices(symbols),
            force_refresh,
            ",".join(symbols)
        )

    @log_async_performance()
    async def get_historical_data(
        self,
        symbol: str,
        period: str = '1mo',
        interval: str = '1d',
        force_refresh: bool = False
    ) -> Dict[str, Any]:
        """Daily (or intraday) OHLCV rows for a look-back period"""
        symbol = validate_symbol(symbol)
        period = validate_range(period, "period")
        interval = coerce_interval(interval)

        def build(response: NormalizedResponse) -> Dict[str, Any]:
            return {
                'symbol': symbol,
                'period': period,
                'interval': interval,
                'rows': history_rows(response.payload),
            }

        return await self._resolve(
            DataKind.HISTORY,
            {'symbol': symbol, 'period': period, 'interval': interval},
            lambda: self.client.chart(symbol, interval=interval, range_=period),
            build,
            lambda: self.generator.history(symbol, period, interval),
            force_refresh,
            symbol
        )

    @log_async_performance()
    async def get_chart_data(
        self,
        symbol: str,
        interval: str = '1d',
        range_: str = '1mo',
        include_pre_post: bool = False,
        force_refresh: bool = False
    ) -> Dict[str, Any]:
        """Raw chart envelope ({"chart": {"result": [...], "error": None}})"""
        symbol = validate_symbol(symbol)
        range_ = validate_range(range_, "range")
        interval = coerce_interval(interval)

        return await self._resolve(
            DataKind.CHART,
            {'symbol': symbol, 'interval': interval, 'range': range_, 'includePrePost': bool(include_pre_post)},
            lambda: self.client.chart(symbol, interval=interval, range_=range_, include_pre_post=include_pre_post),
            lambda response: dict(response.payload),
            lambda: self.generator.chart(symbol, interval, range_),
            force_refresh,
            symbol
        )

    @log_async_performance()
    async def get_stock_summary(self, symbol: str, force_refresh: bool = False) -> Dict[str, Any]:
        """Company profile, financials and analyst trend; never fabricated"""
        symbol = validate_symbol(symbol)

        return await self._resolve(
            DataKind.SUMMARY,
            {'symbol': symbol},
            lambda: self.client.quote_summary(symbol, SUMMARY_MODULES),
            lambda response: {'symbol': symbol, 'quoteSummary': response.payload},
            None,
            force_refresh,
            symbol
        )

    @log_async_performance()
    async def get_quote_summary(
        self,
        symbol: str,
        modules: Sequence[str],
        validate: bool = False,
        force_refresh: bool = False
    ) -> Dict[str, Any]:
        """
        Arbitrary quoteSummary modules

        Unknown module names are dropped; a request naming none of the
        allowed modules is rejected.
        """
        symbol = validate_symbol(symbol)
        if isinstance(modules, str):
            modules = [m.strip() for m in modules.split(',')]
        valid_modules = filter_modules(modules or [])
        if not valid_modules:
            raise InvalidParametersError(f"No valid modules in {list(modules or [])}")

        return await self._resolve(
            DataKind.QUOTE_SUMMARY,
            {'symbol': symbol, 'modules': valid_modules, 'validate': validate or None},
            lambda: self.client.quote_summary(symbol, valid_modules, validate=validate),
            lambda response: {'symbol': symbol, 'modules': sorted(valid_modules), 'quoteSummary': response.payload},
            None,
            force_refresh,
            symbol
        )

    async def _fetch_all_info(self, symbol: str) -> NormalizedResponse:
        modules: Dict[str, Any] = {}
        errors: List[Dict[str, Any]] = []
        last_kind = ErrorKind.UPSTREAM

        batches = [
            list(VALID_MODULES[i:i + ALL_INFO_BATCH_SIZE])
            for i in range(0, len(VALID_MODULES), ALL_INFO_BATCH_SIZE)
        ]
        for index, batch in enumerate(batches):
            if index:
                await self.retry.sleep(self.retry.rng.uniform(*ALL_INFO_BATCH_PAUSE))

            logger.debug(f"Fetching module batch {index + 1}/{len(batches)} for {symbol}: {', '.join(batch)}")
            response = await self.client.quote_summary(symbol, batch)
            if not response.success:
                last_kind = response.error_kind or ErrorKind.UPSTREAM
                errors.append({'modules': batch, 'error': response.error_message, 'kind': last_kind.value})
                continue

            for name in batch:
                data = (response.payload or {}).get(name)
                if data:
                    modules[name] = data

        if not modules:
            reason = errors[-1]['error'] if errors else "no module returned data"
            return NormalizedResponse.fail(last_kind, reason)

        return NormalizedResponse.ok({
            'symbol': symbol,
            'modules': modules,
            'errors': errors,
            'summary': module_summary(modules),
        })

    @log_async_performance()
    async def get_all_stock_info(self, symbol: str, force_refresh: bool = False) -> Dict[str, Any]:
        """Every allow-listed module, fetched in batches; never fabricated"""
        symbol = validate_symbol(symbol)

        return await self._resolve(
            DataKind.ALL_INFO,
            {'symbol': symbol},
            lambda: self._fetch_all_info(symbol),
            lambda response: response.payload,
            None,
            force_refresh,
            symbol
        )

    @log_async_performance()
    async def search_stocks(
        self,
        query: str,
        quotes_count: int = 6,
        news_count: int = 4,
        force_refresh: bool = False
    ) -> Dict[str, Any]:
        if not isinstance(query, str) or not query.strip():
            raise InvalidParametersError("Search query must not be empty")
        query = query.strip()
        quotes_count = validate_count(quotes_count, "quotes_count")
        news_count = validate_count(news_count, "news_count", minimum=0)

        return await self._resolve(
            DataKind.SEARCH,
            {'query': query.lower(), 'quotesCount': quotes_count, 'newsCount': news_count},
            lambda: self.client.search(query, quotes_count=quotes_count, news_count=news_count),
            lambda response: dict(response.payload),
            lambda: self.generator.search(query, quotes_count),
            force_refresh,
            repr(query)
        )

    @log_async_performance()
    async def get_trending_stocks(self, region: str = 'US', count: int = 5, force_refresh: bool = False) -> Dict[str, Any]:
        region = validate_region(region)
        count = validate_count(count)

        return await self._resolve(
            DataKind.TRENDING,
            {'region': region, 'count': count},
            lambda: self.client.trending(region, count),
            lambda response: dict(response.payload),
            lambda: self.generator.trending(region, count),
            force_refresh,
            region
        )

    @log_async_performance()
    async def get_daily_gainers(self, region: str = 'US', count: int = 5, force_refresh: bool = False) -> Dict[str, Any]:
        region = validate_region(region)
        count = validate_count(count)

        return await self._resolve(
            DataKind.GAINERS,
            {'region': region, 'count': count},
            lambda: self.client.daily_gainers(region, count),
            lambda response: dict(response.payload),
            lambda: self.generator.daily_gainers(region, count),
            force_refresh,
            region
        )

    @log_async_performance()
    async def get_earnings_dates(self, symbol: str, force_refresh: bool = False) -> Dict[str, Any]:
        """
        Past report dates plus the next scheduled one, newest first

        When Yahoo answers but no date can be extracted, a marked placeholder
        date is added so the list is never empty.
        """
        symbol = validate_symbol(symbol)

        def build(response: NormalizedResponse) -> Dict[str, Any]:
            record = earnings_record(symbol, response.payload or {})
            if not record['earningsDates']:
                logger.warning(f"No earnings dates found for {symbol}, adding a placeholder")
                record['earningsDates'].append(self.generator.earnings_placeholder())
                record['warning'] = "No earnings dates available; showing a simulated placeholder"
            return record

        return await self._resolve(
            DataKind.EARNINGS,
            {'symbol': symbol},
            lambda: self.client.earnings(symbol),
            build,
            lambda: self.generator.earnings(symbol),
            force_refresh,
            symbol
        )

    @log_async_performance()
    async def get_stock_insights(self, symbol: str, force_refresh: bool = False) -> Dict[str, Any]:
        """Analyst insights; never fabricated"""
        symbol = validate_symbol(symbol)

        return await self._resolve(
            DataKind.INSIGHTS,
            {'symbol': symbol},
            lambda: self.client.insights(symbol),
            lambda response: insights_record(symbol, response.payload),
            None,
            force_refresh,
            symbol
        )

    @log_async_performance()
    async def get_recommendations(self, symbol: str, force_refresh: bool = False) -> Dict[str, Any]:
        """Related symbols ranked by Yahoo's score; never fabricated"""
        symbol = validate_symbol(symbol)

        return await self._resolve(
            DataKind.RECOMMENDATIONS,
            {'symbol': symbol},
            lambda: self.client.recommendations(symbol),
            lambda response: recommendations_record(symbol, response.payload or {}),
            None,
            force_refresh,
            symbol
        )

    @log_async_performance()
    async def get_options_data(
        self,
        symbol: str,
        expiration: Any = None,
        strike_min: Any = None,
        strike_max: Any = None,
        force_refresh: bool = False
    ) -> Dict[str, Any]:
        """
        Option chain for one expiration, optionally narrowed to a strike window

        expiration may be a date, datetime, ISO string or epoch seconds; None
        asks Yahoo for the nearest expiration. Never fabricated.
        """
        symbol = validate_symbol(symbol)
        expires = validate_expiration(expiration)
        low = validate_strike(strike_min, "strike_min")
        high = validate_strike(strike_max, "strike_max")
        if low is not None and high is not None and low > high:
            raise InvalidParametersError(f"strike_min {low} is above strike_max {high}")

        return await self._resolve(
            DataKind.OPTIONS,
            {'symbol': symbol, 'expiration': expires, 'strikeMin': low, 'strikeMax': high},
            lambda: self.client.options(symbol, expires, low, high),
            lambda response: option_chain_record(symbol, response.payload or {}, low, high),
            None,
            force_refresh,
            symbol
        )

    @log_async_performance()
    async def get_quote_combine(
        self,
        symbols: Sequence[str],
        fields: Optional[Sequence[str]] = None,
        force_refresh: bool = False
    ) -> Dict[str, Any]:
        """
        One batched quote call answered as a symbol -> quote map

        When fields are given each quote keeps only those (plus symbol).
        Never fabricated, since the requested field set is open-ended.
        """
        symbols = sorted(set(validate_symbols(symbols)))
        if isinstance(fields, str):
            fields = [f.strip() for f in fields.split(',') if f.strip()]
        bad = [f for f in fields or [] if not isinstance(f, str) or not FIELD_PATTERN.match(f)]
        if bad:
            raise InvalidParametersError(f"Invalid quote fields: {bad}")
        fields = sorted(set(fields or []))

        return await self._resolve(
            DataKind.QUOTE_COMBINE,
            {'symbols': symbols, 'fields': fields or None},
            lambda: self.client.quote(symbols),
            lambda response: {
                'symbols': symbols,
                'fields': fields,
                'quotes': combined_quotes(response.payload or [], fields),
            },
            None,
            force_refresh,
            ",".join(symbols)
        )

    @log_async_performance()
    async def get_search_suggestions(self, query: str, force_refresh: bool = False) -> Dict[str, Any]:
        """Autocomplete for a partial symbol or company name"""
        if not isinstance(query, str) or not query.strip():
            raise InvalidParametersError("Search query must not be empty")
        query = query.strip()

        return await self._resolve(
            DataKind.SUGGESTIONS,
            {'query': query.lower()},
            lambda: self.client.search(query, quotes_count=10, news_count=0),
            lambda response: suggestions_record(query, response.payload or {}),
            lambda: self.generator.suggestions(query),
            force_refresh,
            repr(query)
        )

    def invalidate(self, kind: DataKind, **params: Any):
        """Drop one cached entry; params must match the ones the getter keys on"""
        self.store.delete(make_cache_key(kind, **params))

    async def status(self) -> Dict[str, Any]:
        """Upstream health, quota usage and cache statistics"""
        healthy = await self.client.health_check()
        quota_guard = getattr(self.client, 'quota_guard', None)
        return {
            'provider': self.client.provider.value,
            'healthy': healthy,
            'quota': quota_guard.get_status() if quota_guard else {},
            'cache': self.store.get_stats(),
            'inflight': len(self._inflight),
        }
