"""
Data access layer
Yahoo Finance adapter, response cache, retries and synthetic fallback
"""

from .base import (
    DataProvider,
    DataKind,
    ErrorKind,
    NormalizedResponse,
    FinProxyError,
    InvalidParametersError,
    DataUnavailableError,
    BaseAdapter,
    MarketDataAdapter
)

from .cache import CacheEntry, CacheStore, make_cache_key
from .retry import RetryPolicy, RetryController, RetryOutcome, FetchAttempt
from .yahoo import YahooFinanceClient
from .fallback import FallbackGenerator
from .service import StockDataService, KindPolicy, default_policies

__all__ = [
    # Base classes
    'DataProvider',
    'DataKind',
    'ErrorKind',
    'NormalizedResponse',
    'FinProxyError',
    'InvalidParametersError',
    'DataUnavailableError',
    'BaseAdapter',
    'MarketDataAdapter',

    # Main interfaces
    'CacheEntry',
    'CacheStore',
    'make_cache_key',
    'RetryPolicy',
    'RetryController',
    'RetryOutcome',
    'FetchAttempt',
    'YahooFinanceClient',
    'FallbackGenerator',
    'StockDataService',
    'KindPolicy',
    'default_policies'
]
