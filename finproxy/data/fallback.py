"""
Synthetic market data
Stand-in records used when Yahoo cannot be reached. Every record carries the
same fields as its real counterpart plus an isMock marker and a warning.
"""

import random
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

import pytz

from ..utils import get_logger
from .base import SEARCH_FIELDS
from .yahoo import VALID_RANGES

logger = get_logger(__name__)

MOCK_WARNING = "Live data unavailable; showing simulated values"

EASTERN = pytz.timezone("America/New_York")

# symbol -> (base, spread, max abs change percent)
PRICE_TABLE = {
    'AAPL': (150.0, 30.0, 2.0),
    'MSFT': (300.0, 50.0, 2.0),
    'GOOGL': (2500.0, 300.0, 2.0),
    'TSLA': (800.0, 100.0, 3.0),
    'AMZN': (3300.0, 400.0, 2.0),
}
DEFAULT_PRICE = (100.0, 900.0, 2.0)

CHART_BASE_PRICES = {'AAPL': 150.0, 'GOOGL': 2500.0, 'MSFT': 300.0}
DEFAULT_CHART_BASE = 800.0

POINT_COUNTS = {
    '1d': 78,
    '5d': 195,
    '1mo': 22,
    '3mo': 65,
    '6mo': 125,
    '1y': 250,
    '5y': 260,
}
DEFAULT_POINT_COUNT = 30

STRIDE_SECONDS = {
    '5m': 5 * 60,
    '15m': 15 * 60,
    '1h': 60 * 60,
    '1d': 24 * 60 * 60,
    '1wk': 7 * 24 * 60 * 60,
}
DEFAULT_STRIDE = 24 * 60 * 60

RANGE_LOOKBACK_DAYS = {
    '5d': 5,
    '1mo': 30,
    '3mo': 91,
    '6mo': 182,
    '1y': 365,
    '2y': 2 * 365,
    '5y': 5 * 365,
    '10y': 10 * 365,
    'max': 10 * 365,
}

VOLATILITY = 0.02
DRIFT = 0.001
PRICE_FLOOR = 1.0

SEARCH_TABLE = [
    ('AAPL', 'Apple Inc.', 'Technology', 'Consumer Electronics'),
    ('MSFT', 'Microsoft Corporation', 'Technology', 'Software - Infrastructure'),
    ('GOOGL', 'Alphabet Inc.', 'Communication Services', 'Internet Content & Information'),
    ('AMZN', 'Amazon.com, Inc.', 'Consumer Cyclical', 'Internet Retail'),
    ('TSLA', 'Tesla, Inc.', 'Consumer Cyclical', 'Auto Manufacturers'),
    ('META', 'Meta Platforms, Inc.', 'Communication Services', 'Internet Content & Information'),
    ('NVDA', 'NVIDIA Corporation', 'Technology', 'Semiconductors'),
    ('AMD', 'Advanced Micro Devices, Inc.', 'Technology', 'Semiconductors'),
    ('INTC', 'Intel Corporation', 'Technology', 'Semiconductors'),
    ('PYPL', 'PayPal Holdings, Inc.', 'Financial Services', 'Credit Services'),
    ('NFLX', 'Netflix, Inc.', 'Communication Services', 'Entertainment'),
    ('JPM', 'JPMorgan Chase & Co.', 'Financial Services', 'Banks - Diversified'),
]
SEARCH_NAMES = {symbol: name for symbol, name, _, _ in SEARCH_TABLE}

TRENDING_SYMBOLS = ['AAPL', 'MSFT', 'GOOGL', 'TSLA', 'AMZN']

# symbol, name, price, change, change percent, volume, market cap
GAINERS = [
    ('NVDA', 'NVIDIA Corporation', 950.02, 47.25, 5.2, 61_512_300, 2.37e12),
    ('AMD', 'Advanced Micro Devices, Inc.', 172.35, 7.85, 4.8, 72_104_500, 2.79e11),
    ('META', 'Meta Platforms, Inc.', 485.2, 17.3, 3.7, 18_437_800, 1.23e12),
    ('PYPL', 'PayPal Holdings, Inc.', 62.75, 1.95, 3.2, 21_906_400, 6.6e10),
    ('INTC', 'Intel Corporation', 35.46, 0.99, 2.9, 45_380_200, 1.51e11),
]

def _utcnow() -> datetime:
    return datetime.now(pytz.UTC)

class FallbackGenerator:
    """
    Generates synthetic records shaped like real responses

    Inject `rng` and `clock` for reproducible output in tests.
    """

    def __init__(self, rng: Optional[random.Random] = None, clock: Optional[Callable[[], datetime]] = None):
        self.rng = rng or random.Random()
        self.clock = clock or _utcnow

    def _mark(self, record: Dict[str, Any], warning: str = MOCK_WARNING) -> Dict[str, Any]:
        record['isMock'] = True
        record['warning'] = warning
        return record

    def stock_price(self, symbol: str) -> Dict[str, Any]:
        """Simulated quote for one symbol"""
        base, spread, max_change = PRICE_TABLE.get(symbol.upper(), DEFAULT_PRICE)
        price = base + self.rng.random() * spread
        change_percent = self.rng.uniform(-max_change, max_change)
        change = price * (change_percent / 100)

        logger.warning(f"Serving simulated price for {symbol}")
        return self._mark({
            'symbol': symbol,
            'price': price,
            'previousClose': price - change,
            'change': change,
            'changePercent': change_percent,
            'volume': int(1_000_000 + self.rng.random() * 10_000_000),
            'marketCap': price * (1_000_000_000 + self.rng.random() * 1_000_000_000),
            'lastUpdated': self.clock().isoformat(),
        })

    def stock_prices(self, symbols: Sequence[str]) -> Dict[str, Any]:
        return self._mark({'quotes': [self.stock_price(symbol) for symbol in symbols]})

    def _series_start(self, range_: str) -> datetime:
        now = self.clock().astimezone(EASTERN)
        if range_ in ('1d', 'ytd'):
            midnight = now.replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)
            if range_ == 'ytd':
                midnight = midnight.replace(month=1, day=1)
            return EASTERN.localize(midnight)
        return now - timedelta(days=RANGE_LOOKBACK_DAYS.get(range_, 30))

    @staticmethod
    def _trading_periods(local_now: datetime, gmtoffset: int) -> Dict[str, Dict[str, Any]]:
        """Today's pre, regular and post sessions in exchange time"""

        def at(hour: int, minute: int = 0) -> int:
            moment = local_now.replace(hour=hour, minute=minute, second=0, microsecond=0, tzinfo=None)
            return int(EASTERN.localize(moment).timestamp())

        sessions = {'pre': ((4, 0), (9, 30)), 'regular': ((9, 30), (16, 0)), 'post': ((16, 0), (20, 0))}
        return {
            name: {
                'timezone': local_now.strftime('%Z'),
                'start': at(*start),
                'end': at(*end),
                'gmtoffset': gmtoffset,
            }
            for name, (start, end) in sessions.items()
        }

    def chart(self, symbol: str, interval: str = '1d', range_: str = '1mo') -> Dict[str, Any]:
        """
        Random-walk OHLCV series packaged like a chart response

        The series ends at the current time and never reaches back past the
        start of the range, so a coarse interval over a short range yields
        few points. Each step moves the close by up to VOLATILITY either way
        plus DRIFT; open sits halfway back along the move and high/low are
        padded by up to 1%, so low <= min(open, close) <= max(open, close) <= high.
        """
        stride = STRIDE_SECONDS.get(interval, DEFAULT_STRIDE)
        base_price = CHART_BASE_PRICES.get(symbol.upper(), DEFAULT_CHART_BASE)

        end = int(self.clock().timestamp())
        span = end - int(self._series_start(range_).timestamp())
        point_count = max(1, min(POINT_COUNTS.get(range_, DEFAULT_POINT_COUNT), span // stride + 1))

        timestamp = end - (point_count - 1) * stride
        price = base_price - base_price * 0.2 * self.rng.random()

        timestamps: List[int] = []
        quote: Dict[str, List[float]] = {'open': [], 'high': [], 'low': [], 'close': [], 'volume': []}

        for _ in range(point_count):
            timestamps.append(timestamp)
            timestamp += stride

            change = self.rng.uniform(-1, 1) * VOLATILITY * price + price * DRIFT
            price = max(price + change, PRICE_FLOOR)

            open_price = price - change / 2
            quote['open'].append(open_price)
            quote['close'].append(price)
            quote['high'].append(max(open_price, price) * (1 + self.rng.random() * 0.01))
            quote['low'].append(min(open_price, price) * (1 - self.rng.random() * 0.01))
            quote['volume'].append(int(
                base_price * 10000 * (1 + abs(change / price) * 10) * (0.5 + self.rng.random())
            ))

        logger.warning(f"Serving simulated chart for {symbol} ({interval}/{range_})")
        local_now = self.clock().astimezone(EASTERN)
        gmtoffset = int(local_now.utcoffset().total_seconds())
        name = SEARCH_NAMES.get(symbol.upper(), f"{symbol.upper()} (simulated)")
        return self._mark({
            'chart': {
                'result': [{
                    'meta': {
                        'currency': 'USD',
                        'symbol': symbol,
                        'exchangeName': 'Mock Exchange',
                        'fullExchangeName': 'Mock Exchange',
                        'instrumentType': 'EQUITY',
                        'firstTradeDate': timestamps[0],
                        'regularMarketTime': timestamps[-1],
                        'hasPrePostMarketData': False,
                        'gmtoffset': gmtoffset,
                        'timezone': local_now.strftime('%Z'),
                        'exchangeTimezoneName': 'America/New_York',
                        'regularMarketPrice': quote['close'][-1],
                        'fiftyTwoWeekHigh': max(quote['high']),
                        'fiftyTwoWeekLow': min(quote['low']),
                        'regularMarketDayHigh': quote['high'][-1],
                        'regularMarketDayLow': quote['low'][-1],
                        'regularMarketVolume': quote['volume'][-1],
                        'longName': name,
                        'shortName': name,
                        'chartPreviousClose': quote['close'][0],
                        'priceHint': 2,
                        'currentTradingPeriod': self._trading_periods(local_now, gmtoffset),
                        'dataGranularity': interval,
                        'range': range_,
                        'validRanges': list(VALID_RANGES),
                    },
                    'timestamp': timestamps,
                    'indicators': {
                        'quote': [quote],
                        'adjclose': [{'adjclose': list(quote['close'])}],
                    },
                }],
                'error': None,
            }
        })

    def history(self, symbol: str, period: str = '1mo', interval: str = '1d') -> Dict[str, Any]:
        """Daily bars derived from the simulated chart series"""
        result = self.chart(symbol, interval, period)['chart']['result'][0]
        quote = result['indicators']['quote'][0]
        rows = [
            {
                'date': datetime.fromtimestamp(ts, tz=pytz.UTC).isoformat(),
                'open': quote['open'][i],
                'high': quote['high'][i],
                'low': quote['low'][i],
                'close': quote['close'][i],
                'volume': quote['volume'][i],
            }
            for i, ts in enumerate(result['timestamp'])
        ]
        return self._mark({'symbol': symbol, 'period': period, 'interval': interval, 'rows': rows})

    def _matches(self, query: str, limit: int) -> List[tuple]:
        needle = query.strip().lower()
        return [
            row for row in SEARCH_TABLE
            if needle in row[0].lower() or needle in row[1].lower()
        ][:limit]

    def search(self, query: str, quotes_count: int = 6) -> Dict[str, Any]:
        quotes = [
            {
                'exchange': 'NMS',
                'shortname': name,
                'quoteType': 'EQUITY',
                'symbol': symbol,
                'index': 'quotes',
                'score': 20000.0 - rank,
                'typeDisp': 'Equity',
                'longname': name,
                'exchDisp': 'NASDAQ',
                'sector': sector,
                'sectorDisp': sector,
                'industry': industry,
                'industryDisp': industry,
                'isYahooFinance': True,
            }
            for rank, (symbol, name, sector, industry) in enumerate(self._matches(query, quotes_count))
        ]

        record: Dict[str, Any] = {field: 0 for field in SEARCH_FIELDS}
        record.update({
            'explains': [],
            'count': len(quotes),
            'quotes': quotes,
            'news': [],
            'nav': [],
            'lists': [],
            'researchReports': [],
            'screenerFieldResults': [],
        })
        return self._mark(record)

    def suggestions(self, query: str, limit: int = 10) -> Dict[str, Any]:
        """Autocomplete entries for a partial symbol or company name"""
        entries = [
            {
                'symbol': symbol,
                'name': name,
                'exch': 'NMS',
                'type': 'S',
                'exchDisp': 'NASDAQ',
                'typeDisp': 'Equity',
            }
            for symbol, name, _, _ in self._matches(query, limit)
        ]
        return self._mark({'query': query, 'suggestions': entries})

    def trending(self, region: str = 'US', count: int = 5) -> Dict[str, Any]:
        now = int(self.clock().timestamp())
        quotes = [{'symbol': symbol} for symbol in TRENDING_SYMBOLS[:count]]
        return self._mark({
            'count': len(quotes),
            'quotes': quotes,
            'jobTimestamp': now * 1000,
            'startInterval': int(self.clock().strftime('%Y%m%d%H')),
            'region': region.upper(),
        })

    def daily_gainers(self, region: str = 'US', count: int = 5) -> Dict[str, Any]:
        region = region.upper()
        quotes = [
            {
                'language': 'en-US',
                'region': region,
                'quoteType': 'EQUITY',
                'typeDisp': 'Equity',
                'currency': 'USD',
                'exchange': 'NMS',
                'shortName': name,
                'longName': name,
                'fullExchangeName': 'NasdaqGS',
                'marketState': 'REGULAR',
                'symbol': symbol,
                'regularMarketPrice': price,
                'regularMarketChange': change,
                'regularMarketChangePercent': change_percent,
                'regularMarketVolume': volume,
                'regularMarketPreviousClose': price - change,
                'marketCap': market_cap,
            }
            for symbol, name, price, change, change_percent, volume, market_cap in GAINERS[:count]
        ]
        now_ms = int(self.clock().timestamp()) * 1000
        return self._mark({
            'id': 'day_gainers',
            'title': 'Day Gainers',
            'description': 'Stocks ordered in descending order by price percent change',
            'canonicalName': 'DAY_GAINERS',
            'start': 0,
            'count': len(quotes),
            'total': len(GAINERS),
            'quotes': quotes,
            'predefinedScr': True,
            'versionId': 0,
            'creationDate': now_ms,
            'lastUpdated': now_ms,
            'region': region,
        })

    def earnings_placeholder(self) -> Dict[str, Any]:
        """One forward-looking date roughly a quarter out"""
        upcoming = self.clock() + timedelta(days=91)
        return {
            'date': upcoming.date().isoformat(),
            'quarterEndDate': None,
            'epsActual': None,
            'epsEstimate': None,
            'epsDifference': None,
            'surprisePercent': None,
            'isUpcoming': True,
            'isMock': True,
        }

    def earnings(self, symbol: str) -> Dict[str, Any]:
        logger.warning(f"Serving placeholder earnings date for {symbol}")
        return self._mark(
            {
                'symbol': symbol,
                'earningsDates': [self.earnings_placeholder()],
                'upcomingEarningsDate': None,
                'earningsHistory': [],
                'earningsQuarterly': [],
            },
            warning="Earnings dates unavailable; showing a simulated placeholder"
        )
