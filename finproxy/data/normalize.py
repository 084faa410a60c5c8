"""
Provider payload -> public response shapes
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..utils import get_logger, log_performance
from .decoding import dig, first_item, first_number, to_date_string, to_datetime, to_int, to_number, truncate, unwrap

logger = get_logger(__name__)

def price_record(quote: Dict[str, Any], symbol: str, now: datetime) -> Dict[str, Any]:
    return {
        'symbol': quote.get('symbol') or symbol,
        'price': first_number(quote, 'regularMarketPrice'),
        'previousClose': first_number(quote, 'regularMarketPreviousClose', 'previousClose'),
        'change': first_number(quote, 'regularMarketChange'),
        'changePercent': first_number(quote, 'regularMarketChangePercent'),
        'volume': to_int(quote.get('regularMarketVolume')),
        'marketCap': first_number(quote, 'marketCap'),
        'lastUpdated': now.isoformat(),
    }

def price_records(quotes: List[Dict[str, Any]], symbols: List[str], now: datetime) -> List[Dict[str, Any]]:
    """One record per quote, filling a missing symbol from the request order"""
    return [
        price_record(quote, symbols[i] if i < len(symbols) else '', now)
        for i, quote in enumerate(quotes)
    ]

def history_rows(chart_payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    """
    Flatten a chart response into OHLCV rows

    Yahoo pads non-trading slots with nulls; rows without a close are skipped.
    """
    result = dig(chart_payload, ['chart', 'result', 0]) or {}
    timestamps = result.get('timestamp') or []
    quote = dig(result, ['indicators', 'quote', 0]) or {}

    def column(name: str) -> List[Any]:
        values = quote.get(name) or []
        return values + [None] * (len(timestamps) - len(values))

    opens, highs, lows, closes, volumes = (column(n) for n in ('open', 'high', 'low', 'close', 'volume'))

    rows = []
    for i, ts in enumerate(timestamps):
        close = to_number(closes[i])
        if close is None:
            continue
        date = to_datetime(ts)
        rows.append({
            'date': date.isoformat() if date else None,
            'open': to_number(opens[i]),
            'high': to_number(highs[i]),
            'low': to_number(lows[i]),
            'close': close,
            'volume': to_int(volumes[i]),
        })
    return rows

def _history_item(item: Dict[str, Any]) -> Dict[str, Any]:
    quarter_date = to_date_string(item.get('quarter'))
    return {
        'date': item.get('period') or quarter_date,
        'quarter': quarter_date,
        'quarterTimestamp': to_int(item.get('quarter')),
        'reportDate': to_date_string(item.get('date')),
        'reportTimestamp': to_int(item.get('date')),
        'epsActual': to_number(item.get('epsActual')),
        'epsEstimate': to_number(item.get('epsEstimate')),
        'epsDifference': to_number(item.get('epsDifference', item.get('surprise'))),
        'surprisePercent': to_number(item.get('surprisePercent')),
    }

@log_performance()
def earnings_record(symbol: str, modules: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge earnings history, the calendar's next date and quarterly chart
    data into one record; earningsDates is sorted newest first
    """
    earnings_dates: List[Dict[str, Any]] = []
    history: List[Dict[str, Any]] = []
    quarterly: List[Dict[str, Any]] = []
    upcoming = None

    for item in dig(modules, ['earningsHistory', 'history']) or []:
        if not isinstance(item, dict):
            continue
        entry = _history_item(item)
        history.append(entry)
        if entry['reportDate']:
            earnings_dates.append({
                'date': entry['reportDate'],
                'quarterEndDate': entry['quarter'],
                'epsActual': entry['epsActual'],
                'epsEstimate': entry['epsEstimate'],
                'epsDifference': entry['epsDifference'],
                'surprisePercent': entry['surprisePercent'],
                'isUpcoming': False,
            })

    calendar = dig(modules, ['calendarEvents', 'earnings']) or {}
    upcoming_ts = unwrap(first_item(calendar.get('earningsDate')))
    if upcoming_ts is None:
        upcoming_ts = unwrap(first_item(dig(modules, ['earnings', 'earningsChart', 'earningsDate'])))
    upcoming_at = to_datetime(upcoming_ts)
    if upcoming_at:
        upcoming = {
            'date': upcoming_at.isoformat(),
            'timestamp': to_int(upcoming_ts),
            'estimated': True,
        }
        earnings_dates.append({
            'date': upcoming_at.date().isoformat(),
            'quarterEndDate': None,
            'epsActual': None,
            'epsEstimate': to_number(calendar.get('earningsAverage')),
            'epsDifference': None,
            'surprisePercent': None,
            'isUpcoming': True,
        })

    for item in dig(modules, ['earnings', 'earningsChart', 'quarterly']) or []:
        if isinstance(item, dict):
            quarterly.append({
                'date': item.get('date'),
                'actual': to_number(item.get('actual')),
                'estimate': to_number(item.get('estimate')),
            })

    earnings_dates.sort(key=lambda e: e['date'] or '', reverse=True)

    return {
        'symbol': symbol,
        'earningsDates': earnings_dates,
        'upcomingEarningsDate': upcoming,
        'earningsHistory': history,
        'earningsQuarterly': quarterly,
    }

def _price_summary(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'currentPrice': first_number(data, 'regularMarketPrice'),
        'change': first_number(data, 'regularMarketChange'),
        'changePercent': first_number(data, 'regularMarketChangePercent'),
        'volume': to_int(data.get('regularMarketVolume')),
    }

def _profile_summary(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'sector': data.get('sector'),
        'industry': data.get('industry'),
        'website': data.get('website'),
        'description': truncate(data.get('longBusinessSummary'), 300),
    }

def _statistics_summary(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'marketCap': first_number(data, 'marketCap'),
        'enterpriseValue': first_number(data, 'enterpriseValue'),
        'trailingPE': first_number(data, 'trailingPE'),
        'forwardPE': first_number(data, 'forwardPE'),
        'pegRatio': first_number(data, 'pegRatio'),
    }

def _calendar_summary(data: Dict[str, Any]) -> Dict[str, Any]:
    earnings = data.get('earnings') or {}
    return {
        'earningsDate': to_date_string(first_item(earnings.get('earningsDate'))),
        'earningsAverage': first_number(earnings, 'earningsAverage'),
        'earningsLow': first_number(earnings, 'earningsLow'),
        'earningsHigh': first_number(earnings, 'earningsHigh'),
    }

def _holders_summary(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'insidersPercent': first_number(data, 'insidersPercentHeld'),
        'institutionsPercent': first_number(data, 'institutionsPercentHeld'),
    }

SUMMARY_EXTRACTORS: Dict[str, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    'price': _price_summary,
    'assetProfile': _profile_summary,
    'defaultKeyStatistics': _statistics_summary,
    'calendarEvents': _calendar_summary,
    'majorHoldersBreakdown': _holders_summary,
}

def module_summary(modules: Dict[str, Any]) -> Dict[str, Any]:
    """Key figures pulled out of whichever modules are present"""
    summary = {}
    for name, extract in SUMMARY_EXTRACTORS.items():
        data = modules.get(name)
        if isinstance(data, dict):
            summary[name] = extract(data)
    return summary

def insights_record(symbol: str, result: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    record = dict(result or {})
    record.setdefault('symbol', symbol)
    return record

def recommendations_record(symbol: str, result: Dict[str, Any]) -> Dict[str, Any]:
    recommended = []
    for item in result.get('recommendedSymbols') or []:
        if isinstance(item, dict) and item.get('symbol'):
            recommended.append({'symbol': item['symbol'], 'score': to_number(item.get('score'))})
    recommended.sort(key=lambda r: r['score'] or 0.0, reverse=True)
    return {'symbol': result.get('symbol') or symbol, 'recommendedSymbols': recommended}

def _within(strike: Optional[float], strike_min: Optional[float], strike_max: Optional[float]) -> bool:
    if strike is None:
        return False
    return (strike_min is None or strike >= strike_min) and (strike_max is None or strike <= strike_max)

def _contracts(contracts: Any, strike_min: Optional[float], strike_max: Optional[float]) -> List[Dict[str, Any]]:
    return [
        c for c in contracts or []
        if isinstance(c, dict) and _within(to_number(c.get('strike')), strike_min, strike_max)
    ]

def option_chain_record(
    symbol: str,
    chain: Dict[str, Any],
    strike_min: Optional[float] = None,
    strike_max: Optional[float] = None
) -> Dict[str, Any]:
    """
    Option chain with dates decoded and contracts outside the strike window
    dropped; Yahoo does not always honour strikeMin/strikeMax itself
    """
    strikes = [to_number(s) for s in chain.get('strikes') or []]
    expirations = []
    for block in chain.get('options') or []:
        if not isinstance(block, dict):
            continue
        expirations.append({
            'expirationDate': to_date_string(block.get('expirationDate')),
            'hasMiniOptions': bool(block.get('hasMiniOptions')),
            'calls': _contracts(block.get('calls'), strike_min, strike_max),
            'puts': _contracts(block.get('puts'), strike_min, strike_max),
        })

    return {
        'symbol': chain.get('underlyingSymbol') or symbol,
        'expirationDates': [d for d in (to_date_string(ts) for ts in chain.get('expirationDates') or []) if d],
        'strikes': [s for s in strikes if _within(s, strike_min, strike_max)],
        'hasMiniOptions': bool(chain.get('hasMiniOptions')),
        'quote': chain.get('quote') or {},
        'options': expirations,
    }

def combined_quotes(quotes: List[Dict[str, Any]], fields: List[str]) -> Dict[str, Dict[str, Any]]:
    """Quotes keyed by symbol, narrowed to `fields` when any are given"""
    combined = {}
    for quote in quotes:
        if not isinstance(quote, dict) or not quote.get('symbol'):
            continue
        if fields:
            quote = {k: v for k, v in quote.items() if k in fields or k == 'symbol'}
        combined[quote['symbol']] = quote
    return combined

# quoteType -> legacy autocomplete type code
AUTOC_TYPES = {
    'EQUITY': 'S',
    'ETF': 'E',
    'INDEX': 'I',
    'MUTUALFUND': 'M',
    'FUTURE': 'F',
    'CURRENCY': 'C',
}

def suggestions_record(query: str, search_payload: Dict[str, Any]) -> Dict[str, Any]:
    """Autocomplete entries from a quotes-only search"""
    entries = []
    for quote in search_payload.get('quotes') or []:
        if not isinstance(quote, dict) or not quote.get('symbol'):
            continue
        entries.append({
            'symbol': quote['symbol'],
            'name': quote.get('longname') or quote.get('shortname') or quote['symbol'],
            'exch': quote.get('exchange'),
            'type': AUTOC_TYPES.get(quote.get('quoteType'), quote.get('quoteType')),
            'exchDisp': quote.get('exchDisp'),
            'typeDisp': quote.get('typeDisp'),
        })
    return {'query': query, 'suggestions': entries}
