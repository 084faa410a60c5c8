"""
Main entry point for finproxy
Provides CLI commands over the stock data service
"""

import asyncio
import json
import sys

import click

from finproxy.config.settings import get_config
from finproxy.data import (
    CacheStore,
    DataUnavailableError,
    InvalidParametersError,
    StockDataService,
    YahooFinanceClient,
)
from finproxy.utils.logger import get_logger

logger = get_logger(__name__)

def build_service() -> StockDataService:
    """Wire the Yahoo client, an in-process cache and the service together"""
    config = get_config()
    client = YahooFinanceClient(config.upstream)
    store = CacheStore(default_ttl=config.cache.default_ttl)
    return StockDataService(client, store, config=config)

def _emit(payload):
    click.echo(json.dumps(payload, indent=2, default=str))

def _run(call):
    """Run one service coroutine and print its JSON result"""

    async def runner():
        async with build_service() as service:
            return await call(service)

    try:
        _emit(asyncio.run(runner()))
    except InvalidParametersError as e:
        click.echo(f"❌ Invalid request: {e}", err=True)
        sys.exit(2)
    except DataUnavailableError as e:
        logger.error(str(e))
        click.echo(f"❌ {e}", err=True)
        sys.exit(1)

@click.group()
def cli():
    """Yahoo Finance caching proxy CLI"""
    pass

@cli.command()
def status():
    """Check upstream session, quota and configuration"""
    config = get_config()

    click.echo("\n📋 Configuration Status:")
    click.echo(f"  • Log Level: {config.system.log_level}")
    click.echo(f"  • Upstream: {config.upstream.base_url} (timeout {config.upstream.timeout_seconds}s)")
    click.echo(f"  • Retries: {config.retry.max_attempts} attempts, base delay {config.retry.base_delay}s")
    click.echo(f"  • Price TTL: {config.cache.price_ttl}s, History TTL: {config.cache.history_ttl}s")
    click.echo(f"  • Request coalescing: {'Enabled' if config.system.coalesce_requests else 'Disabled'}")

    async def check():
        async with build_service() as service:
            return await service.status()

    report = asyncio.run(check())

    click.echo("\n🔑 Upstream Session:")
    click.echo(f"  • {report['provider'].title()}: {'✅ Healthy' if report['healthy'] else '❌ Unreachable'}")

    click.echo("\n📊 API Quotas:")
    for provider, info in report['quota'].items():
        pct = info.get('percentage', 0)
        emoji = "🟢" if pct < 80 else "🟡" if pct < 95 else "🔴"
        click.echo(f"  • {provider.title()}: {emoji} {info['used']}/{info['limit']} ({pct:.0f}%) per {info['period']}")

    click.echo("\n✅ System check complete!")

@cli.command()
@click.argument('symbol')
@click.option('--refresh', is_flag=True, help='Bypass the cache')
def price(symbol, refresh):
    """Latest price for SYMBOL"""
    _run(lambda service: service.get_stock_price(symbol, force_refresh=refresh))

@cli.command()
@click.argument('symbols', nargs=-1, required=True)
@click.option('--refresh', is_flag=True, help='Bypass the cache')
def prices(symbols, refresh):
    """Latest prices for several SYMBOLS"""
    _run(lambda service: service.get_multiple_stock_prices(list(symbols), force_refresh=refresh))

@cli.command()
@click.argument('symbol')
@click.option('--period', default='1mo', show_default=True)
@click.option('--interval', default='1d', show_default=True)
@click.option('--refresh', is_flag=True, help='Bypass the cache')
def history(symbol, period, interval, refresh):
    """Historical OHLCV rows for SYMBOL"""
    _run(lambda service: service.get_historical_data(symbol, period, interval, force_refresh=refresh))

@cli.command()
@click.argument('symbol')
@click.option('--interval', default='1d', show_default=True)
@click.option('--range', 'range_', default='1mo', show_default=True)
@click.option('--pre-post', is_flag=True, help='Include pre/post market data')
@click.option('--refresh', is_flag=True, help='Bypass the cache')
def chart(symbol, interval, range_, pre_post, refresh):
    """Chart series for SYMBOL"""
    _run(lambda service: service.get_chart_data(symbol, interval, range_, pre_post, force_refresh=refresh))

@cli.command()
@click.argument('symbol')
@click.option('--module', '-m', 'modules', multiple=True, help='quoteSummary module (repeatable)')
@click.option('--all', 'all_modules', is_flag=True, help='Fetch every available module')
@click.option('--validate', is_flag=True, help='Flag payloads missing requested modules')
@click.option('--refresh', is_flag=True, help='Bypass the cache')
def summary(symbol, modules, all_modules, validate, refresh):
    """Company summary for SYMBOL"""
    if all_modules:
        _run(lambda service: service.get_all_stock_info(symbol, force_refresh=refresh))
    elif modules:
        _run(lambda service: service.get_quote_summary(symbol, list(modules), validate, force_refresh=refresh))
    else:
        _run(lambda service: service.get_stock_summary(symbol, force_refresh=refresh))

@cli.command()
@click.argument('query')
@click.option('--quotes', 'quotes_count', default=6, show_default=True)
@click.option('--news', 'news_count', default=4, show_default=True)
def search(query, quotes_count, news_count):
    """Search symbols and news"""
    _run(lambda service: service.search_stocks(query, quotes_count, news_count))

@cli.command()
@click.option('--region', default='US', show_default=True)
@click.option('--count', default=5, show_default=True)
def trending(region, count):
    """Trending symbols in a region"""
    _run(lambda service: service.get_trending_stocks(region, count))

@cli.command()
@click.option('--region', default='US', show_default=True)
@click.option('--count', default=5, show_default=True)
def gainers(region, count):
    """Top daily gainers in a region"""
    _run(lambda service: service.get_daily_gainers(region, count))

@cli.command()
@click.argument('symbol')
@click.option('--refresh', is_flag=True, help='Bypass the cache')
def earnings(symbol, refresh):
    """Past and upcoming earnings dates for SYMBOL"""
    _run(lambda service: service.get_earnings_dates(symbol, force_refresh=refresh))

@cli.command()
@click.argument('symbol')
@click.option('--refresh', is_flag=True, help='Bypass the cache')
def insights(symbol, refresh):
    """Analyst insights for SYMBOL"""
    _run(lambda service: service.get_stock_insights(symbol, force_refresh=refresh))

@cli.command()
@click.argument('symbol')
@click.option('--refresh', is_flag=True, help='Bypass the cache')
def recommendations(symbol, refresh):
    """Symbols related to SYMBOL"""
    _run(lambda service: service.get_recommendations(symbol, force_refresh=refresh))

@cli.command()
@click.argument('symbol')
@click.option('--expiration', default=None, help='Expiration date (YYYY-MM-DD)')
@click.option('--strike-min', type=float, default=None)
@click.option('--strike-max', type=float, default=None)
@click.option('--refresh', is_flag=True, help='Bypass the cache')
def options(symbol, expiration, strike_min, strike_max, refresh):
    """Option chain for SYMBOL"""
    _run(lambda service: service.get_options_data(
        symbol, expiration, strike_min, strike_max, force_refresh=refresh
    ))

@cli.command()
@click.argument('symbols', nargs=-1, required=True)
@click.option('--field', '-f', 'fields', multiple=True, help='Quote field to keep (repeatable)')
@click.option('--refresh', is_flag=True, help='Bypass the cache')
def combine(symbols, fields, refresh):
    """Batched quotes for SYMBOLS keyed by symbol"""
    _run(lambda service: service.get_quote_combine(list(symbols), list(fields), force_refresh=refresh))

@cli.command()
@click.argument('query')
def suggest(query):
    """Autocomplete suggestions for QUERY"""
    _run(lambda service: service.get_search_suggestions(query))

if __name__ == "__main__":
    cli()
