"""Synthetic records compared against recorded Yahoo payloads."""

import json
import random
from datetime import datetime, timezone
from pathlib import Path

import pytest

from finproxy.data.decoding import dig
from finproxy.data.fallback import FallbackGenerator
from finproxy.data.normalize import earnings_record, history_rows, price_record, suggestions_record

FIXTURES = Path(__file__).parent.parent / "fixtures" / "yahoo"
NOW = datetime(2024, 3, 15, 15, 30, tzinfo=timezone.utc)


def load(name):
    with open(FIXTURES / f"{name}.json") as f:
        return json.load(f)


def absent_keys(real, synthetic, path="$"):
    """Paths present in `real` but not in `synthetic`, walking dicts and list items"""
    if isinstance(real, dict) and isinstance(synthetic, dict):
        for key, value in real.items():
            if key not in synthetic:
                yield f"{path}.{key}"
            else:
                yield from absent_keys(value, synthetic[key], f"{path}.{key}")
    elif isinstance(real, list) and isinstance(synthetic, list) and real and synthetic:
        for i, item in enumerate(real):
            yield from absent_keys(item, synthetic[0], f"{path}[{i}]")


def real_price():
    return price_record(dig(load("quote"), ["quoteResponse", "result", 0]), "AAPL", NOW)


def real_chart():
    return dict(load("chart"))


def real_history():
    return {
        'symbol': "AAPL",
        'period': "5d",
        'interval': "1d",
        'rows': history_rows(load("chart")),
    }


def real_search():
    return dict(load("search"))


def real_trending():
    return dig(load("trending"), ["finance", "result", 0])


def real_gainers():
    return dig(load("gainers"), ["finance", "result", 0])


def real_earnings():
    return earnings_record("AAPL", dig(load("earnings"), ["quoteSummary", "result", 0]))


def real_suggestions():
    return suggestions_record("apple", load("search"))


class TestFallbackShapes:
    """Test every key Yahoo returns also appears in the simulated record."""

    @pytest.fixture
    def generator(self):
        return FallbackGenerator(rng=random.Random(3), clock=lambda: NOW)

    @pytest.mark.parametrize("real,synthetic", [
        (real_price, lambda g: g.stock_price("AAPL")),
        (real_chart, lambda g: g.chart("AAPL", "1d", "5d")),
        (real_history, lambda g: g.history("AAPL", "5d", "1d")),
        (real_search, lambda g: g.search("apple")),
        (real_trending, lambda g: g.trending("US", 3)),
        (real_gainers, lambda g: g.daily_gainers("US", 1)),
        (real_earnings, lambda g: g.earnings("AAPL")),
        (real_suggestions, lambda g: g.suggestions("apple")),
    ], ids=["price", "chart", "history", "search", "trending", "gainers", "earnings", "suggestions"])
    def test_synthetic_keys_cover_real_payload(self, generator, real, synthetic):
        record = real()

        assert record
        assert list(absent_keys(record, synthetic(generator))) == []

    def test_absent_keys_walks_list_items(self):
        real = {'quotes': [{'symbol': "AAPL", 'extra': 1}], 'news': [{'title': "x"}]}
        synthetic = {'quotes': [{'symbol': "MSFT"}], 'news': []}

        assert list(absent_keys(real, synthetic)) == ["$.quotes[0].extra"]

    def test_recorded_chart_has_rows(self):
        rows = real_history()['rows']

        assert len(rows) == 6
        assert rows[-1]['close'] == 172.62
