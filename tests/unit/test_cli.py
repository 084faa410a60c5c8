"""Unit tests for the command line interface."""

import json
from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from finproxy.data.base import DataKind, DataUnavailableError, InvalidParametersError
from finproxy.main import cli


class StubService:
    """Stands in for StockDataService inside `async with build_service()`."""

    def __init__(self):
        self.get_stock_price = AsyncMock(return_value={"symbol": "AAPL", "price": 190.5, "fromCache": False})
        self.get_stock_summary = AsyncMock(
            side_effect=DataUnavailableError(DataKind.SUMMARY, "AAPL", "connection refused", 3)
        )
        self.get_quote_summary = AsyncMock(return_value={"symbol": "AAPL", "quoteSummary": {}})
        self.get_historical_data = AsyncMock(side_effect=InvalidParametersError("Invalid period '2w'"))
        self.get_options_data = AsyncMock(return_value={"symbol": "AAPL", "options": []})
        self.get_quote_combine = AsyncMock(return_value={"quotes": {}})

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


class TestCli:
    """Test CLI commands."""

    @pytest.fixture
    def service(self):
        return StubService()

    @pytest.fixture
    def runner(self):
        return CliRunner()

    def test_price(self, runner, service):
        with patch("finproxy.main.build_service", return_value=service):
            result = runner.invoke(cli, ["price", "AAPL", "--refresh"])

        assert result.exit_code == 0
        assert json.loads(result.output)["price"] == 190.5
        service.get_stock_price.assert_awaited_once_with("AAPL", force_refresh=True)

    def test_summary_modules(self, runner, service):
        with patch("finproxy.main.build_service", return_value=service):
            result = runner.invoke(cli, ["summary", "AAPL", "-m", "price", "-m", "financialData"])

        assert result.exit_code == 0
        service.get_quote_summary.assert_awaited_once_with(
            "AAPL", ["price", "financialData"], False, force_refresh=False
        )

    def test_unavailable_data_exits_nonzero(self, runner, service):
        with patch("finproxy.main.build_service", return_value=service):
            result = runner.invoke(cli, ["summary", "AAPL"])

        assert result.exit_code == 1
        assert "AAPL" in result.output

    def test_invalid_parameters_exit_code(self, runner, service):
        with patch("finproxy.main.build_service", return_value=service):
            result = runner.invoke(cli, ["history", "AAPL", "--period", "2w"])

        assert result.exit_code == 2
        assert "Invalid" in result.output

    def test_options_filters(self, runner, service):
        with patch("finproxy.main.build_service", return_value=service):
            result = runner.invoke(cli, [
                "options", "AAPL", "--expiration", "2024-06-21", "--strike-min", "150", "--strike-max", "200"
            ])

        assert result.exit_code == 0
        service.get_options_data.assert_awaited_once_with(
            "AAPL", "2024-06-21", 150.0, 200.0, force_refresh=False
        )

    def test_combine_fields(self, runner, service):
        with patch("finproxy.main.build_service", return_value=service):
            result = runner.invoke(cli, ["combine", "AAPL", "MSFT", "-f", "regularMarketPrice"])

        assert result.exit_code == 0
        service.get_quote_combine.assert_awaited_once_with(
            ["AAPL", "MSFT"], ["regularMarketPrice"], force_refresh=False
        )
