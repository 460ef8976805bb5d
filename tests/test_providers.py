"""Tests for provider helpers, response parsing and registry routing."""

from __future__ import annotations

import asyncio
import json

import aiohttp
import pytest

from tests.conftest import FakeProvider, make_candles, squeeze_series
from volbreak import registry
from volbreak.config import DEFAULT_WATCHLIST
from volbreak.engine import VolatilityEngine
from volbreak.providers.base import bar_start, is_forex
from volbreak.providers.binance import BinanceProvider, _normalise
from volbreak.providers.delta import DeltaProvider, _is_listable
from volbreak.providers.yfinance import YFinanceProvider, _to_yf_symbol

WED_NOON = 1_704_283_200  # 2024-01-03 12:00:00 UTC
MON_MIDNIGHT = 1_704_067_200  # 2024-01-01 00:00:00 UTC

NOT_JSON = json.JSONDecodeError("Expecting value", "<html>", 0)


class _Response:
    def __init__(self, payload=None, error: Exception | None = None) -> None:
        self.status = 200
        self.payload = payload
        self.error = error

    async def __aenter__(self) -> _Response:
        if self.error is not None:
            raise self.error
        return self

    async def __aexit__(self, *exc_info):
        return False

    def raise_for_status(self) -> None:
        pass

    async def json(self, content_type=None):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class _Session:
    """Replaces ``aiohttp.ClientSession``; serves canned responses in order."""

    def __init__(self, *responses: _Response) -> None:
        self.responses = list(responses)
        self.urls: list[str] = []

    def __call__(self, **kwargs) -> _Session:
        return self

    async def __aenter__(self) -> _Session:
        return self

    async def __aexit__(self, *exc_info):
        return False

    def get(self, url: str, params=None) -> _Response:
        self.urls.append(url)
        return self.responses.pop(0)

    def serve(self, *responses: _Response) -> None:
        self.responses.extend(responses)


class TestBarStart:
    def test_hourly_floor(self):
        assert bar_start(WED_NOON + 1_799, "1h") == WED_NOON

    def test_four_hour_floor(self):
        assert bar_start(WED_NOON + 3 * 3_600, "4h") == WED_NOON

    def test_daily_is_utc_midnight(self):
        assert bar_start(WED_NOON, "1d") == MON_MIDNIGHT + 2 * 86_400

    def test_weekly_is_monday(self):
        assert bar_start(WED_NOON, "1w") == MON_MIDNIGHT
        assert bar_start(MON_MIDNIGHT, "1w") == MON_MIDNIGHT


class TestSymbolHelpers:
    @pytest.mark.parametrize("symbol", ["EURUSD", "gbpjpy", "USDCHF"])
    def test_forex(self, symbol):
        assert is_forex(symbol)

    @pytest.mark.parametrize("symbol", ["BTCUSD", "ETHUSDT", "AAPL", "EURUSDT"])
    def test_not_forex(self, symbol):
        assert not is_forex(symbol)

    @pytest.mark.parametrize(
        "symbol,expected",
        [
            ("EURUSD", "EURUSD=X"),
            ("AAPL", "AAPL"),
            ("^GSPC", "^GSPC"),
            ("WM.TO", "WM.TO"),
            ("BTCUSDT", "BTC-USD"),
            ("BTCUSD", "BTC-USD"),
            ("ETHBTC", "ETH-BTC"),
        ],
    )
    def test_yfinance_tickers(self, symbol, expected):
        assert _to_yf_symbol(symbol) == expected

    def test_binance_normalise(self):
        assert _normalise("btc/usdt") == "BTCUSDT"
        assert _normalise("ETH-USDC") == "ETHUSDC"

    def test_delta_listable(self):
        assert _is_listable("BTCUSD")
        assert not _is_listable("C-BTC-90000-310124")
        assert not _is_listable("MV-BTC-42000-310124")
        assert not _is_listable("BTC_USD")
        assert not _is_listable(None)

    def test_supports(self):
        assert DeltaProvider().supports("1000SHIBUSD")
        assert not DeltaProvider().supports("ETHUSDT")
        assert BinanceProvider().supports("ETHUSDT")
        assert not BinanceProvider().supports("BTCUSD")
        assert YFinanceProvider().supports("AAPL")
        assert YFinanceProvider().supports("EURUSD")


class TestParsing:
    def test_delta_rows(self):
        rows = [
            {"time": 1_700_003_600, "open": "101", "high": "102", "low": "100", "close": "101.5", "volume": "12"},
            {"time": 1_700_000_000, "open": 100, "high": 101, "low": 99, "close": 100.5, "volume": 10},
            {"time": 1_700_007_200, "open": "bad"},
            {"time": 1_700_010_800, "open": 0, "high": 1, "low": 1, "close": 1},
        ]
        candles = DeltaProvider._parse(rows)
        assert [c.time for c in candles] == [1_700_000_000, 1_700_003_600]
        assert candles[1].close == 101.5
        assert candles[1].volume == 12.0

    def test_binance_drops_forming_kline(self):
        now_ms = 1_700_007_000_000
        rows = [
            [1_700_000_000_000, "100", "101", "99", "100.5", "10", 1_700_003_599_999],
            [1_700_003_600_000, "100.5", "102", "100", "101", "11", 1_700_007_199_999],
            ["garbage"],
        ]
        candles = BinanceProvider._parse(rows, now_ms=now_ms)
        assert len(candles) == 1
        assert candles[0].time == 1_700_000_000
        assert candles[0].close == 100.5


class TestRegistry:
    def test_routing(self):
        assert [p.name for p in registry.pick("BTCUSD")] == ["delta", "yfinance"]
        assert [p.name for p in registry.pick("ethusdt")] == ["binance", "yfinance"]
        assert [p.name for p in registry.pick("EURUSD")] == ["yfinance"]
        assert [p.name for p in registry.pick("AAPL")] == ["yfinance"]
        assert [p.name for p in registry.pick("RIO.L")] == ["yfinance"]
        assert [p.name for p in registry.pick("BTC-PERP")] == ["delta", "binance", "yfinance"]

    def test_instances_are_cached(self):
        assert registry.pick("BTCUSD")[0] is registry.pick("SOLUSD")[0]

    def test_falls_back_on_empty_result(self):
        candles = make_candles([100.0, 101.0])
        delta = FakeProvider("delta", None)
        yahoo = FakeProvider("yfinance", candles)
        registry.register("delta", delta)
        registry.register("yfinance", yahoo)

        result = asyncio.run(registry.fetch("BTCUSD", "4h", 50))

        assert result == candles
        assert delta.calls == [("BTCUSD", "4h", 50)]
        assert yahoo.calls == [("BTCUSD", "4h", 50)]

    def test_unsupported_providers_are_skipped(self):
        delta = FakeProvider("delta", make_candles([1.0]), supported=False)
        yahoo = FakeProvider("yfinance", [])
        registry.register("delta", delta)
        registry.register("yfinance", yahoo)

        assert asyncio.run(registry.fetch("BTCUSD")) is None
        assert delta.calls == []

    def test_engine_backfill_uses_registry(self):
        registry.register("delta", FakeProvider("delta", make_candles(squeeze_series())))
        registry.register("yfinance", FakeProvider("yfinance", None))
        engine = VolatilityEngine()

        table = asyncio.run(engine.backfill(["BTCUSD"], ["1h"]))

        assert table["BTCUSD"]["1h"].is_ok

    def test_unknown_provider_name(self):
        with pytest.raises(KeyError):
            registry._get("nope")


class TestHttpResponses:
    def test_delta_undecodable_body(self, monkeypatch):
        monkeypatch.setattr(aiohttp, "ClientSession", _Session(_Response(NOT_JSON)))
        assert asyncio.run(DeltaProvider().fetch("BTCUSD", "1h", 50)) is None

    def test_binance_undecodable_body(self, monkeypatch):
        monkeypatch.setattr(aiohttp, "ClientSession", _Session(_Response(NOT_JSON)))
        assert asyncio.run(BinanceProvider().fetch("ETHUSDT", "1h", 50)) is None

    def test_delta_candles(self, monkeypatch):
        rows = [
            {"time": 1_700_000_000 + i * 3_600, "open": 100, "high": 101, "low": 99, "close": 100.5, "volume": 1}
            for i in range(5)
        ]
        monkeypatch.setattr(aiohttp, "ClientSession", _Session(_Response({"result": rows})))
        candles = asyncio.run(DeltaProvider().fetch("BTCUSD", "1h", 3))
        assert [c.time for c in candles] == [1_700_007_200, 1_700_010_800, 1_700_014_400]


class TestDeltaSymbols:
    PRODUCTS = {
        "result": [
            {"symbol": "SOLUSD"},
            {"symbol": "BTCUSD"},
            {"symbol": "C-BTC-90000-310124"},
            {"symbol": "BTCUSD"},
            {"symbol": "ETH_USDT"},
            {},
        ]
    }

    def test_listing_is_filtered_sorted_and_cached(self, monkeypatch):
        session = _Session(_Response(self.PRODUCTS))
        monkeypatch.setattr(aiohttp, "ClientSession", session)
        provider = DeltaProvider()

        assert asyncio.run(provider.list_symbols()) == ["BTCUSD", "SOLUSD"]
        assert asyncio.run(provider.list_symbols()) == ["BTCUSD", "SOLUSD"]
        assert len(session.urls) == 1

    def test_expired_cache_is_kept_when_reload_fails(self, monkeypatch):
        session = _Session(_Response(self.PRODUCTS))
        monkeypatch.setattr(aiohttp, "ClientSession", session)
        provider = DeltaProvider()
        asyncio.run(provider.list_symbols())

        provider._symbols_at -= 5 * 60 * 60
        session.serve(_Response(error=aiohttp.ClientConnectionError("refused")))

        assert asyncio.run(provider.list_symbols()) == ["BTCUSD", "SOLUSD"]
        assert len(session.urls) == 2

    @pytest.mark.parametrize(
        "response",
        [_Response(error=aiohttp.ClientConnectionError("refused")), _Response(NOT_JSON)],
    )
    def test_watchlist_when_nothing_was_loaded(self, monkeypatch, response):
        monkeypatch.setattr(aiohttp, "ClientSession", _Session(response))
        assert asyncio.run(DeltaProvider().list_symbols()) == list(DEFAULT_WATCHLIST)
