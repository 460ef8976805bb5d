"""Binance OHLCV provider — fetches klines from the Binance public REST API."""

from __future__ import annotations

import asyncio
import re
import time

import aiohttp
import structlog

from volbreak.models import Candle
from volbreak.providers.base import TIMEFRAME_SECONDS, OHLCVProvider

logger = structlog.get_logger(__name__)

_KLINES_URL = "https://api.binance.com/api/v3/klines"
_MAX_LIMIT = 1000
_TIMEOUT = aiohttp.ClientTimeout(total=10)

# Crypto quote currencies handled by this provider
_CRYPTO_RE = re.compile(r"^[A-Z]{2,}(USDT|USDC|BTC|ETH|BNB|BUSD|FDUSD)$")


def _normalise(symbol: str) -> str:
    """Return a Binance-compatible symbol string.

    Strips slashes, hyphens, and whitespace then uppercases.
    Examples: ``BTC/USDT`` → ``BTCUSDT``, ``btc-usdt`` → ``BTCUSDT``.
    """
    return symbol.upper().replace("/", "").replace("-", "").strip()


class BinanceProvider(OHLCVProvider):
    """Fetches closed OHLCV klines from the Binance public REST API.

    No API key required. Covers any pair quoted in USDT, USDC, BTC, ETH,
    BNB, BUSD, or FDUSD. The kline that is still forming is dropped, so a
    request for *limit* bars asks Binance for one extra.
    """

    name = "binance"

    def supports(self, symbol: str) -> bool:
        return bool(_CRYPTO_RE.match(_normalise(symbol)))

    async def fetch(
        self,
        symbol: str,
        timeframe: str,
        limit: int,
    ) -> list[Candle] | None:
        if timeframe not in TIMEFRAME_SECONDS:
            return None

        params = {
            "symbol": _normalise(symbol),
            "interval": timeframe,
            "limit": min(limit + 1, _MAX_LIMIT),
        }

        try:
            async with aiohttp.ClientSession(timeout=_TIMEOUT) as session:
                async with session.get(_KLINES_URL, params=params) as resp:
                    if resp.status != 200:
                        logger.warning(
                            "binance_http_error", symbol=symbol, timeframe=timeframe, status=resp.status
                        )
                        return None
                    data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("binance_request_failed", symbol=symbol, timeframe=timeframe, error=str(exc))
            return None

        if not data:
            return None

        candles = self._parse(data, now_ms=int(time.time() * 1000))
        return candles[-limit:] or None

    @staticmethod
    def _parse(rows: list[list], now_ms: int) -> list[Candle]:
        # Binance kline row layout (positions 0–6):
        # [open_time_ms, open, high, low, close, volume, close_time_ms, ...]
        candles: list[Candle] = []
        for row in rows:
            try:
                if int(row[6]) > now_ms:
                    continue  # still forming
                candles.append(
                    Candle(
                        time=int(row[0]) // 1000,
                        open=float(row[1]),
                        high=float(row[2]),
                        low=float(row[3]),
                        close=float(row[4]),
                        volume=float(row[5]),
                    )
                )
            except (IndexError, TypeError, ValueError):
                continue
        return candles
