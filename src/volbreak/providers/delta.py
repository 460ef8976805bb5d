"""Delta Exchange OHLCV provider — perpetual futures candles from the public REST API."""

from __future__ import annotations

import asyncio
import re
import time

import aiohttp
import structlog

from volbreak.config import DEFAULT_WATCHLIST
from volbreak.models import Candle
from volbreak.providers.base import TIMEFRAME_SECONDS, OHLCVProvider, bar_start

logger = structlog.get_logger(__name__)

_API_BASE = "https://api.india.delta.exchange"
_CANDLES_PATH = "/v2/history/candles"
_PRODUCTS_PATH = "/v2/products"

_SYMBOLS_TTL = 4 * 60 * 60  # seconds
_TIMEOUT = aiohttp.ClientTimeout(total=10)

# Delta perpetuals are quoted in USD: BTCUSD, ETHUSD, 1000SHIBUSD …
_DELTA_RE = re.compile(r"^[A-Z0-9]{2,}USD$")
# Option, move-contract and spread products
_EXCLUDED_MARKERS = ("C-", "P-", "MV-", "_")


def _is_listable(symbol: str | None) -> bool:
    if not symbol or "USD" not in symbol:
        return False
    return not any(marker in symbol for marker in _EXCLUDED_MARKERS)


class DeltaProvider(OHLCVProvider):
    """Fetches completed candles from Delta Exchange.

    No API key required. The request window ends at the open of the bar that
    is currently forming, so only closed bars are returned.
    """

    name = "delta"

    def __init__(self, base_url: str = _API_BASE) -> None:
        self.base_url = base_url.rstrip("/")
        self._symbols: list[str] = []
        self._symbols_at = 0.0

    def supports(self, symbol: str) -> bool:
        return bool(_DELTA_RE.match(symbol.upper()))

    async def fetch(
        self,
        symbol: str,
        timeframe: str,
        limit: int,
    ) -> list[Candle] | None:
        bar_seconds = TIMEFRAME_SECONDS.get(timeframe)
        if bar_seconds is None:
            return None

        end = bar_start(int(time.time()), timeframe)
        params = {
            "symbol": symbol.upper(),
            "resolution": timeframe,
            "start": end - bar_seconds * limit,
            "end": end,
        }

        try:
            async with aiohttp.ClientSession(timeout=_TIMEOUT) as session:
                async with session.get(self.base_url + _CANDLES_PATH, params=params) as resp:
                    if resp.status != 200:
                        logger.warning(
                            "delta_http_error", symbol=symbol, timeframe=timeframe, status=resp.status
                        )
                        return None
                    payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("delta_request_failed", symbol=symbol, timeframe=timeframe, error=str(exc))
            return None

        rows = payload.get("result") if isinstance(payload, dict) else None
        if not rows:
            return None
        candles = self._parse(rows)
        return candles[-limit:] or None

    async def list_symbols(self) -> list[str]:
        """Return tradeable USD symbols, cached for four hours.

        On failure the stale cache is returned, or the default watchlist if
        nothing was ever loaded.
        """
        now = time.monotonic()
        if self._symbols and now - self._symbols_at < _SYMBOLS_TTL:
            return self._symbols

        try:
            async with aiohttp.ClientSession(timeout=_TIMEOUT) as session:
                async with session.get(self.base_url + _PRODUCTS_PATH) as resp:
                    resp.raise_for_status()
                    payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("delta_symbols_failed", error=str(exc))
            return self._symbols or list(DEFAULT_WATCHLIST)

        products = (payload.get("result") or []) if isinstance(payload, dict) else []
        symbols = sorted({p.get("symbol") for p in products if _is_listable(p.get("symbol"))})
        self._symbols = symbols
        self._symbols_at = now
        logger.info("delta_symbols_loaded", count=len(symbols))
        return symbols

    @staticmethod
    def _parse(rows: list[dict]) -> list[Candle]:
        """Convert Delta candle rows (string or numeric fields) into sorted Candles."""
        candles: list[Candle] = []
        for row in rows:
            try:
                candles.append(
                    Candle(
                        time=int(row["time"]),
                        open=float(row["open"]),
                        high=float(row["high"]),
                        low=float(row["low"]),
                        close=float(row["close"]),
                        volume=float(row.get("volume") or 0.0),
                    )
                )
            except (KeyError, TypeError, ValueError):
                continue
        candles.sort(key=lambda c: c.time)
        return candles
