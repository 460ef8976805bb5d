"""Provider registry — routes a symbol to an ordered provider chain.

Asset class detection (rough rules, refined per provider):
- Forex     : six letters, both legs fiat  (e.g. EURUSD, GBPJPY)
- Binance   : ends in USDT / USDC / BTC / ETH / BNB / BUSD / FDUSD  (e.g. BTCUSDT)
- Delta     : ends in USD  (e.g. BTCUSD, DOGEUSD)
- Stocks    : 1–5 uppercase letters or starts with ^  (e.g. AAPL, ^GSPC)
- Intl      : TICKER.EXCHANGE  (e.g. WM.TO, RIO.L)
"""

from __future__ import annotations

import re

import structlog

from volbreak.models import Candle
from volbreak.providers.base import OHLCVProvider, is_forex

logger = structlog.get_logger(__name__)

# Provider instances, created on first use
_providers: dict[str, OHLCVProvider] = {}

_BINANCE_RE = re.compile(r"^[A-Z]{2,}(USDT|USDC|BTC|ETH|BNB|BUSD|FDUSD)$")
_DELTA_RE = re.compile(r"^[A-Z0-9]{2,}USD$")
_STOCK_RE = re.compile(r"^(\^[A-Z]+|[A-Z]{1,5})$")
_INTL_STOCK_RE = re.compile(r"^[A-Z0-9]{1,7}\.[A-Z]{1,3}$")


def _get(name: str) -> OHLCVProvider:
    provider = _providers.get(name)
    if provider is not None:
        return provider
    if name == "delta":
        from volbreak.providers.delta import DeltaProvider  # noqa: PLC0415

        provider = DeltaProvider()
    elif name == "binance":
        from volbreak.providers.binance import BinanceProvider  # noqa: PLC0415

        provider = BinanceProvider()
    elif name == "yfinance":
        from volbreak.providers.yfinance import YFinanceProvider  # noqa: PLC0415

        provider = YFinanceProvider()
    else:
        raise KeyError(f"unknown provider: {name}")
    _providers[name] = provider
    return provider


def register(name: str, provider: OHLCVProvider) -> None:
    """Install *provider* under *name*, replacing the built-in one."""
    _providers[name] = provider


def reset() -> None:
    """Forget every provider instance, built-in or registered."""
    _providers.clear()


def pick(symbol: str) -> list[OHLCVProvider]:
    """Return an ordered provider chain for *symbol*.

    Routing rules:
    - Forex   → yfinance
    - Binance → Binance (primary), yfinance (fallback)
    - Delta   → Delta (primary), yfinance (fallback)
    - Stocks  → yfinance
    - Unknown → Delta, Binance, yfinance
    """
    up = symbol.upper()

    if is_forex(up):
        return [_get("yfinance")]
    if _BINANCE_RE.match(up):
        return [_get("binance"), _get("yfinance")]
    if _DELTA_RE.match(up):
        return [_get("delta"), _get("yfinance")]
    if _STOCK_RE.match(up) or _INTL_STOCK_RE.match(up):
        return [_get("yfinance")]
    return [_get("delta"), _get("binance"), _get("yfinance")]


async def fetch(
    symbol: str,
    timeframe: str = "1h",
    limit: int = 200,
) -> list[Candle] | None:
    """Fetch completed candles for *symbol*, trying providers in order.

    Returns the first non-empty result, or ``None`` if every provider fails.

    Args:
        symbol:    Ticker symbol (e.g. ``BTCUSD``, ``ETHUSDT``, ``AAPL``, ``EURUSD``).
        timeframe: Bar interval — ``1m``, ``5m``, ``15m``, ``30m``, ``1h``, ``4h``, ``1d``, ``1w``.
        limit:     Number of bars to return (most recent, oldest-first).
    """
    for provider in pick(symbol):
        if not provider.supports(symbol):
            continue
        result = await provider.fetch(symbol, timeframe, limit)
        if result:
            return result
        logger.debug("provider_empty", provider=provider.name, symbol=symbol, timeframe=timeframe)
    logger.warning("no_provider_data", symbol=symbol, timeframe=timeframe)
    return None
