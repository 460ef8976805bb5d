"""yfinance OHLCV provider — stocks, ETFs, indices, forex, and a crypto fallback."""

from __future__ import annotations

import asyncio
import datetime
import re

import structlog
import yfinance as yf

from volbreak.models import Candle
from volbreak.providers.base import TIMEFRAME_SECONDS, OHLCVProvider, is_forex

logger = structlog.get_logger(__name__)

# volbreak timeframe → (yfinance interval, resample rule or None)
_INTERVAL_MAP: dict[str, tuple[str, str | None]] = {
    "1m": ("1m", None),
    "5m": ("5m", None),
    "15m": ("15m", None),
    "30m": ("30m", None),
    "1h": ("1h", None),
    "4h": ("1h", "4h"),  # yfinance has no native 4h bars
    "1d": ("1d", None),
    "1w": ("1wk", None),
}

_OHLCV_AGG = {"Open": "first", "High": "max", "Low": "min", "Close": "last", "Volume": "sum"}

_CRYPTO_QUOTES = ("USDT", "USDC", "BUSD", "FDUSD", "BNB", "ETH", "BTC", "USD")
_STOCK_RE = re.compile(r"^(\^[A-Z]+|[A-Z]{1,5})$")
_INTL_STOCK_RE = re.compile(r"^[A-Z0-9]{1,7}\.[A-Z]{1,3}$")
_CRYPTO_RE = re.compile(r"^[A-Z0-9]{2,}(USDT|USDC|BUSD|FDUSD|BNB|ETH|BTC|USD)$")


def _to_yf_symbol(symbol: str) -> str:
    """Map a normalised symbol to its yfinance ticker string.

    - Forex  : ``EURUSD`` → ``EURUSD=X``
    - Crypto : ``BTCUSDT`` → ``BTC-USD``, ``BTCUSD`` → ``BTC-USD``, ``ETHBTC`` → ``ETH-BTC``
    - Stocks and exchange-suffixed tickers are unchanged
    """
    up = symbol.upper()
    if is_forex(up):
        return f"{up}=X"
    if _STOCK_RE.match(up) or _INTL_STOCK_RE.match(up):
        return up
    for quote in _CRYPTO_QUOTES:
        if up.endswith(quote) and len(up) > len(quote):
            base = up[: -len(quote)]
            yf_quote = "USD" if quote in ("USDT", "USDC", "BUSD", "FDUSD", "USD") else quote
            return f"{base}-{yf_quote}"
    return up


class YFinanceProvider(OHLCVProvider):
    """Fetches OHLCV data via yfinance.

    yfinance is synchronous; the download runs in a worker thread so the
    async interface stays non-blocking. ``4h`` bars are aggregated from
    hourly bars. The bar that is still forming is dropped.
    """

    name = "yfinance"

    def supports(self, symbol: str) -> bool:
        up = symbol.upper()
        return bool(
            is_forex(up)
            or _STOCK_RE.match(up)
            or _INTL_STOCK_RE.match(up)
            or _CRYPTO_RE.match(up)
        )

    async def fetch(
        self,
        symbol: str,
        timeframe: str,
        limit: int,
    ) -> list[Candle] | None:
        mapping = _INTERVAL_MAP.get(timeframe)
        if mapping is None:
            return None
        yf_interval, resample = mapping

        ticker = _to_yf_symbol(symbol)
        bar_delta = datetime.timedelta(seconds=TIMEFRAME_SECONDS[timeframe])
        now = datetime.datetime.now(datetime.timezone.utc)
        # 20 % headroom for weekends and market holidays
        start = now - bar_delta * int(limit * 1.2 + 5)

        df = await asyncio.to_thread(self._download, ticker, yf_interval, start)
        if df is None or df.empty:
            return None
        if resample is not None:
            df = df.resample(resample, origin="epoch").agg(_OHLCV_AGG).dropna(subset=["Close"])

        cutoff = int(now.timestamp()) - TIMEFRAME_SECONDS[timeframe]
        candles: list[Candle] = []
        for ts, row in df.iterrows():
            open_time = int(ts.timestamp())
            if open_time > cutoff:
                continue  # bar not closed yet
            try:
                candles.append(
                    Candle(
                        time=open_time,
                        open=float(row["Open"]),
                        high=float(row["High"]),
                        low=float(row["Low"]),
                        close=float(row["Close"]),
                        volume=float(row.get("Volume", 0.0) or 0.0),
                    )
                )
            except (KeyError, ValueError):
                continue

        return candles[-limit:] or None

    @staticmethod
    def _download(ticker: str, interval: str, start: datetime.datetime):
        """Blocking yfinance fetch — called via asyncio.to_thread."""
        try:
            df = yf.Ticker(ticker).history(
                start=start.strftime("%Y-%m-%d"),
                interval=interval,
                auto_adjust=True,
            )
        except Exception as exc:
            logger.warning("yfinance_download_failed", ticker=ticker, interval=interval, error=str(exc))
            return None
        return df if not df.empty else None
