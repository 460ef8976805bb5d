"""Abstract base class for historical OHLCV providers, plus bar-time helpers."""

from __future__ import annotations

import datetime
from abc import ABC, abstractmethod

from volbreak.models import Candle

# Bar duration in seconds for every timeframe volbreak understands
TIMEFRAME_SECONDS: dict[str, int] = {
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "30m": 1_800,
    "1h": 3_600,
    "4h": 14_400,
    "1d": 86_400,
    "1w": 604_800,
}

_FIAT = frozenset(
    {"USD", "EUR", "GBP", "JPY", "CHF", "AUD", "CAD", "NZD", "SEK", "NOK", "INR", "SGD", "HKD"}
)


def is_forex(symbol: str) -> bool:
    """True for six-letter pairs whose both legs are fiat currencies (``EURUSD``)."""
    up = symbol.upper()
    return len(up) == 6 and up[:3] in _FIAT and up[3:] in _FIAT


def bar_start(timestamp: int, timeframe: str) -> int:
    """Return the open time of the bar of *timeframe* that contains *timestamp*.

    Intraday bars floor to their interval, ``1d`` to UTC midnight and ``1w``
    to Monday 00:00 UTC.
    """
    if timeframe == "1w":
        moment = datetime.datetime.fromtimestamp(timestamp, tz=datetime.timezone.utc)
        monday = (moment - datetime.timedelta(days=moment.weekday())).replace(
            hour=0, minute=0, second=0, microsecond=0
        )
        return int(monday.timestamp())
    seconds = TIMEFRAME_SECONDS.get(timeframe, 3_600)
    return timestamp // seconds * seconds


class OHLCVProvider(ABC):
    """Base class every provider must implement.

    Providers are tried in order by the registry. The first one to return
    a non-empty list wins; the next provider is tried on None or empty.
    """

    #: Human-readable provider name used in logs.
    name: str = ""

    @abstractmethod
    def supports(self, symbol: str) -> bool:
        """Return True if this provider can attempt to fetch *symbol*.

        Implementations do a quick pattern check and return False fast for
        symbols they definitely cannot handle.
        """

    @abstractmethod
    async def fetch(
        self,
        symbol: str,
        timeframe: str,
        limit: int,
    ) -> list[Candle] | None:
        """Fetch up to *limit* completed candles for *symbol*.

        Args:
            symbol:    Normalised uppercase ticker (e.g. ``BTCUSD``, ``ETHUSDT``, ``AAPL``).
            timeframe: One of the keys of :data:`TIMEFRAME_SECONDS`.
            limit:     Maximum number of bars (most recent, returned oldest-first).

        Returns:
            Candles oldest first, or ``None`` if the symbol or timeframe is
            not available, or the request failed.
        """
