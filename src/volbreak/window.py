"""Bounded candle windows and the store that owns them.

A :class:`CandleWindow` holds the most recent candles of one
(symbol, timeframe) pair, oldest first. Streaming ticks are reconciled with
a three-way rule:

- same ``time`` as the last candle → the forming bar is replaced in place
- newer ``time`` → appended, the oldest candle evicted past capacity
- older ``time`` → stale, discarded

Only the append branch closes a bar, so only it is eligible for alerting.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator
from enum import Enum

import structlog

from volbreak.models import Candle

logger = structlog.get_logger(__name__)

MAX_CANDLES = 250


class TickOutcome(str, Enum):
    """What a streaming tick did to its window."""

    APPENDED = "appended"
    REPLACED = "replaced"
    STALE = "stale"
    IGNORED = "ignored"  # window empty, nothing to reconcile against

    @property
    def is_new_bar(self) -> bool:
        return self is TickOutcome.APPENDED


class CandleWindow:
    """Time-ordered FIFO buffer of at most *capacity* candles."""

    __slots__ = ("_candles",)

    def __init__(self, candles: Iterable[Candle] = (), capacity: int = MAX_CANDLES) -> None:
        if capacity <= 0:
            raise ValueError(f"capacity must be > 0, got {capacity}")
        self._candles: deque[Candle] = deque(candles, maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._candles.maxlen or 0

    @property
    def last(self) -> Candle | None:
        return self._candles[-1] if self._candles else None

    def __len__(self) -> int:
        return len(self._candles)

    def __iter__(self) -> Iterator[Candle]:
        return iter(self._candles)

    def append(self, candle: Candle) -> None:
        """Append *candle*, evicting the oldest one if the window is full."""
        self._candles.append(candle)

    def replace_last(self, candle: Candle) -> None:
        if not self._candles:
            raise IndexError("replace_last on an empty window")
        self._candles[-1] = candle

    def reset(self, candles: Iterable[Candle]) -> None:
        """Replace the whole content, keeping only the newest *capacity* candles."""
        self._candles.clear()
        self._candles.extend(candles)

    def as_slice(self) -> list[Candle]:
        """Return a copy of the content, oldest first."""
        return list(self._candles)

    def apply_tick(self, candle: Candle) -> TickOutcome:
        last = self.last
        if last is None:
            return TickOutcome.IGNORED
        if candle.time == last.time:
            self.replace_last(candle)
            return TickOutcome.REPLACED
        if candle.time > last.time:
            self.append(candle)
            return TickOutcome.APPENDED
        return TickOutcome.STALE


class CandleStore:
    """Owns one :class:`CandleWindow` per ``(symbol, timeframe)`` key."""

    def __init__(self, capacity: int = MAX_CANDLES) -> None:
        self.capacity = capacity
        self._windows: dict[tuple[str, str], CandleWindow] = {}

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._windows

    def __len__(self) -> int:
        return len(self._windows)

    def get(self, symbol: str, timeframe: str) -> CandleWindow | None:
        return self._windows.get((symbol, timeframe))

    def store(self, symbol: str, timeframe: str, candles: Iterable[Candle]) -> CandleWindow:
        """Load *candles* into the window for the key, creating it if needed."""
        window = self._windows.get((symbol, timeframe))
        if window is None:
            window = CandleWindow(candles, capacity=self.capacity)
            self._windows[(symbol, timeframe)] = window
        else:
            window.reset(candles)
        return window

    def keys(self) -> list[tuple[str, str]]:
        return list(self._windows)

    def discard_symbol(self, symbol: str) -> int:
        """Drop every window of *symbol*; returns how many were removed."""
        doomed = [key for key in self._windows if key[0] == symbol]
        for key in doomed:
            del self._windows[key]
        return len(doomed)

    def clear(self) -> None:
        self._windows.clear()


# ---------------------------------------------------------------------------
# Historical batch cleaning
# ---------------------------------------------------------------------------


def _upper_median(values: list[float]) -> float:
    ordered = sorted(values)
    return ordered[len(ordered) // 2]


def reject_outliers(
    candles: list[Candle],
    min_batch: int = 10,
    mad_multiplier: float = 10.0,
) -> list[Candle]:
    """Drop candles whose close sits more than ``mad_multiplier × MAD`` from the median.

    Batches of *min_batch* candles or fewer pass through unchanged, as does
    any batch whose MAD is zero.
    """
    if len(candles) <= min_batch:
        return list(candles)

    median = _upper_median([c.close for c in candles])
    mad = _upper_median([abs(c.close - median) for c in candles])
    if mad <= 0:
        return list(candles)

    threshold = mad_multiplier * mad
    kept = [c for c in candles if abs(c.close - median) <= threshold]
    if len(kept) != len(candles):
        logger.info(
            "outliers_rejected",
            dropped=len(candles) - len(kept),
            median=median,
            mad=mad,
        )
    return kept


def prepare_batch(
    candles: Iterable[Candle],
    min_batch: int = 10,
    mad_multiplier: float = 10.0,
) -> list[Candle]:
    """Clean a freshly fetched historical batch.

    Sorts by time, collapses duplicate timestamps to the last row, drops
    zero-volume rows and finally rejects close-price outliers.
    """
    by_time: dict[int, Candle] = {}
    for candle in candles:
        if candle.volume > 0:
            by_time[candle.time] = candle
    ordered = [by_time[t] for t in sorted(by_time)]
    return reject_outliers(ordered, min_batch=min_batch, mad_multiplier=mad_multiplier)
