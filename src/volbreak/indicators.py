"""Indicator pipeline: SMA, EMA, standard deviation, Bollinger Bands, ATR, volume ratio.

Every function recomputes its series over the whole candle window; nothing
is carried between calls. The arithmetic runs on float arrays with NaN for
undefined values; the public series are plain lists aligned by candle index,
with ``None`` wherever history is too short or a denominator is zero.
Values are never rounded here.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from volbreak.config import Settings
from volbreak.models import Candle

Series = list[float | None]


def _check_period(period: int) -> None:
    if period <= 0:
        raise ValueError(f"period must be > 0, got {period}")


def _to_series(values: np.ndarray) -> Series:
    """NaN and infinities become ``None``; everything else a plain float."""
    return [float(v) if np.isfinite(v) else None for v in values]


def _column(candles: Sequence[Candle], field: str) -> np.ndarray:
    return np.array([getattr(c, field) for c in candles], dtype=float)


def _rolling_mean(values: np.ndarray, period: int) -> np.ndarray:
    out = np.full(len(values), np.nan)
    if len(values) >= period:
        out[period - 1 :] = sliding_window_view(values, period).mean(axis=1)
    return out


def _rolling_std(values: np.ndarray, period: int) -> np.ndarray:
    out = np.full(len(values), np.nan)
    if len(values) >= period:
        out[period - 1 :] = sliding_window_view(values, period).std(axis=1, ddof=0)
    return out


def _ema(values: np.ndarray, period: int) -> np.ndarray:
    out = np.empty(len(values))
    head = min(period, len(values))
    # Expanding mean until the first full period, which makes index period - 1 the SMA
    out[:head] = np.cumsum(values[:head]) / np.arange(1, head + 1)
    multiplier = 2 / (period + 1)
    for i in range(period, len(values)):
        out[i] = out[i - 1] + (values[i] - out[i - 1]) * multiplier
    return out


def _true_range(high: np.ndarray, low: np.ndarray, close: np.ndarray) -> np.ndarray:
    tr = high - low
    if len(tr) > 1:
        prev_close = close[:-1]
        tr[1:] = np.maximum.reduce(
            [tr[1:], np.abs(high[1:] - prev_close), np.abs(low[1:] - prev_close)]
        )
    return tr


def _safe_divide(numerator: np.ndarray, denominator: np.ndarray) -> np.ndarray:
    out = np.full(len(numerator), np.nan)
    with np.errstate(divide="ignore", invalid="ignore"):
        np.divide(numerator, denominator, out=out, where=denominator != 0)
    return out


def sma(values: Sequence[float], period: int) -> Series:
    """Arithmetic mean of the trailing *period* values; ``None`` before index ``period - 1``."""
    _check_period(period)
    return _to_series(_rolling_mean(np.asarray(values, dtype=float), period))


def ema(values: Sequence[float], period: int) -> list[float]:
    """Exponential moving average defined from the first value.

    Before index ``period - 1`` each value is the simple average of all
    values seen so far; index ``period - 1`` is the SMA of the first
    *period* values; afterwards the usual ``2 / (period + 1)`` smoothing
    applies on top of the previous EMA value.
    """
    _check_period(period)
    return _ema(np.asarray(values, dtype=float), period).tolist()


def std_dev(values: Sequence[float], period: int) -> Series:
    """Population standard deviation of the trailing *period* values."""
    _check_period(period)
    return _to_series(_rolling_std(np.asarray(values, dtype=float), period))


@dataclass(slots=True)
class BollingerSeries:
    middle: Series
    upper: Series
    lower: Series
    width: Series
    width_pct: Series
    percent_b: Series


def bollinger_bands(
    candles: Sequence[Candle],
    period: int = 20,
    std_dev_multiplier: float = 2.0,
) -> BollingerSeries:
    """Bollinger Bands on closing prices.

    ``width_pct`` is the band width as a percentage of the middle band and
    ``percent_b`` the position of the close inside the bands (0 = lower,
    1 = upper). Both are ``None`` when their denominator is zero.
    """
    _check_period(period)
    closes = _column(candles, "close")
    middle = _rolling_mean(closes, period)
    std = _rolling_std(closes, period)
    upper = middle + std_dev_multiplier * std
    lower = middle - std_dev_multiplier * std
    width = upper - lower
    return BollingerSeries(
        middle=_to_series(middle),
        upper=_to_series(upper),
        lower=_to_series(lower),
        width=_to_series(width),
        width_pct=_to_series(_safe_divide(width, middle) * 100),
        percent_b=_to_series(_safe_divide(closes - lower, width)),
    )


def true_range(candles: Sequence[Candle]) -> list[float]:
    """True Range; the first bar has no previous close and uses ``high - low``."""
    return _true_range(
        _column(candles, "high"), _column(candles, "low"), _column(candles, "close")
    ).tolist()


@dataclass(slots=True)
class ATRSeries:
    atr: Series
    atr_pct: Series


def atr(candles: Sequence[Candle], period: int = 14) -> ATRSeries:
    """Average True Range as the :func:`ema` of :func:`true_range`.

    The smoothed series itself is defined from the first bar, but published
    values stay ``None`` until *period* bars exist. ``atr_pct`` is the ATR
    relative to the close, in percent.
    """
    _check_period(period)
    closes = _column(candles, "close")
    smoothed = _ema(_true_range(_column(candles, "high"), _column(candles, "low"), closes), period)
    smoothed[: period - 1] = np.nan
    return ATRSeries(
        atr=_to_series(smoothed),
        atr_pct=_to_series(_safe_divide(smoothed, closes) * 100),
    )


def volume_ratio(candles: Sequence[Candle], period: int = 20) -> Series:
    """Volume relative to its trailing SMA; ``None`` while the SMA is undefined or zero."""
    _check_period(period)
    volumes = _column(candles, "volume")
    return _to_series(_safe_divide(volumes, _rolling_mean(volumes, period)))


@dataclass(slots=True)
class IndicatorSeries:
    """Every indicator series of one window, aligned by candle index."""

    bollinger: BollingerSeries
    atr: ATRSeries
    volume_ratio: Series

    def __len__(self) -> int:
        return len(self.volume_ratio)


def compute_indicators(candles: Sequence[Candle], settings: Settings) -> IndicatorSeries:
    return IndicatorSeries(
        bollinger=bollinger_bands(candles, settings.bb_period, settings.bb_std_dev),
        atr=atr(candles, settings.atr_period),
        volume_ratio=volume_ratio(candles, settings.volume_period),
    )
