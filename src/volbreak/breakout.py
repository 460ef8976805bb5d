"""Breakout detection: a close crossing a Bollinger band after a recent squeeze."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from volbreak.indicators import BollingerSeries
from volbreak.models import BreakoutSignal, Candle, RegimeState
from volbreak.regime import squeeze_bars, was_in_squeeze_recently


@dataclass(slots=True, frozen=True)
class BreakoutResult:
    """Outcome of :func:`detect_breakout` for the latest bar.

    ``squeeze_bars`` counts the squeeze that preceded the latest bar, so it
    keeps the compression length even when the latest bar broke out.
    """

    signal: BreakoutSignal | None
    squeeze_bars: int
    volume_surge: bool
    in_squeeze_recently: bool


NO_BREAKOUT = BreakoutResult(signal=None, squeeze_bars=0, volume_surge=False, in_squeeze_recently=False)


def detect_breakout(
    candles: Sequence[Candle],
    bands: BollingerSeries,
    regimes: Sequence[RegimeState],
    volume_ratios: Sequence[float | None],
    squeeze_lookback: int = 10,
    volume_surge_multiplier: float = 1.5,
) -> BreakoutResult:
    """Check whether the last candle broke out of the bands.

    Bullish: the close crosses above the upper band while the previous close
    was at or below it. Bearish: the mirror image on the lower band. Either
    requires a squeeze within *squeeze_lookback* bars before the latest one,
    and bullish wins when both would apply. Volume surge is reported but does
    not gate the signal.
    """
    if len(candles) < 2:
        return NO_BREAKOUT

    last, prev = len(candles) - 1, len(candles) - 2
    current, previous = candles[last], candles[prev]

    in_squeeze_recently = was_in_squeeze_recently(regimes, squeeze_lookback)
    preceding_squeeze = squeeze_bars(regimes[:-1])
    ratio = volume_ratios[last]
    volume_surge = ratio is not None and ratio >= volume_surge_multiplier

    cur_upper, prev_upper = bands.upper[last], bands.upper[prev]
    cur_lower, prev_lower = bands.lower[last], bands.lower[prev]

    signal: BreakoutSignal | None = None
    if (
        in_squeeze_recently
        and cur_upper is not None
        and prev_upper is not None
        and current.close > cur_upper
        and previous.close <= prev_upper
    ):
        signal = BreakoutSignal.BULLISH_BREAKOUT
    elif (
        in_squeeze_recently
        and cur_lower is not None
        and prev_lower is not None
        and current.close < cur_lower
        and previous.close >= prev_lower
    ):
        signal = BreakoutSignal.BEARISH_BREAKOUT

    return BreakoutResult(
        signal=signal,
        squeeze_bars=preceding_squeeze,
        volume_surge=volume_surge,
        in_squeeze_recently=in_squeeze_recently,
    )
