"""Tests for breakout detection against hand-built bands and regimes."""

from __future__ import annotations

from volbreak.breakout import NO_BREAKOUT, detect_breakout
from volbreak.indicators import BollingerSeries
from volbreak.models import BreakoutSignal, Candle, RegimeState

S, T, N = RegimeState.SQUEEZE, RegimeState.TIGHT_SQUEEZE, RegimeState.NORMAL


def _candles(*closes: float) -> list[Candle]:
    return [
        Candle(time=1_700_000_000 + i * 60, open=c, high=c + 0.1, low=c - 0.1, close=c, volume=1.0)
        for i, c in enumerate(closes)
    ]


def _bands(upper: list, lower: list) -> BollingerSeries:
    n = len(upper)
    middle = [None if u is None else (u + l) / 2 for u, l in zip(upper, lower)]
    return BollingerSeries(middle=middle, upper=upper, lower=lower, width=[None] * n, width_pct=[None] * n, percent_b=[None] * n)


class TestDetectBreakout:
    def test_bullish_after_squeeze(self):
        result = detect_breakout(
            _candles(9.5, 10.5), _bands([10, 10], [5, 5]), [S, N], [None, 1.0]
        )
        assert result.signal is BreakoutSignal.BULLISH_BREAKOUT
        assert result.in_squeeze_recently
        assert result.squeeze_bars == 1

    def test_bearish_after_squeeze(self):
        result = detect_breakout(
            _candles(5.5, 4.5), _bands([10, 10], [5, 5]), [T, N], [None, 1.0]
        )
        assert result.signal is BreakoutSignal.BEARISH_BREAKOUT

    def test_no_signal_without_recent_squeeze(self):
        result = detect_breakout(
            _candles(9.5, 10.5), _bands([10, 10], [5, 5]), [N, N], [None, 3.0]
        )
        assert result.signal is None
        assert result.volume_surge  # reported independently of the signal

    def test_requires_a_crossing(self):
        # previous close was already above the band
        result = detect_breakout(
            _candles(10.2, 10.5), _bands([10, 10], [5, 5]), [S, N], [None, 1.0]
        )
        assert result.signal is None

    def test_previous_close_on_band_counts_as_inside(self):
        result = detect_breakout(
            _candles(10.0, 10.5), _bands([10, 10], [5, 5]), [S, N], [None, 1.0]
        )
        assert result.signal is BreakoutSignal.BULLISH_BREAKOUT

    def test_undefined_bands_give_no_signal(self):
        result = detect_breakout(
            _candles(9.5, 10.5), _bands([None, 10], [None, 5]), [S, N], [None, None]
        )
        assert result.signal is None
        assert not result.volume_surge

    def test_squeeze_bars_exclude_current_bar(self):
        result = detect_breakout(
            _candles(9.0, 9.2, 9.4, 10.5),
            _bands([10, 10, 10, 10], [5, 5, 5, 5]),
            [N, S, T, T],
            [None, None, None, 2.0],
        )
        assert result.signal is BreakoutSignal.BULLISH_BREAKOUT
        assert result.squeeze_bars == 2
        assert result.volume_surge

    def test_volume_surge_threshold_is_inclusive(self):
        result = detect_breakout(
            _candles(9.5, 9.6), _bands([10, 10], [5, 5]), [N, N], [None, 1.5]
        )
        assert result.volume_surge

    def test_single_candle(self):
        assert detect_breakout(_candles(10.0), _bands([9], [5]), [S], [None]) == NO_BREAKOUT
