"""Full volatility analysis of a candle window into a :class:`VolatilityAnalysis` snapshot."""

from __future__ import annotations

import math
from collections.abc import Sequence

from volbreak.breakout import detect_breakout
from volbreak.config import Settings
from volbreak.indicators import compute_indicators
from volbreak.models import AnalysisStatus, Candle, RegimeState, VolatilityAnalysis
from volbreak.percentile import percentile_rank
from volbreak.regime import classify_series, squeeze_bars

PRICE_DECIMALS = 2
PERCENTILE_DECIMALS = 1


def _round(value: float | None, decimals: int) -> float | None:
    if value is None or not math.isfinite(value):
        return None
    return round(value, decimals)


def insufficient_data() -> VolatilityAnalysis:
    """Snapshot for a window too short to analyse; every numeric field is ``None``."""
    return VolatilityAnalysis(
        status=AnalysisStatus.INSUFFICIENT_DATA,
        price=None,
        bb_width_pct=None,
        bb_width_percentile=None,
        atr_pct=None,
        atr_percentile=None,
        squeeze_state=RegimeState.UNAVAILABLE,
        squeeze_bars=0,
        signal=None,
        volume_surge=False,
        bb_upper=None,
        bb_lower=None,
        bb_middle=None,
        bb_percent_b=None,
        volume_ratio=None,
        timestamp=None,
    )


def analyze(candles: Sequence[Candle], settings: Settings | None = None) -> VolatilityAnalysis:
    """Run the whole pipeline over *candles* and snapshot the latest bar."""
    settings = settings or Settings()
    if len(candles) < settings.min_history:
        return insufficient_data()

    series = compute_indicators(candles, settings)
    bands = series.bollinger
    width_percentiles = percentile_rank(
        bands.width_pct, settings.lookback, settings.percentile_denominator
    )
    atr_percentiles = percentile_rank(
        series.atr.atr_pct, settings.lookback, settings.percentile_denominator
    )
    regimes = classify_series(width_percentiles, settings)

    breakout = detect_breakout(
        candles,
        bands,
        regimes,
        series.volume_ratio,
        squeeze_lookback=settings.squeeze_lookback_bars,
        volume_surge_multiplier=settings.volume_surge_multiplier,
    )

    last = len(candles) - 1
    current = candles[last]
    # A breakout bar is itself out of the squeeze; report the compression before it.
    bars = breakout.squeeze_bars if breakout.signal else squeeze_bars(regimes)

    return VolatilityAnalysis(
        status=AnalysisStatus.OK,
        price=_round(current.close, PRICE_DECIMALS),
        bb_width_pct=_round(bands.width_pct[last], PRICE_DECIMALS),
        bb_width_percentile=_round(width_percentiles[last], PERCENTILE_DECIMALS),
        atr_pct=_round(series.atr.atr_pct[last], PRICE_DECIMALS),
        atr_percentile=_round(atr_percentiles[last], PERCENTILE_DECIMALS),
        squeeze_state=regimes[last],
        squeeze_bars=bars,
        signal=breakout.signal,
        volume_surge=breakout.volume_surge,
        bb_upper=_round(bands.upper[last], PRICE_DECIMALS),
        bb_lower=_round(bands.lower[last], PRICE_DECIMALS),
        bb_middle=_round(bands.middle[last], PRICE_DECIMALS),
        bb_percent_b=_round(bands.percent_b[last], PRICE_DECIMALS),
        volume_ratio=_round(series.volume_ratio[last], PRICE_DECIMALS),
        timestamp=current.time,
    )
