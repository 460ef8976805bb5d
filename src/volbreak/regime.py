"""Squeeze / expansion regime classification.

Only the Bollinger-width percentile drives the regime. The ATR percentile is
reported alongside it in the snapshot but deliberately left out here.
"""

from __future__ import annotations

from collections.abc import Sequence

from volbreak.config import Settings
from volbreak.models import RegimeState

_DEFAULTS = Settings()


def classify(
    bb_width_percentile: float | None,
    tight_threshold: float = _DEFAULTS.tight_squeeze_threshold,
    squeeze_threshold: float = _DEFAULTS.squeeze_threshold,
    breakout_threshold: float = _DEFAULTS.breakout_threshold,
) -> RegimeState:
    if bb_width_percentile is None:
        return RegimeState.UNAVAILABLE
    if bb_width_percentile < tight_threshold:
        return RegimeState.TIGHT_SQUEEZE
    if bb_width_percentile < squeeze_threshold:
        return RegimeState.SQUEEZE
    if bb_width_percentile > breakout_threshold:
        return RegimeState.EXPANSION
    return RegimeState.NORMAL


def classify_series(
    percentiles: Sequence[float | None],
    settings: Settings = _DEFAULTS,
) -> list[RegimeState]:
    """Classify every bar of a Bollinger-width percentile series."""
    return [
        classify(
            p,
            settings.tight_squeeze_threshold,
            settings.squeeze_threshold,
            settings.breakout_threshold,
        )
        for p in percentiles
    ]


def squeeze_bars(history: Sequence[RegimeState]) -> int:
    """Consecutive squeeze bars counted backward from the most recent bar."""
    count = 0
    for state in reversed(history):
        if not state.is_squeeze:
            break
        count += 1
    return count


def was_in_squeeze_recently(
    history: Sequence[RegimeState],
    lookback: int = _DEFAULTS.squeeze_lookback_bars,
) -> bool:
    """True if any of the *lookback* bars before the current one was a squeeze.

    The current (last) bar itself is not considered.
    """
    if lookback <= 0 or len(history) < 2:
        return False
    start = max(0, len(history) - 1 - lookback)
    return any(state.is_squeeze for state in history[start:-1])
