"""Rolling percentile rank of a scalar series."""

from __future__ import annotations

from collections.abc import Sequence

import numpy as np

from volbreak.config import PercentileDenominator

DEFAULT_DENOMINATOR = PercentileDenominator.WINDOW


def percentile_rank(
    series: Sequence[float | None],
    lookback: int = 100,
    denominator: PercentileDenominator = DEFAULT_DENOMINATOR,
) -> list[float | None]:
    """Rank of each value among the trailing *lookback* values, in percent.

    For index ``i`` the rank is ``None`` when ``i < lookback - 1``, when the
    value itself is ``None``, or when fewer than two defined values remain in
    the window ``series[i - lookback + 1 : i + 1]``. Otherwise it is the
    number of window values strictly below ``series[i]`` divided by the
    window size (or window size minus one, see
    :class:`~volbreak.config.PercentileDenominator`), times 100.
    """
    if lookback <= 0:
        raise ValueError(f"lookback must be > 0, got {lookback}")

    values = np.array([np.nan if v is None else v for v in series], dtype=float)
    offset = 1 if denominator is PercentileDenominator.WINDOW_MINUS_ONE else 0

    result: list[float | None] = [None] * len(values)
    for i in range(lookback - 1, len(values)):
        current = values[i]
        if np.isnan(current):
            continue
        window = values[max(0, i - lookback + 1) : i + 1]
        window = window[~np.isnan(window)]
        if window.size < 2:
            continue
        count_less = int(np.sum(window < current))
        result[i] = count_less / (window.size - offset) * 100
    return result
