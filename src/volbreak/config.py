"""Engine settings.

Defaults mirror the screener's reference configuration. Every field can be
overridden through a ``VOLBREAK_<FIELD>`` environment variable, e.g.
``VOLBREAK_BB_PERIOD=24`` or ``VOLBREAK_TIMEFRAMES=1h,4h,1d``.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from enum import Enum

DEFAULT_TIMEFRAMES: tuple[str, ...] = ("1m", "5m", "15m", "30m", "1h", "4h", "1d")
DEFAULT_WATCHLIST: tuple[str, ...] = ("BTCUSD", "ETHUSD", "SOLUSD", "BNBUSD", "DOGEUSD")

_ENV_PREFIX = "VOLBREAK_"


class PercentileDenominator(str, Enum):
    """Denominator used when turning a count-below into a percentile rank.

    ``WINDOW`` divides by the number of values in the lookback window, so a
    value can never rank 100. ``WINDOW_MINUS_ONE`` excludes the value itself
    and lets the maximum of the window rank 100.
    """

    WINDOW = "window"
    WINDOW_MINUS_ONE = "window_minus_one"


@dataclass(frozen=True)
class Settings:
    bb_period: int = 20
    bb_std_dev: float = 2.0
    atr_period: int = 14
    volume_period: int = 20

    tight_squeeze_threshold: float = 10.0
    squeeze_threshold: float = 20.0
    breakout_threshold: float = 70.0
    lookback: int = 100
    percentile_denominator: PercentileDenominator = PercentileDenominator.WINDOW
    squeeze_lookback_bars: int = 10
    volume_surge_multiplier: float = 1.5

    max_candles: int = 250
    candles_to_fetch: int = 200
    outlier_min_batch: int = 10
    outlier_mad_multiplier: float = 10.0

    backfill_batch_size: int = 5
    alert_log_size: int = 50
    # Seconds between history re-fetches while streaming; 0 disables them
    refresh_seconds: float = 60.0

    timeframes: tuple[str, ...] = field(default=DEFAULT_TIMEFRAMES)
    watchlist: tuple[str, ...] = field(default=DEFAULT_WATCHLIST)

    def __post_init__(self) -> None:
        for name in (
            "bb_period",
            "atr_period",
            "volume_period",
            "lookback",
            "max_candles",
            "candles_to_fetch",
            "backfill_batch_size",
            "alert_log_size",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.bb_std_dev <= 0:
            raise ValueError(f"bb_std_dev must be > 0, got {self.bb_std_dev}")
        if self.refresh_seconds < 0:
            raise ValueError(f"refresh_seconds must be >= 0, got {self.refresh_seconds}")
        if not (
            0 <= self.tight_squeeze_threshold
            <= self.squeeze_threshold
            <= self.breakout_threshold
            <= 100
        ):
            raise ValueError(
                "thresholds must satisfy 0 <= tight <= squeeze <= breakout <= 100, got "
                f"{self.tight_squeeze_threshold}/{self.squeeze_threshold}/{self.breakout_threshold}"
            )
        if self.max_candles < self.min_history:
            raise ValueError(
                f"max_candles ({self.max_candles}) cannot hold the minimum history "
                f"({self.min_history})"
            )
        if not isinstance(self.percentile_denominator, PercentileDenominator):
            object.__setattr__(
                self,
                "percentile_denominator",
                PercentileDenominator(self.percentile_denominator),
            )

    @property
    def min_history(self) -> int:
        """Fewest candles a window needs before anything is computed."""
        return max(self.bb_period, self.atr_period, 20)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> Settings:
        """Build settings from ``VOLBREAK_*`` variables on top of the defaults."""
        env = os.environ if environ is None else environ
        overrides: dict[str, object] = {}
        for f in fields(cls):
            raw = env.get(_ENV_PREFIX + f.name.upper())
            if raw is None or raw.strip() == "":
                continue
            overrides[f.name] = _coerce(f.name, raw.strip(), getattr(cls, f.name, None))
        return replace(cls(), **overrides) if overrides else cls()


def _coerce(name: str, raw: str, default: object) -> object:
    if name in ("timeframes", "watchlist"):
        items = tuple(part.strip() for part in raw.split(",") if part.strip())
        if not items:
            raise ValueError(f"{name} must list at least one entry")
        return tuple(s.upper() for s in items) if name == "watchlist" else items
    if name == "percentile_denominator":
        return PercentileDenominator(raw.lower())
    try:
        if isinstance(default, int):
            return int(raw)
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{_ENV_PREFIX}{name.upper()} is not a number: {raw!r}") from exc
