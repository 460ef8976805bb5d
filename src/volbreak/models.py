"""Data models for candles, analysis snapshots and alerts."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any


@dataclass(slots=True, frozen=True)
class Candle:
    """A single OHLCV bar.

    Attributes:
        time:   Unix timestamp of the bar open (seconds, UTC).
        open:   Opening price.
        high:   Highest price during the bar.
        low:    Lowest price during the bar.
        close:  Closing price.
        volume: Traded volume. Historical batches drop zero-volume rows;
                a live tick may still carry 0 while the bar is forming.
    """

    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0

    def __post_init__(self) -> None:
        if self.time <= 0:
            raise ValueError(f"time must be a positive unix timestamp, got {self.time}")
        for field_name in ("open", "high", "low", "close"):
            value = getattr(self, field_name)
            if not value > 0:
                raise ValueError(f"{field_name} must be > 0, got {value}")
        if not self.volume >= 0:
            raise ValueError(f"volume must be >= 0, got {self.volume}")


class RegimeState(str, Enum):
    """Volatility regime derived from the Bollinger-width percentile."""

    TIGHT_SQUEEZE = "TIGHT_SQUEEZE"
    SQUEEZE = "SQUEEZE"
    NORMAL = "NORMAL"
    EXPANSION = "EXPANSION"
    UNAVAILABLE = "N/A"

    @property
    def is_squeeze(self) -> bool:
        return self in (RegimeState.SQUEEZE, RegimeState.TIGHT_SQUEEZE)


class BreakoutSignal(str, Enum):
    """Directional band exit after a squeeze. Absence of a signal is ``None``."""

    BULLISH_BREAKOUT = "BULLISH_BREAKOUT"
    BEARISH_BREAKOUT = "BEARISH_BREAKOUT"


class AnalysisStatus(str, Enum):
    OK = "OK"
    INSUFFICIENT_DATA = "INSUFFICIENT_DATA"


class AlertKind(str, Enum):
    BREAKOUT = "breakout"
    SQUEEZE_ENTRY = "squeeze_entry"
    TIGHT_SQUEEZE = "tight_squeeze"


@dataclass(slots=True, frozen=True)
class VolatilityAnalysis:
    """Snapshot of one (symbol, timeframe) pair after an update.

    Recreated in full on every update and never mutated. Numeric fields are
    ``None`` when the window is too short or a value cannot be computed.
    Prices and percentages are rounded to 2 decimals, percentile ranks to 1.
    """

    status: AnalysisStatus
    price: float | None
    bb_width_pct: float | None
    bb_width_percentile: float | None
    atr_pct: float | None
    atr_percentile: float | None
    squeeze_state: RegimeState
    squeeze_bars: int
    signal: BreakoutSignal | None
    volume_surge: bool
    bb_upper: float | None
    bb_lower: float | None
    bb_middle: float | None
    bb_percent_b: float | None
    volume_ratio: float | None
    timestamp: int | None

    @property
    def is_ok(self) -> bool:
        return self.status is AnalysisStatus.OK

    def to_dict(self) -> dict[str, Any]:
        """Plain-JSON payload with enums flattened to their string values."""
        data = asdict(self)
        data["status"] = self.status.value
        data["squeeze_state"] = self.squeeze_state.value
        data["signal"] = self.signal.value if self.signal else None
        return data


@dataclass(slots=True, frozen=True)
class AlertEvent:
    """A regime or breakout transition detected between two snapshots.

    Attributes:
        kind:         Which transition fired.
        symbol:       Trading symbol, e.g. ``BTCUSD``.
        timeframe:    Bar interval, e.g. ``1h``.
        price:        Rounded close of the snapshot that fired the alert.
        signal:       Set for ``breakout`` alerts.
        regime:       Set for ``squeeze_entry`` alerts.
        squeeze_bars: Compression length, set for ``breakout`` and ``tight_squeeze``.
        timestamp:    Wall-clock time the alert was raised (seconds).
    """

    kind: AlertKind
    symbol: str
    timeframe: str
    price: float | None
    timestamp: int
    signal: BreakoutSignal | None = None
    regime: RegimeState | None = None
    squeeze_bars: int | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["signal"] = self.signal.value if self.signal else None
        data["regime"] = self.regime.value if self.regime else None
        return data
