"""volbreak: volatility regime classification and breakout detection for OHLCV streams."""

from .analysis import analyze
from .config import PercentileDenominator, Settings
from .engine import KeyState, VolatilityEngine
from .models import (
    AlertEvent,
    AlertKind,
    AnalysisStatus,
    BreakoutSignal,
    Candle,
    RegimeState,
    VolatilityAnalysis,
)
from .registry import fetch
from .window import CandleWindow, TickOutcome

__all__ = [
    "AlertEvent",
    "AlertKind",
    "AnalysisStatus",
    "BreakoutSignal",
    "Candle",
    "CandleWindow",
    "KeyState",
    "PercentileDenominator",
    "RegimeState",
    "Settings",
    "TickOutcome",
    "VolatilityAnalysis",
    "VolatilityEngine",
    "analyze",
    "fetch",
]
__version__ = "0.1.0"
