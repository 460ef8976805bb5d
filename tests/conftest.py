"""
Shared fixtures and synthetic candle generators for the volbreak test suite.

The squeeze series used across modules has two phases:

  - a *plateau* of closes alternating around 100 with a slowly growing
    amplitude (2.00, 2.01, …), so Bollinger width rises bar after bar
  - a *compression* of closes alternating around 100 with a geometrically
    shrinking amplitude (0.5 × 0.9^k), so Bollinger width falls bar after bar

Strictly monotone widths keep every percentile rank free of floating-point
ties, which makes regime assertions deterministic.
"""

from __future__ import annotations

import pytest

from volbreak import registry
from volbreak.models import Candle
from volbreak.providers.base import OHLCVProvider

START = 1_700_000_000
STEP = 3_600


def make_candles(
    closes: list[float],
    volumes: list[float] | float = 1000.0,
    start: int = START,
    step: int = STEP,
    spread: float = 0.01,
) -> list[Candle]:
    """Build candles whose open is the previous close and whose wicks add *spread*."""
    if isinstance(volumes, (int, float)):
        volumes = [float(volumes)] * len(closes)
    candles = []
    prev = closes[0]
    for i, close in enumerate(closes):
        candles.append(
            Candle(
                time=start + i * step,
                open=prev,
                high=max(prev, close) + spread,
                low=min(prev, close) - spread,
                close=close,
                volume=volumes[i],
            )
        )
        prev = close
    return candles


def plateau_closes(n: int = 100) -> list[float]:
    return [100.0 + (2.0 + 0.01 * i) * (1 if i % 2 == 0 else -1) for i in range(n)]


def compression_closes(n: int = 30) -> list[float]:
    return [100.0 + 0.5 * 0.9**k * (1 if k % 2 == 0 else -1) for k in range(n)]


def squeeze_series(plateau: int = 100, compression: int = 30) -> list[float]:
    return plateau_closes(plateau) + compression_closes(compression)


def next_candle(prev: Candle, close: float, volume: float = 1000.0, step: int = STEP) -> Candle:
    return Candle(
        time=prev.time + step,
        open=prev.close,
        high=max(prev.close, close) + 0.01,
        low=min(prev.close, close) - 0.01,
        close=close,
        volume=volume,
    )


class FakeProvider(OHLCVProvider):
    """Provider returning a canned result and recording every request."""

    def __init__(self, name: str, result: list[Candle] | None, supported: bool = True) -> None:
        self.name = name
        self.result = result
        self.supported = supported
        self.calls: list[tuple[str, str, int]] = []

    def supports(self, symbol: str) -> bool:
        return self.supported

    async def fetch(self, symbol: str, timeframe: str, limit: int) -> list[Candle] | None:
        self.calls.append((symbol, timeframe, limit))
        return self.result


@pytest.fixture
def squeeze_candles() -> list[Candle]:
    """Plateau of 100 bars followed by 30 compressing bars."""
    return make_candles(squeeze_series())


@pytest.fixture(autouse=True)
def _fresh_registry():
    """Keep provider instances from leaking between tests."""
    registry.reset()
    yield
    registry.reset()
