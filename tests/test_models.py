"""Tests for the candle, snapshot and alert data models."""

from __future__ import annotations

import pytest

from volbreak.analysis import insufficient_data
from volbreak.models import (
    AlertEvent,
    AlertKind,
    AnalysisStatus,
    BreakoutSignal,
    Candle,
    RegimeState,
)


class TestCandle:
    def test_valid_candle(self):
        c = Candle(time=1_700_000_000, open=100.0, high=101.0, low=99.0, close=100.5, volume=10.0)
        assert c.close == 100.5
        assert c.volume == 10.0

    def test_volume_defaults_to_zero(self):
        c = Candle(time=1, open=1.0, high=1.0, low=1.0, close=1.0)
        assert c.volume == 0.0

    @pytest.mark.parametrize("field_name", ["open", "high", "low", "close"])
    def test_non_positive_price_rejected(self, field_name):
        values = dict(time=1, open=1.0, high=1.0, low=1.0, close=1.0)
        values[field_name] = 0.0
        with pytest.raises(ValueError, match=field_name):
            Candle(**values)

    def test_nan_price_rejected(self):
        with pytest.raises(ValueError):
            Candle(time=1, open=float("nan"), high=1.0, low=1.0, close=1.0)

    def test_non_positive_time_rejected(self):
        with pytest.raises(ValueError, match="time"):
            Candle(time=0, open=1.0, high=1.0, low=1.0, close=1.0)

    def test_negative_volume_rejected(self):
        with pytest.raises(ValueError, match="volume"):
            Candle(time=1, open=1.0, high=1.0, low=1.0, close=1.0, volume=-1.0)

    def test_frozen(self):
        c = Candle(time=1, open=1.0, high=1.0, low=1.0, close=1.0)
        with pytest.raises(AttributeError):
            c.close = 2.0  # type: ignore[misc]


class TestRegimeState:
    def test_squeeze_membership(self):
        assert RegimeState.TIGHT_SQUEEZE.is_squeeze
        assert RegimeState.SQUEEZE.is_squeeze
        assert not RegimeState.NORMAL.is_squeeze
        assert not RegimeState.EXPANSION.is_squeeze
        assert not RegimeState.UNAVAILABLE.is_squeeze

    def test_unavailable_renders_as_na(self):
        assert RegimeState.UNAVAILABLE.value == "N/A"


class TestSerialisation:
    def test_insufficient_snapshot_to_dict(self):
        data = insufficient_data().to_dict()
        assert data["status"] == "INSUFFICIENT_DATA"
        assert data["squeeze_state"] == "N/A"
        assert data["signal"] is None
        assert data["price"] is None
        assert data["squeeze_bars"] == 0

    def test_alert_to_dict_flattens_enums(self):
        alert = AlertEvent(
            kind=AlertKind.BREAKOUT,
            symbol="BTCUSD",
            timeframe="1h",
            price=101.25,
            timestamp=1_700_000_000,
            signal=BreakoutSignal.BULLISH_BREAKOUT,
            squeeze_bars=12,
        )
        data = alert.to_dict()
        assert data["kind"] == "breakout"
        assert data["signal"] == "BULLISH_BREAKOUT"
        assert data["regime"] is None
        assert data["squeeze_bars"] == 12

    def test_status_helper(self):
        assert not insufficient_data().is_ok
        assert insufficient_data().status is AnalysisStatus.INSUFFICIENT_DATA
