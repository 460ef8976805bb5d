"""Alert detection between consecutive snapshots of one (symbol, timeframe) pair.

Checked in order, at most one alert per update:

1. ``breakout``     : a breakout signal that differs from the previous one
2. ``squeeze_entry``: regime moved from NORMAL/EXPANSION into a squeeze
3. ``tight_squeeze``: regime tightened from SQUEEZE to TIGHT_SQUEEZE

A missing previous snapshot (or one that was not ``OK``) counts as "no
previous", which satisfies the first two checks. The caller decides when a
diff is allowed at all; the very first snapshot of a pair is never diffed.
"""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Callable, Iterator

import structlog

from volbreak.models import AlertEvent, AlertKind, RegimeState, VolatilityAnalysis

logger = structlog.get_logger(__name__)

AlertCallback = Callable[[AlertEvent], None]

MAX_ALERTS = 50

_ENTRY_FROM = (RegimeState.NORMAL, RegimeState.EXPANSION)


def evaluate_transition(
    current: VolatilityAnalysis,
    previous: VolatilityAnalysis | None,
) -> AlertKind | None:
    """Return which alert the move from *previous* to *current* triggers, if any."""
    if not current.is_ok:
        return None
    if previous is not None and not previous.is_ok:
        previous = None

    if current.signal is not None and (previous is None or previous.signal != current.signal):
        return AlertKind.BREAKOUT
    if current.squeeze_state.is_squeeze and (
        previous is None or previous.squeeze_state in _ENTRY_FROM
    ):
        return AlertKind.SQUEEZE_ENTRY
    if (
        current.squeeze_state is RegimeState.TIGHT_SQUEEZE
        and previous is not None
        and previous.squeeze_state is RegimeState.SQUEEZE
    ):
        return AlertKind.TIGHT_SQUEEZE
    return None


class AlertLog:
    """Most recent alerts, newest first, capped at *maxlen* entries."""

    def __init__(self, maxlen: int = MAX_ALERTS) -> None:
        self._alerts: deque[AlertEvent] = deque(maxlen=maxlen)

    def __len__(self) -> int:
        return len(self._alerts)

    def __iter__(self) -> Iterator[AlertEvent]:
        return iter(self._alerts)

    def add(self, alert: AlertEvent) -> None:
        # appendleft on a bounded deque drops from the right, i.e. the oldest
        self._alerts.appendleft(alert)

    def recent(self, limit: int | None = None) -> list[AlertEvent]:
        alerts = list(self._alerts)
        return alerts if limit is None else alerts[:limit]

    def clear(self) -> None:
        self._alerts.clear()


class AlertEngine:
    """Builds :class:`AlertEvent` objects, records them and notifies subscribers."""

    def __init__(
        self,
        maxlen: int = MAX_ALERTS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.log = AlertLog(maxlen)
        self._clock = clock
        self._callbacks: list[AlertCallback] = []

    def on_alert(self, callback: AlertCallback) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it."""
        self._callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unsubscribe

    def check(
        self,
        symbol: str,
        timeframe: str,
        current: VolatilityAnalysis,
        previous: VolatilityAnalysis | None,
    ) -> AlertEvent | None:
        """Diff two snapshots and publish the resulting alert, if any."""
        kind = evaluate_transition(current, previous)
        if kind is None:
            return None

        alert = AlertEvent(
            kind=kind,
            symbol=symbol,
            timeframe=timeframe,
            price=current.price,
            timestamp=int(self._clock()),
            signal=current.signal if kind is AlertKind.BREAKOUT else None,
            regime=current.squeeze_state if kind is AlertKind.SQUEEZE_ENTRY else None,
            squeeze_bars=current.squeeze_bars if kind is not AlertKind.SQUEEZE_ENTRY else None,
        )
        self.publish(alert)
        return alert

    def publish(self, alert: AlertEvent) -> None:
        self.log.add(alert)
        logger.info(
            "alert",
            kind=alert.kind.value,
            symbol=alert.symbol,
            timeframe=alert.timeframe,
            price=alert.price,
            signal=alert.signal.value if alert.signal else None,
            squeeze_bars=alert.squeeze_bars,
        )
        for callback in list(self._callbacks):
            try:
                callback(alert)
            except Exception:
                logger.exception("alert_callback_failed", callback=getattr(callback, "__name__", repr(callback)))
