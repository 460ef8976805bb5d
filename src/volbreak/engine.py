"""Volatility engine: owns the candle windows and snapshots of every (symbol, timeframe) pair.

Each pair moves through ``UNINITIALIZED → BASELINE → LIVE``. The first
``OK`` snapshot becomes the baseline and never raises an alert; every later
bar-closing update is diffed by the :class:`~volbreak.alerts.AlertEngine`
against the snapshot of the previous bar-closing update. Ticks for the
forming bar refresh the published snapshot but never move that reference.

Calls for one pair must be serialised by the caller. The asyncio backfill
below satisfies this because windows are only touched between awaits.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable, Sequence
from enum import Enum

import aiohttp
import structlog

from volbreak import registry
from volbreak.alerts import AlertCallback, AlertEngine, AlertLog
from volbreak.analysis import analyze
from volbreak.config import Settings
from volbreak.models import AlertEvent, Candle, VolatilityAnalysis
from volbreak.window import CandleStore, CandleWindow, TickOutcome, prepare_batch

logger = structlog.get_logger(__name__)

Fetcher = Callable[[str, str, int], Awaitable[list[Candle] | None]]
ScreenerTable = dict[str, dict[str, VolatilityAnalysis]]


class KeyState(str, Enum):
    UNINITIALIZED = "uninitialized"
    BASELINE = "baseline"
    LIVE = "live"


class VolatilityEngine:
    """Keeps per-pair analytics correct as history and live ticks arrive."""

    def __init__(
        self,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or Settings()
        self.store = CandleStore(self.settings.max_candles)
        self.alert_engine = AlertEngine(self.settings.alert_log_size, clock=clock)
        self._snapshots: dict[tuple[str, str], VolatilityAnalysis] = {}
        # Last snapshot produced by a bar-closing update, the reference for alerts
        self._previous: dict[tuple[str, str], VolatilityAnalysis] = {}
        self._states: dict[tuple[str, str], KeyState] = {}

    # ------------------------------------------------------------------
    # Read surfaces
    # ------------------------------------------------------------------

    @property
    def alerts(self) -> AlertLog:
        return self.alert_engine.log

    def on_alert(self, callback: AlertCallback) -> Callable[[], None]:
        return self.alert_engine.on_alert(callback)

    def clear_alerts(self) -> None:
        self.alert_engine.log.clear()

    def get_analysis(self, symbol: str, timeframe: str) -> VolatilityAnalysis | None:
        return self._snapshots.get((symbol, timeframe))

    def state(self, symbol: str, timeframe: str) -> KeyState:
        return self._states.get((symbol, timeframe), KeyState.UNINITIALIZED)

    def snapshot_table(self, symbols: Iterable[str] | None = None) -> ScreenerTable:
        """Latest snapshots as ``{symbol: {timeframe: analysis}}``."""
        wanted = set(symbols) if symbols is not None else None
        table: ScreenerTable = {}
        for (symbol, timeframe), snapshot in self._snapshots.items():
            if wanted is not None and symbol not in wanted:
                continue
            table.setdefault(symbol, {})[timeframe] = snapshot
        return table

    # ------------------------------------------------------------------
    # Update paths
    # ------------------------------------------------------------------

    def load_history(
        self,
        symbol: str,
        timeframe: str,
        candles: Iterable[Candle],
    ) -> VolatilityAnalysis:
        """Replace the window of a pair with a freshly fetched batch and reanalyse."""
        batch = prepare_batch(
            candles,
            min_batch=self.settings.outlier_min_batch,
            mad_multiplier=self.settings.outlier_mad_multiplier,
        )
        window = self.store.store(symbol, timeframe, batch)
        snapshot = self._analyze(window)
        self._reconcile(symbol, timeframe, snapshot)
        logger.debug(
            "history_loaded",
            symbol=symbol,
            timeframe=timeframe,
            candles=len(window),
            status=snapshot.status.value,
        )
        return snapshot

    def apply_tick(self, symbol: str, timeframe: str, candle: Candle) -> TickOutcome:
        """Reconcile one live candle with the stored window of its pair.

        Only an appended (bar-closing) tick is checked for alerts; a tick for
        the forming bar refreshes the snapshot silently.
        """
        window = self.store.get(symbol, timeframe)
        outcome = window.apply_tick(candle) if window is not None else TickOutcome.IGNORED

        if outcome is TickOutcome.APPENDED:
            self._reconcile(symbol, timeframe, self._analyze(window))
        elif outcome is TickOutcome.REPLACED:
            self._refresh(symbol, timeframe, self._analyze(window))
        else:
            logger.debug(
                "tick_discarded",
                symbol=symbol,
                timeframe=timeframe,
                time=candle.time,
                outcome=outcome.value,
            )
        return outcome

    def remove_symbol(self, symbol: str) -> None:
        """Forget every window, snapshot and state of *symbol*."""
        self.store.discard_symbol(symbol)
        for key in [k for k in self._snapshots if k[0] == symbol]:
            del self._snapshots[key]
            self._previous.pop(key, None)
        for key in [k for k in self._states if k[0] == symbol]:
            del self._states[key]

    # ------------------------------------------------------------------
    # Backfill
    # ------------------------------------------------------------------

    async def backfill(
        self,
        symbols: Sequence[str],
        timeframes: Sequence[str] | None = None,
        fetcher: Fetcher | None = None,
        count: int | None = None,
    ) -> ScreenerTable:
        """Fetch and load history for every symbol × timeframe.

        Symbols are processed in batches of ``settings.backfill_batch_size``;
        inside a batch every symbol, and every timeframe of a symbol, is
        fetched concurrently.
        """
        timeframes = tuple(timeframes or self.settings.timeframes)
        fetch = fetcher or registry.fetch
        count = count or self.settings.candles_to_fetch
        size = self.settings.backfill_batch_size

        for start in range(0, len(symbols), size):
            batch = symbols[start : start + size]
            await asyncio.gather(
                *(self._backfill_symbol(symbol, timeframes, fetch, count) for symbol in batch)
            )

        logger.info("backfill_complete", symbols=len(symbols), timeframes=len(timeframes))
        return self.snapshot_table(symbols)

    async def refresh_forever(
        self,
        symbols: Sequence[str],
        timeframes: Sequence[str] | None = None,
        interval: float | None = None,
        fetcher: Fetcher | None = None,
        count: int | None = None,
    ) -> None:
        """Re-run :meth:`backfill` every *interval* seconds until cancelled.

        Reloaded windows are reconciled like any other history load, so a
        regime change picked up by a refresh raises its alert.
        """
        interval = self.settings.refresh_seconds if interval is None else interval
        while True:
            await asyncio.sleep(interval)
            await self.backfill(symbols, timeframes, fetcher=fetcher, count=count)

    async def _backfill_symbol(
        self,
        symbol: str,
        timeframes: Sequence[str],
        fetch: Fetcher,
        count: int,
    ) -> None:
        await asyncio.gather(*(self._backfill_pair(symbol, tf, fetch, count) for tf in timeframes))

    async def _backfill_pair(self, symbol: str, timeframe: str, fetch: Fetcher, count: int) -> None:
        try:
            candles = await fetch(symbol, timeframe, count)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.warning("backfill_fetch_failed", symbol=symbol, timeframe=timeframe, error=str(exc))
            candles = None
        self.load_history(symbol, timeframe, candles or [])

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _analyze(self, window: CandleWindow) -> VolatilityAnalysis:
        return analyze(window.as_slice(), self.settings)

    def _refresh(self, symbol: str, timeframe: str, snapshot: VolatilityAnalysis) -> None:
        key = (symbol, timeframe)
        self._snapshots[key] = snapshot
        if snapshot.is_ok and self.state(symbol, timeframe) is KeyState.UNINITIALIZED:
            self._store_baseline(key, snapshot)

    def _reconcile(
        self,
        symbol: str,
        timeframe: str,
        snapshot: VolatilityAnalysis,
    ) -> AlertEvent | None:
        key = (symbol, timeframe)
        state = self.state(symbol, timeframe)
        previous = self._previous.get(key)
        self._snapshots[key] = snapshot

        if state is KeyState.UNINITIALIZED:
            if snapshot.is_ok:
                self._store_baseline(key, snapshot)
            return None

        self._previous[key] = snapshot
        self._states[key] = KeyState.LIVE
        return self.alert_engine.check(symbol, timeframe, snapshot, previous)

    def _store_baseline(self, key: tuple[str, str], snapshot: VolatilityAnalysis) -> None:
        self._previous[key] = snapshot
        self._states[key] = KeyState.BASELINE
        logger.debug("baseline_stored", symbol=key[0], timeframe=key[1])
