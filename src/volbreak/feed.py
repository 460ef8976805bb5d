"""Live candle feed from Delta Exchange candlestick channels.

The feed owns the WebSocket and its reconnect policy; the engine only sees
the ticks it delivers through ``on_tick(symbol, timeframe, candle)`` and the
connectivity changes delivered through ``on_status(state)``.

Reconnects back off exponentially (``reconnect_delay × 2^(attempt − 1)``)
and give up after ``max_reconnect_attempts`` consecutive failures. The
attempt counter resets whenever a connection is established.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable, Iterable
from enum import Enum
from typing import Any

import aiohttp
import structlog

from volbreak.models import Candle

logger = structlog.get_logger(__name__)

WS_URL = "wss://socket.india.delta.exchange"

TickCallback = Callable[[str, str, Candle], None]
StatusCallback = Callable[["FeedState"], None]


class FeedState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def parse_candle_message(message: dict[str, Any]) -> tuple[str, str, Candle] | None:
    """Turn a ``candlestick_<tf>`` message into ``(symbol, timeframe, candle)``.

    ``candle_start_time`` arrives in microseconds. Anything that is not a
    well-formed candle message yields ``None``.
    """
    kind = message.get("type")
    symbol = message.get("symbol")
    if not isinstance(kind, str) or not kind.startswith("candlestick_") or not symbol:
        return None

    timeframe = message.get("resolution") or kind.removeprefix("candlestick_")
    try:
        candle = Candle(
            time=int(message.get("candle_start_time") or 0) // 1_000_000,
            open=float(message["open"]),
            high=float(message["high"]),
            low=float(message["low"]),
            close=float(message["close"]),
            volume=float(message.get("volume") or 0.0),
        )
    except (KeyError, TypeError, ValueError):
        return None
    return symbol, timeframe, candle


class DeltaFeed:
    """Reconnecting WebSocket client for Delta Exchange candles."""

    def __init__(
        self,
        on_tick: TickCallback,
        on_status: StatusCallback | None = None,
        url: str = WS_URL,
        reconnect_delay: float = 1.0,
        max_reconnect_attempts: int = 10,
        heartbeat_interval: float = 30.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.url = url
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self.heartbeat_interval = heartbeat_interval

        self._on_tick = on_tick
        self._on_status = on_status
        self._session = session
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._channels: dict[str, set[str]] = {}
        self._stopping = False

        self.state = FeedState.DISCONNECTED
        self.attempts = 0

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    @property
    def channels(self) -> list[dict[str, Any]]:
        return [
            {"name": name, "symbols": sorted(symbols)}
            for name, symbols in sorted(self._channels.items())
            if symbols
        ]

    async def subscribe(self, symbols: Iterable[str], timeframes: Iterable[str]) -> None:
        symbols = list(symbols)
        added = []
        for tf in timeframes:
            name = f"candlestick_{tf}"
            self._channels.setdefault(name, set()).update(symbols)
            added.append({"name": name, "symbols": symbols})
        await self._send({"type": "subscribe", "payload": {"channels": added}})

    async def unsubscribe(self, symbols: Iterable[str], timeframes: Iterable[str]) -> None:
        symbols = list(symbols)
        removed = []
        for tf in timeframes:
            name = f"candlestick_{tf}"
            self._channels.get(name, set()).difference_update(symbols)
            removed.append({"name": name, "symbols": symbols})
        await self._send({"type": "unsubscribe", "payload": {"channels": removed}})

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Connect, stream until :meth:`stop`, reconnecting with backoff."""
        self._stopping = False
        owns_session = self._session is None
        session = self._session or aiohttp.ClientSession()
        try:
            while not self._stopping:
                self._set_state(FeedState.CONNECTING)
                try:
                    async with session.ws_connect(self.url) as ws:
                        self._ws = ws
                        self.attempts = 0
                        self._set_state(FeedState.CONNECTED)
                        if self._channels:
                            await self._send({"type": "subscribe", "payload": {"channels": self.channels}})
                        await self._consume(ws)
                except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                    logger.warning("feed_connection_failed", url=self.url, error=str(exc))
                finally:
                    self._ws = None
                    self._set_state(FeedState.DISCONNECTED)

                if self._stopping:
                    break
                if self.attempts >= self.max_reconnect_attempts:
                    logger.error("feed_gave_up", attempts=self.attempts)
                    break
                self.attempts += 1
                delay = self.next_delay()
                logger.info("feed_reconnecting", attempt=self.attempts, delay=delay)
                await asyncio.sleep(delay)
        finally:
            if owns_session:
                await session.close()

    async def stop(self) -> None:
        """Close the socket. Subscriptions are kept and resent by the next :meth:`run`."""
        self._stopping = True
        if self._ws is not None and not self._ws.closed:
            await self._ws.close()

    def next_delay(self) -> float:
        """Backoff delay before the current reconnect attempt."""
        return self.reconnect_delay * 2 ** max(self.attempts - 1, 0)

    @property
    def connected(self) -> bool:
        return self.state is FeedState.CONNECTED

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _consume(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        heartbeat = asyncio.create_task(self._heartbeat(ws))
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self.handle_text(msg.data)
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break
        finally:
            heartbeat.cancel()
            try:
                await heartbeat
            except asyncio.CancelledError:
                pass

    async def _heartbeat(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while not ws.closed:
            await asyncio.sleep(self.heartbeat_interval)
            if not ws.closed:
                await ws.send_str(json.dumps({"type": "ping"}))

    def handle_text(self, data: str) -> None:
        """Dispatch one raw text frame to the tick callback."""
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("feed_non_json_frame", size=len(data))
            return
        if not isinstance(message, dict):
            return
        parsed = parse_candle_message(message)
        if parsed is None:
            logger.debug("feed_message_ignored", type=message.get("type"))
            return
        self._on_tick(*parsed)

    async def _send(self, payload: dict[str, Any]) -> None:
        if self._ws is None or self._ws.closed:
            return
        await self._ws.send_str(json.dumps(payload))

    def _set_state(self, state: FeedState) -> None:
        if state is self.state:
            return
        self.state = state
        logger.debug("feed_state", state=state.value, attempts=self.attempts)
        if self._on_status is not None:
            self._on_status(state)
