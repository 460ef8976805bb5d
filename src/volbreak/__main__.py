"""Command-line screener: ``python -m volbreak BTCUSD ETHUSD --timeframes 1h 4h``.

Backfills history for the watchlist, logs the screener table, then streams
live candles from Delta Exchange into the engine and logs every alert until
interrupted. While streaming, history is re-fetched every
``--refresh-seconds`` so the windows heal from missed ticks.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib

from volbreak.config import Settings
from volbreak.engine import VolatilityEngine
from volbreak.feed import DeltaFeed, FeedState
from volbreak.logging_config import get_logger, setup_logging
from volbreak.providers.delta import DeltaProvider

logger = get_logger("volbreak.cli")


def _parse_args(argv: list[str] | None, settings: Settings) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="volbreak", description="Volatility squeeze and breakout screener")
    parser.add_argument("symbols", nargs="*", default=list(settings.watchlist), help="watchlist symbols")
    parser.add_argument("--all-symbols", action="store_true", help="screen every listed Delta perpetual")
    parser.add_argument("--timeframes", nargs="+", default=list(settings.timeframes))
    parser.add_argument("--candles", type=int, default=settings.candles_to_fetch, help="bars to backfill")
    parser.add_argument(
        "--refresh-seconds",
        type=float,
        default=settings.refresh_seconds,
        help="re-fetch history this often while streaming (0 disables)",
    )
    parser.add_argument("--no-live", action="store_true", help="backfill once and exit")
    parser.add_argument("--log-format", choices=("console", "json"), default=None)
    return parser.parse_args(argv)


def _log_table(engine: VolatilityEngine, symbols: list[str]) -> None:
    for symbol, row in sorted(engine.snapshot_table(symbols).items()):
        for timeframe, snap in row.items():
            logger.info(
                "screener_row",
                symbol=symbol,
                timeframe=timeframe,
                status=snap.status.value,
                price=snap.price,
                regime=snap.squeeze_state.value,
                squeeze_bars=snap.squeeze_bars,
                bb_width_percentile=snap.bb_width_percentile,
                signal=snap.signal.value if snap.signal else None,
            )


async def run(
    symbols: list[str],
    timeframes: list[str],
    candles: int,
    live: bool,
    settings: Settings,
    refresh_seconds: float | None = None,
    all_symbols: bool = False,
) -> None:
    if all_symbols:
        symbols = await DeltaProvider().list_symbols()
        logger.info("symbols_listed", count=len(symbols))

    engine = VolatilityEngine(settings)
    await engine.backfill(symbols, timeframes, count=candles)
    _log_table(engine, symbols)
    if not live:
        return

    def _status(state: FeedState) -> None:
        logger.info("feed_status", state=state.value)

    refresh_seconds = settings.refresh_seconds if refresh_seconds is None else refresh_seconds
    refresher = None
    if refresh_seconds > 0:
        refresher = asyncio.create_task(
            engine.refresh_forever(symbols, timeframes, interval=refresh_seconds, count=candles)
        )

    feed = DeltaFeed(on_tick=engine.apply_tick, on_status=_status)
    await feed.subscribe(symbols, timeframes)
    try:
        await feed.run()
    finally:
        if refresher is not None:
            refresher.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await refresher
        await feed.stop()


def main(argv: list[str] | None = None) -> None:
    settings = Settings.from_env()
    args = _parse_args(argv, settings)
    setup_logging(log_format=args.log_format)
    symbols = [s.upper() for s in args.symbols]
    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(
            run(
                symbols,
                args.timeframes,
                args.candles,
                not args.no_live,
                settings,
                refresh_seconds=args.refresh_seconds,
                all_symbols=args.all_symbols,
            )
        )


if __name__ == "__main__":
    main()
