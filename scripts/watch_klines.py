#!/usr/bin/env python3
"""
Kline stream watcher for manual testing.

Connects to Binance, prints every closed candle and every alert raised by the
rule evaluator.

Usage examples:
  python -m scripts.watch_klines
  python -m scripts.watch_klines --symbols btcusdt,solusdt --interval 1m --threshold 0.1 --window 1 --duration 300
"""

import asyncio
import argparse
import sys

from core.logging import set_log_level
from core.schemas import AlertEvent, CandleUpdate
from exchanges.binance.ws_client import BinanceKlineIngestor
from services.event_bus import ALERT_TOPIC, EventBus, KLINE_TOPIC
from services.rule_evaluator import PriceMoveEvaluator


def print_candle(update: CandleUpdate) -> None:
    if update.is_closed:
        print(f"[KLINE] {update.symbol} {update.interval} close={update.close} "
              f"vol={update.volume} @ {update.close_datetime.isoformat()}")


def print_alert(alert: AlertEvent) -> None:
    print(f"[ALERT] {alert.symbol} {alert.direction} {alert.pct_change:+.2f}% "
          f"in {alert.window_minutes}min close={alert.close}")


async def main() -> None:
    parser = argparse.ArgumentParser(description="Watch Binance klines and percentage-move alerts")
    parser.add_argument("--symbols", default="btcusdt,ethusdt", help="Comma-separated symbols")
    parser.add_argument("--interval", default="1m", help="Kline interval (default: 1m)")
    parser.add_argument("--threshold", type=float, default=2.0, help="Alert threshold in percent")
    parser.add_argument("--window", type=float, default=5, help="Window in minutes")
    parser.add_argument("--cooldown", type=float, default=120, help="Per-symbol cooldown in seconds")
    parser.add_argument("--duration", type=int, default=0, help="Seconds to run (0 = run indefinitely)")
    parser.add_argument("--log-level", default=None, help="Override LOG_LEVEL (e.g., DEBUG)")
    args = parser.parse_args()

    if args.log_level:
        set_log_level(args.log_level)

    bus = EventBus()
    bus.subscribe(KLINE_TOPIC, print_candle)
    bus.subscribe(ALERT_TOPIC, print_alert)

    evaluator = PriceMoveEvaluator(
        bus,
        interval=args.interval,
        threshold_pct=args.threshold,
        window_minutes=args.window,
        cooldown_seconds=args.cooldown,
    )
    evaluator.start()

    symbols = [s for s in args.symbols.split(",") if s.strip()]
    async with BinanceKlineIngestor(bus, symbols=symbols, interval=args.interval) as ingestor:
        print(f"[Info] Streaming {ingestor.stream_url}\n")
        if args.duration > 0:
            await asyncio.sleep(args.duration)
            print("[Info] Duration reached; stopping.")
        else:
            await asyncio.Event().wait()
    evaluator.stop()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n[Info] Interrupted. Bye.")
        sys.exit(0)
