"""
Kline Alert Runtime

Runs the stream ingestor and the rule evaluator on one event loop:

    Binance websocket → BinanceKlineIngestor → bus "kline.<interval>"
                      → PriceMoveEvaluator   → bus "alert" → alert consumer

The alert consumer only logs alerts; delivering them (chat, mail, ...) is the
job of an external collaborator subscribed to the "alert" topic.

Usage:
    python start.py
"""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from core.config import settings, validate_configuration
from core.logging import logger
from core.schemas import AlertEvent
from exchanges.binance.ws_client import BinanceKlineIngestor, create_kline_ingestor
from services.event_bus import ALERT_TOPIC, EventBus, bus
from services.market_config import MarketConfigService
from services.rule_evaluator import PriceMoveEvaluator, get_rule_evaluator


class Runtime:
    """Handles to the running components."""

    def __init__(self, ingestor: BinanceKlineIngestor, evaluator: PriceMoveEvaluator) -> None:
        self.ingestor = ingestor
        self.evaluator = evaluator
        self.market_config = MarketConfigService(ingestor)


# ============================================
# Lifespan Management
# ============================================

@asynccontextmanager
async def lifespan(event_bus: EventBus = bus) -> AsyncIterator[Runtime]:
    """Handle application startup and shutdown."""
    # Startup
    logger.info("=== Application Starting ===")
    validate_configuration()

    evaluator = get_rule_evaluator(event_bus)
    ingestor = create_kline_ingestor(event_bus)
    try:
        # Subscribe before the first message can arrive
        evaluator.start()
        await ingestor.start()
        logger.info("=== Started Successfully ===")
    except Exception as e:
        logger.error(f"Startup failed: {e}")
        evaluator.stop()
        await ingestor.stop()
        raise

    try:
        yield Runtime(ingestor, evaluator)
    finally:
        # Shutdown
        logger.info("=== Shutting Down ===")
        try:
            await ingestor.stop()
        except Exception as e:
            logger.error(f"Error stopping kline ingestor: {e}")
        evaluator.stop()
        logger.info("=== Shutdown Complete ===")


# ============================================
# Alert Consumer
# ============================================

async def consume_alerts(queue: asyncio.Queue) -> None:
    """Log every alert published on the bus."""
    while True:
        alert: AlertEvent = await queue.get()
        logger.info(f"Alert published: {alert.model_dump_json()}")


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop_event.set))


async def run(stop_event: Optional[asyncio.Event] = None) -> None:
    """
    Run until ``stop_event`` is set (or SIGINT/SIGTERM when not given).
    """
    if stop_event is None:
        stop_event = asyncio.Event()
        _install_signal_handlers(stop_event)

    alerts = bus.subscribe_queue(ALERT_TOPIC, maxsize=settings.alert_queue_size)
    consumer = asyncio.create_task(consume_alerts(alerts), name="alert_consumer")
    try:
        async with lifespan(bus):
            await stop_event.wait()
    finally:
        consumer.cancel()
        await asyncio.gather(consumer, return_exceptions=True)
        bus.unsubscribe_queue(ALERT_TOPIC, alerts)


def main() -> None:
    logger.info(f"Environment: {settings.environment}")
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
