"""
Tests for the Application Runtime

Run with:
    pytest tests/unit/test_runtime.py -v
"""

import asyncio
import logging

import pytest

import app.main as main
from exchanges.binance.ws_client import BinanceKlineIngestor
from services.event_bus import ALERT_TOPIC, EventBus
from services.rule_evaluator import PriceMoveEvaluator
from tests.unit.fakes import FakeSession, FakeWebSocket, kline_payload, settle, text


@pytest.fixture
def wiring(monkeypatch):
    """Replace the application bus and component factories with test doubles"""
    bus = EventBus()
    ws = FakeWebSocket(
        [text(kline_payload("BTCUSDT", close, minute)) for minute, close in enumerate([100, 100, 100, 100, 100, 103])]
    )
    ingestor = BinanceKlineIngestor(bus, symbols=["btcusdt"], session=FakeSession(ws))
    evaluator = PriceMoveEvaluator(bus, threshold_pct=2.0, window_minutes=5)

    monkeypatch.setattr(main, "bus", bus)
    monkeypatch.setattr(main, "create_kline_ingestor", lambda event_bus: ingestor)
    monkeypatch.setattr(main, "get_rule_evaluator", lambda event_bus: evaluator)
    return bus, ingestor, evaluator, ws


class TestLifespan:
    """Tests for startup and shutdown ordering"""

    @pytest.mark.asyncio
    async def test_lifespan_starts_and_stops_components(self, wiring):
        bus, ingestor, evaluator, ws = wiring

        async with main.lifespan(bus) as runtime:
            await settle()
            assert runtime.ingestor is ingestor
            assert runtime.evaluator is evaluator
            assert bus.subscriber_count("kline.1m") == 1
            assert runtime.market_config.status().symbols == ["btcusdt"]

        assert bus.subscriber_count("kline.1m") == 0
        assert ws.closed
        assert ingestor.status().state.value == "closed"


class TestRun:
    """Tests for run()"""

    @pytest.mark.asyncio
    async def test_alerts_are_logged_until_stopped(self, wiring, caplog):
        bus, ingestor, evaluator, ws = wiring
        stop_event = asyncio.Event()

        with caplog.at_level(logging.INFO, logger="klinewatch"):
            task = asyncio.create_task(main.run(stop_event))
            await settle(30)

        assert "Alert published" in caplog.text
        assert '"symbol":"BTCUSDT"' in caplog.text

        stop_event.set()
        await asyncio.wait_for(task, timeout=1)

        assert bus.subscriber_count(ALERT_TOPIC) == 0
        assert ws.closed

    @pytest.mark.asyncio
    async def test_alert_queue_uses_configured_size(self, wiring, monkeypatch):
        bus, ingestor, evaluator, ws = wiring
        monkeypatch.setattr(main.settings, "alert_queue_size", 3)

        queues = []
        subscribe_queue = bus.subscribe_queue

        def recording_subscribe_queue(topic, maxsize=None):
            queue = subscribe_queue(topic, maxsize=maxsize)
            queues.append(queue)
            return queue

        monkeypatch.setattr(bus, "subscribe_queue", recording_subscribe_queue)

        stop_event = asyncio.Event()
        task = asyncio.create_task(main.run(stop_event))
        await settle()
        stop_event.set()
        await asyncio.wait_for(task, timeout=1)

        assert [q.maxsize for q in queues] == [3]
