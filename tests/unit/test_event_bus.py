"""
Unit Tests for the Event Bus

Run with:
    pytest tests/unit/test_event_bus.py -v
"""

import asyncio

import pytest

from services.event_bus import ALERT_TOPIC, EventBus, KLINE_TOPIC, kline_topic


class TestTopics:
    """Tests for topic naming"""

    def test_kline_topic(self):
        assert kline_topic("1m") == "kline.1m"
        assert kline_topic("4h") == "kline.4h"

    def test_well_known_topics(self):
        assert KLINE_TOPIC == "kline"
        assert ALERT_TOPIC == "alert"


class TestHandlerSubscriptions:
    """Tests for callable subscribers"""

    def test_handlers_receive_in_subscription_order(self):
        bus = EventBus()
        calls = []
        bus.subscribe("t", lambda e: calls.append(("a", e)))
        bus.subscribe("t", lambda e: calls.append(("b", e)))

        bus.publish("t", 1)
        bus.publish("t", 2)

        assert calls == [("a", 1), ("b", 1), ("a", 2), ("b", 2)]

    def test_topics_are_isolated(self):
        bus = EventBus()
        received = []
        bus.subscribe("kline.1m", received.append)

        bus.publish("kline.5m", "x")
        bus.publish("kline", "y")

        assert received == []

    def test_publish_without_subscribers_is_noop(self):
        EventBus().publish("nobody", {"x": 1})

    def test_returned_callable_unsubscribes(self):
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe("t", received.append)

        unsubscribe()
        bus.publish("t", 1)

        assert received == []
        assert bus.subscriber_count("t") == 0

    def test_unsubscribe_unknown_handler_is_safe(self):
        bus = EventBus()
        bus.unsubscribe("t", print)
        assert bus.subscriber_count("t") == 0

    def test_failing_handler_does_not_stop_delivery(self, caplog):
        bus = EventBus()
        received = []

        def broken(event):
            raise ValueError("bad handler")

        bus.subscribe("t", broken)
        bus.subscribe("t", received.append)

        bus.publish("t", "event")

        assert received == ["event"]
        assert "Handler for topic 't' failed" in caplog.text

    def test_handler_may_unsubscribe_during_dispatch(self):
        bus = EventBus()
        received = []

        def once(event):
            received.append(event)
            bus.unsubscribe("t", once)

        bus.subscribe("t", once)
        bus.publish("t", 1)
        bus.publish("t", 2)

        assert received == [1]


class TestQueueSubscriptions:
    """Tests for queue-based subscribers"""

    @pytest.mark.asyncio
    async def test_queue_receives_events(self):
        bus = EventBus()
        queue = bus.subscribe_queue("alert")

        bus.publish("alert", {"symbol": "BTCUSDT"})

        assert await asyncio.wait_for(queue.get(), timeout=1) == {"symbol": "BTCUSDT"}

    @pytest.mark.asyncio
    async def test_full_queue_drops_events(self, caplog):
        bus = EventBus(max_queue_size=1)
        queue = bus.subscribe_queue("alert")

        bus.publish("alert", 1)
        bus.publish("alert", 2)

        assert queue.qsize() == 1
        assert queue.get_nowait() == 1
        assert "due to full queue" in caplog.text

    @pytest.mark.asyncio
    async def test_unsubscribe_queue_drains(self):
        bus = EventBus()
        queue = bus.subscribe_queue("alert")
        bus.publish("alert", 1)

        bus.unsubscribe_queue("alert", queue)
        bus.publish("alert", 2)

        assert queue.empty()
        assert bus.subscriber_count("alert") == 0

    @pytest.mark.asyncio
    async def test_queue_size_override(self):
        bus = EventBus(max_queue_size=1000)
        queue = bus.subscribe_queue("alert", maxsize=2)

        for i in range(5):
            bus.publish("alert", i)

        assert queue.maxsize == 2
        assert queue.qsize() == 2
