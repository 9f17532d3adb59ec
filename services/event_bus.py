"""
Topic-Based Pub/Sub Event Bus

This module provides the publish/subscribe utility that connects the stream
ingestor to the rule evaluator and to any other consumer of candle updates or
alerts.

Handlers are plain callables invoked synchronously, in subscription order,
from inside ``publish``. Every publisher and handler runs on the same event
loop, so a handler always completes before the next event is dispatched and
no locking is needed. Consumers that prefer to pull events from a coroutine
can ask for a bounded asyncio.Queue instead.

Topics:
    - kline.<interval>: CandleUpdate for the configured interval
    - kline: CandleUpdate, interval-agnostic broadcast
    - alert: AlertEvent
"""

import asyncio
from collections import defaultdict
from typing import Any, Callable, DefaultDict, Dict, List, Optional

from core.logging import get_logger


KLINE_TOPIC = "kline"
ALERT_TOPIC = "alert"

Handler = Callable[[Any], None]


def kline_topic(interval: str) -> str:
    """
    Topic carrying candle updates for one interval.

    Example:
        >>> kline_topic("1m")
        'kline.1m'
    """
    return f"{KLINE_TOPIC}.{interval}"


class EventBus:
    """
    Synchronous event bus with topic-based pub/sub.

    - Handlers are called in the order they subscribed.
    - A failing handler is logged and skipped; it never stops delivery to the
      remaining handlers nor propagates into the publisher.
    - Queue subscribers get their own asyncio.Queue and never block
      publishers: events are dropped when the queue is full.
    """

    def __init__(self, max_queue_size: int = 1000) -> None:
        self._topics: DefaultDict[str, List[Handler]] = defaultdict(list)
        self._queues: Dict[int, Handler] = {}
        self._max_queue_size = max_queue_size
        self._logger = get_logger(__name__)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """
        Register ``handler`` for ``topic``.

        Returns:
            A zero-argument callable that removes the subscription.
        """
        self._topics[topic].append(handler)
        self._logger.debug(f"Subscriber added to topic '{topic}'. total={len(self._topics[topic])}")
        return lambda: self.unsubscribe(topic, handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        """
        Remove ``handler`` from ``topic``. Unknown handlers are ignored.
        """
        handlers = self._topics.get(topic)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._topics[topic]
        self._logger.debug(f"Subscriber removed from topic '{topic}'. total={self.subscriber_count(topic)}")

    def subscribe_queue(self, topic: str, maxsize: Optional[int] = None) -> asyncio.Queue:
        """
        Subscribe to a topic through a bounded asyncio.Queue.

        Args:
            topic: Topic to receive
            maxsize: Queue bound (defaults to the bus-wide max_queue_size)
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize or self._max_queue_size)

        def _enqueue(event: Any) -> None:
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # Drop event to avoid backpressure blocking
                self._logger.warning(f"Dropping event for topic '{topic}' due to full queue")

        self._queues[id(queue)] = _enqueue
        self.subscribe(topic, _enqueue)
        return queue

    def unsubscribe_queue(self, topic: str, queue: asyncio.Queue) -> None:
        """
        Unsubscribe a queue from a topic and drain it.
        """
        handler = self._queues.pop(id(queue), None)
        if handler is not None:
            self.unsubscribe(topic, handler)
        while not queue.empty():
            queue.get_nowait()

    def publish(self, topic: str, event: Any) -> None:
        """
        Deliver ``event`` to every handler of ``topic``.
        """
        # Copy so handlers may (un)subscribe while being dispatched
        for handler in list(self._topics.get(topic, ())):
            try:
                handler(event)
            except Exception as e:
                self._logger.error(f"Handler for topic '{topic}' failed: {e}", exc_info=True)

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))


# Singleton event bus for the application
bus = EventBus()
