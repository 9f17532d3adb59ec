"""
Percentage-Move Rule Evaluator

Listens to closed candles on the interval-keyed kline topic, keeps a bounded
history of closes per symbol, and publishes "alert" events on the global event
bus when the close moved by at least the configured threshold over the
configured window. Alerts for one symbol are rate-limited by a cooldown.
"""

import math
import time
from typing import Callable, Dict, List, Optional, Tuple

from core.logging import get_logger
from core.schemas import AlertEvent, Candle, CandleUpdate
from core.utils.time import interval_to_ms
from services.event_bus import ALERT_TOPIC, EventBus, kline_topic


class PriceMoveEvaluator:
    """
    Windowed percentage-change evaluator with per-symbol cooldown.

    Only closed candles are considered. For each one the close is compared
    with the close ``window_steps`` candles earlier:

        pct = (close - prev_close) / prev_close * 100

    and an AlertEvent is published when ``abs(pct) >= threshold_pct`` and the
    symbol is not cooling down.
    """

    MIN_HISTORY = 360  # 6h of 1m candles
    DEFAULT_THRESHOLD_PCT = 2.0

    def __init__(
        self,
        bus: EventBus,
        interval: str = "1m",
        threshold_pct: float = DEFAULT_THRESHOLD_PCT,
        window_minutes: float = 5,
        cooldown_seconds: float = 120,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._logger = get_logger(__name__)
        self.bus = bus
        self.interval = interval
        self.window_minutes = window_minutes
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock

        if threshold_pct <= 0:
            self._logger.warning(
                f"Rule threshold {threshold_pct}% is not positive; using {self.DEFAULT_THRESHOLD_PCT}%"
            )
            threshold_pct = self.DEFAULT_THRESHOLD_PCT
        self.threshold_pct = threshold_pct

        self._buffers: Dict[str, List[Candle]] = {}
        self._last_alert_at: Dict[str, float] = {}
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ============================================
    # Lifecycle
    # ============================================

    @property
    def channel(self) -> str:
        return kline_topic(self.interval)

    def start(self) -> None:
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self.bus.subscribe(self.channel, self.on_kline)
        self._logger.info(
            f"Rule evaluator listening on {self.channel} | threshold={self.threshold_pct}% "
            f"window={self.window_minutes}min cooldown={self.cooldown_seconds}s"
        )

    def stop(self) -> None:
        if self._unsubscribe is None:
            return
        self._unsubscribe()
        self._unsubscribe = None
        self._logger.info("Rule evaluator stopped")

    # ============================================
    # Window Arithmetic
    # ============================================

    @property
    def window_steps(self) -> int:
        """
        Number of candles spanned by the window.

        Rounds half up, so 5min on 2m candles spans 3 candles and 5min on 15m
        candles spans 1 (0.33 rounds to 0, clamped to 1).
        """
        steps = self.window_minutes * 60_000 / interval_to_ms(self.interval)
        return max(1, math.floor(steps + 0.5))

    @property
    def buffer_limit(self) -> int:
        return max(self.MIN_HISTORY, self.window_steps + 10)

    def get_buffer(self, symbol: str) -> Tuple[Candle, ...]:
        return tuple(self._buffers.get(symbol.upper(), ()))

    # ============================================
    # Event Handling
    # ============================================

    def on_kline(self, update: CandleUpdate) -> Optional[AlertEvent]:
        """
        Handle one candle update.

        Returns:
            The published AlertEvent, or None when nothing fired
        """
        if not update.is_closed:
            return None

        buf = self._buffers.setdefault(update.symbol, [])
        if buf and update.close_time <= buf[-1].close_time:
            self._logger.debug(
                f"[{update.symbol}] Ignoring out-of-order candle close_time={update.close_time}"
            )
            return None

        buf.append(Candle(close_time=update.close_time, close=update.close))
        limit = self.buffer_limit
        if len(buf) > limit:
            del buf[: len(buf) - limit]

        idx = len(buf) - 1 - self.window_steps
        if idx < 0:
            return None

        prev = buf[idx].close
        if prev == 0:
            return None

        pct = (update.close - prev) / prev * 100

        if abs(pct) < self.threshold_pct:
            self._logger.debug(f"[{update.symbol}] Δ{self.window_minutes}m={pct:.2f}% (no alert)")
            return None

        now = self._clock()
        last = self._last_alert_at.get(update.symbol)
        if last is not None and now - last < self.cooldown_seconds:
            self._logger.debug(f"[{update.symbol}] Δ{self.window_minutes}m={pct:.2f}% (cooling down)")
            return None
        self._last_alert_at[update.symbol] = now

        alert = AlertEvent(
            symbol=update.symbol,
            interval=self.interval,
            direction="up" if pct > 0 else "down",
            pct_change=pct,
            window_minutes=self.window_minutes,
            threshold_pct=self.threshold_pct,
            close=update.close,
            close_time=update.close_time,
        )
        self._logger.warning(
            f"ALERT {alert.direction.upper()} {alert.symbol} | Δ{self.window_minutes}m={pct:.2f}% "
            f"| close={alert.close} | {alert.close_datetime.isoformat()}"
        )
        self.bus.publish(ALERT_TOPIC, alert)
        return alert


# Singleton service instance (created on demand)
_evaluator: Optional[PriceMoveEvaluator] = None


def get_rule_evaluator(bus: Optional[EventBus] = None) -> PriceMoveEvaluator:
    """
    Return the application evaluator, building it from settings on first use.

    Passing a bus other than the one the cached evaluator is bound to stops
    the cached instance and builds a fresh one on the new bus.
    """
    global _evaluator
    if _evaluator is not None and bus is not None and _evaluator.bus is not bus:
        _evaluator.stop()
        _evaluator = None

    if _evaluator is None:
        from core.config import settings
        from services.event_bus import bus as default_bus

        _evaluator = PriceMoveEvaluator(
            bus or default_bus,
            interval=settings.kline_interval,
            threshold_pct=settings.rule_threshold_pct,
            window_minutes=settings.rule_window_min,
            cooldown_seconds=settings.rule_cooldown_sec,
        )
    return _evaluator
