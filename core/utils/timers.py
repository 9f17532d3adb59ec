"""
Single-Slot Timers

Thin wrapper around ``loop.call_later`` used for the reconnect and inactivity
timers of the stream ingestor. Each Timer owns at most one pending handle:
arming it again cancels the previous handle first, so a purpose can never
have two callbacks scheduled at the same time.
"""

import asyncio
from typing import Any, Callable, Optional


class Timer:
    """
    A named, re-armable one-shot timer.

    Example:
        >>> watchdog = Timer("inactivity")
        >>> watchdog.arm(30, on_stale)     # schedules on the running loop
        >>> watchdog.arm(30, on_stale)     # previous handle is cancelled
        >>> watchdog.cancel()
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.delay: Optional[float] = None
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def active(self) -> bool:
        """True while a callback is scheduled and has not fired yet."""
        return self._handle is not None

    def arm(self, delay: float, callback: Callable[..., Any], *args: Any) -> None:
        """Cancel any pending callback and schedule ``callback(*args)`` after ``delay`` seconds."""
        self.cancel()
        loop = asyncio.get_running_loop()
        self.delay = delay
        self._handle = loop.call_later(delay, self._fire, callback, args)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, callback: Callable[..., Any], args: tuple) -> None:
        # Cleared before running so the callback may re-arm this timer
        self._handle = None
        callback(*args)
