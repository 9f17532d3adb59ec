"""
Core Utilities Package

This package contains utility functions and helpers used throughout the application.

Modules:
    - time: Timestamp conversion and interval parsing utilities
    - timers: Single-slot cancellable timers on top of the asyncio event loop
"""

from core.utils.time import to_utc_datetime, interval_to_ms
from core.utils.timers import Timer

__all__ = ["to_utc_datetime", "interval_to_ms", "Timer"]
