"""
Unit Tests for Time Utilities and Timers

Run with:
    pytest tests/unit/test_time_utils.py -v
"""

import asyncio
from datetime import datetime, timezone

import pytest

from core.utils.time import interval_to_ms, to_utc_datetime
from core.utils.timers import Timer


class TestIntervalToMs:
    """Tests for interval_to_ms()"""

    @pytest.mark.parametrize(
        "interval,expected",
        [
            ("1m", 60_000),
            ("15m", 900_000),
            ("1h", 3_600_000),
            ("4H", 14_400_000),
            ("1d", 86_400_000),
            (" 5m ", 300_000),
        ],
    )
    def test_known_units(self, interval, expected):
        assert interval_to_ms(interval) == expected

    @pytest.mark.parametrize("interval", ["1w", "1M", "m", "abc", "", "0m", None])
    def test_unknown_tokens_default_to_one_minute(self, interval):
        assert interval_to_ms(interval) == 60_000


class TestToUtcDatetime:
    """Tests for to_utc_datetime()"""

    def test_milliseconds(self):
        assert to_utc_datetime(1704110400000) == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_seconds(self):
        assert to_utc_datetime(1704110400) == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def test_negative_rejected(self):
        with pytest.raises(ValueError):
            to_utc_datetime(-1)


class TestTimer:
    """Tests for the single-slot Timer"""

    @pytest.mark.asyncio
    async def test_fires_once(self):
        fired = []
        timer = Timer("test")
        timer.arm(0.01, fired.append, "x")

        assert timer.active
        await asyncio.sleep(0.05)

        assert fired == ["x"]
        assert not timer.active

    @pytest.mark.asyncio
    async def test_rearm_cancels_previous(self):
        fired = []
        timer = Timer("test")
        timer.arm(0.01, fired.append, "first")
        timer.arm(0.02, fired.append, "second")

        await asyncio.sleep(0.06)

        assert fired == ["second"]
        assert timer.delay == 0.02

    @pytest.mark.asyncio
    async def test_cancel(self):
        fired = []
        timer = Timer("test")
        timer.arm(0.01, fired.append, "x")
        timer.cancel()
        timer.cancel()

        await asyncio.sleep(0.03)

        assert fired == []
        assert not timer.active

    @pytest.mark.asyncio
    async def test_callback_may_rearm(self):
        fired = []
        timer = Timer("test")

        def tick():
            fired.append(len(fired))
            if len(fired) < 3:
                timer.arm(0.005, tick)

        timer.arm(0.005, tick)
        await asyncio.sleep(0.1)

        assert fired == [0, 1, 2]
        assert not timer.active
