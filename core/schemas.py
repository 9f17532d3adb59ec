"""
Normalized Data Schemas

This module defines Pydantic models for everything that crosses a component
boundary: the candle updates published by the stream ingestor, the candles
retained by the rule evaluator, the alerts it raises, and the configuration
and status snapshots exposed to external collaborators.

Models:
    - SubscriptionConfig: Effective (symbols, interval) subscription
    - ConnectionState: Lifecycle states of the stream connection
    - ConnectionStatus: Read-only snapshot of the ingestor
    - CandleUpdate: Normalized kline update (open or closed candle)
    - Candle: Immutable closed-candle record kept in evaluator buffers
    - AlertEvent: Percentage-move alert
    - WatchRule: Rule shape handed over by the rule-management collaborator
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.utils.time import to_utc_datetime


# ============================================
# Subscription & Connection
# ============================================

class SubscriptionConfig(BaseModel):
    """
    Effective subscription of the stream ingestor.

    Returned by every configuration call so that callers can see which
    symbols survived normalization.

    Example:
        >>> SubscriptionConfig(symbols=["btcusdt", "ethusdt"], interval="1m")
    """

    symbols: List[str] = Field(
        default_factory=list,
        description="Normalized symbols (lowercase, deduplicated, sorted)",
        examples=[["btcusdt", "ethusdt"]]
    )

    interval: str = Field(
        ...,
        description="Kline interval",
        examples=["1m", "5m", "1h"]
    )


class ConnectionState(str, Enum):
    """Lifecycle states of the stream connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"


class ConnectionStatus(BaseModel):
    """
    Snapshot of the stream ingestor state.

    Attributes:
        state: Current connection state
        symbols: Subscribed symbols
        interval: Subscribed interval
        stream_url: URL used for the current (or next) connection, None without symbols
        backoff_seconds: Delay applied to the next scheduled reconnect
        reconnect_pending: True while a reconnect is scheduled
        last_message_at: When the last wire message was received
        as_of: When the snapshot was taken
    """

    state: ConnectionState
    symbols: List[str]
    interval: str
    stream_url: Optional[str] = None
    backoff_seconds: float
    reconnect_pending: bool
    last_message_at: Optional[datetime] = None
    as_of: datetime


# ============================================
# Candles
# ============================================

class CandleUpdate(BaseModel):
    """
    Normalized kline update.

    Published by the stream ingestor for every kline message, whether the
    candle is still forming or already closed; consumers filter on
    ``is_closed`` as needed.

    Attributes:
        symbol: Trading pair in uppercase (e.g., "BTCUSDT")
        interval: Kline interval reported by the exchange (e.g., "1m")
        is_closed: True if the candle is finalized, False if still forming
        open: Opening price
        high: Highest price during the interval
        low: Lowest price during the interval
        close: Latest (or final) price
        volume: Base asset volume
        open_time: Candle open time (epoch milliseconds)
        close_time: Candle close time (epoch milliseconds)

    Example:
        >>> CandleUpdate(
        ...     symbol="BTCUSDT", interval="1m", is_closed=True,
        ...     open=50000.0, high=50200.0, low=49900.0, close=50100.0,
        ...     volume=100.5, open_time=1672531200000, close_time=1672531259999
        ... )
    """

    symbol: str = Field(..., min_length=1, description="Trading pair symbol in uppercase")
    interval: str = Field(..., description="Candlestick interval")
    is_closed: bool = Field(..., description="True if candle is finalized")

    # Prices can be 0.0 on illiquid pairs, never negative
    open: float = Field(..., ge=0)
    high: float = Field(..., ge=0)
    low: float = Field(..., ge=0)
    close: float = Field(..., ge=0)
    volume: float = Field(..., ge=0)

    open_time: int = Field(..., ge=0, description="Open time in epoch milliseconds")
    close_time: int = Field(..., ge=0, description="Close time in epoch milliseconds")

    @field_validator('symbol')
    @classmethod
    def validate_symbol(cls, v: str) -> str:
        """Ensure symbol is uppercase"""
        return v.upper()

    @property
    def close_datetime(self) -> datetime:
        return to_utc_datetime(self.close_time)


class Candle(BaseModel):
    """Closed candle retained in a rule evaluator buffer."""

    model_config = ConfigDict(frozen=True)

    close_time: int
    close: float


# ============================================
# Alerts & Rules
# ============================================

class AlertEvent(BaseModel):
    """
    Percentage-move alert raised by the rule evaluator.

    Attributes:
        symbol: Trading pair in uppercase
        interval: Kline interval the move was measured on
        direction: "up" for a rise, "down" for a drop
        pct_change: Signed percentage change over the window
        window_minutes: Configured look-back window
        threshold_pct: Threshold that was crossed
        close: Close price of the candle that triggered the alert
        close_time: Close time of that candle (epoch milliseconds)

    Example:
        >>> AlertEvent(
        ...     symbol="BTCUSDT", interval="1m", direction="up", pct_change=3.0,
        ...     window_minutes=5, threshold_pct=2.0, close=103.0,
        ...     close_time=1672531559999
        ... )
    """

    symbol: str
    interval: str
    direction: Literal["up", "down"]
    pct_change: float
    window_minutes: float
    threshold_pct: float
    close: float
    close_time: int

    @property
    def close_datetime(self) -> datetime:
        return to_utc_datetime(self.close_time)


class WatchRule(BaseModel):
    """
    Alert rule as stored by the external rule-management service.

    Only ``symbol`` and ``enabled`` matter to the stream subscription; the
    remaining fields document the shape rules are persisted with.
    """

    symbol: str = Field(..., examples=["btcusdt"])
    window_min: int = Field(default=5, ge=1)
    threshold_pct: float = Field(default=2.0)
    cooldown_sec: int = Field(default=120, ge=1)
    enabled: bool = Field(default=True)
