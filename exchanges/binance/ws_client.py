"""
Binance Kline Stream Ingestor

This module owns the single websocket connection to the Binance combined
stream endpoint and turns its kline messages into normalized CandleUpdate
events on the event bus. It handles:
- A mutable (symbols, interval) subscription with a live configuration API
- Automatic reconnection with exponential backoff (1s → 2s → ... → 30s)
- An inactivity watchdog that recycles silent connections
- Message parsing and validation
- Graceful, deterministic shutdown

Stream URL:
    <base>/stream?streams=btcusdt@kline_1m/ethusdt@kline_1m

WebSocket Documentation:
    https://binance-docs.github.io/apidocs/spot/en/#kline-candlestick-streams

Usage:
    async with BinanceKlineIngestor(bus, symbols=["btcusdt"], interval="1m") as ingestor:
        ingestor.add_symbols(["ethusdt"])
        ...
"""

import asyncio
import json
import time
from typing import Any, Iterable, List, Optional, Set

import aiohttp

from core.config import SYMBOL_PATTERN
from core.logging import get_logger, log_websocket_event
from core.schemas import CandleUpdate, ConnectionState, ConnectionStatus, SubscriptionConfig
from core.utils.time import current_utc_datetime, to_utc_datetime
from core.utils.timers import Timer
from services.event_bus import EventBus, KLINE_TOPIC, kline_topic


EXCHANGE = "binance"


# ============================================
# Pure Helpers
# ============================================

def normalize_symbols(symbols: Iterable[str]) -> List[str]:
    """
    Normalize a list of symbols for subscription.

    Strips whitespace, lowercases, silently drops anything that does not match
    ``^[a-z0-9]{5,15}$``, removes duplicates and sorts the result.

    Example:
        >>> normalize_symbols([" ETHUSDT", "btcusdt", "btc-usdt", "ethusdt"])
        ['btcusdt', 'ethusdt']
    """
    cleaned = {str(s).strip().lower() for s in symbols}
    return sorted(s for s in cleaned if SYMBOL_PATTERN.match(s))


def build_stream_url(base_url: str, symbols: Iterable[str], interval: str) -> str:
    """
    Build the combined-stream URL for a set of symbols.

    Example:
        >>> build_stream_url("wss://stream.binance.com:9443", ["btcusdt", "ethusdt"], "1m")
        'wss://stream.binance.com:9443/stream?streams=btcusdt@kline_1m/ethusdt@kline_1m'
    """
    streams = "/".join(f"{s}@kline_{interval}" for s in symbols)
    return f"{base_url.rstrip('/')}/stream?streams={streams}"


def parse_kline_message(raw: Any) -> Optional[CandleUpdate]:
    """
    Parse a raw combined-stream message into a CandleUpdate.

    Args:
        raw: Message text (str/bytes) or an already decoded dict

    Returns:
        CandleUpdate for kline messages, None for any other event type

    Raises:
        ValueError: If the message is not valid JSON or the kline payload is
            malformed (pydantic's ValidationError is a ValueError)
        KeyError: If a required kline field is missing
        TypeError: If a field has an unusable type

    Message Format:
        {
            "stream": "btcusdt@kline_1m",
            "data": {
                "e": "kline", "E": 1672531200000, "s": "BTCUSDT",
                "k": {"t": ..., "T": ..., "s": "BTCUSDT", "i": "1m",
                      "o": "...", "c": "...", "h": "...", "l": "...",
                      "v": "...", "x": false, ...}
            }
        }
    """
    msg = json.loads(raw) if isinstance(raw, (str, bytes, bytearray)) else raw
    if not isinstance(msg, dict):
        raise ValueError(f"Expected a JSON object, got {type(msg).__name__}")

    data = msg.get("data")
    if not isinstance(data, dict) or data.get("e") != "kline":
        return None

    k = data["k"]
    if not isinstance(k, dict):
        raise TypeError("Kline payload 'k' is not an object")
    if not isinstance(k["x"], bool):
        raise TypeError(f"Kline closed flag must be boolean, got {k['x']!r}")

    return CandleUpdate(
        symbol=k.get("s") or data["s"],
        interval=k["i"],
        is_closed=k["x"],
        open=float(k["o"]),
        high=float(k["h"]),
        low=float(k["l"]),
        close=float(k["c"]),
        volume=float(k["v"]),
        open_time=int(k["t"]),
        close_time=int(k["T"]),
    )


# ============================================
# Ingestor
# ============================================

class BinanceKlineIngestor:
    """
    Single-connection kline ingestor for Binance.

    All state transitions run as plain callbacks on the event loop (connection
    events from the reader task, timer callbacks, configuration calls), so
    symbols, backoff and timers are never mutated concurrently.

    Attributes:
        DEFAULT_BASE_URL: Binance combined-stream websocket base URL
        bus: EventBus receiving CandleUpdate events
        base_url: Websocket base URL
        inactivity_timeout: Seconds without messages before reconnecting
        initial_backoff: First reconnect delay (seconds)
        max_backoff: Reconnect delay cap (seconds)
        backoff: Delay applied to the next scheduled reconnect
        state: Current ConnectionState
        last_message_at: Epoch seconds of the last received message

    Example:
        >>> ingestor = BinanceKlineIngestor(bus, symbols=["BTCUSDT"], interval="1m")
        >>> await ingestor.start()
        >>> ingestor.add_symbols(["ethusdt"])
        SubscriptionConfig(symbols=['btcusdt', 'ethusdt'], interval='1m')
        >>> await ingestor.stop()

    Notes:
        - Invalid symbols are dropped silently during normalization
        - Reconfiguration reconnects immediately with the backoff reset
        - Every kline message is published, open or closed
    """

    DEFAULT_BASE_URL = "wss://stream.binance.com:9443"

    def __init__(
        self,
        bus: EventBus,
        symbols: Optional[Iterable[str]] = None,
        interval: str = "1m",
        base_url: str = DEFAULT_BASE_URL,
        inactivity_timeout: float = 30.0,
        initial_backoff: float = 1.0,
        max_backoff: float = 30.0,
        heartbeat: Optional[float] = 20.0,
        connect_timeout: float = 10.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        """
        Initialize the ingestor. No connection is opened until start().

        Args:
            bus: EventBus to publish CandleUpdate events on
            symbols: Initial symbols (normalized, invalid ones dropped)
            interval: Kline interval (e.g., "1m", "5m", "1h")
            base_url: Websocket base URL
            inactivity_timeout: Watchdog timeout in seconds (default: 30)
            initial_backoff: First reconnect delay in seconds (default: 1)
            max_backoff: Max reconnect delay in seconds (default: 30)
            heartbeat: Websocket ping interval, None disables pings
            connect_timeout: Limit for the TCP connect and the websocket handshake (seconds)
            session: Externally owned aiohttp session (not closed by stop())
        """
        self.bus = bus
        self.base_url = base_url
        self.inactivity_timeout = inactivity_timeout
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff
        self.heartbeat = heartbeat
        self.connect_timeout = connect_timeout

        self._symbols: List[str] = normalize_symbols(symbols or [])
        self._interval = interval.strip()

        # Connection state
        self.session = session
        self._owns_session = session is None
        self.ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self.state = ConnectionState.DISCONNECTED
        self.backoff = initial_backoff
        self.last_message_at: Optional[float] = None
        self._is_running = False

        # Each connection attempt gets a generation; callbacks from an older
        # generation are ignored
        self._generation = 0
        self._reader: Optional[asyncio.Task] = None
        self._retired: Set[asyncio.Task] = set()

        self._reconnect_timer = Timer("reconnect")
        self._inactivity_timer = Timer("inactivity")

        self.logger = get_logger(__name__)

    # ============================================
    # Context Manager for Lifecycle
    # ============================================

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> None:
        """
        Create the HTTP session (unless injected) and open the connection.

        With no symbols configured the ingestor stays disconnected until a
        configuration call adds some.
        """
        if self._is_running:
            return
        if self.session is None:
            self.session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=None, sock_connect=self.connect_timeout)
            )
            self._owns_session = True
        self._is_running = True
        self.logger.info(
            f"Starting kline ingestor ({len(self._symbols)} symbols / {self._interval})"
        )
        self._connect()

    async def stop(self) -> None:
        """
        Tear down the connection, cancel every timer and close the session.

        Notes:
            - Safe to call multiple times
            - Waits for the reader task and the graceful close to finish
        """
        self._is_running = False
        self._reconnect_timer.cancel()
        self._cleanup("shutdown")
        self.state = ConnectionState.CLOSED

        if self._retired:
            await asyncio.gather(*self._retired, return_exceptions=True)

        if self._owns_session and self.session is not None and not self.session.closed:
            await self.session.close()
            self.session = None
        self.logger.info("Kline ingestor stopped")

    # ============================================
    # Configuration API
    # ============================================

    def get_symbols(self) -> List[str]:
        return list(self._symbols)

    def get_interval(self) -> str:
        return self._interval

    @property
    def stream_url(self) -> Optional[str]:
        if not self._symbols:
            return None
        return build_stream_url(self.base_url, self._symbols, self._interval)

    def set_config(
        self,
        symbols: Optional[Iterable[str]] = None,
        interval: Optional[str] = None,
    ) -> SubscriptionConfig:
        """
        Replace the subscription.

        Args:
            symbols: New symbol set (None keeps the current one, [] clears it)
            interval: New interval (None or blank keeps the current one)

        Returns:
            SubscriptionConfig: The effective configuration after normalization

        Notes:
            Only an actual change of the normalized config reconnects. The
            reconnect happens immediately and resets the backoff.
        """
        next_symbols = normalize_symbols(symbols) if symbols is not None else self._symbols
        next_interval = interval.strip() if interval and interval.strip() else self._interval

        changed = next_symbols != self._symbols or next_interval != self._interval

        self._symbols = next_symbols
        self._interval = next_interval

        if changed:
            self.logger.info(
                f"Subscription changed: {len(next_symbols)} symbols / {next_interval}"
            )
            if self._is_running:
                self._reconnect_now()

        return self._config()

    def add_symbols(self, symbols: Iterable[str]) -> SubscriptionConfig:
        """Subscribe to additional symbols on top of the current ones."""
        return self.set_config(symbols=self._symbols + normalize_symbols(symbols))

    def remove_symbol(self, symbol: str) -> SubscriptionConfig:
        """Unsubscribe one symbol (case-insensitive)."""
        target = symbol.strip().lower()
        return self.set_config(symbols=[s for s in self._symbols if s != target])

    def status(self) -> ConnectionStatus:
        return ConnectionStatus(
            state=self.state,
            symbols=self.get_symbols(),
            interval=self._interval,
            stream_url=self.stream_url,
            backoff_seconds=self.backoff,
            reconnect_pending=self._reconnect_timer.active,
            last_message_at=to_utc_datetime(self.last_message_at) if self.last_message_at else None,
            as_of=current_utc_datetime(),
        )

    def _config(self) -> SubscriptionConfig:
        return SubscriptionConfig(symbols=self.get_symbols(), interval=self._interval)

    # ============================================
    # Connection Management
    # ============================================

    def _connect(self) -> None:
        """
        Start a connection attempt for the current subscription.

        Notes:
            - Stays DISCONNECTED (with a warning) when no symbols are configured
            - The websocket itself is opened by the reader task
        """
        if not self._symbols:
            self.state = ConnectionState.DISCONNECTED
            self.logger.warning("No symbols to subscribe; websocket will not be opened")
            return

        url = self.stream_url
        self.state = ConnectionState.CONNECTING
        self.logger.info(f"Connecting to {url}")

        self._generation += 1
        self._reader = asyncio.create_task(
            self._run_connection(self._generation, url),
            name=f"kline_ingestor_{self._generation}",
        )

    async def _run_connection(self, generation: int, url: str) -> None:
        """
        Open the websocket and feed its messages into the callbacks.

        Message Types:
            - WSMsgType.TEXT: Kline JSON (parsed and published)
            - WSMsgType.ERROR: Error (triggers reconnect)
            - CLOSE/CLOSED: End of iteration (triggers reconnect)
        """
        try:
            # sock_connect only bounds TCP; the upgrade handshake needs its own limit
            ws = await asyncio.wait_for(
                self.session.ws_connect(url, heartbeat=self.heartbeat),
                timeout=self.connect_timeout,
            )
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self._on_error(generation, e)
            return

        if generation != self._generation:
            # Superseded while the handshake was in flight
            await ws.close()
            return

        self.ws = ws
        self._on_open(generation)

        try:
            async for msg in ws:
                if generation != self._generation:
                    return
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._on_message(generation, msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    self._on_error(generation, ws.exception() or msg.data)
                    return
                else:
                    self.logger.debug(f"Ignoring websocket message type: {msg.type}")
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            self._on_error(generation, e)
            return

        self._on_close(generation, ws.close_code)

    # ============================================
    # Connection Callbacks
    # ============================================

    def _on_open(self, generation: int) -> None:
        if generation != self._generation:
            return
        self.state = ConnectionState.OPEN
        self.backoff = self.initial_backoff
        self._reconnect_timer.cancel()
        self._arm_inactivity_watch()
        log_websocket_event(EXCHANGE, "connected", f"{len(self._symbols)} symbols / {self._interval}")

    def _on_message(self, generation: int, raw: Any) -> None:
        if generation != self._generation:
            return
        self.last_message_at = time.time()
        self._arm_inactivity_watch()

        try:
            update = parse_kline_message(raw)
        except (ValueError, KeyError, TypeError) as e:
            preview = raw[:100] if isinstance(raw, (str, bytes)) else raw
            self.logger.warning(f"Failed to parse websocket message: {e} | {preview!r}")
            return

        if update is None:
            return

        self.bus.publish(kline_topic(self._interval), update)
        self.bus.publish(KLINE_TOPIC, update)
        if update.is_closed:
            self.logger.debug(
                f"[{update.symbol}] {self._interval} close={update.close} vol={update.volume}"
            )

    def _on_error(self, generation: int, error: Any) -> None:
        if generation != self._generation:
            return
        log_websocket_event(EXCHANGE, "error", details=str(error))
        self._schedule_reconnect()

    def _on_close(self, generation: int, code: Optional[int]) -> None:
        if generation != self._generation:
            return
        log_websocket_event(EXCHANGE, "closed", details=f"code={code}")
        self._schedule_reconnect()

    # ============================================
    # Resilience
    # ============================================

    def _schedule_reconnect(self) -> None:
        """
        Schedule a single reconnect after the current backoff.

        A second call while one is pending is a no-op.
        """
        self._inactivity_timer.cancel()
        if self._reconnect_timer.active or not self._is_running:
            return
        self.state = ConnectionState.RECONNECTING
        self._reconnect_timer.arm(self.backoff, self._on_reconnect_timer)

    def _on_reconnect_timer(self) -> None:
        self._cleanup("reconnect")
        self.backoff = min(self.backoff * 2, self.max_backoff)
        log_websocket_event(EXCHANGE, "reconnecting", details=f"next backoff {self.backoff:.0f}s")
        self._connect()

    def _reconnect_now(self) -> None:
        # Reconfiguration is not penalized by accumulated backoff
        self._reconnect_timer.cancel()
        self._cleanup("reconfigure")
        self.backoff = self.initial_backoff
        self._connect()

    def _arm_inactivity_watch(self) -> None:
        self._inactivity_timer.arm(self.inactivity_timeout, self._on_inactivity)

    def _on_inactivity(self) -> None:
        self._inactivity_timer.cancel()
        if self.last_message_at is None:
            silence = "since open"
        else:
            silence = f"for {time.time() - self.last_message_at:.1f}s"
        log_websocket_event(EXCHANGE, "stale", details=f"no messages {silence}, reconnecting")
        self._schedule_reconnect()

    def _cleanup(self, reason: str) -> None:
        """
        Release the current connection.

        Cancels the inactivity watchdog, detaches the reader, closes the
        websocket gracefully and drops the handle. Used identically for
        shutdown, scheduled reconnects and reconfiguration.
        """
        self._inactivity_timer.cancel()
        # Bumping the generation turns any late callback into a no-op
        self._generation += 1

        if self._reader is not None:
            if not self._reader.done():
                self._reader.cancel()
            self._retire(self._reader)
            self._reader = None

        if self.ws is not None:
            if not self.ws.closed:
                self._retire(asyncio.ensure_future(
                    self.ws.close(code=aiohttp.WSCloseCode.OK, message=reason.encode())
                ))
            self.ws = None
            self.logger.debug(f"Websocket released ({reason})")

    def _retire(self, task: "asyncio.Future") -> None:
        self._retired.add(task)
        task.add_done_callback(self._retired.discard)


# ============================================
# Factory
# ============================================

def create_kline_ingestor(
    bus: Optional[EventBus] = None,
    session: Optional[aiohttp.ClientSession] = None,
) -> BinanceKlineIngestor:
    """
    Create an ingestor configured from application settings.

    Args:
        bus: EventBus to publish on (defaults to the application bus)
        session: Optional externally owned aiohttp session

    Returns:
        BinanceKlineIngestor (not started)
    """
    from core.config import settings
    from services.event_bus import bus as default_bus

    return BinanceKlineIngestor(
        bus or default_bus,
        symbols=settings.symbols_list,
        interval=settings.kline_interval,
        base_url=settings.binance_ws_base,
        inactivity_timeout=settings.ws_inactivity_timeout,
        initial_backoff=settings.ws_initial_backoff,
        max_backoff=settings.ws_max_backoff,
        heartbeat=settings.ws_heartbeat,
        connect_timeout=settings.ws_connect_timeout,
        session=session,
    )
