"""
Test doubles for the aiohttp websocket layer.

FakeSession stands in for aiohttp.ClientSession and hands out FakeWebSocket
objects (or raises queued connection errors) in order.
"""

import asyncio
import json

import aiohttp


class MockWSMessage:
    """Mock aiohttp WebSocket message"""

    def __init__(self, msg_type, data=None):
        self.type = msg_type
        self.data = data


def text(payload) -> MockWSMessage:
    """Wrap a dict (JSON-encoded) or a raw string into a TEXT message"""
    data = payload if isinstance(payload, str) else json.dumps(payload)
    return MockWSMessage(aiohttp.WSMsgType.TEXT, data)


def kline_payload(
    symbol: str = "BTCUSDT",
    close: float = 100.0,
    minute: int = 0,
    closed: bool = True,
    interval: str = "1m",
) -> dict:
    """Binance combined-stream kline message for the given minute"""
    open_time = 1672531200000 + minute * 60_000
    return {
        "stream": f"{symbol.lower()}@kline_{interval}",
        "data": {
            "e": "kline",
            "E": open_time + 59_000,
            "s": symbol,
            "k": {
                "t": open_time,
                "T": open_time + 59_999,
                "s": symbol,
                "i": interval,
                "f": 100,
                "L": 200,
                "o": str(close),
                "c": str(close),
                "h": str(close),
                "l": str(close),
                "v": "10.5",
                "n": 100,
                "x": closed,
                "q": "1050.0",
                "V": "5.0",
                "Q": "500.0",
                "B": "0",
            },
        },
    }


class FakeWebSocket:
    """
    In-memory replacement for aiohttp.ClientWebSocketResponse.

    Yields the queued messages, then either stays open until closed (by us or
    via server_close()) or ends immediately like a remote close.
    """

    def __init__(self, messages=(), hold_open: bool = True, close_code: int = 1000):
        self.messages = list(messages)
        self.hold_open = hold_open
        self.closed = False
        self.close_code = None
        self.close_calls = []
        self._server_close_code = close_code
        self._released = asyncio.Event()

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for msg in self.messages:
            yield msg
        if self.hold_open:
            await self._released.wait()
        self.closed = True
        self.close_code = self._server_close_code

    def server_close(self) -> None:
        self._released.set()

    async def close(self, code: int = 1000, message: bytes = b""):
        self.close_calls.append((code, message))
        self.closed = True
        self.close_code = code
        self._released.set()
        return True

    def exception(self):
        return None


class FakeSession:
    """Hands out the given sockets/errors in order, then refuses connections"""

    def __init__(self, *sockets):
        self._sockets = list(sockets)
        self.urls = []
        self.closed = False

    async def ws_connect(self, url, **kwargs):
        self.urls.append(url)
        if not self._sockets:
            raise aiohttp.ClientConnectionError("connection refused")
        sock = self._sockets.pop(0)
        if isinstance(sock, BaseException):
            raise sock
        return sock

    async def close(self):
        self.closed = True


async def settle(rounds: int = 10) -> None:
    """Let pending tasks and callbacks run"""
    for _ in range(rounds):
        await asyncio.sleep(0)


class StallingSession(FakeSession):
    """Accepts the TCP connection but never completes the websocket upgrade"""

    async def ws_connect(self, url, **kwargs):
        self.urls.append(url)
        await asyncio.Event().wait()
