"""
Binance Exchange Connector

Streams Binance spot klines over the combined-stream websocket endpoint and
publishes them as normalized CandleUpdate events.

WebSocket:
    - wss://stream.binance.com:9443/stream?streams=<symbol>@kline_<interval>/...
"""

from .ws_client import (
    BinanceKlineIngestor,
    build_stream_url,
    create_kline_ingestor,
    normalize_symbols,
    parse_kline_message,
)

__all__ = [
    "BinanceKlineIngestor",
    "build_stream_url",
    "create_kline_ingestor",
    "normalize_symbols",
    "parse_kline_message",
]
