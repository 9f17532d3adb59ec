"""
Unified Logging Configuration

This module sets up a centralized logging system for the entire application.
All modules should import and use the logger from this module instead of
using print() statements.

Usage:
    from core.logging import logger

    logger.debug("Detailed debugging information")
    logger.info("General informational messages")
    logger.warning("Warning messages for potentially harmful situations")
    logger.error("Error messages for serious problems")

Log Levels (from most to least verbose):
    DEBUG    - Detailed diagnostic information (e.g., "[BTCUSDT] 1m close=...")
    INFO     - General informational messages (e.g., "Connected to Binance")
    WARNING  - Recoverable problems (e.g., "No messages for 30s, reconnecting")
    ERROR    - Errors that don't crash the app (e.g., "Event handler failed")
    CRITICAL - Severe errors that may crash

Configuration:
    Log level is controlled by the LOG_LEVEL setting in .env file.
"""

import logging
import sys
from typing import Optional


def setup_logging(
    log_level: str = "INFO",
    log_format: Optional[str] = None,
    include_timestamp: bool = True,
    include_module: bool = True
) -> logging.Logger:
    """
    Configure and return the application logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Custom log format string (uses default if None)
        include_timestamp: Include timestamp in log messages
        include_module: Include module name in log messages

    Returns:
        logging.Logger: Configured logger instance

    Example:
        >>> logger = setup_logging(log_level="DEBUG")
        >>> logger.info("Application started")
        2024-01-01 12:00:00 [INFO] klinewatch: Application started
    """
    if log_format is None:
        format_parts = []

        if include_timestamp:
            format_parts.append("%(asctime)s")

        format_parts.append("[%(levelname)s]")

        if include_module:
            format_parts.append("%(name)s")

        format_parts.append("%(message)s")

        log_format = " ".join(format_parts)

    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format=log_format,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True  # Override any existing configuration
    )

    logger = logging.getLogger("klinewatch")
    logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    return logger


# ============================================
# Initialize Logger with Settings
# ============================================

# Try to load log level from settings, fallback to INFO
try:
    from core.config import settings
    log_level = settings.log_level if hasattr(settings, 'log_level') else "INFO"
except ImportError:
    # If settings not available yet (during initial import), use INFO
    log_level = "INFO"

# Create the global logger instance
logger = setup_logging(log_level=log_level)


# ============================================
# Convenience Functions
# ============================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a logger for a specific module or component.

    Args:
        name: Name for the logger (typically __name__)

    Returns:
        logging.Logger: Logger instance for the specified name

    Example:
        from core.logging import get_logger
        logger = get_logger(__name__)  # Creates "klinewatch.exchanges.binance.ws_client"
    """
    return logging.getLogger(f"klinewatch.{name}")


def set_log_level(level: str) -> None:
    """
    Change the log level at runtime.

    Args:
        level: New log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    logging.getLogger().setLevel(getattr(logging, level.upper(), logging.INFO))


# ============================================
# Log Helper Functions
# ============================================

def log_websocket_event(exchange: str, event: str, stream: str = None, details: str = None) -> None:
    """
    Log a WebSocket lifecycle event with consistent formatting.

    Args:
        exchange: Exchange name
        event: Event type (e.g., "connected", "closed", "error", "reconnecting")
        stream: Stream description (optional)
        details: Additional details (optional)

    Example:
        >>> log_websocket_event("binance", "connected", "2 symbols @ 1m")
        [INFO] WebSocket: binance connected | Stream: 2 symbols @ 1m

        >>> log_websocket_event("binance", "error", details="Connection reset")
        [WARNING] WebSocket: binance error | Connection reset
    """
    stream_str = f" | Stream: {stream}" if stream else ""
    details_str = f" | {details}" if details else ""

    # Connection problems are recovered automatically, so they stay below ERROR
    level = logging.WARNING if event in ("error", "closed", "stale") else logging.INFO
    logger.log(level, f"WebSocket: {exchange} {event}{stream_str}{details_str}")


logger.debug("Logging system initialized")
