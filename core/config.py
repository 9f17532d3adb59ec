"""
Configuration Management Module

This module handles loading, validating, and providing access to application configuration
from environment variables (.env file).

Uses Pydantic Settings for automatic validation and type conversion.

Key Features:
- Loads configuration from .env file
- Validates all required settings
- Provides type-safe access to configuration values
- Converts the comma-separated SYMBOLS string to a list
- Handles optional settings with sensible defaults

Usage:
    from core.config import settings

    # Access configuration values
    print(settings.binance_ws_base)
    print(settings.symbols_list)  # Returns a list of lowercase strings
"""

import re
from typing import List
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


VALID_INTERVALS = ["1m", "3m", "5m", "15m", "30m", "1h", "2h", "4h", "6h", "8h", "12h", "1d", "3d", "1w", "1M"]

SYMBOL_PATTERN = re.compile(r"^[a-z0-9]{5,15}$")


class Settings(BaseSettings):
    """
    Application Settings

    This class defines all configuration parameters for the application.
    Values are automatically loaded from environment variables or .env file.

    Attributes:
        binance_ws_base: Base URL of the Binance combined-stream websocket endpoint
        symbols: Comma-separated list of symbols subscribed at startup
        kline_interval: Candlestick interval shared by the ingestor and the evaluator
        rule_threshold_pct: Absolute percentage move that raises an alert
        rule_window_min: Look-back window of the percentage move, in minutes
        rule_cooldown_sec: Minimum seconds between two alerts for one symbol
        ws_inactivity_timeout: Seconds without messages before forcing a reconnect
        ws_initial_backoff: First reconnect delay in seconds
        ws_max_backoff: Upper bound of the reconnect delay in seconds
        ws_heartbeat: Websocket ping interval in seconds
        ws_connect_timeout: Socket connect timeout in seconds
        alert_queue_size: Queue size of the runtime alert consumer
        environment: Current environment (development, production)
        log_level: Logging level
    """

    # ============================================
    # Binance Stream Configuration
    # ============================================

    binance_ws_base: str = Field(
        default="wss://stream.binance.com:9443",
        description="Binance combined-stream websocket base URL"
    )

    symbols: str = Field(
        default="btcusdt,ethusdt",
        description="Comma-separated list of symbols to subscribe at startup"
    )

    kline_interval: str = Field(
        default="1m",
        description="Kline interval for the subscription and the rule evaluator"
    )

    # ============================================
    # Rule Evaluation
    # ============================================

    rule_threshold_pct: float = Field(
        default=2.0,
        description="Percentage change (absolute) that triggers an alert"
    )

    rule_window_min: int = Field(
        default=5,
        description="Window of the percentage change, in minutes"
    )

    rule_cooldown_sec: int = Field(
        default=120,
        description="Per-symbol cooldown between two alerts, in seconds"
    )

    # ============================================
    # Connection Resilience
    # ============================================

    ws_inactivity_timeout: float = Field(
        default=30.0,
        description="Seconds without any message before the connection is recycled"
    )

    ws_initial_backoff: float = Field(
        default=1.0,
        description="Initial reconnect delay (seconds)"
    )

    ws_max_backoff: float = Field(
        default=30.0,
        description="Maximum reconnect delay (seconds)"
    )

    ws_heartbeat: float = Field(
        default=20.0,
        description="Websocket ping interval (seconds)"
    )

    ws_connect_timeout: float = Field(
        default=10.0,
        description="Websocket connect timeout (seconds)"
    )

    # ============================================
    # Application Configuration
    # ============================================

    alert_queue_size: int = Field(
        default=1000,
        description="Maximum pending alerts held for the alert consumer"
    )

    environment: str = Field(
        default="development",
        description="Application environment (development, production)"
    )

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # ============================================
    # Pydantic Settings Configuration
    # ============================================

    model_config = SettingsConfigDict(
        # Look for .env file in the project root
        env_file=".env",
        # Ignore extra fields in .env that aren't defined here
        extra="ignore",
        # Case-insensitive environment variable matching
        case_sensitive=False
    )

    # ============================================
    # Custom Properties
    # ============================================

    @property
    def symbols_list(self) -> List[str]:
        """
        Convert comma-separated symbols string to a list.

        Returns:
            List of lowercase symbol strings (e.g., ["btcusdt", "ethusdt"])

        Example:
            >>> settings.symbols_list
            ['btcusdt', 'ethusdt']
        """
        return [s.strip().lower() for s in self.symbols.split(",") if s.strip()]


# ============================================
# Global Settings Instance
# ============================================

# Create a single instance of settings to be imported throughout the application
settings = Settings()


# ============================================
# Configuration Validation
# ============================================

def validate_configuration(config: Settings = None) -> None:
    """
    Validate critical configuration settings on application startup.

    Args:
        config: Settings to validate (defaults to the global instance)

    Raises:
        ValueError: If a setting is unusable

    Notes:
        Symbols that do not match the symbol pattern are only reported here;
        the ingestor drops them during normalization.
    """
    # Import logger here to avoid circular import
    # (logging.py imports config.py, so we can't import at module level)
    from core.logging import logger

    config = config or settings

    if config.kline_interval.strip() not in VALID_INTERVALS:
        raise ValueError(
            f"Invalid KLINE_INTERVAL: '{config.kline_interval}'. "
            f"Must be one of: {', '.join(VALID_INTERVALS)}"
        )

    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if config.log_level.upper() not in valid_log_levels:
        raise ValueError(
            f"Invalid LOG_LEVEL: '{config.log_level}'. "
            f"Must be one of: {', '.join(valid_log_levels)}"
        )

    if config.rule_window_min <= 0:
        raise ValueError(f"RULE_WINDOW_MIN must be positive, got {config.rule_window_min}")

    if config.rule_cooldown_sec <= 0:
        raise ValueError(f"RULE_COOLDOWN_SEC must be positive, got {config.rule_cooldown_sec}")

    if config.ws_inactivity_timeout <= 0:
        raise ValueError(f"WS_INACTIVITY_TIMEOUT must be positive, got {config.ws_inactivity_timeout}")

    if not (0 < config.ws_initial_backoff <= config.ws_max_backoff):
        raise ValueError(
            f"Backoff bounds are inconsistent: initial={config.ws_initial_backoff}, "
            f"max={config.ws_max_backoff}"
        )

    invalid = [s for s in config.symbols_list if not SYMBOL_PATTERN.match(s)]
    if invalid:
        logger.warning(f"Ignoring invalid symbols in SYMBOLS: {', '.join(invalid)}")

    # Log successful validation
    logger.info("Configuration validated successfully")
    logger.info(f"Tracking symbols: {', '.join(config.symbols_list) or '(none)'}")
    logger.info(f"Kline interval: {config.kline_interval}")
    logger.info(f"Binance stream: {config.binance_ws_base}")
    logger.info(
        f"Rule: threshold={config.rule_threshold_pct}% "
        f"window={config.rule_window_min}min cooldown={config.rule_cooldown_sec}s"
    )
    logger.info(f"Log level: {config.log_level.upper()}")
