"""
Market Subscription Facade

The only entry point external collaborators (HTTP layer, rule management)
use to inspect or change what the stream ingestor subscribes to.
"""

from typing import Iterable, List, Optional

from core.logging import get_logger
from core.schemas import ConnectionStatus, SubscriptionConfig, WatchRule
from exchanges.binance.ws_client import BinanceKlineIngestor


class MarketConfigService:
    """
    Thin facade over BinanceKlineIngestor's configuration API.

    Example:
        >>> service = MarketConfigService(ingestor)
        >>> service.add_symbols(["SOLUSDT"])
        SubscriptionConfig(symbols=['btcusdt', 'ethusdt', 'solusdt'], interval='1m')
    """

    def __init__(self, ingestor: BinanceKlineIngestor) -> None:
        self.ingestor = ingestor
        self._logger = get_logger(__name__)

    def status(self) -> ConnectionStatus:
        return self.ingestor.status()

    def set_symbols(self, symbols: Iterable[str], interval: Optional[str] = None) -> SubscriptionConfig:
        return self.ingestor.set_config(symbols=list(symbols), interval=interval)

    def add_symbols(self, symbols: Iterable[str]) -> SubscriptionConfig:
        return self.ingestor.add_symbols(list(symbols))

    def remove_symbol(self, symbol: str) -> SubscriptionConfig:
        return self.ingestor.remove_symbol(symbol)

    def sync_rules(self, rules: Iterable[WatchRule]) -> List[str]:
        """
        Subscribe to exactly the symbols referenced by enabled rules.

        Called by the rule-management side after every create, update or
        delete. The current interval is kept.

        Returns:
            The effective symbol list after normalization
        """
        wanted = {rule.symbol.strip().lower() for rule in rules if rule.enabled}
        config = self.ingestor.set_config(symbols=sorted(wanted))
        self._logger.info(f"Rule symbols synced: {', '.join(config.symbols) or '(none)'}")
        return config.symbols
