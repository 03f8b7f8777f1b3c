"""Candidate filter: which discovered trades are worth replicating at all.

Predicates run in order and the first failure short-circuits:
1. Address allowlist (when one is configured)
2. Minimum source trade size (shares)
3. Smart-money only (trader must be in the registry)

A rejected trade never reaches the risk gate and is not counted as detected.
"""

import threading

from polycopy.core.types import SourceTrade
from polycopy.infra.logging_config import get_logger

logger = get_logger("classifier")


class SmartMoneyRegistry:
    """Externally supplied set of wallets classified as smart money."""

    def __init__(self, addresses=()):
        self._addresses = {a.lower() for a in addresses}
        self._lock = threading.Lock()

    def __contains__(self, address: str) -> bool:
        return self.is_smart_money(address)

    def __len__(self) -> int:
        return len(self._addresses)

    def is_smart_money(self, address: str) -> bool:
        with self._lock:
            return address.lower() in self._addresses

    def add(self, address: str):
        with self._lock:
            self._addresses.add(address.lower())

    def update(self, addresses):
        with self._lock:
            self._addresses.update(a.lower() for a in addresses)

    @classmethod
    def from_leaderboard(
        cls, data_api, period: str = "WEEK", limit: int = 50, min_pnl: float = 0.0
    ) -> "SmartMoneyRegistry":
        """Top leaderboard wallets with PnL above ``min_pnl``."""
        addresses = []
        for row in data_api.get_leaderboard(period=period, limit=limit):
            address = row.get("proxyWallet") or row.get("address")
            if not address:
                continue
            if float(row.get("pnl") or 0) <= min_pnl:
                continue
            addresses.append(address)
        logger.info("smart_money_loaded", period=period, wallets=len(addresses))
        return cls(addresses)


class TradeClassifier:
    def __init__(
        self,
        target_addresses=None,
        min_trade_size: float = 0.0,
        smart_money_only: bool = False,
        smart_money: SmartMoneyRegistry | None = None,
    ):
        self.targets = (
            {a.lower() for a in target_addresses} if target_addresses else None
        )
        self.min_trade_size = min_trade_size
        self.smart_money_only = smart_money_only
        self.smart_money = smart_money

        if smart_money_only and smart_money is None:
            raise ValueError("smart_money_only requires a SmartMoneyRegistry")

    def matches_address(self, trade: SourceTrade) -> bool:
        return self.targets is None or trade.trader_address.lower() in self.targets

    def accepts(self, trade: SourceTrade) -> tuple[bool, str]:
        """Returns (accepted, reason)."""
        if not self.matches_address(trade):
            return False, "not a target address"

        if self.min_trade_size and trade.size < self.min_trade_size:
            return False, f"size {trade.size:.2f} below min {self.min_trade_size:.2f}"

        if self.smart_money_only and not self.smart_money.is_smart_money(
            trade.trader_address
        ):
            return False, "not smart money"

        return True, "OK"
