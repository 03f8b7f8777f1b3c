"""FIFO lot ledger for replica inventory.

Only fills of this engine's own replica orders enter the ledger. It bounds
SELL sizing and feeds the realized / unrealized numbers in the final report.

Example:
    ledger = PositionLedger()
    ledger.apply_buy("tok", size=10, cost=5.0)
    ledger.apply_buy("tok", size=10, cost=6.0)
    result = ledger.apply_sell("tok", size=15, price=0.70)
    result.realized_pnl  # 10.50 - 8.00 = 2.50
"""

import threading
from collections import deque
from dataclasses import dataclass, field

from polycopy.core.errors import LedgerInvariantViolation
from polycopy.core.types import PositionAggregate, PriceSource

EPS = 1e-9


@dataclass
class Lot:
    size: float
    cost: float
    tag: str | None = None  # e.g. "sub_min" for deep-dive bucketing


@dataclass
class Holding:
    """Per-asset FIFO queue with a denormalized share total."""

    asset: str
    lots: deque = field(default_factory=deque)
    total_shares: float = 0.0

    @property
    def total_cost(self) -> float:
        return sum(lot.cost for lot in self.lots)

    def shares_tagged(self, tag: str | None) -> tuple[float, float]:
        """(size, cost) of the lots carrying ``tag``."""
        size = cost = 0.0
        for lot in self.lots:
            if lot.tag == tag:
                size += lot.size
                cost += lot.cost
        return size, cost


@dataclass(frozen=True)
class LotFill:
    """Slice of one lot consumed by a sell."""

    tag: str | None
    size: float
    proceeds: float
    cost: float


@dataclass(frozen=True)
class SellResult:
    size_sold: float
    proceeds: float
    cost_removed: float
    fills: tuple[LotFill, ...] = ()

    @property
    def realized_pnl(self) -> float:
        return self.proceeds - self.cost_removed

    def for_tag(self, tag: str | None) -> tuple[float, float]:
        """(proceeds, cost_removed) from lots carrying ``tag``."""
        proceeds = sum(f.proceeds for f in self.fills if f.tag == tag)
        cost = sum(f.cost for f in self.fills if f.tag == tag)
        return proceeds, cost


def position_value(
    shares: float,
    aggregate: PositionAggregate | None = None,
    current_price: float | None = None,
) -> float | None:
    """Mark ``shares`` to market.

    A position aggregate with its own size/value wins, scaled to our share of
    it; otherwise shares times the current price. None when neither is known.
    """
    if aggregate is not None and aggregate.size > 0:
        return (shares / aggregate.size) * aggregate.current_value
    if current_price is None and aggregate is not None:
        current_price = aggregate.cur_price
    if current_price is None:
        return None
    return shares * current_price


class PositionLedger:
    """Thread-safe FIFO ledger keyed by asset.

    Mutations on one asset are serialized by that asset's lock. Callers that
    need read-decide-write atomicity (size a SELL, execute, apply) hold
    ``asset_lock(asset)`` across the whole sequence; the lock is reentrant.
    """

    def __init__(self):
        self._holdings: dict[str, Holding] = {}
        self._asset_locks: dict[str, threading.RLock] = {}
        self._lock = threading.Lock()
        self.realized_pnl = 0.0
        self.total_bought = 0.0
        self.total_sold = 0.0

    def asset_lock(self, asset: str) -> threading.RLock:
        with self._lock:
            lock = self._asset_locks.get(asset)
            if lock is None:
                lock = self._asset_locks[asset] = threading.RLock()
            return lock

    def held_shares(self, asset: str) -> float:
        holding = self._holdings.get(asset)
        return holding.total_shares if holding else 0.0

    def holding(self, asset: str) -> Holding | None:
        return self._holdings.get(asset)

    def open_assets(self) -> list[str]:
        return [a for a, h in self._holdings.items() if h.total_shares > EPS]

    def apply_buy(
        self, asset: str, size: float, cost: float, tag: str | None = None
    ) -> Lot:
        if size < 0 or cost < 0:
            raise LedgerInvariantViolation(
                f"negative lot for {asset}: size={size} cost={cost}"
            )

        lot = Lot(size=size, cost=cost, tag=tag)
        with self.asset_lock(asset):
            if size <= EPS:
                return lot
            with self._lock:
                holding = self._holdings.get(asset)
                if holding is None:
                    holding = self._holdings[asset] = Holding(asset=asset)
            holding.lots.append(lot)
            holding.total_shares += size
            self.total_bought += cost
        return lot

    def apply_sell(self, asset: str, size: float, price: float) -> SellResult:
        """Consume ``size`` shares from the front of the asset's queue."""
        if size < 0:
            raise LedgerInvariantViolation(f"negative sell for {asset}: {size}")

        with self.asset_lock(asset):
            holding = self._holdings.get(asset)
            held = holding.total_shares if holding else 0.0
            if size > held + EPS:
                raise LedgerInvariantViolation(
                    f"sell of {size:.6f} {asset} exceeds held {held:.6f}"
                )
            if holding is None or size <= EPS:
                return SellResult(size_sold=0.0, proceeds=0.0, cost_removed=0.0)

            remaining = min(size, held)
            proceeds = cost_removed = 0.0
            fills = []
            while remaining > EPS and holding.lots:
                lot = holding.lots[0]
                take = min(lot.size, remaining)
                cost_portion = lot.cost * (take / lot.size) if lot.size > 0 else 0.0

                lot.size -= take
                lot.cost -= cost_portion
                remaining -= take
                proceeds += take * price
                cost_removed += cost_portion
                fills.append(LotFill(lot.tag, take, take * price, cost_portion))

                if lot.size <= EPS:
                    holding.lots.popleft()

            sold = sum(f.size for f in fills)
            holding.total_shares = sum(lot.size for lot in holding.lots)
            if not holding.lots:
                holding.total_shares = 0.0

            result = SellResult(
                size_sold=sold,
                proceeds=proceeds,
                cost_removed=cost_removed,
                fills=tuple(fills),
            )
            self.realized_pnl += result.realized_pnl
            self.total_sold += proceeds
            return result

    def check_invariants(self):
        """Raise if any holding's total drifted from its lots."""
        for asset, holding in list(self._holdings.items()):
            lot_sum = sum(lot.size for lot in holding.lots)
            if abs(lot_sum - holding.total_shares) > 1e-6:
                raise LedgerInvariantViolation(
                    f"{asset}: total_shares {holding.total_shares} != lots {lot_sum}"
                )
            if holding.total_shares < -EPS or any(
                lot.size < -EPS or lot.cost < -EPS for lot in holding.lots
            ):
                raise LedgerInvariantViolation(f"{asset}: negative lot or total")

    def value_holding(self, asset: str, prices: PriceSource | None) -> float | None:
        shares = self.held_shares(asset)
        if shares <= EPS:
            return 0.0
        if prices is None:
            return None
        aggregate = prices.get_position_aggregate(asset)
        if aggregate is not None and aggregate.size > 0:
            return position_value(shares, aggregate=aggregate)
        return position_value(
            shares, aggregate=aggregate, current_price=prices.get_current_price(asset)
        )

    def unredeemed_value(self, prices: PriceSource | None) -> float:
        """Mark-to-market value of every open holding (reporting only)."""
        total = 0.0
        for asset in self.open_assets():
            value = self.value_holding(asset, prices)
            if value is not None:
                total += value
        return total
