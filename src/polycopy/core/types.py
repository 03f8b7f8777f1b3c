"""Shared data model and collaborator protocols for the copy-trading pipeline."""

from dataclasses import dataclass
from enum import Enum
from typing import Protocol, runtime_checkable


class Side(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderKind(str, Enum):
    FOK = "FOK"  # fill-or-kill
    FAK = "FAK"  # fill-and-kill
    GTC = "GTC"  # resting limit order

    @property
    def is_market(self) -> bool:
        return self in (OrderKind.FOK, OrderKind.FAK)


class OrderStatus(str, Enum):
    NEW = "NEW"
    PARTIALLY_FILLED = "PARTIALLY_FILLED"
    FILLED = "FILLED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        OrderStatus.FILLED,
        OrderStatus.CANCELLED,
        OrderStatus.EXPIRED,
        OrderStatus.REJECTED,
    }
)


def normalize_timestamp(value) -> int:
    """Data API timestamps are seconds, but some endpoints return milliseconds."""
    ts = int(float(value or 0))
    if ts > 1_000_000_000_000:
        ts //= 1000
    return ts


@dataclass(frozen=True)
class SourceTrade:
    """One observed trade by a watched wallet."""

    trader_address: str
    tx_hash: str
    side: Side
    asset: str  # CLOB token id
    size: float  # shares
    price: float
    timestamp: int  # unix seconds
    market_slug: str | None = None
    outcome: str = ""
    title: str = ""
    trader_name: str = ""

    @property
    def value(self) -> float:
        return self.size * self.price

    @property
    def dedup_key(self) -> str:
        wallet = self.trader_address.lower()
        if self.tx_hash:
            return f"{wallet}:{self.tx_hash.lower()}"
        # No hash from the feed: fall back to the fill's own identity
        return f"{wallet}:{self.timestamp}:{self.asset}:{self.side.value}:{self.size}"

    @classmethod
    def from_activity(cls, item: dict, wallet: str = "") -> "SourceTrade | None":
        """Build from a Data API ``/activity`` or ``/trades`` row.

        Returns None for non-trade activity (redeems, rewards, merges) and for
        rows missing an asset or a usable side.
        """
        activity_type = item.get("type")
        if activity_type is not None and activity_type != "TRADE":
            return None

        try:
            side = Side(str(item.get("side", "")).upper())
        except ValueError:
            return None

        asset = str(item.get("asset") or "")
        if not asset:
            return None

        return cls(
            trader_address=item.get("proxyWallet") or wallet,
            tx_hash=item.get("transactionHash") or "",
            side=side,
            asset=asset,
            size=float(item.get("size") or 0),
            price=float(item.get("price") or 0),
            timestamp=normalize_timestamp(item.get("timestamp")),
            market_slug=item.get("slug") or None,
            outcome=item.get("outcome") or "",
            title=item.get("title") or "",
            trader_name=item.get("pseudonym") or item.get("name") or "",
        )


@dataclass(frozen=True)
class ReplicaOrderSpec:
    """Order the risk gate derived from a source trade; lives for one attempt."""

    asset: str
    side: Side
    size: float
    worst_price: float
    order_kind: OrderKind
    trigger_price: float  # source trade price the replica was sized against

    @property
    def notional(self) -> float:
        return self.size * self.trigger_price


@dataclass
class SubmitResult:
    success: bool
    order_id: str | None = None
    error_message: str | None = None
    sync_fill_size: float | None = None  # set when the order matched on submit
    sync_fill_price: float | None = None


@dataclass
class OrderStatusInfo:
    status: OrderStatus
    filled_size: float = 0.0
    original_size: float = 0.0
    avg_price: float | None = None


@dataclass
class CopyTradeResult:
    """Outcome of replicating one source trade.

    ``attempted=False`` is a risk-gate skip, never a failure.
    """

    attempted: bool
    success: bool
    order_id: str | None = None
    copy_size_used: float | None = None
    copy_value_used: float | None = None
    error_message: str | None = None
    status: OrderStatus | None = None

    @property
    def avg_price(self) -> float | None:
        if not self.copy_size_used or self.copy_value_used is None:
            return None
        return self.copy_value_used / self.copy_size_used

    @property
    def detail(self) -> str:
        if not self.attempted:
            return f"skipped: {self.error_message or 'rejected'}"
        if self.success:
            text = f"filled {self.copy_size_used or 0:.4f} (${self.copy_value_used or 0:.2f})"
            if self.status == OrderStatus.PARTIALLY_FILLED:
                text += " partial"
            if self.order_id:
                text += f" order={self.order_id}"
            return text
        return f"failed: {self.error_message or 'unknown error'}"


@dataclass(frozen=True)
class PositionAggregate:
    """Position-level totals reported by the Data API for one asset."""

    size: float
    current_value: float
    cur_price: float | None = None
    slug: str = ""
    redeemable: bool | None = None

    @classmethod
    def from_position(cls, item: dict) -> "PositionAggregate":
        cur_price = item.get("curPrice")
        return cls(
            size=float(item.get("size") or 0),
            current_value=float(item.get("currentValue") or 0),
            cur_price=float(cur_price) if cur_price is not None else None,
            slug=item.get("slug") or "",
            redeemable=item.get("redeemable"),
        )


# Collaborator boundaries


@runtime_checkable
class TradeFeed(Protocol):
    def fetch_activity(
        self,
        wallet: str,
        since: int,
        limit: int = 100,
        activity_type: str = "TRADE",
        sort: str = "ASC",
    ) -> list[SourceTrade]: ...


@runtime_checkable
class OrderGateway(Protocol):
    def submit_order(self, spec: ReplicaOrderSpec) -> SubmitResult: ...

    def get_order_status(self, order_id: str) -> OrderStatusInfo: ...

    def cancel_order(self, order_id: str) -> None: ...


@runtime_checkable
class PriceSource(Protocol):
    def get_current_price(self, asset: str) -> float | None: ...

    def get_position_aggregate(self, asset: str) -> PositionAggregate | None: ...
