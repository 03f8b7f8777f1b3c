"""Turn an accepted source trade into a replica order, or a skip with a reason.

Sizing:
    copy_size = source.size * size_scale, capped by max_size_per_trade
    SELL: further capped by shares actually held (never oversell)

Gates:
    BUY  skipped above max_price_per_share or below min_order_value_usd
    SELL skipped when nothing is held; no price ceiling, no minimum value
"""

from collections.abc import Callable
from dataclasses import dataclass

from polycopy.core.types import OrderKind, ReplicaOrderSpec, Side, SourceTrade

EPS = 1e-9
MIN_PRICE = 0.001
MAX_PRICE = 0.999


@dataclass(frozen=True)
class GateDecision:
    accepted: bool
    spec: ReplicaOrderSpec | None = None
    code: str = ""  # short key for skip_reasons
    reason: str = ""

    @classmethod
    def accept(cls, spec: ReplicaOrderSpec) -> "GateDecision":
        return cls(accepted=True, spec=spec)

    @classmethod
    def skip(cls, code: str, reason: str) -> "GateDecision":
        return cls(accepted=False, code=code, reason=reason)


def worst_acceptable_price(side: Side, price: float, slippage: float) -> float:
    raw = price * (1 + slippage) if side == Side.BUY else price * (1 - slippage)
    return min(MAX_PRICE, max(MIN_PRICE, raw))


class RiskGate:
    """Deterministic sizing and risk checks for one subscription."""

    def __init__(
        self,
        held_shares: Callable[[str], float],
        size_scale: float,
        max_slippage: float,
        min_order_value_usd: float,
        max_price_per_share: float,
        order_kind: OrderKind = OrderKind.FOK,
        max_size_per_trade: float | None = None,
    ):
        self.held_shares = held_shares
        self.size_scale = size_scale
        self.max_slippage = max_slippage
        self.min_order_value_usd = min_order_value_usd
        self.max_price_per_share = max_price_per_share
        self.order_kind = order_kind
        self.max_size_per_trade = max_size_per_trade

    def evaluate(self, trade: SourceTrade) -> GateDecision:
        if trade.price <= 0:
            return GateDecision.skip("invalid_price", f"invalid price {trade.price}")

        size = trade.size * self.size_scale
        if self.max_size_per_trade is not None:
            size = min(size, self.max_size_per_trade)

        if trade.side == Side.BUY:
            if trade.price > self.max_price_per_share:
                return GateDecision.skip(
                    "price_above_max",
                    f"price {trade.price:.4f} above max {self.max_price_per_share:.4f}",
                )
            value = size * trade.price
            if value < self.min_order_value_usd:
                return GateDecision.skip(
                    "below_min_value",
                    f"value ${value:.2f} below min ${self.min_order_value_usd:.2f}",
                )
        else:
            held = self.held_shares(trade.asset)
            if held <= EPS:
                return GateDecision.skip("no_position", "no shares held to sell")
            size = min(size, held)

        if size <= EPS:
            return GateDecision.skip("zero_size", "copy size rounds to zero")

        return GateDecision.accept(
            ReplicaOrderSpec(
                asset=trade.asset,
                side=trade.side,
                size=size,
                worst_price=worst_acceptable_price(
                    trade.side, trade.price, self.max_slippage
                ),
                order_kind=self.order_kind,
                trigger_price=trade.price,
            )
        )
