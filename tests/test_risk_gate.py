import pytest
from polycopy.core.types import OrderKind, Side
from polycopy.strategies.risk_gate import RiskGate, worst_acceptable_price


def make_gate(held=0.0, **overrides) -> RiskGate:
    params = dict(
        held_shares=lambda asset: held,
        size_scale=0.5,
        max_slippage=0.05,
        min_order_value_usd=1.0,
        max_price_per_share=0.96,
        order_kind=OrderKind.FOK,
        max_size_per_trade=None,
    )
    params.update(overrides)
    return RiskGate(**params)


# ── BUY ──────────────────────────────────────────────────────────────────────


def test_buy_is_scaled_with_slippage_bound(make_trade) -> None:
    decision = make_gate().evaluate(make_trade(size=100, price=0.40))

    assert decision.accepted
    spec = decision.spec
    assert spec.size == pytest.approx(50)
    assert spec.notional == pytest.approx(20)
    assert spec.worst_price == pytest.approx(0.42)
    assert spec.side == Side.BUY
    assert spec.order_kind == OrderKind.FOK
    assert spec.trigger_price == 0.40


def test_buy_clamped_by_max_size(make_trade) -> None:
    decision = make_gate(max_size_per_trade=10).evaluate(make_trade(size=100))
    assert decision.spec.size == 10


def test_buy_above_max_price_skipped(make_trade) -> None:
    decision = make_gate().evaluate(make_trade(price=0.97))
    assert not decision.accepted
    assert decision.code == "price_above_max"


def test_buy_below_min_value_skipped(make_trade) -> None:
    # 3 shares * 0.5 scale * 0.40 = $0.60
    decision = make_gate().evaluate(make_trade(size=3, price=0.40))
    assert not decision.accepted
    assert decision.code == "below_min_value"


def test_invalid_price_skipped(make_trade) -> None:
    decision = make_gate().evaluate(make_trade(price=0.0))
    assert decision.code == "invalid_price"


# ── SELL ─────────────────────────────────────────────────────────────────────


def test_sell_without_position_skipped(make_trade) -> None:
    decision = make_gate(held=0.0).evaluate(make_trade(side=Side.SELL))
    assert not decision.accepted
    assert decision.code == "no_position"


def test_sell_clamped_to_held_shares(make_trade) -> None:
    decision = make_gate(held=12.0).evaluate(make_trade(side=Side.SELL, size=100))
    assert decision.spec.size == 12.0
    assert decision.spec.worst_price == pytest.approx(0.38)


def test_sell_has_no_price_ceiling_or_minimum(make_trade) -> None:
    decision = make_gate(held=0.5).evaluate(
        make_trade(side=Side.SELL, size=100, price=0.99)
    )
    assert decision.accepted
    assert decision.spec.size == 0.5


def test_held_shares_read_per_asset(make_trade) -> None:
    holdings = {"tok-a": 4.0}
    gate = make_gate(held_shares=lambda asset: holdings.get(asset, 0.0))

    assert gate.evaluate(make_trade(side=Side.SELL, asset="tok-a")).accepted
    assert not gate.evaluate(make_trade(side=Side.SELL, asset="tok-b")).accepted


# ── Determinism and price bounds ─────────────────────────────────────────────


def test_same_input_same_decision(make_trade) -> None:
    gate = make_gate()
    trade = make_trade(size=77, price=0.31)
    assert gate.evaluate(trade) == gate.evaluate(trade)


def test_worst_price_stays_inside_tick_range() -> None:
    assert worst_acceptable_price(Side.BUY, 0.99, 0.05) == 0.999
    assert worst_acceptable_price(Side.SELL, 0.001, 0.5) == 0.001
