import pytest
from conftest import ScriptedGateway
from polycopy.core.execution import OrderExecutor, PaperOrderGateway
from polycopy.core.types import OrderKind, OrderStatus, OrderStatusInfo, SubmitResult


def make_executor(gateway, clock, **kwargs) -> OrderExecutor:
    params = dict(
        poll_interval=2,
        limit_timeout=15,
        market_timeout=10,
        credit_partial_fills=False,
        clock=clock,
        sleep=clock.sleep,
    )
    params.update(kwargs)
    return OrderExecutor(gateway=gateway, **params)


PARTIAL = OrderStatusInfo(OrderStatus.PARTIALLY_FILLED, filled_size=20, original_size=50, avg_price=0.41)


# ── Submission ───────────────────────────────────────────────────────────────


def test_synchronous_fill_skips_polling(clock, make_spec) -> None:
    gateway = ScriptedGateway(
        submit=SubmitResult(success=True, order_id="o1", sync_fill_size=50, sync_fill_price=0.41)
    )
    result = make_executor(gateway, clock).execute(make_spec(size=50))

    assert result.success and result.attempted
    assert result.copy_size_used == 50
    assert result.copy_value_used == pytest.approx(20.5)
    assert result.status == OrderStatus.FILLED
    assert gateway.polls == 0


def test_rejected_submission_is_failure(clock, make_spec) -> None:
    gateway = ScriptedGateway(submit=SubmitResult(success=False, error_message="not enough balance"))
    result = make_executor(gateway, clock).execute(make_spec())

    assert result.attempted and not result.success
    assert result.error_message == "not enough balance"
    assert gateway.polls == 0


def test_submission_exception_is_failure(clock, make_spec) -> None:
    gateway = ScriptedGateway(submit=ConnectionError("connection refused"))
    result = make_executor(gateway, clock).execute(make_spec())

    assert not result.success
    assert "connection refused" in result.error_message


# ── Confirmation polling ─────────────────────────────────────────────────────


def test_polls_until_filled(clock, make_spec) -> None:
    gateway = ScriptedGateway(
        statuses=[
            OrderStatusInfo(OrderStatus.NEW),
            PARTIAL,
            OrderStatusInfo(OrderStatus.FILLED, filled_size=50, original_size=50, avg_price=0.40),
        ]
    )
    result = make_executor(gateway, clock).execute(make_spec(size=50))

    assert result.success
    assert result.copy_size_used == 50
    assert result.copy_value_used == pytest.approx(20)
    assert gateway.polls == 3
    assert gateway.cancelled == []


@pytest.mark.parametrize(
    "status", [OrderStatus.CANCELLED, OrderStatus.EXPIRED, OrderStatus.REJECTED]
)
def test_terminal_non_fill_stops_polling(clock, make_spec, status) -> None:
    gateway = ScriptedGateway(statuses=[OrderStatusInfo(status)])
    result = make_executor(gateway, clock).execute(make_spec())

    assert not result.success
    assert result.status == status
    assert gateway.polls == 1
    assert gateway.cancelled == []


def test_partial_fill_timeout_cancels_and_fails(clock, make_spec) -> None:
    gateway = ScriptedGateway(statuses=[PARTIAL])
    executor = make_executor(gateway, clock, market_timeout=6)
    result = executor.execute(make_spec(kind=OrderKind.FOK))

    assert gateway.polls == 3
    assert gateway.cancelled == ["ord-1"]
    assert not result.success
    assert result.status == OrderStatus.PARTIALLY_FILLED
    assert result.copy_size_used is None
    assert "PARTIALLY_FILLED" in result.error_message


def test_partial_fill_credited_when_enabled(clock, make_spec) -> None:
    gateway = ScriptedGateway(statuses=[PARTIAL])
    result = make_executor(gateway, clock, credit_partial_fills=True).execute(make_spec())

    assert result.success
    assert result.copy_size_used == 20
    assert result.copy_value_used == pytest.approx(20 * 0.41)
    assert result.status == OrderStatus.PARTIALLY_FILLED
    assert gateway.cancelled == ["ord-1"]


def test_limit_orders_wait_longer_than_market_orders(clock, make_spec) -> None:
    market = ScriptedGateway()
    make_executor(market, clock).execute(make_spec(kind=OrderKind.FAK))
    limit = ScriptedGateway()
    make_executor(limit, clock).execute(make_spec(kind=OrderKind.GTC))

    assert market.polls == 5  # 10s / 2s
    assert limit.polls == 8  # 15s / 2s, rounded up


def test_poll_errors_keep_polling_and_cancel_errors_are_swallowed(clock, make_spec) -> None:
    gateway = ScriptedGateway(
        statuses=[
            TimeoutError("read timed out"),
            OrderStatusInfo(OrderStatus.FILLED, filled_size=50, avg_price=0.4),
        ]
    )
    assert make_executor(gateway, clock).execute(make_spec()).success

    stuck = ScriptedGateway(cancel_error=RuntimeError("already gone"))
    result = make_executor(stuck, clock).execute(make_spec())
    assert not result.success
    assert stuck.cancelled == ["ord-1"]


# ── Paper gateway ────────────────────────────────────────────────────────────


def test_paper_gateway_fills_at_trigger_price(clock, make_spec) -> None:
    gateway = PaperOrderGateway()
    result = make_executor(gateway, clock).execute(make_spec(size=50, price=0.40))

    assert result.success
    assert result.copy_value_used == pytest.approx(20)
    assert result.order_id == "paper-1"
    assert len(gateway.submitted) == 1
