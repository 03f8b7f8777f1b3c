import pytest
from polycopy.core.types import (
    OrderKind,
    OrderStatus,
    OrderStatusInfo,
    ReplicaOrderSpec,
    Side,
    SourceTrade,
    SubmitResult,
)

T0 = 1_700_000_000
W1 = "0x1d0034134e339a309700ff2d34e99fa2d48b0313"
W2 = "0x2e1145245f44ab41a811ee3e45fa0ab3e59c1424"


class FakeClock:
    """Manual clock; ``sleep`` advances it instead of blocking."""

    def __init__(self, start: float = T0):
        self.now = float(start)
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeFeed:
    def __init__(self):
        self.trades: dict[str, list[SourceTrade]] = {}
        self.failing: set[str] = set()
        self.calls: list[tuple[str, int]] = []

    def add(self, trade: SourceTrade):
        self.trades.setdefault(trade.trader_address.lower(), []).append(trade)

    def fetch_activity(self, wallet, since, limit=100, activity_type="TRADE", sort="ASC"):
        self.calls.append((wallet, since))
        if wallet in self.failing:
            raise ConnectionError("connection reset by peer")
        return [t for t in self.trades.get(wallet, []) if t.timestamp >= since]


class ScriptedGateway:
    """Order gateway that replays a fixed submit result and status sequence."""

    def __init__(self, submit=None, statuses=(), cancel_error: Exception | None = None):
        self.submit_result = submit or SubmitResult(success=True, order_id="ord-1")
        self.statuses = list(statuses) or [OrderStatusInfo(OrderStatus.NEW)]
        self.cancel_error = cancel_error
        self.submitted: list[ReplicaOrderSpec] = []
        self.cancelled: list[str] = []
        self.polls = 0

    def submit_order(self, spec):
        self.submitted.append(spec)
        if isinstance(self.submit_result, Exception):
            raise self.submit_result
        return self.submit_result

    def get_order_status(self, order_id):
        self.polls += 1
        item = self.statuses[min(self.polls - 1, len(self.statuses) - 1)]
        if isinstance(item, Exception):
            raise item
        return item

    def cancel_order(self, order_id):
        self.cancelled.append(order_id)
        if self.cancel_error:
            raise self.cancel_error


@pytest.fixture
def make_trade():
    counter = iter(range(1, 1_000_000))

    def _make(
        side=Side.BUY,
        size=100.0,
        price=0.40,
        asset="tok-x",
        trader=W1,
        timestamp=T0,
        tx_hash=None,
        **kwargs,
    ) -> SourceTrade:
        return SourceTrade(
            trader_address=trader,
            tx_hash=tx_hash if tx_hash is not None else f"0xtx{next(counter):04d}",
            side=side,
            asset=asset,
            size=size,
            price=price,
            timestamp=timestamp,
            **kwargs,
        )

    return _make


@pytest.fixture
def make_spec():
    def _make(side=Side.BUY, size=50.0, price=0.40, kind=OrderKind.FOK, asset="tok-x"):
        return ReplicaOrderSpec(
            asset=asset,
            side=side,
            size=size,
            worst_price=price,
            order_kind=kind,
            trigger_price=price,
        )

    return _make


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def feed():
    return FakeFeed()
