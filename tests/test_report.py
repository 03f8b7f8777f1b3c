from datetime import datetime, timezone

import pandas as pd
import pytest
from conftest import W1
from polycopy.core.ledger import PositionLedger
from polycopy.core.stats import RunStats
from polycopy.core.types import CopyTradeResult, PositionAggregate, Side, SourceTrade
from polycopy.report import (
    FinalReport,
    TradeLogEntry,
    replay_trades,
    report_path,
    trades_frame,
    wallet_deepdive,
    write_report,
)


def entry(side="BUY", value=10.0, success=True) -> TradeLogEntry:
    return TradeLogEntry(
        time="2025-01-01 00:00:00",
        trader=W1,
        trader_name="",
        market="btc-updown",
        side=side,
        outcome="Up",
        source_price=0.5,
        source_size=40,
        copy_size=value / 0.5,
        copy_value=value,
        worst_price=0.525,
        attempted=True,
        success=success,
    )


# ── Final report ─────────────────────────────────────────────────────────────


def test_final_report_counts_executed_trades_only() -> None:
    stats = RunStats(start_time=1000.0, trades_executed=3, trades_failed=1)
    ledger = PositionLedger()
    ledger.apply_buy("tok", 20, 10.0)
    entries = [entry("BUY", 10), entry("BUY", 5), entry("SELL", 8), entry("BUY", 99, success=False)]

    report = FinalReport.build(stats, entries, ledger, prices=None, now=1125.0)

    assert report.buy_count == 2
    assert report.buy_spent == pytest.approx(15)
    assert report.sell_count == 1
    assert report.sell_received == pytest.approx(8)
    assert report.net_cash_pnl == pytest.approx(-7)
    assert report.open_positions == 1
    assert report.running_seconds == 125

    text = report.render()
    assert "Running time:     2m 5s" in text
    assert "Net cash P&L:     -$7.00" in text
    assert text.count("btc-updown") == 3


def test_final_report_with_no_trades() -> None:
    report = FinalReport.build(RunStats(), [], PositionLedger())
    assert report.buy_count == 0
    assert report.buy_spent == 0.0
    assert "Trade Log" not in report.render()


def test_trade_log_entry_for_skip(make_trade) -> None:
    trade = make_trade(side=Side.SELL, market_slug="eth-updown")
    result = CopyTradeResult(attempted=False, success=False, error_message="no shares held to sell")

    e = TradeLogEntry.from_result(trade, None, result)

    assert e.market == "eth-updown"
    assert e.copy_size == 0.0
    assert e.error == "no shares held to sell"


def test_write_report_creates_log_and_csv(tmp_path) -> None:
    report = FinalReport.build(RunStats(), [entry()], PositionLedger())
    now = datetime(2025, 3, 1, 12, 30, 45, tzinfo=timezone.utc)

    path = write_report(report, log_dir=str(tmp_path), now=now, csv=True)

    assert path == report_path(str(tmp_path), now)
    assert path.endswith("crypto-copy-trade-2025-03-01T12-30-45.log")
    content = open(path, encoding="utf-8").read()
    assert content.startswith("Crypto Copy Trade - 2025-03-01T12:30:45+00:00 - DRY RUN")
    frame = pd.read_csv(path.replace(".log", ".csv"))
    assert list(frame["side"]) == ["BUY"]


# ── Deep-dive replay ─────────────────────────────────────────────────────────


def trade(side, size, price, ts, asset="A") -> SourceTrade:
    return SourceTrade(
        trader_address=W1,
        tx_hash=f"0x{ts}",
        side=Side(side),
        asset=asset,
        size=size,
        price=price,
        timestamp=ts,
    )


def test_replay_tracks_sub_minimum_lots_through_sells() -> None:
    frame = trades_frame(
        [
            trade("SELL", 4, 0.60, 30),  # out of order on purpose
            trade("BUY", 2, 0.25, 10),  # $0.50 -> sub-minimum lot
            trade("BUY", 10, 0.50, 20),  # $5.00
            trade("SELL", 50, 0.70, 40),  # more than held: clamped
        ]
    )

    sub_min, overall, open_lots = replay_trades(frame, positions={}, min_value_usd=1.0)

    assert sub_min.cost == pytest.approx(0.5)
    assert sub_min.realized_proceeds == pytest.approx(2 * 0.60)
    assert sub_min.realized_cost == pytest.approx(0.5)
    assert sub_min.roi_pct == pytest.approx((1.2 - 0.5) / 0.5 * 100)

    assert overall.cost == pytest.approx(5.5)
    assert overall.realized_proceeds == pytest.approx(4 * 0.60 + 8 * 0.70)
    assert open_lots == []


def test_replay_values_open_lots_from_positions() -> None:
    frame = trades_frame([trade("BUY", 2, 0.25, 10, asset="A"), trade("BUY", 4, 0.10, 11, asset="B")])
    positions = {
        "A": PositionAggregate(size=8, current_value=4.0, slug="a-market"),
        "B": PositionAggregate(size=0, current_value=0, cur_price=0.3),
    }

    sub_min, overall, open_lots = replay_trades(frame, positions, min_value_usd=1.0)

    # A: 2/8 of $4.00; B: no aggregate size, 4 shares at 0.30
    assert sub_min.redemption_value == pytest.approx(1.0 + 1.2)
    assert sub_min.open_cost == pytest.approx(0.9)
    assert overall.redemption_value == pytest.approx(2.2)
    assert [p["label"] for p in open_lots] == ["a-market", "B"]


class StubDataApi:
    def __init__(self, trades, positions=None, fail_positions=False):
        self.trades = trades
        self.positions = positions or []
        self.fail_positions = fail_positions
        self.trade_args = None

    def get_trades(self, user, start=None, end=None, max_trades=10_000):
        self.trade_args = (user, start, end)
        return self.trades

    def get_positions(self, user):
        if self.fail_positions:
            raise ConnectionError("connection reset")
        return self.positions


def test_wallet_deepdive_uses_window_and_tolerates_missing_positions() -> None:
    api = StubDataApi([trade("BUY", 10, 0.5, 100)], fail_positions=True)
    now = datetime(2025, 1, 31, tzinfo=timezone.utc)

    result = wallet_deepdive(api, W1.upper(), days=30, now=now)

    user, start, end = api.trade_args
    assert user == W1
    assert end - start == 30 * 86400
    assert result.overall.cost == pytest.approx(5.0)
    assert result.overall.redemption_value == 0.0
    assert "ROI %" in result.render()
