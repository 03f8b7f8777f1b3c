"""Trade log, end-of-run report and wallet deep-dive."""

import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone

import pandas as pd

from polycopy.config import LOCAL_TZ, Config
from polycopy.core.ledger import EPS, PositionLedger, position_value
from polycopy.core.stats import RunStats
from polycopy.core.types import (
    CopyTradeResult,
    PositionAggregate,
    PriceSource,
    ReplicaOrderSpec,
    Side,
    SourceTrade,
)
from polycopy.infra.logging_config import get_logger

logger = get_logger("report")

SUB_MIN_TAG = "sub_min"


@dataclass
class TradeLogEntry:
    """One detected trade and what we did with it."""

    time: str
    trader: str
    trader_name: str
    market: str
    side: str
    outcome: str
    source_price: float
    source_size: float
    copy_size: float
    copy_value: float
    worst_price: float | None
    attempted: bool
    success: bool
    order_id: str | None = None
    error: str | None = None

    @classmethod
    def from_result(
        cls,
        trade: SourceTrade,
        spec: ReplicaOrderSpec | None,
        result: CopyTradeResult,
        now: datetime | None = None,
    ) -> "TradeLogEntry":
        now = now or datetime.now(LOCAL_TZ)
        if result.success:
            copy_size = result.copy_size_used or 0.0
            copy_value = result.copy_value_used or 0.0
        elif spec is not None:
            copy_size = spec.size
            copy_value = spec.notional
        else:
            copy_size = copy_value = 0.0
        return cls(
            time=now.strftime("%Y-%m-%d %H:%M:%S"),
            trader=trade.trader_address,
            trader_name=trade.trader_name,
            market=trade.market_slug or trade.title or trade.asset[:16],
            side=trade.side.value,
            outcome=trade.outcome or "?",
            source_price=trade.price,
            source_size=trade.size,
            copy_size=copy_size,
            copy_value=copy_value,
            worst_price=spec.worst_price if spec else None,
            attempted=result.attempted,
            success=result.success,
            order_id=result.order_id,
            error=None if result.success else result.error_message,
        )


def trade_log_frame(entries: list[TradeLogEntry]) -> pd.DataFrame:
    columns = list(TradeLogEntry.__dataclass_fields__)
    return pd.DataFrame([asdict(e) for e in entries], columns=columns)


@dataclass
class FinalReport:
    stats: RunStats
    entries: list[TradeLogEntry]
    dry_run: bool = True
    running_seconds: float = 0.0
    buy_count: int = 0
    buy_spent: float = 0.0
    sell_count: int = 0
    sell_received: float = 0.0
    realized_pnl: float = 0.0
    open_positions: int = 0
    unredeemed_value: float = 0.0

    @property
    def net_cash_pnl(self) -> float:
        return self.sell_received - self.buy_spent

    @property
    def executed(self) -> list[TradeLogEntry]:
        return [e for e in self.entries if e.success]

    @classmethod
    def build(
        cls,
        stats: RunStats,
        entries: list[TradeLogEntry],
        ledger: PositionLedger,
        prices: PriceSource | None = None,
        dry_run: bool = True,
        now: float | None = None,
    ) -> "FinalReport":
        """Profit numbers use executed trades only, like the ledger."""
        frame = trade_log_frame(entries)
        done = frame[frame["success"].astype(bool)] if not frame.empty else frame
        buys = done[done["side"] == Side.BUY.value] if not done.empty else done
        sells = done[done["side"] == Side.SELL.value] if not done.empty else done

        return cls(
            stats=stats,
            entries=list(entries),
            dry_run=dry_run,
            running_seconds=stats.running_seconds(now),
            buy_count=len(buys),
            buy_spent=float(buys["copy_value"].sum()) if len(buys) else 0.0,
            sell_count=len(sells),
            sell_received=float(sells["copy_value"].sum()) if len(sells) else 0.0,
            realized_pnl=ledger.realized_pnl,
            open_positions=len(ledger.open_assets()),
            unredeemed_value=ledger.unredeemed_value(prices),
        )

    def render(self) -> str:
        s = self.stats
        run_sec = int(self.running_seconds)
        net = self.net_cash_pnl
        lines = [
            "",
            "=" * 60,
            "Final Stats",
            "=" * 60,
            f"  Running time:     {run_sec // 60}m {run_sec % 60}s",
            f"  Activity recv'd:  {s.activity_received}",
            f"  Address matched:  {s.activity_matched}",
            f"  Trades detected:  {s.trades_detected}",
            f"  Trades executed:  {s.trades_executed}",
            f"  Trades skipped:   {s.trades_skipped}",
            f"  Trades failed:    {s.trades_failed}",
        ]
        if s.skip_reasons:
            reasons = ", ".join(f"{k}={v}" for k, v in s.skip_reasons.most_common())
            lines.append(f"  Skip reasons:     {reasons}")
        lines += [
            "",
            "  --- Profit (executed trades only) ---",
            f"  BUY executed:     {self.buy_count} (${self.buy_spent:.2f} spent)",
            f"  SELL executed:    {self.sell_count} (${self.sell_received:.2f} received)",
            f"  Net cash P&L:     {'+' if net >= 0 else '-'}${abs(net):.2f}",
            f"  Realized P&L:     {'+' if self.realized_pnl >= 0 else '-'}${abs(self.realized_pnl):.2f}",
            "",
            "  --- Unredeemed (executed BUYs not yet sold) ---",
            f"  Positions open:   {self.open_positions}",
            f"  Current value:    ${self.unredeemed_value:.2f}",
        ]

        executed = self.executed
        if executed:
            lines += ["", "Trade Log (executed only):"]
            for i, e in enumerate(executed, 1):
                worst = f"{e.worst_price:.4f}" if e.worst_price is not None else "-"
                lines.append(
                    f"  {i}. [{e.time}] {e.side} {e.outcome} - {e.copy_size:.2f} shares "
                    f"@ ${worst} (${e.copy_value:.2f}) - {e.market}"
                )
        lines += ["=" * 60, ""]
        return "\n".join(lines)

    def to_frame(self) -> pd.DataFrame:
        return trade_log_frame(self.entries)


def report_path(log_dir: str | None = None, now: datetime | None = None) -> str:
    now = now or datetime.now(timezone.utc)
    stamp = now.strftime("%Y-%m-%dT%H-%M-%S")
    return os.path.join(log_dir or Config.COPY_TRADE_LOG_DIR, f"crypto-copy-trade-{stamp}.log")


def write_report(
    report: FinalReport,
    log_dir: str | None = None,
    now: datetime | None = None,
    csv: bool = False,
) -> str:
    """Persist the rendered report (and optionally the trade log as CSV)."""
    now = now or datetime.now(timezone.utc)
    path = report_path(log_dir, now)
    os.makedirs(os.path.dirname(path), exist_ok=True)

    mode = "DRY RUN" if report.dry_run else "LIVE"
    with open(path, "w", encoding="utf-8") as f:
        f.write(f"Crypto Copy Trade - {now.isoformat()} - {mode}\n")
        f.write(report.render())

    if csv:
        csv_path = path[: -len(".log")] + ".csv"
        report.to_frame().to_csv(csv_path, index=False)
        logger.info("trade_log_exported", path=csv_path, rows=len(report.entries))

    logger.info("report_saved", path=path)
    return path


# Wallet deep-dive


@dataclass
class RoiSummary:
    cost: float = 0.0
    realized_proceeds: float = 0.0
    realized_cost: float = 0.0
    open_cost: float = 0.0
    redemption_value: float = 0.0

    @property
    def total_return(self) -> float:
        return self.realized_proceeds + self.redemption_value

    @property
    def roi_pct(self) -> float:
        if self.cost <= 0:
            return 0.0
        return (self.total_return - self.cost) / self.cost * 100


@dataclass
class DeepDiveResult:
    wallet: str
    days: int
    min_value_usd: float
    trades: pd.DataFrame
    sub_min: RoiSummary = field(default_factory=RoiSummary)
    overall: RoiSummary = field(default_factory=RoiSummary)
    open_sub_min: list[dict] = field(default_factory=list)

    @property
    def sub_min_trades(self) -> pd.DataFrame:
        if self.trades.empty:
            return self.trades
        return self.trades[self.trades["value"] < self.min_value_usd]

    def render(self) -> str:
        lines = [
            "=" * 60,
            f"Wallet Deep Dive - sub-${self.min_value_usd:g} trades & ROI %",
            "=" * 60,
            f"Address:  {self.wallet}",
            f"Window:   last {self.days} days",
            f"Trades:   {len(self.trades)} ({len(self.sub_min_trades)} below ${self.min_value_usd:g})",
        ]
        for title, roi in (
            (f"Sub-${self.min_value_usd:g} BUY ROI %", self.sub_min),
            (f"Total ROI % (last {self.days} days, incl. redemption)", self.overall),
        ):
            lines += [
                "",
                f"--- {title} ---",
                f"BUY cost:                  ${roi.cost:.4f}",
                f"Realized from SELLs:       ${roi.realized_proceeds:.4f} (cost closed: ${roi.realized_cost:.4f})",
                f"Redemption value (open):   ${roi.redemption_value:.4f} (cost open: ${roi.open_cost:.4f})",
                f"Total return:              ${roi.total_return:.4f}",
                f"ROI %:                     {roi.roi_pct:.2f}%",
            ]
        if self.open_sub_min:
            lines += ["", "--- Open positions from sub-minimum BUYs ---"]
            for i, p in enumerate(self.open_sub_min, 1):
                value = p["redeem_value"]
                lines.append(
                    f"{i}. {p['label']}  size={p['size']:.4f}  cost=${p['cost']:.4f}  "
                    f"redeemValue={'?' if value is None else f'${value:.4f}'}"
                )
        return "\n".join(lines)


def trades_frame(trades: list[SourceTrade]) -> pd.DataFrame:
    columns = ["timestamp", "side", "asset", "size", "price", "value", "market"]
    frame = pd.DataFrame(
        [
            {
                "timestamp": t.timestamp,
                "side": t.side.value,
                "asset": t.asset,
                "size": t.size,
                "price": t.price,
                "value": t.value,
                "market": t.market_slug or "",
            }
            for t in trades
        ],
        columns=columns,
    )
    return frame.sort_values("timestamp", kind="stable").reset_index(drop=True)


def replay_trades(
    frame: pd.DataFrame,
    positions: dict[str, PositionAggregate],
    min_value_usd: float = 1.0,
) -> tuple[RoiSummary, RoiSummary, list[dict]]:
    """FIFO-replay a wallet's trades and value what is still open.

    Sells never consume more than the replay holds. BUY lots worth less than
    ``min_value_usd`` are tagged so their slice of every sell can be tracked.
    """
    ledger = PositionLedger()
    sub_min = RoiSummary()
    overall = RoiSummary()

    for row in frame.itertuples(index=False):
        if not row.asset:
            continue
        if row.side == Side.BUY.value:
            cost = row.size * row.price
            tag = SUB_MIN_TAG if cost < min_value_usd else None
            ledger.apply_buy(row.asset, row.size, cost, tag=tag)
            overall.cost += cost
            if tag:
                sub_min.cost += cost
        else:
            size = min(row.size, ledger.held_shares(row.asset))
            if size <= EPS:
                continue
            sold = ledger.apply_sell(row.asset, size, row.price)
            overall.realized_proceeds += sold.proceeds
            overall.realized_cost += sold.cost_removed
            proceeds, cost = sold.for_tag(SUB_MIN_TAG)
            sub_min.realized_proceeds += proceeds
            sub_min.realized_cost += cost

    open_sub_min = []
    for asset in ledger.open_assets():
        holding = ledger.holding(asset)
        aggregate = positions.get(asset)

        value = position_value(holding.total_shares, aggregate=aggregate) or 0.0
        overall.open_cost += holding.total_cost
        overall.redemption_value += value

        size, cost = holding.shares_tagged(SUB_MIN_TAG)
        if size <= EPS:
            continue
        redeem = position_value(size, aggregate=aggregate)
        sub_min.open_cost += cost
        sub_min.redemption_value += redeem or 0.0
        open_sub_min.append(
            {
                "asset": asset,
                "label": (aggregate.slug if aggregate and aggregate.slug else asset[:16]),
                "size": size,
                "cost": cost,
                "redeem_value": redeem,
            }
        )

    return sub_min, overall, open_sub_min


def wallet_deepdive(
    data_api,
    wallet: str,
    days: int = 30,
    min_value_usd: float = 1.0,
    max_trades: int = 10_000,
    now: datetime | None = None,
) -> DeepDiveResult:
    """Fetch a wallet's recent trades and open positions, then replay them."""
    wallet = wallet.lower()
    now = now or datetime.now(timezone.utc)
    end = int(now.timestamp())
    start = int((now - timedelta(days=days)).timestamp())

    trades = data_api.get_trades(wallet, start=start, end=end, max_trades=max_trades)
    try:
        rows = data_api.get_positions(wallet)
    except Exception as e:
        logger.warning("positions_unavailable", wallet=wallet, error=str(e))
        rows = []
    positions = {
        str(r["asset"]): PositionAggregate.from_position(r) for r in rows if r.get("asset")
    }

    frame = trades_frame(trades)
    sub_min, overall, open_sub_min = replay_trades(frame, positions, min_value_usd)
    logger.info(
        "deepdive_done",
        wallet=wallet,
        trades=len(frame),
        positions=len(positions),
        roi_pct=overall.roi_pct,
    )
    return DeepDiveResult(
        wallet=wallet,
        days=days,
        min_value_usd=min_value_usd,
        trades=frame,
        sub_min=sub_min,
        overall=overall,
        open_sub_min=open_sub_min,
    )
