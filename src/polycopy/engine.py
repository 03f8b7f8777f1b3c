"""Copy-trading engine: subscriptions over one shared activity poller.

Per detected trade, queued per asset and run under the asset's ledger lock:
    risk gate -> order executor -> ledger update -> stats -> callbacks

Example:
    engine = CopyTradingEngine(DataApiClient())
    sub = engine.subscribe(CopyTradeOptions(target_addresses=["0xabc..."]))
    ...
    sub.stats().trades_executed
    sub.stop()
"""

import threading
from collections import deque
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from polycopy.config import Config
from polycopy.core.errors import FeedError, LedgerInvariantViolation
from polycopy.core.execution import OrderExecutor, PaperOrderGateway
from polycopy.core.ledger import PositionLedger
from polycopy.core.stats import RunStats
from polycopy.core.types import (
    CopyTradeResult,
    OrderGateway,
    OrderKind,
    PriceSource,
    Side,
    SourceTrade,
    TradeFeed,
)
from polycopy.infra.logging_config import get_logger
from polycopy.report import TradeLogEntry
from polycopy.strategies.classifier import SmartMoneyRegistry, TradeClassifier
from polycopy.strategies.poller import ActivityPoller
from polycopy.strategies.risk_gate import GateDecision, RiskGate

logger = get_logger("engine")

ReplicaCallback = Callable[[SourceTrade, CopyTradeResult], None]
ErrorCallback = Callable[[Exception], None]


@dataclass
class CopyTradeOptions:
    """Per-subscription settings. Defaults come from ``Config``."""

    target_addresses: list[str] = field(
        default_factory=lambda: list(Config.COPY_ADDRESSES)
    )
    size_scale: float = field(default_factory=lambda: Config.SIZE_SCALE)
    max_size_per_trade: float | None = field(
        default_factory=lambda: Config.MAX_SIZE_PER_TRADE
    )
    max_slippage: float = field(default_factory=lambda: Config.MAX_SLIPPAGE)
    min_trade_size: float = field(default_factory=lambda: Config.MIN_TRADE_SIZE)
    min_order_value_usd: float = field(
        default_factory=lambda: Config.MIN_ORDER_VALUE_USD
    )
    max_price_per_share: float = field(
        default_factory=lambda: Config.MAX_PRICE_PER_SHARE
    )
    order_kind: OrderKind = field(default_factory=lambda: OrderKind(Config.ORDER_KIND))
    dry_run: bool = field(default_factory=lambda: Config.DRY_RUN)
    smart_money_only: bool = False
    credit_partial_fills: bool = field(
        default_factory=lambda: Config.CREDIT_PARTIAL_FILLS
    )
    get_held_shares: Callable[[str], float] | None = None
    on_replica_attempt: ReplicaCallback | None = None
    on_error: ErrorCallback | None = None

    def validate(self):
        if not self.target_addresses:
            raise ValueError("at least one target address is required")
        if self.size_scale <= 0:
            raise ValueError(f"size_scale must be > 0, got {self.size_scale}")
        if self.max_size_per_trade is not None and self.max_size_per_trade <= 0:
            raise ValueError("max_size_per_trade must be > 0 when set")
        if not 0 <= self.max_slippage < 1:
            raise ValueError(f"max_slippage must be in [0, 1), got {self.max_slippage}")
        if self.min_trade_size < 0 or self.min_order_value_usd < 0:
            raise ValueError("minimums must be >= 0")
        if not 0 < self.max_price_per_share <= 1:
            raise ValueError("max_price_per_share must be in (0, 1]")
        if not isinstance(self.order_kind, OrderKind):
            self.order_kind = OrderKind(str(self.order_kind).upper())


class Subscription:
    """One set of copy targets with its own gate, ledger, stats and trade log.

    Trades are queued per asset and each queue is drained by one worker at a
    time, so same-asset trades settle in dispatch (timestamp) order while
    different assets run in parallel on the pool.
    """

    def __init__(
        self,
        engine: "CopyTradingEngine",
        options: CopyTradeOptions,
        classifier: TradeClassifier,
        gate: RiskGate,
        executor: OrderExecutor,
        ledger: PositionLedger,
        max_workers: int,
    ):
        self.engine = engine
        self.options = options
        self.classifier = classifier
        self.gate = gate
        self.executor = executor
        self.ledger = ledger
        self.trade_log: list[TradeLogEntry] = []

        self._stats = RunStats()
        self._targets = {a.lower() for a in options.target_addresses}
        self._lock = threading.Lock()
        self._active = True
        self._pool = (
            ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="copy")
            if max_workers > 0
            else None
        )
        self._queues: dict[str, deque[SourceTrade]] = {}
        self._worker = threading.local()

    @property
    def target_addresses(self) -> list[str]:
        return list(self.options.target_addresses)

    @property
    def active(self) -> bool:
        return self._active

    def stats(self) -> RunStats:
        return self._stats.snapshot()

    def stop(self):
        """Stop receiving trades and wait for queued and in-flight trades to settle."""
        with self._lock:
            if not self._active:
                return
            self._active = False
        self.engine._unsubscribe(self)
        if self._pool is not None:
            # A callback stopping its own subscription cannot wait on itself
            self._pool.shutdown(wait=not getattr(self._worker, "busy", False))
        logger.info("subscription_stopped", **self._stats.to_dict())

    # Poller callbacks

    def handle(self, trade: SourceTrade):
        if not self._active:
            return
        self._stats.record_activity()

        if not self.classifier.matches_address(trade):
            return
        self._stats.increment("activity_matched")

        accepted, reason = self.classifier.accepts(trade)
        if not accepted:
            logger.debug("trade_filtered", reason=reason, tx=trade.tx_hash[:12])
            return
        self._stats.increment("trades_detected")

        if self._pool is None:
            self._run_pipeline(trade)
            return

        with self._lock:
            if not self._active:
                return
            queue = self._queues.get(trade.asset)
            if queue is not None:
                # A worker is already draining this asset
                queue.append(trade)
                return
            self._queues[trade.asset] = deque([trade])
            self._pool.submit(self._drain, trade.asset)

    def handle_error(self, error: Exception):
        """Poller errors; feed failures only for wallets this subscription watches."""
        if isinstance(error, FeedError) and error.wallet.lower() not in self._targets:
            return
        self.emit_error(error)

    def emit_error(self, error: Exception):
        callback = self.options.on_error
        if callback is None:
            return
        try:
            callback(error)
        except Exception as e:
            logger.error("on_error_callback_failed", error=str(e))

    # Pipeline

    def _drain(self, asset: str):
        self._worker.busy = True
        try:
            while True:
                with self._lock:
                    queue = self._queues[asset]
                    if not queue:
                        del self._queues[asset]
                        return
                    trade = queue.popleft()
                self._run_pipeline(trade)
        finally:
            self._worker.busy = False

    def _run_pipeline(self, trade: SourceTrade):
        """Gate, execute and record one trade.

        An unexpected error before an order is placed counts as a skip
        (``gate_error``); after placement it counts as a failure.
        """
        decision: GateDecision | None = None
        try:
            with self.ledger.asset_lock(trade.asset):
                decision = self.gate.evaluate(trade)
                if not decision.accepted:
                    self._stats.record_skip(decision.code)
                    result = CopyTradeResult(
                        attempted=False, success=False, error_message=decision.reason
                    )
                else:
                    result = self.executor.execute(decision.spec)
                    if result.success:
                        self._stats.increment("trades_executed")
                        self._apply_fill(trade, result)
                    else:
                        self._stats.increment("trades_failed")
        except Exception as e:
            logger.error("pipeline_error", error=str(e), tx=trade.tx_hash[:12])
            attempted = decision is not None and decision.accepted
            result = CopyTradeResult(
                attempted=attempted,
                success=False,
                error_message=f"pipeline error: {e}",
            )
            if attempted:
                self._stats.increment("trades_failed")
            else:
                self._stats.record_skip("gate_error")
            self.emit_error(e)

        self._settle(trade, decision, result)

    def _apply_fill(self, trade: SourceTrade, result: CopyTradeResult):
        size = result.copy_size_used or 0.0
        value = result.copy_value_used or 0.0
        try:
            if trade.side == Side.BUY:
                self.ledger.apply_buy(trade.asset, size, value)
            else:
                self.ledger.apply_sell(trade.asset, size, result.avg_price or trade.price)
        except LedgerInvariantViolation as e:
            logger.critical("ledger_invariant_violation", error=str(e), asset=trade.asset[:16])
            self.emit_error(e)

    def _settle(
        self,
        trade: SourceTrade,
        decision: GateDecision | None,
        result: CopyTradeResult,
    ):
        spec = decision.spec if decision is not None else None
        entry = TradeLogEntry.from_result(trade, spec, result)
        with self._lock:
            self.trade_log.append(entry)

        logger.replica_attempt(
            trader=trade.trader_address,
            side=trade.side.value,
            size=entry.copy_size,
            price=trade.price,
            value=entry.copy_value,
            success=result.success,
            attempted=result.attempted,
            detail=result.detail,
        )

        callback = self.options.on_replica_attempt
        if callback is None:
            return
        try:
            callback(trade, result)
        except Exception as e:
            logger.error("on_replica_attempt_failed", error=str(e))
            self.emit_error(e)


class CopyTradingEngine:
    """Owns the shared poller and creates subscriptions against it."""

    def __init__(
        self,
        feed: TradeFeed,
        gateway: OrderGateway | None = None,
        price_source: PriceSource | None = None,
        smart_money: SmartMoneyRegistry | None = None,
        max_workers: int | None = None,
        poller: ActivityPoller | None = None,
        autostart: bool = True,
        executor_factory: Callable[[OrderGateway, CopyTradeOptions], OrderExecutor]
        | None = None,
    ):
        self.feed = feed
        self.gateway = gateway
        self.price_source = price_source
        self.smart_money = smart_money
        self.max_workers = (
            max_workers if max_workers is not None else Config.MAX_CONCURRENT_TRADES
        )
        self.poller = poller or ActivityPoller(feed)
        self.autostart = autostart
        self.executor_factory = executor_factory or (
            lambda gw, opts: OrderExecutor(
                gateway=gw, credit_partial_fills=opts.credit_partial_fills
            )
        )
        self._subscriptions: list[Subscription] = []
        self._lock = threading.Lock()

    @property
    def subscriptions(self) -> list[Subscription]:
        with self._lock:
            return list(self._subscriptions)

    def subscribe(self, options: CopyTradeOptions) -> Subscription:
        options.validate()

        if options.dry_run:
            gateway = PaperOrderGateway()
        elif self.gateway is None:
            raise ValueError("live trading needs an order gateway")
        else:
            gateway = self.gateway

        ledger = PositionLedger()
        classifier = TradeClassifier(
            target_addresses=options.target_addresses,
            min_trade_size=options.min_trade_size,
            smart_money_only=options.smart_money_only,
            smart_money=self.smart_money,
        )
        gate = RiskGate(
            held_shares=options.get_held_shares or ledger.held_shares,
            size_scale=options.size_scale,
            max_slippage=options.max_slippage,
            min_order_value_usd=options.min_order_value_usd,
            max_price_per_share=options.max_price_per_share,
            order_kind=options.order_kind,
            max_size_per_trade=options.max_size_per_trade,
        )
        subscription = Subscription(
            engine=self,
            options=options,
            classifier=classifier,
            gate=gate,
            executor=self.executor_factory(gateway, options),
            ledger=ledger,
            max_workers=self.max_workers,
        )

        with self._lock:
            self._subscriptions.append(subscription)
        self.poller.watch(options.target_addresses)
        self.poller.add_handler(subscription.handle)
        self.poller.add_error_listener(subscription.handle_error)

        logger.info(
            "subscribed",
            wallets=len(options.target_addresses),
            dry_run=options.dry_run,
            kind=options.order_kind.value,
            interval=self.poller.interval,
        )
        if self.autostart:
            self.poller.start()
        return subscription

    def _unsubscribe(self, subscription: Subscription):
        self.poller.remove_handler(subscription.handle)
        self.poller.remove_error_listener(subscription.handle_error)
        self.poller.unwatch(subscription.target_addresses)
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)
            idle = not self._subscriptions
        if idle and self.poller.running:
            self.poller.stop()

    def poll_once(self) -> list[SourceTrade]:
        """Run one poller tick inline."""
        return self.poller.poll_once()

    def stop(self):
        for subscription in self.subscriptions:
            subscription.stop()
        if self.poller.running:
            self.poller.stop()


def subscribe(
    options: CopyTradeOptions,
    feed: TradeFeed,
    gateway: OrderGateway | None = None,
    **engine_kwargs,
) -> Subscription:
    """One-shot helper: a private engine with a single subscription."""
    return CopyTradingEngine(feed, gateway=gateway, **engine_kwargs).subscribe(options)
