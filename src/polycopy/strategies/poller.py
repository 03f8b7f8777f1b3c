"""Timer-driven activity poller shared by every subscription.

One tick:
1. Query every watched wallet concurrently for trades since its checkpoint
2. Flatten and sort ascending by timestamp
3. Drop anything already seen (bounded hash set)
4. Hand each new trade to every registered handler

A failing wallet never aborts the tick: its error goes to the error
listeners and its checkpoint stays put so the window is retried next tick.
"""

import threading
import time
from collections import deque
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

from polycopy.config import Config
from polycopy.core.errors import FeedError
from polycopy.core.types import SourceTrade, TradeFeed
from polycopy.infra.logging_config import get_logger, short_address

logger = get_logger("poller")

TradeHandler = Callable[[SourceTrade], None]
ErrorListener = Callable[[Exception], None]


def poll_interval_for(
    wallet_count: int,
    rate_budget: int | None = None,
    short: float | None = None,
    medium: float | None = None,
    long: float | None = None,
) -> float:
    """Seconds between ticks for ``wallet_count`` watched wallets.

    1-10 wallets -> short, 11-30 -> medium, 31+ -> long; raised further if
    needed so that one request per wallet per tick stays within the budget.
    """
    rate_budget = rate_budget if rate_budget is not None else Config.FEED_RATE_BUDGET
    short = short if short is not None else Config.POLL_INTERVAL_SHORT
    medium = medium if medium is not None else Config.POLL_INTERVAL_MEDIUM
    long = long if long is not None else Config.POLL_INTERVAL_LONG

    if wallet_count <= 10:
        interval = short
    elif wallet_count <= 30:
        interval = medium
    else:
        interval = long

    if rate_budget > 0 and wallet_count > 0:
        interval = max(interval, wallet_count * 60.0 / rate_budget)
    return interval


class SeenHashes:
    """Bounded set of dedup keys with oldest-first eviction."""

    def __init__(self, cap: int | None = None):
        self.cap = cap if cap is not None else Config.SEEN_HASH_CAP
        self._order: deque[str] = deque()
        self._keys: set[str] = set()
        self.evicted = 0

    def __contains__(self, key: str) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def add(self, key: str) -> bool:
        """Record ``key``; False if it was already present."""
        if key in self._keys:
            return False
        self._keys.add(key)
        self._order.append(key)
        if len(self._keys) > self.cap:
            self._evict(len(self._keys) // 2)
        return True

    def _evict(self, count: int):
        for _ in range(count):
            self._keys.discard(self._order.popleft())
        self.evicted += count
        logger.debug("seen_hashes_evicted", count=count, remaining=len(self._keys))


class ActivityPoller:
    """Poll a reference-counted set of wallets and fan trades out to handlers."""

    def __init__(
        self,
        feed: TradeFeed,
        lookback: int | None = None,
        activity_limit: int | None = None,
        seen_cap: int | None = None,
        rate_budget: int | None = None,
        max_fetch_workers: int = 8,
        clock: Callable[[], float] = time.time,
    ):
        self.feed = feed
        self.lookback = lookback if lookback is not None else Config.POLL_LOOKBACK_SECONDS
        self.activity_limit = activity_limit or Config.ACTIVITY_LIMIT
        self.rate_budget = rate_budget if rate_budget is not None else Config.FEED_RATE_BUDGET
        self.max_fetch_workers = max_fetch_workers
        self.clock = clock

        self.seen = SeenHashes(seen_cap)
        self.interval = poll_interval_for(0, self.rate_budget)

        self._watch_counts: dict[str, int] = {}
        self._last_check: dict[str, int] = {}
        self._handlers: list[TradeHandler] = []
        self._error_listeners: list[ErrorListener] = []

        self._lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        # Stats
        self.ticks = 0
        self.feed_errors = 0

    # Watch set

    @property
    def wallets(self) -> list[str]:
        with self._lock:
            return list(self._watch_counts)

    def watch(self, wallets: list[str]):
        changed = False
        with self._lock:
            now = int(self.clock())
            for wallet in wallets:
                key = wallet.lower()
                if key not in self._watch_counts:
                    self._watch_counts[key] = 0
                    self._last_check[key] = now
                    changed = True
                self._watch_counts[key] += 1
        if changed:
            self._recompute_interval()

    def unwatch(self, wallets: list[str]):
        changed = False
        with self._lock:
            for wallet in wallets:
                key = wallet.lower()
                if key not in self._watch_counts:
                    continue
                self._watch_counts[key] -= 1
                if self._watch_counts[key] <= 0:
                    del self._watch_counts[key]
                    self._last_check.pop(key, None)
                    changed = True
        if changed:
            self._recompute_interval()

    def _recompute_interval(self):
        with self._lock:
            count = len(self._watch_counts)
        interval = poll_interval_for(count, self.rate_budget)
        if interval != self.interval:
            self.interval = interval
            logger.info("poll_interval", wallets=count, interval=interval)

    # Listeners

    def add_handler(self, handler: TradeHandler):
        with self._lock:
            self._handlers.append(handler)

    def remove_handler(self, handler: TradeHandler):
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    def add_error_listener(self, listener: ErrorListener):
        with self._lock:
            self._error_listeners.append(listener)

    def remove_error_listener(self, listener: ErrorListener):
        with self._lock:
            if listener in self._error_listeners:
                self._error_listeners.remove(listener)

    @property
    def handler_count(self) -> int:
        with self._lock:
            return len(self._handlers)

    def _emit_error(self, error: Exception):
        with self._lock:
            listeners = list(self._error_listeners)
        for listener in listeners:
            try:
                listener(error)
            except Exception as e:
                logger.error("error_listener_failed", error=str(e))

    # Tick

    def _fetch(self, wallet: str, since: int) -> list[SourceTrade]:
        try:
            return self.feed.fetch_activity(
                wallet,
                since,
                limit=self.activity_limit,
                activity_type="TRADE",
                sort="ASC",
            )
        except FeedError:
            raise
        except Exception as e:
            raise FeedError(wallet, e) from e

    def poll_once(self) -> list[SourceTrade]:
        """Run one tick and return the new trades it dispatched."""
        with self._tick_lock:
            return self._tick()

    def _tick(self) -> list[SourceTrade]:
        tick_start = int(self.clock())
        with self._lock:
            checkpoints = {
                wallet: max(0, self._last_check.get(wallet, tick_start) - self.lookback)
                for wallet in self._watch_counts
            }
        self.ticks += 1
        if not checkpoints:
            return []

        results: dict[str, list[SourceTrade]] = {}
        workers = max(1, min(len(checkpoints), self.max_fetch_workers))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                wallet: pool.submit(self._fetch, wallet, since)
                for wallet, since in checkpoints.items()
            }
            for wallet, future in futures.items():
                try:
                    results[wallet] = future.result()
                except Exception as e:
                    self.feed_errors += 1
                    logger.warning(
                        "feed_error", wallet=short_address(wallet), error=str(e)
                    )
                    self._emit_error(e if isinstance(e, FeedError) else FeedError(wallet, e))

        with self._lock:
            for wallet in results:
                if wallet in self._last_check:
                    self._last_check[wallet] = tick_start

        trades = [trade for batch in results.values() for trade in batch]
        trades.sort(key=lambda t: t.timestamp)

        fresh = [t for t in trades if self.seen.add(t.dedup_key)]
        if fresh:
            logger.debug("tick", wallets=len(checkpoints), fetched=len(trades), new=len(fresh))

        with self._lock:
            handlers = list(self._handlers)
        for trade in fresh:
            for handler in handlers:
                try:
                    handler(trade)
                except Exception as e:
                    logger.error("handler_error", error=str(e), tx=trade.tx_hash[:12])
                    self._emit_error(e)
        return fresh

    # Timer loop

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="activity-poller", daemon=True
        )
        self._thread.start()
        logger.info("poller_started", wallets=len(self.wallets), interval=self.interval)

    def _run(self):
        while not self._stop_event.wait(self.interval):
            try:
                self.poll_once()
            except Exception as e:
                logger.error("tick_failed", error=str(e))
                self._emit_error(e)

    def stop(self, timeout: float | None = None):
        """Stop the timer. A tick already in progress finishes first."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        logger.info("poller_stopped", ticks=self.ticks)
