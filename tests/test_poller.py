import pytest
from conftest import T0, W1, W2
from polycopy.core.errors import FeedError
from polycopy.strategies.poller import ActivityPoller, SeenHashes, poll_interval_for

# ── Interval tiers ───────────────────────────────────────────────────────────


@pytest.mark.parametrize(
    "count, expected",
    [(1, 5), (10, 5), (11, 15), (30, 15), (31, 30), (60, 30)],
)
def test_interval_tiers(count, expected) -> None:
    assert poll_interval_for(count, rate_budget=120, short=5, medium=15, long=30) == expected


def test_interval_respects_rate_budget() -> None:
    # 100 wallets at one request each per tick within 120 req/min needs >= 50s
    assert poll_interval_for(100, rate_budget=120, short=5, medium=15, long=30) == 50


def test_interval_recomputed_when_watch_set_changes(feed, clock) -> None:
    poller = ActivityPoller(feed, rate_budget=1000, clock=clock)
    poller.watch([f"0x{i:040x}" for i in range(12)])
    assert poller.interval == poll_interval_for(12, rate_budget=1000)

    poller.unwatch([f"0x{i:040x}" for i in range(5)])
    assert poller.interval == poll_interval_for(7, rate_budget=1000)


# ── Dedup set ────────────────────────────────────────────────────────────────


def test_seen_hashes_rejects_duplicates() -> None:
    seen = SeenHashes(cap=10)
    assert seen.add("a")
    assert not seen.add("a")
    assert "a" in seen


def test_seen_hashes_evicts_oldest_half() -> None:
    seen = SeenHashes(cap=10)
    for i in range(11):
        seen.add(f"h{i}")

    assert len(seen) == 6
    assert seen.evicted == 5
    # Oldest five gone, newest kept
    assert all(f"h{i}" not in seen for i in range(5))
    assert all(f"h{i}" in seen for i in range(5, 11))


# ── Ticks ────────────────────────────────────────────────────────────────────


def test_tick_sorts_across_wallets_and_dedups(feed, clock, make_trade) -> None:
    poller = ActivityPoller(feed, lookback=5, clock=clock)
    poller.watch([W1, W2])
    received = []
    poller.add_handler(received.append)

    late = make_trade(trader=W1, timestamp=T0 + 9, tx_hash="0xlate")
    early = make_trade(trader=W2, timestamp=T0 + 8, tx_hash="0xearly")
    feed.add(late)
    feed.add(early)

    clock.now += 10
    poller.poll_once()
    assert [t.tx_hash for t in received] == ["0xearly", "0xlate"]

    # Same events come back inside the lookback window: not dispatched again
    clock.now += 1
    poller.poll_once()
    assert len(received) == 2


def test_duplicate_hash_in_one_batch_dispatched_once(feed, clock, make_trade) -> None:
    poller = ActivityPoller(feed, clock=clock)
    poller.watch([W1])
    received = []
    poller.add_handler(received.append)

    feed.add(make_trade(tx_hash="0xsame"))
    feed.add(make_trade(tx_hash="0xsame"))
    poller.poll_once()

    assert len(received) == 1


def test_failing_wallet_does_not_abort_tick(feed, clock, make_trade) -> None:
    poller = ActivityPoller(feed, clock=clock)
    poller.watch([W1, W2])
    received, errors = [], []
    poller.add_handler(received.append)
    poller.add_error_listener(errors.append)

    feed.failing.add(W1)
    feed.add(make_trade(trader=W2))
    poller.poll_once()

    assert len(received) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], FeedError)
    assert errors[0].wallet == W1
    assert poller.feed_errors == 1


def test_checkpoint_advances_only_on_success(feed, clock) -> None:
    poller = ActivityPoller(feed, lookback=5, clock=clock)
    poller.watch([W1, W2])
    feed.failing.add(W1)

    clock.now = T0 + 20
    poller.poll_once()
    clock.now = T0 + 40
    feed.calls.clear()
    poller.poll_once()

    since = dict(feed.calls)
    assert since[W1] == T0 - 5  # still the watch-time checkpoint
    assert since[W2] == T0 + 20 - 5


def test_handler_error_is_reported_not_raised(feed, clock, make_trade) -> None:
    poller = ActivityPoller(feed, clock=clock)
    poller.watch([W1])
    errors = []
    poller.add_error_listener(errors.append)

    def boom(trade):
        raise RuntimeError("handler broke")

    seen = []
    poller.add_handler(boom)
    poller.add_handler(seen.append)
    feed.add(make_trade())
    poller.poll_once()

    assert len(seen) == 1
    assert str(errors[0]) == "handler broke"


def test_unwatch_is_reference_counted(feed, clock) -> None:
    poller = ActivityPoller(feed, clock=clock)
    poller.watch([W1])
    poller.watch([W1, W2])
    poller.unwatch([W1])

    assert set(poller.wallets) == {W1, W2}
    poller.unwatch([W1])
    assert poller.wallets == [W2]


def test_no_wallets_no_queries(feed, clock) -> None:
    poller = ActivityPoller(feed, clock=clock)
    assert poller.poll_once() == []
    assert feed.calls == []
