import pytest
from conftest import W1, W2
from polycopy.strategies.classifier import SmartMoneyRegistry, TradeClassifier


def test_allowlist_is_case_insensitive(make_trade) -> None:
    classifier = TradeClassifier(target_addresses=[W1.upper()])
    assert classifier.accepts(make_trade(trader=W1)) == (True, "OK")
    assert classifier.accepts(make_trade(trader=W2))[0] is False


def test_no_allowlist_accepts_any_trader(make_trade) -> None:
    assert TradeClassifier().accepts(make_trade(trader=W2))[0]


def test_min_trade_size(make_trade) -> None:
    classifier = TradeClassifier(target_addresses=[W1], min_trade_size=10)
    assert not classifier.accepts(make_trade(size=9.99))[0]
    assert classifier.accepts(make_trade(size=10))[0]


def test_smart_money_only(make_trade) -> None:
    registry = SmartMoneyRegistry([W1])
    classifier = TradeClassifier(smart_money_only=True, smart_money=registry)

    assert classifier.accepts(make_trade(trader=W1))[0]
    accepted, reason = classifier.accepts(make_trade(trader=W2))
    assert not accepted
    assert reason == "not smart money"


def test_first_failing_predicate_wins(make_trade) -> None:
    classifier = TradeClassifier(
        target_addresses=[W1],
        min_trade_size=50,
        smart_money_only=True,
        smart_money=SmartMoneyRegistry(),
    )
    assert classifier.accepts(make_trade(trader=W2, size=1))[1] == "not a target address"


def test_smart_money_only_needs_registry() -> None:
    with pytest.raises(ValueError):
        TradeClassifier(smart_money_only=True)


class StubLeaderboard:
    def get_leaderboard(self, period="WEEK", limit=50):
        return [
            {"proxyWallet": W1, "pnl": 1200.5},
            {"proxyWallet": W2, "pnl": -30},
            {"userName": "no-wallet", "pnl": 99},
        ]


def test_registry_from_leaderboard_keeps_profitable_wallets() -> None:
    registry = SmartMoneyRegistry.from_leaderboard(StubLeaderboard())
    assert W1 in registry
    assert W2 not in registry
    assert len(registry) == 1
