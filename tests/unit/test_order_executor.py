"""Unit tests for TradeExecutor."""

import threading
from decimal import Decimal

import pytest

from propdesk.execution.errors import (
    ArbitrageRejectedError,
    ChallengeInactiveError,
    ChallengeNotFoundError,
    InsufficientFundsError,
    InsufficientSharesError,
    LiquidityError,
    MarketResolvedError,
    PositionNotFoundError,
    RiskRejectedError,
    ValidationError,
)
from propdesk.execution.runner.trade_executor import TradeExecutor
from propdesk.execution.settlement.audit import BalanceAuditor


def ledger_balance(state_manager, challenge):
    """Cash balance implied by the trade ledger."""
    balance = challenge.starting_balance
    for trade in state_manager.get_trades(challenge.id):
        if trade.trade_type == "BUY":
            balance -= trade.amount
        else:
            balance += trade.shares * trade.price
        balance -= trade.fees
    return balance


class TestValidation:
    """Requests are validated before any I/O."""

    @pytest.mark.parametrize(
        "kwargs,match",
        [
            ({"side": "HOLD", "amount": "10"}, "Invalid side"),
            ({"side": "BUY", "amount": "10", "direction": "MAYBE"}, "Invalid direction"),
            ({"side": "BUY", "amount": "0"}, "Amount must be a positive"),
            ({"side": "BUY", "amount": "-5"}, "Amount must be a positive"),
            ({"side": "BUY", "amount": "NaN"}, "Amount must be a positive"),
            ({"side": "BUY", "amount": None}, "Amount must be a positive"),
            ({"side": "SELL", "shares": "0"}, "Shares must be a positive"),
            ({"side": "BUY", "amount": "10", "max_slippage": "-1"}, "max_slippage"),
        ],
    )
    def test_rejects_malformed(self, executor, challenge, kwargs, match):
        with pytest.raises(ValidationError, match=match):
            executor.execute_trade("user-1", challenge.id, "btc-100k", **kwargs)

    def test_lowercase_enums_accepted(self, executor, challenge):
        trade = executor.execute_trade("user-1", challenge.id, "btc-100k", "buy", amount="10", direction="yes")
        assert trade.trade_type == "BUY"
        assert trade.direction == "YES"


class TestBuy:
    """Test suite for BUY orders."""

    def test_buy_yes(self, executor, state_manager, challenge):
        """Synthetic book around 0.55: the first ask sits at 0.57."""
        trade = executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"))

        assert trade.price == Decimal("0.57")
        assert trade.amount == Decimal("100")
        assert trade.shares == Decimal("175.438596")

        stored = state_manager.get_challenge(challenge.id)
        assert stored.current_balance == Decimal("9900")

        position = state_manager.get_open_position(challenge.id, "btc-100k")
        assert position.direction == "YES"
        assert position.size_amount == Decimal("100")
        assert position.entry_price == Decimal("0.57")

    def test_buy_no_uses_complementary_price(self, executor, market_data, state_manager, challenge):
        """YES bid 0.68 / ask 0.70: a NO buy fills near 0.32."""
        market_data.set_order_book(
            "btc-100k", bids=[("0.68", "10000")], asks=[("0.70", "10000")]
        )

        trade = executor.execute_trade(
            "user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("50"), direction="NO"
        )

        assert trade.price == Decimal("0.32")
        assert trade.shares == Decimal("156.25")
        assert state_manager.get_open_position(challenge.id, "btc-100k").entry_price == Decimal("0.32")

    def test_add_to_position_averages_entry(self, executor, market_data, state_manager, challenge):
        market_data.set_order_book("btc-100k", bids=[("0.48", "10000")], asks=[("0.50", "10000")])
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"))
        market_data.set_order_book("btc-100k", bids=[("0.23", "10000")], asks=[("0.25", "10000")])
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"))

        position = state_manager.get_open_position(challenge.id, "btc-100k")
        # 200 shares @ 0.50 + 400 shares @ 0.25
        assert position.shares == Decimal("600")
        assert position.size_amount == Decimal("200")
        assert position.entry_price == Decimal("0.333333")
        assert len(state_manager.get_open_positions(challenge.id)) == 1

    def test_insufficient_funds(self, executor, state_manager, challenge, set_balance):
        set_balance(challenge.id, "50", start_of_day_balance=Decimal("50"), high_water_mark=Decimal("50"))

        with pytest.raises(InsufficientFundsError):
            executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"))

        assert state_manager.get_trades(challenge.id) == []
        assert state_manager.get_challenge(challenge.id).current_balance == Decimal("50")

    def test_risk_rejection(self, executor, state_manager, challenge):
        with pytest.raises(RiskRejectedError, match="Max per-market exposure"):
            executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("600"))

        assert state_manager.get_open_positions(challenge.id) == []

    def test_binary_arbitrage_rejected(self, executor, challenge):
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("50"))

        with pytest.raises(ArbitrageRejectedError) as exc_info:
            executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("50"), direction="NO")

        assert exc_info.value.code == "ARBITRAGE_BLOCKED"

    def test_multi_outcome_arbitrage_rejected(self, executor, market_data, challenge):
        for market_id in ("a", "b", "c"):
            market_data.add_market(market_id, price="0.33", volume="20000000")
        market_data.add_event("race", ["a", "b", "c"])

        executor.execute_trade("user-1", challenge.id, "a", "BUY", amount=Decimal("20"))
        executor.execute_trade("user-1", challenge.id, "b", "BUY", amount=Decimal("20"))

        with pytest.raises(ArbitrageRejectedError):
            executor.execute_trade("user-1", challenge.id, "c", "BUY", amount=Decimal("20"))

    def test_slippage_limit(self, executor, market_data, challenge):
        market_data.set_order_book("btc-100k", bids=[("0.50", "100")], asks=[("0.55", "100"), ("0.65", "1000")])

        with pytest.raises(LiquidityError, match="Slippage"):
            executor.execute_trade(
                "user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("200"), max_slippage="0.01"
            )

    def test_no_order_book(self, executor, market_data, challenge):
        market_data.add_market("dark", volume="20000000")

        with pytest.raises(LiquidityError):
            executor.execute_trade("user-1", challenge.id, "dark", "BUY", amount=Decimal("10"))

    def test_fees_recorded_separately(self, state_manager, market_data, settings, evaluator, challenge):
        settings.fee_rate = 0.01
        executor = TradeExecutor(state_manager, market_data, market_data, settings=settings, evaluator=evaluator)

        trade = executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"))

        assert trade.fees == Decimal("1")
        assert trade.price == Decimal("0.57")
        assert state_manager.get_challenge(challenge.id).current_balance == Decimal("9899")


class TestSell:
    """Test suite for SELL orders."""

    def test_buy_then_sell_closes_position(self, executor, state_manager, challenge):
        buy = executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"))
        sell = executor.execute_trade("user-1", challenge.id, "btc-100k", "SELL")

        assert sell.trade_type == "SELL"
        assert sell.shares == buy.shares
        assert sell.price == Decimal("0.53")
        assert sell.realized_pnl == (buy.shares * (Decimal("0.53") - Decimal("0.57"))).quantize(Decimal("0.000001"))

        assert state_manager.get_open_positions(challenge.id) == []
        closed = state_manager.get_position(buy.position_id)
        assert closed.status == "CLOSED"
        assert closed.closed_price == Decimal("0.53")

        stored = state_manager.get_challenge(challenge.id)
        assert stored.current_balance == Decimal("9900") + sell.amount

    def test_partial_sell_reduces_cost_basis(self, executor, market_data, state_manager, challenge):
        market_data.set_order_book("btc-100k", bids=[("0.40", "10000")], asks=[("0.50", "10000")])
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"))

        executor.execute_trade("user-1", challenge.id, "btc-100k", "SELL", shares=Decimal("50"))

        position = state_manager.get_open_position(challenge.id, "btc-100k")
        assert position.shares == Decimal("150")
        assert position.size_amount == Decimal("75")

    def test_sell_without_position(self, executor, challenge):
        with pytest.raises(PositionNotFoundError):
            executor.execute_trade("user-1", challenge.id, "btc-100k", "SELL", shares=Decimal("10"))

    def test_sell_wrong_direction(self, executor, challenge):
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("50"))

        with pytest.raises(PositionNotFoundError):
            executor.execute_trade("user-1", challenge.id, "btc-100k", "SELL", direction="NO")

    def test_sell_more_than_held(self, executor, challenge):
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("50"))

        with pytest.raises(InsufficientSharesError):
            executor.execute_trade("user-1", challenge.id, "btc-100k", "SELL", shares=Decimal("1000"))


class TestGuards:
    """Ownership, activity and tradeability."""

    def test_foreign_challenge_looks_missing(self, executor, challenge):
        with pytest.raises(ChallengeNotFoundError):
            executor.execute_trade("intruder", challenge.id, "btc-100k", "BUY", amount=Decimal("10"))

    def test_inactive_challenge(self, executor, state_manager, challenge):
        challenge.status = "failed"
        state_manager.update_challenge(challenge)

        with pytest.raises(ChallengeInactiveError):
            executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("10"))

    def test_resolved_market(self, executor, market_data, challenge):
        market_data.resolve("btc-100k", "YES")

        with pytest.raises(MarketResolvedError) as exc_info:
            executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("10"))

        assert exc_info.value.code == "MARKET_RESOLVED"

    def test_settling_market_not_accepting_orders(self, executor, market_data, challenge):
        market_data.set_price("btc-100k", "0.97")
        market_data.set_accepting_orders("btc-100k", False)

        with pytest.raises(MarketResolvedError):
            executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("10"))

    def test_extreme_price_still_open_is_tradeable(self, executor, market_data, challenge):
        market_data.set_price("btc-100k", "0.97")

        trade = executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("10"))

        assert trade.price == Decimal("0.99")


class TestIdempotency:
    """At-most-once execution per idempotency key."""

    def test_replay_returns_original(self, executor, state_manager, challenge):
        first = executor.execute_trade(
            "user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"), idempotency_key="order-1"
        )
        second = executor.execute_trade(
            "user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"), idempotency_key="order-1"
        )

        assert second.id == first.id
        assert len(state_manager.get_trades(challenge.id)) == 1
        assert state_manager.get_challenge(challenge.id).current_balance == Decimal("9900")

    def test_reused_key_on_different_order_rejected(self, executor, state_manager, challenge):
        executor.execute_trade(
            "user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"), idempotency_key="order-1"
        )

        with pytest.raises(ValidationError, match="already used"):
            executor.execute_trade(
                "user-1", challenge.id, "eth-5k", "BUY", amount=Decimal("100"), idempotency_key="order-1"
            )
        with pytest.raises(ValidationError, match="already used"):
            executor.execute_trade(
                "user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"), direction="NO",
                idempotency_key="order-1",
            )

        assert len(state_manager.get_trades(challenge.id)) == 1

    def test_distinct_keys_execute(self, executor, state_manager, challenge):
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("10"), idempotency_key="a")
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("10"), idempotency_key="b")

        assert len(state_manager.get_trades(challenge.id)) == 2


class TestLedgerInvariant:
    """Balance always equals what the trade ledger implies."""

    def test_after_mixed_trades(self, executor, state_manager, challenge):
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("120"))
        executor.execute_trade("user-1", challenge.id, "eth-5k", "BUY", amount=Decimal("80"), direction="NO")
        executor.execute_trade("user-1", challenge.id, "btc-100k", "SELL", shares=Decimal("100"))
        executor.execute_trade("user-1", challenge.id, "eth-5k", "SELL", direction="NO")

        stored = state_manager.get_challenge(challenge.id)
        assert abs(stored.current_balance - ledger_balance(state_manager, stored)) <= Decimal("0.01")
        assert BalanceAuditor(state_manager).audit(challenge.id).is_consistent

    def test_concurrent_buys_serialize(self, executor, state_manager, challenge):
        """Concurrent orders on one challenge never lose an update."""
        errors = []

        def buy(i):
            try:
                executor.execute_trade(
                    "user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("40"), idempotency_key=f"k{i}"
                )
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=buy, args=(i,)) for i in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        stored = state_manager.get_challenge(challenge.id)
        assert stored.current_balance == Decimal("9600")
        assert len(state_manager.get_trades(challenge.id)) == 10
        position = state_manager.get_open_position(challenge.id, "btc-100k")
        assert position.size_amount == Decimal("400")

    def test_concurrent_buys_respect_exposure_cap(self, executor, state_manager, challenge):
        """Checks re-run under the lock: only the cap's worth gets through."""
        results = []

        def buy(i):
            try:
                executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("150"))
                results.append("ok")
            except RiskRejectedError:
                results.append("rejected")

        threads = [threading.Thread(target=buy, args=(i,)) for i in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("ok") == 3
        assert state_manager.get_open_position(challenge.id, "btc-100k").size_amount == Decimal("450")
