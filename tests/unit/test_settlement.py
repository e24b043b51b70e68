"""Unit tests for settlement and the balance audit."""

from decimal import Decimal

import pytest

from propdesk.execution.errors import ChallengeNotFoundError
from propdesk.execution.market.interfaces import ResolutionStatus
from propdesk.execution.settlement.audit import BalanceAuditor
from propdesk.execution.settlement.settlement import SettlementService, settlement_price


@pytest.fixture
def settlement(state_manager, market_data, evaluator):
    return SettlementService(state_manager, market_data, evaluator)


@pytest.fixture
def auditor(state_manager):
    return BalanceAuditor(state_manager)


def near(actual, expected, tolerance="0.01"):
    return abs(Decimal(actual) - Decimal(expected)) <= Decimal(tolerance)


class TestSettlementPrice:
    """Test suite for settlement_price."""

    def test_winning_outcome(self):
        resolution = ResolutionStatus(market_id="m", is_resolved=True, winning_outcome="YES")

        assert settlement_price(resolution, "YES") == Decimal("1")
        assert settlement_price(resolution, "NO") == Decimal("0")

    def test_explicit_price_wins(self):
        resolution = ResolutionStatus(
            market_id="m", is_resolved=True, winning_outcome="YES", resolution_price=Decimal("0.5")
        )

        assert settlement_price(resolution, "YES") == Decimal("0.5")
        assert settlement_price(resolution, "NO") == Decimal("0.5")

    def test_unknown_outcome(self):
        assert settlement_price(ResolutionStatus(market_id="m", is_resolved=True), "YES") is None


class TestSettlementService:
    """Test suite for SettlementService."""

    def test_nothing_open(self, settlement):
        result = settlement.settle_resolved_positions()

        assert result.positions_checked == 0
        assert result.positions_settled == 0

    def test_unresolved_left_open(self, settlement, executor, state_manager, challenge):
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"))

        result = settlement.settle_resolved_positions()

        assert result.positions_checked == 1
        assert result.positions_settled == 0
        assert len(state_manager.get_open_positions(challenge.id)) == 1

    def test_winning_position_paid_out(self, settlement, executor, state_manager, market_data, challenge):
        """100 at 0.57 buys 175.438596 shares paying $1 each."""
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"))
        market_data.resolve("btc-100k", "YES")

        result = settlement.settle_resolved_positions()

        assert result.positions_settled == 1
        assert near(result.total_pnl_settled, "75.44")

        position = state_manager.get_positions(challenge.id)[0]
        assert position.status == "CLOSED"
        assert position.closed_price == Decimal("1")
        assert near(state_manager.get_challenge(challenge.id).current_balance, "10075.44")

    def test_losing_position_written_off(self, settlement, executor, state_manager, market_data, challenge):
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"), direction="NO")
        market_data.resolve("btc-100k", "YES")

        result = settlement.settle_resolved_positions()

        assert near(result.total_pnl_settled, "-100")
        assert state_manager.get_open_positions(challenge.id) == []
        assert state_manager.get_challenge(challenge.id).current_balance == Decimal("9900")

    def test_settlement_recorded_as_sell(self, settlement, executor, state_manager, market_data, challenge, auditor):
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"))
        market_data.resolve("btc-100k", "NO")

        settlement.settle_resolved_positions()

        assert [t.trade_type for t in state_manager.get_trades(challenge.id)] == ["BUY", "SELL"]
        assert auditor.audit(challenge.id).is_consistent

    def test_terminal_challenge_left_untouched(self, settlement, executor, state_manager, market_data, challenge):
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"))
        failed = state_manager.get_challenge(challenge.id)
        failed.status = "failed"
        state_manager.update_challenge(failed)
        market_data.resolve("btc-100k", "YES")

        result = settlement.settle_resolved_positions()

        assert result.positions_checked == 0
        assert result.positions_settled == 0
        assert state_manager.get_challenge(challenge.id).current_balance == Decimal("9900")
        assert len(state_manager.get_open_positions(challenge.id)) == 1

    def test_second_run_settles_nothing(self, settlement, executor, market_data, challenge):
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"))
        market_data.resolve("btc-100k", "YES")

        settlement.settle_resolved_positions()
        again = settlement.settle_resolved_positions()

        assert again.positions_checked == 0
        assert again.positions_settled == 0

    def test_oracle_failure_collected(self, state_manager, executor, challenge):
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"))

        class DownOracle:
            def get_resolution_status(self, market_id):
                raise ConnectionError("oracle offline")

        result = SettlementService(state_manager, DownOracle()).settle_resolved_positions()

        assert result.positions_settled == 0
        assert len(result.errors) == 1
        assert "oracle offline" in result.errors[0]


class TestBalanceAuditor:
    """Test suite for BalanceAuditor."""

    def test_fresh_challenge_consistent(self, auditor, challenge):
        result = auditor.audit(challenge.id)

        assert result.is_consistent
        assert result.trades_counted == 0
        assert result.reason is None

    def test_trading_keeps_ledger_consistent(self, auditor, executor, challenge):
        executor.execute_trade("user-1", challenge.id, "btc-100k", "BUY", amount=Decimal("100"))
        executor.execute_trade("user-1", challenge.id, "btc-100k", "SELL", shares=Decimal("50"))

        result = auditor.audit(challenge.id)

        assert result.is_consistent
        assert result.trades_counted == 2
        assert result.position_value > 0

    def test_minor_tampering_flagged(self, auditor, challenge, set_balance):
        set_balance(challenge.id, "10050")

        result = auditor.audit(challenge.id)

        assert result.discrepancy == Decimal("50")
        assert result.is_suspicious
        assert result.reason == "Minor discrepancy - likely rounding"

    def test_moderate_tampering(self, auditor, challenge, set_balance):
        set_balance(challenge.id, "9700")

        result = auditor.audit(challenge.id)

        assert result.discrepancy == Decimal("-300")
        assert result.reason == "Moderate discrepancy - review needed"

    def test_audit_all_active(self, auditor, state_manager, challenge, set_balance):
        from propdesk.execution.evaluation.challenges import open_challenge

        open_challenge(state_manager, "user-2", tier="5k")
        set_balance(challenge.id, "20000")

        report = auditor.audit_all_active()

        assert len(report.results) == 2
        assert [r.challenge_id for r in report.alerts] == [challenge.id]
        assert report.alerts[0].reason == "Large discrepancy - investigate immediately"

    def test_unknown_challenge(self, auditor):
        with pytest.raises(ChallengeNotFoundError):
            auditor.audit("missing")
