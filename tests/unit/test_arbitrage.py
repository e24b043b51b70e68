"""Unit tests for arbitrage prevention."""

from decimal import Decimal

import pytest

from propdesk.execution.market.interfaces import EventInfo
from propdesk.execution.persistence.state_manager import Position, now_ms
from propdesk.execution.risk.arbitrage import ArbitrageDetector, check_positions, sibling_market_ids


def held(market_id, direction="YES", shares="100"):
    return Position(
        id=f"pos-{market_id}-{direction}",
        challenge_id="c1",
        market_id=market_id,
        direction=direction,
        size_amount=Decimal("30"),
        shares=Decimal(shares),
        entry_price=Decimal("0.30"),
        opened_at=0,
    )


@pytest.fixture
def event():
    """Three mutually exclusive outcomes."""
    return EventInfo(event_id="race", market_ids=["a", "b", "c"], is_multi_outcome=True)


class TestBinaryArbitrage:
    """YES and NO on the same market."""

    def test_opposite_direction_blocked(self):
        result = check_positions([held("m1", "YES")], "m1", "NO")

        assert result.is_arb is True
        assert "open YES position" in result.reason
        assert "before opening a NO position" in result.reason

    def test_same_direction_allowed(self):
        assert check_positions([held("m1", "YES")], "m1", "YES").is_arb is False

    def test_other_market_allowed(self):
        assert check_positions([held("m2", "YES")], "m1", "NO").is_arb is False

    def test_empty_position_ignored(self):
        assert check_positions([held("m1", "YES", shares="0")], "m1", "NO").is_arb is False


class TestMultiOutcomeArbitrage:
    """YES across every outcome of an event."""

    def test_last_outcome_blocked(self, event):
        """Holding N-1 outcomes blocks buying the Nth."""
        result = check_positions([held("a"), held("b")], "c", "YES", event)

        assert result.is_arb is True
        assert "2 other outcome(s)" in result.reason

    def test_fewer_than_n_minus_one_allowed(self, event):
        assert check_positions([held("a")], "c", "YES", event).is_arb is False

    def test_adding_to_held_outcome_allowed(self, event):
        assert check_positions([held("a"), held("b")], "a", "YES", event).is_arb is False

    def test_no_positions_do_not_count(self, event):
        positions = [held("a", "NO"), held("b", "NO")]
        assert check_positions(positions, "c", "YES", event).is_arb is False

    def test_binary_event_skipped(self):
        event = EventInfo(event_id="e", market_ids=["a", "b"], is_multi_outcome=False)
        assert sibling_market_ids(event) == []
        assert check_positions([held("a")], "b", "YES", event).is_arb is False

    def test_single_market_event_skipped(self):
        assert sibling_market_ids(EventInfo(event_id="e", market_ids=["a"], is_multi_outcome=True)) == []


class TestArbitrageDetector:
    """Test suite for ArbitrageDetector against stored positions."""

    def test_would_create_arbitrage(self, state_manager, market_data, challenge):
        for market_id in ("a", "b", "c"):
            market_data.add_market(market_id, price="0.33", volume="20000000")
        market_data.add_event("race", ["a", "b", "c"])
        for market_id in ("a", "b"):
            state_manager.save_position(
                Position(
                    id=None,
                    challenge_id=challenge.id,
                    market_id=market_id,
                    direction="YES",
                    size_amount=Decimal("33"),
                    shares=Decimal("100"),
                    entry_price=Decimal("0.33"),
                    opened_at=now_ms(),
                )
            )

        detector = ArbitrageDetector(state_manager, market_data)

        assert detector.would_create_arbitrage(challenge.id, "c", "YES").is_arb is True
        assert detector.would_create_arbitrage(challenge.id, "a", "NO").is_arb is True
        assert detector.would_create_arbitrage(challenge.id, "a", "YES").is_arb is False

    def test_event_lookup_failure_degrades_to_binary_check(self, state_manager, challenge):
        class BrokenEvents:
            def get_event_info_for_market(self, market_id, platform=None):
                raise TimeoutError("venue down")

        detector = ArbitrageDetector(state_manager, BrokenEvents())

        assert detector.would_create_arbitrage(challenge.id, "c", "YES").is_arb is False
