"""Unit tests for mark-to-market valuation."""

from decimal import Decimal

from propdesk.execution.market.memory import InMemoryMarketData
from propdesk.execution.persistence.state_manager import Position
from propdesk.execution.tracking.valuation import (
    SOURCE_LIVE,
    SOURCE_STORED,
    direction_adjusted_price,
    live_price_map,
    portfolio_value,
    position_metrics,
)


def make_position(market_id, direction, shares, entry, current=None, position_id=None):
    return Position(
        id=position_id or f"pos-{market_id}",
        challenge_id="c1",
        market_id=market_id,
        direction=direction,
        size_amount=Decimal(shares) * Decimal(entry),
        shares=Decimal(shares),
        entry_price=Decimal(entry),
        current_price=Decimal(current) if current is not None else None,
        opened_at=0,
    )


class TestDirectionAdjustment:
    """Test suite for direction-adjusted prices."""

    def test_yes_unchanged(self):
        assert direction_adjusted_price(Decimal("0.70"), "YES") == Decimal("0.70")

    def test_no_is_complement(self):
        assert direction_adjusted_price(Decimal("0.70"), "NO") == Decimal("0.30")

    def test_position_metrics_no(self):
        """A NO position bought at 0.30 gains when the YES price falls."""
        metrics = position_metrics(Decimal("100"), Decimal("0.30"), Decimal("0.60"), "NO")

        assert metrics.effective_price == Decimal("0.40")
        assert metrics.position_value == Decimal("40.00")
        assert metrics.unrealized_pnl == Decimal("10.00")


class TestPortfolioValue:
    """Test suite for portfolio_value."""

    def test_live_price_used_inside_band(self):
        positions = [make_position("m1", "YES", "100", "0.50", current="0.50")]

        result = portfolio_value(positions, {"m1": Decimal("0.60")})

        assert result.total_value == Decimal("60.00")
        assert result.total_unrealized_pnl == Decimal("10.00")
        assert result.positions[0].price_source == SOURCE_LIVE

    def test_no_position_adjusted_once(self):
        """Live YES quotes are converted for NO holders; stored marks are not."""
        live = portfolio_value([make_position("m1", "NO", "100", "0.30", current="0.30")], {"m1": "0.60"})
        stored = portfolio_value([make_position("m1", "NO", "100", "0.30", current="0.35")], {})

        assert live.total_value == Decimal("40.00")
        assert stored.total_value == Decimal("35.00")

    def test_out_of_band_quote_falls_back_to_stored(self):
        """Quotes at or beyond the sanity bounds are treated as stale."""
        positions = [
            make_position("m1", "YES", "100", "0.50", current="0.52"),
            make_position("m2", "YES", "100", "0.50", current="0.48"),
        ]

        result = portfolio_value(positions, {"m1": Decimal("0.99"), "m2": Decimal("0.005")})

        assert result.total_value == Decimal("100.00")
        assert all(line.price_source == SOURCE_STORED for line in result.positions)

    def test_missing_current_price_uses_entry(self):
        result = portfolio_value([make_position("m1", "YES", "10", "0.40")], {})
        assert result.total_value == Decimal("4.00")

    def test_corrupt_quote_ignored(self):
        result = portfolio_value([make_position("m1", "YES", "10", "0.40", current="0.45")], {"m1": "NaN"})
        assert result.total_value == Decimal("4.50")

    def test_empty_and_zero_share_positions_skipped(self):
        assert portfolio_value([]).total_value == Decimal("0")
        result = portfolio_value([make_position("m1", "YES", "0", "0.40")], {"m1": "0.50"})
        assert result.positions == []

    def test_custom_band(self):
        positions = [make_position("m1", "YES", "100", "0.50", current="0.50")]
        result = portfolio_value(positions, {"m1": "0.97"}, sanity_min=Decimal("0.001"), sanity_max=Decimal("0.999"))
        assert result.total_value == Decimal("97.00")


class TestLivePriceMap:
    """Test suite for live_price_map."""

    def test_skips_unknown_markets(self):
        markets = InMemoryMarketData()
        markets.add_market("m1", price="0.42")

        prices = live_price_map(markets, ["m1", "m2", "m1"])

        assert prices == {"m1": Decimal("0.42")}

    def test_feed_failure_is_isolated(self):
        class FlakyFeed:
            def get_latest_price(self, market_id):
                raise ConnectionError("feed down")

        assert live_price_map(FlakyFeed(), ["m1"]) == {}
