"""Arbitrage prevention.

Blocks trades that would assemble a guaranteed-payoff position set:

- Binary: holding YES and NO on the same market.
- Multi-outcome: holding YES on every outcome of an event with N
  mutually exclusive, exhaustive outcome markets. Buying the Nth is
  blocked once the other N-1 are held OPEN.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from propdesk.execution.market.interfaces import EventInfo, MarketDataProvider
from propdesk.execution.persistence.state_manager import Position, StateManager
from propdesk.utils.logger import get_risk_logger

logger = logging.getLogger(__name__)
risk_log = get_risk_logger()


@dataclass
class ArbCheckResult:
    """Outcome of an arbitrage check."""

    is_arb: bool
    reason: Optional[str] = None


def sibling_market_ids(event: Optional[EventInfo]) -> List[str]:
    """Outcome markets of a multi-outcome event; empty for standalone markets."""
    if event is None or not event.is_multi_outcome or len(event.market_ids) < 2:
        return []
    return list(event.market_ids)


def check_positions(
    positions: List[Position],
    market_id: str,
    direction: str,
    event: Optional[EventInfo] = None,
) -> ArbCheckResult:
    """
    Pure arbitrage check over a set of OPEN positions.

    Args:
        positions: The challenge's OPEN positions
        market_id: Market being traded
        direction: Direction of the new trade ('YES' or 'NO')
        event: Parent event of the market, if any

    Returns:
        ArbCheckResult
    """
    opposite = "NO" if direction == "YES" else "YES"

    for position in positions:
        if position.market_id == market_id and position.direction == opposite and position.shares > 0:
            return ArbCheckResult(
                is_arb=True,
                reason=(
                    f"Arbitrage blocked: You have an open {opposite} position "
                    f"({position.shares:.2f} shares). Close it before opening a "
                    f"{direction} position on this market."
                ),
            )

    siblings = sibling_market_ids(event)
    if not siblings:
        return ArbCheckResult(is_arb=False)

    held_yes = {p.market_id for p in positions if p.market_id in siblings and p.direction == "YES"}
    others = [m for m in siblings if m != market_id]

    if others and all(m in held_yes for m in others):
        return ArbCheckResult(
            is_arb=True,
            reason=(
                f"Arbitrage blocked: You already hold positions on {len(others)} other outcome(s) "
                f"in this event. Buying this outcome would guarantee risk-free profit. "
                f"Close at least one other position first."
            ),
        )

    return ArbCheckResult(is_arb=False)


class ArbitrageDetector:
    """Loads positions and event structure, then runs ``check_positions``."""

    def __init__(self, state_manager: StateManager, market_data: MarketDataProvider):
        self.state_manager = state_manager
        self.market_data = market_data

    def would_create_arbitrage(
        self,
        challenge_id: str,
        market_id: str,
        direction: str,
        platform: Optional[str] = None,
    ) -> ArbCheckResult:
        """
        Check whether a trade would create an arbitrage position.

        Args:
            challenge_id: Challenge ID
            market_id: Market being traded
            direction: 'YES' or 'NO'
            platform: Venue used to resolve the market's event

        Returns:
            ArbCheckResult
        """
        positions = self.state_manager.get_open_positions(challenge_id)

        try:
            event = self.market_data.get_event_info_for_market(market_id, platform)
        except Exception as e:
            # Without event structure only the binary check can run
            logger.warning(f"Event lookup failed for {market_id}: {e}")
            event = None

        result = check_positions(positions, market_id, direction, event)
        if result.is_arb:
            risk_log.info(
                f"Arbitrage blocked on {market_id}",
                extra_data={"challenge_id": challenge_id, "market_id": market_id, "direction": direction},
            )
        return result
