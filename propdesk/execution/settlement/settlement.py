"""Settlement of positions on resolved markets.

Scans the OPEN positions of active challenges, asks the oracle whether its market resolved,
and closes resolved positions at the direction-adjusted settlement
price (the oracle's resolution price, else 1/0 from the winning
outcome). Each settlement is recorded as a SELL trade so the ledger
identity keeps holding, and runs under the owning challenge's lock.

Designed to be called from a cron trigger or worker loop.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional

from propdesk.execution.evaluation.evaluator import ChallengeEvaluator
from propdesk.execution.market.interfaces import ResolutionOracle, ResolutionStatus
from propdesk.execution.persistence.state_manager import StateManager, now_ms
from propdesk.execution.tracking.position_ledger import PositionLedger
from propdesk.execution.tracking.valuation import direction_adjusted_price
from propdesk.utils.logger import get_settlement_logger
from propdesk.utils.safe_parse import ONE, ZERO, safe_decimal

logger = logging.getLogger(__name__)
settle_log = get_settlement_logger()


@dataclass
class SettlementResult:
    """Summary of one settlement sweep."""

    positions_checked: int = 0
    positions_settled: int = 0
    total_pnl_settled: Decimal = ZERO
    errors: List[str] = field(default_factory=list)


def settlement_price(resolution: ResolutionStatus, direction: str) -> Optional[Decimal]:
    """
    Direction-adjusted payout per share of a resolved market.

    Returns:
        Price in [0, 1], or None when the outcome is unknown
    """
    raw = safe_decimal(resolution.resolution_price, default=None)
    if raw is None and resolution.winning_outcome:
        raw = ONE if resolution.winning_outcome.upper() == "YES" else ZERO
    if raw is None:
        return None
    return direction_adjusted_price(raw, direction)


class SettlementService:
    """Closes OPEN positions on resolved markets."""

    def __init__(
        self,
        state_manager: StateManager,
        oracle: ResolutionOracle,
        evaluator: Optional[ChallengeEvaluator] = None,
    ):
        self.state_manager = state_manager
        self.oracle = oracle
        self.evaluator = evaluator
        self.ledger = PositionLedger(state_manager)

    def settle_resolved_positions(self, now: Optional[int] = None) -> SettlementResult:
        """
        Settle every OPEN position whose market has resolved.

        Per-position failures are collected in ``errors``; the sweep continues.

        Returns:
            SettlementResult
        """
        now = now if now is not None else now_ms()
        result = SettlementResult()

        # Terminal challenges are frozen; their positions are never settled
        active_ids = {c.id for c in self.state_manager.get_active_challenges()}
        open_positions = [p for p in self.state_manager.get_all_open_positions() if p.challenge_id in active_ids]
        result.positions_checked = len(open_positions)
        if not open_positions:
            logger.info("No open positions to check")
            return result

        resolutions: Dict[str, ResolutionStatus] = {}
        for market_id in {p.market_id for p in open_positions}:
            try:
                resolutions[market_id] = self.oracle.get_resolution_status(market_id)
            except Exception as e:
                result.errors.append(f"Resolution lookup failed for {market_id}: {e}")
                logger.warning(f"Resolution lookup failed for {market_id}: {e}")

        by_challenge: Dict[str, List[str]] = defaultdict(list)
        for position in open_positions:
            resolution = resolutions.get(position.market_id)
            if resolution is not None and resolution.is_resolved:
                by_challenge[position.challenge_id].append(position.id)

        for challenge_id, position_ids in by_challenge.items():
            settled_any = False
            for position_id in position_ids:
                try:
                    pnl = self._settle_position(challenge_id, position_id, resolutions, now)
                except Exception as e:
                    msg = f"Failed to settle position {position_id}: {e}"
                    logger.error(msg, exc_info=True)
                    result.errors.append(msg)
                    continue
                if pnl is not None:
                    settled_any = True
                    result.positions_settled += 1
                    result.total_pnl_settled += pnl

            if settled_any and self.evaluator is not None:
                try:
                    self.evaluator.evaluate(challenge_id, now=now)
                except Exception as e:
                    logger.error(f"Post-settlement evaluation failed for {challenge_id}: {e}", exc_info=True)

        logger.info(
            f"Settlement scan complete: checked={result.positions_checked} "
            f"settled={result.positions_settled} pnl={result.total_pnl_settled:.2f} errors={len(result.errors)}"
        )
        return result

    def _settle_position(
        self, challenge_id: str, position_id: str, resolutions: Dict[str, ResolutionStatus], now: int
    ) -> Optional[Decimal]:
        with self.state_manager.challenge_transaction(challenge_id) as conn:
            position = self.state_manager.get_position(position_id, conn=conn)
            if position is None or position.status != "OPEN":
                logger.info(f"Position {position_id} already settled, skipping")
                return None

            price = settlement_price(resolutions[position.market_id], position.direction)
            if price is None:
                logger.warning(f"Resolved market {position.market_id} has unknown outcome, skipping")
                return None

            challenge = self.state_manager.get_challenge(challenge_id, conn=conn)
            if challenge is None or not challenge.is_active:
                logger.info(f"Challenge {challenge_id} is no longer active, leaving position {position_id}")
                return None

            trade =self.ledger.sell(conn, challenge, position, position.direction, position.shares, price, now)

        settle_log.info(
            f"Position settled: {position.direction} {trade.shares} on {position.market_id} @ {price}",
            extra_data={
                "position_id": position_id,
                "challenge_id": challenge_id,
                "entry_price": str(position.entry_price),
                "settlement_price": str(price),
                "pnl": str(trade.realized_pnl),
                "proceeds": str(trade.amount),
            },
        )
        return trade.realized_pnl
