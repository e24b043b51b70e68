"""Challenge state machine.

Evaluates a challenge's equity against its rules and applies the
resulting transition:

    time limit       -> failed
    max drawdown     -> failed (from high-water mark, immediate)
    daily loss       -> pending_failure (grace window, then failed)
    profit target    -> challenge/verification: soft-pass to funded
                        funded: passed (terminal)
    otherwise        -> active, high-water mark raised

Equity is cash plus the mark-to-market value of OPEN positions. Live
prices are fetched before the challenge lock is taken; the transition
itself runs inside the lock.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy.engine import Connection

from propdesk.config.settings import EngineSettings, get_settings
from propdesk.execution.errors import ChallengeNotFoundError
from propdesk.execution.market.interfaces import MarketDataProvider
from propdesk.execution.persistence.state_manager import (
    PHASE_CHALLENGE,
    PHASE_FUNDED,
    PHASE_VERIFICATION,
    STATUS_ACTIVE,
    STATUS_FAILED,
    STATUS_PASSED,
    Challenge,
    Position,
    StateManager,
    now_ms,
)
from propdesk.execution.tracking.position_ledger import PositionLedger
from propdesk.execution.tracking.valuation import (
    SOURCE_LIVE,
    PortfolioValuation,
    live_price_map,
    portfolio_value,
)
from propdesk.utils.logger import get_evaluation_logger
from propdesk.utils.safe_parse import quantize_money, quantize_price, safe_decimal

logger = logging.getLogger(__name__)
eval_log = get_evaluation_logger()

# Reported statuses
RESULT_ACTIVE = "active"
RESULT_PENDING_FAILURE = "pending_failure"
RESULT_PASSED = "passed"
RESULT_FAILED = "failed"

MS_PER_HOUR = 3_600_000


@dataclass
class EvaluationResult:
    """Outcome of one evaluation."""

    status: str
    reason: Optional[str] = None
    equity: Optional[Decimal] = None
    phase: Optional[str] = None


class ChallengeEvaluator:
    """
    Applies challenge rules to current equity.

    ``evaluate`` is idempotent: re-running it without price or balance
    changes produces the same result and no further mutation.

    Attributes:
        state_manager: Persistence
        market_data: Source of live prices
        grace_ms: How long a daily-loss breach may persist before failing
    """

    def __init__(
        self,
        state_manager: StateManager,
        market_data: MarketDataProvider,
        settings: Optional[EngineSettings] = None,
    ):
        settings = settings or get_settings()
        self.state_manager = state_manager
        self.market_data = market_data
        self.ledger = PositionLedger(state_manager)
        self.grace_ms = int(settings.pending_failure_grace_hours * MS_PER_HOUR)
        self.sanity_min = safe_decimal(settings.price_sanity_min)
        self.sanity_max = safe_decimal(settings.price_sanity_max)

    # ========================================================================
    # Equity
    # ========================================================================

    def prefetch_prices(self, challenge_id: str) -> Dict[str, Decimal]:
        """Live prices for the challenge's open markets (no lock held)."""
        positions = self.state_manager.get_open_positions(challenge_id)
        return live_price_map(self.market_data, [p.market_id for p in positions])

    def value_positions(self, positions: List[Position], prices: Dict[str, Decimal]) -> PortfolioValuation:
        return portfolio_value(positions, prices, sanity_min=self.sanity_min, sanity_max=self.sanity_max)

    def _mark_positions(
        self, conn: Connection, positions: List[Position], valuation: PortfolioValuation
    ) -> None:
        """Store live marks as each position's current price."""
        by_id = {p.id: p for p in positions}
        for line in valuation.positions:
            if line.price_source != SOURCE_LIVE:
                continue
            position = by_id.get(line.position_id)
            mark = quantize_price(line.effective_price)
            if position is not None and position.current_price != mark:
                position.current_price = mark
                self.state_manager.save_position(position, conn=conn)

    # ========================================================================
    # Evaluation
    # ========================================================================

    def evaluate(self, challenge_id: str, now: Optional[int] = None) -> EvaluationResult:
        """
        Evaluate a challenge and apply any state transition.

        Args:
            challenge_id: Challenge ID
            now: Evaluation time (Unix ms); defaults to the current time

        Returns:
            EvaluationResult

        Raises:
            ChallengeNotFoundError: If the challenge does not exist
        """
        now = now if now is not None else now_ms()

        snapshot = self.state_manager.get_challenge(challenge_id)
        if snapshot is None:
            raise ChallengeNotFoundError(f"Challenge not found: {challenge_id}")
        if not snapshot.is_active:
            return self._stored_result(snapshot)

        prices = self.prefetch_prices(challenge_id)

        with self.state_manager.challenge_transaction(challenge_id) as conn:
            challenge = self.state_manager.get_challenge(challenge_id, conn=conn)
            if not challenge.is_active:
                return self._stored_result(challenge)

            positions = self.state_manager.get_open_positions(challenge_id, conn=conn)
            valuation = self.value_positions(positions, prices)
            self._mark_positions(conn, positions, valuation)
            equity = challenge.current_balance + valuation.total_value

            return self._transition(conn, challenge, positions, valuation, equity, now)

    def evaluate_all_active(self, now: Optional[int] = None) -> Dict[str, EvaluationResult]:
        """
        Evaluate every active challenge.

        A failure on one challenge is logged and does not stop the sweep.

        Returns:
            challenge_id -> EvaluationResult for the challenges evaluated
        """
        results: Dict[str, EvaluationResult] = {}
        for challenge in self.state_manager.get_active_challenges():
            try:
                results[challenge.id] = self.evaluate(challenge.id, now=now)
            except Exception as e:
                logger.error(f"Evaluation failed for challenge {challenge.id}: {e}", exc_info=True)

        logger.info(f"Evaluated {len(results)} active challenges")
        return results

    def _stored_result(self, challenge: Challenge) -> EvaluationResult:
        return EvaluationResult(
            status=challenge.status,
            reason=challenge.failure_reason,
            equity=challenge.current_balance,
            phase=challenge.phase,
        )

    def _transition(
        self,
        conn: Connection,
        challenge: Challenge,
        positions: List[Position],
        valuation: PortfolioValuation,
        equity: Decimal,
        now: int,
    ) -> EvaluationResult:
        rules = challenge.rules
        equity = quantize_money(equity)

        if challenge.ends_at is not None and now > challenge.ends_at:
            return self._fail(conn, challenge, equity, "Time limit exceeded")

        drawdown = challenge.high_water_mark - equity
        if drawdown >= rules.max_drawdown:
            return self._fail(
                conn,
                challenge,
                equity,
                f"Max drawdown breached: equity ${equity:.2f} is ${drawdown:.2f} below "
                f"high-water mark ${challenge.high_water_mark:.2f} (limit ${rules.max_drawdown:.2f})",
            )

        daily_loss = challenge.start_of_day_balance - equity
        if daily_loss >= rules.max_daily_loss:
            return self._pending_failure(conn, challenge, equity, daily_loss, now)

        if challenge.pending_failure_at is not None:
            challenge.pending_failure_at = None
            self.state_manager.update_challenge(challenge, conn=conn)
            eval_log.info(
                f"Challenge {challenge.id} recovered from daily loss breach",
                extra_data={"challenge_id": challenge.id, "equity": str(equity)},
            )

        profit = equity - challenge.starting_balance
        if profit >= rules.profit_target:
            if challenge.phase in (PHASE_CHALLENGE, PHASE_VERIFICATION):
                return self._promote_to_funded(conn, challenge, positions, valuation, equity, now)
            challenge.status = STATUS_PASSED
            challenge.pending_failure_at = None
            challenge.high_water_mark = max(challenge.high_water_mark, equity)
            self.state_manager.update_challenge(challenge, conn=conn)
            self._log_transition(challenge, STATUS_PASSED, equity, "Profit target reached")
            return EvaluationResult(
                status=RESULT_PASSED,
                reason=f"Profit target reached: ${profit:.2f} (target ${rules.profit_target:.2f})",
                equity=equity,
                phase=challenge.phase,
            )

        if equity > challenge.high_water_mark:
            challenge.high_water_mark = equity
            self.state_manager.update_challenge(challenge, conn=conn)

        return EvaluationResult(status=RESULT_ACTIVE, equity=equity, phase=challenge.phase)

    def _fail(self, conn: Connection, challenge: Challenge, equity: Decimal, reason: str) -> EvaluationResult:
        challenge.status = STATUS_FAILED
        challenge.failure_reason = reason
        self.state_manager.update_challenge(challenge, conn=conn)
        self._log_transition(challenge, STATUS_FAILED, equity, reason)
        return EvaluationResult(status=RESULT_FAILED, reason=reason, equity=equity, phase=challenge.phase)

    def _pending_failure(
        self, conn: Connection, challenge: Challenge, equity: Decimal, daily_loss: Decimal, now: int
    ) -> EvaluationResult:
        limit = challenge.rules.max_daily_loss

        if challenge.pending_failure_at is not None and now - challenge.pending_failure_at >= self.grace_ms:
            return self._fail(
                conn,
                challenge,
                equity,
                f"Daily loss limit not recovered: ${daily_loss:.2f} lost (limit ${limit:.2f})",
            )

        if challenge.pending_failure_at is None:
            challenge.pending_failure_at = now
            self.state_manager.update_challenge(challenge, conn=conn)
            self._log_transition(challenge, RESULT_PENDING_FAILURE, equity, "Daily loss limit breached")

        return EvaluationResult(
            status=RESULT_PENDING_FAILURE,
            reason=(
                f"Daily loss limit breached: ${daily_loss:.2f} lost since start of day "
                f"(limit ${limit:.2f}). Recover before the grace window closes."
            ),
            equity=equity,
            phase=challenge.phase,
        )

    def _promote_to_funded(
        self,
        conn: Connection,
        challenge: Challenge,
        positions: List[Position],
        valuation: PortfolioValuation,
        equity: Decimal,
        now: int,
    ) -> EvaluationResult:
        """
        Soft-pass: the record stays active and moves to the funded phase.

        Open positions are liquidated at their marks so the funded phase
        starts flat, then all balances reset to the starting balance.
        """
        marks = {line.position_id: line.effective_price for line in valuation.positions}
        for position in positions:
            if position.shares <= 0:
                continue
            price = marks.get(position.id, position.current_price or position.entry_price)
            self.ledger.sell(conn, challenge, position, position.direction, position.shares, price, now)

        previous_phase = challenge.phase
        challenge.phase = PHASE_FUNDED
        challenge.status = STATUS_ACTIVE
        challenge.current_balance = challenge.starting_balance
        challenge.high_water_mark = challenge.starting_balance
        challenge.start_of_day_balance = challenge.starting_balance
        challenge.ends_at = None
        challenge.pending_failure_at = None
        # Liquidation fills above belong to the previous phase
        challenge.phase_started_at = now + 1
        self.state_manager.update_challenge(challenge, conn=conn)

        reason = f"Profit target reached in {previous_phase} phase. Account promoted to FUNDED."
        self._log_transition(challenge, "funded", equity, reason)
        return EvaluationResult(status=RESULT_PASSED, reason=reason, equity=equity, phase=PHASE_FUNDED)

    def _log_transition(self, challenge: Challenge, status: str, equity: Decimal, reason: str) -> None:
        eval_log.info(
            f"Challenge {challenge.id} -> {status}: {reason}",
            extra_data={
                "challenge_id": challenge.id,
                "status": status,
                "phase": challenge.phase,
                "equity": str(equity),
                "high_water_mark": str(challenge.high_water_mark),
            },
        )
