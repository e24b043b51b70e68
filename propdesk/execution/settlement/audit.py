"""Balance integrity audit.

Recomputes each challenge's cash balance from its trade ledger and
compares it against the stored balance:

    expected = starting_balance - sum(BUY.amount) + sum(SELL.shares * SELL.price) - sum(fees)

Only trades since the latest balance reset (``phase_started_at``) count,
so a funded account is audited from its funding point.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from propdesk.execution.errors import ChallengeNotFoundError
from propdesk.execution.persistence.state_manager import StateManager
from propdesk.utils.logger import get_settlement_logger
from propdesk.utils.safe_parse import ZERO, quantize_money

logger = logging.getLogger(__name__)
audit_log = get_settlement_logger()

# Differences within this are rounding
ROUNDING_TOLERANCE = Decimal("0.01")
# Differences beyond this are flagged as suspicious
SUSPICIOUS_THRESHOLD = Decimal("10")


@dataclass
class BalanceAuditResult:
    """Audit of one challenge."""

    challenge_id: str
    user_id: str
    status: str
    starting_balance: Decimal
    stored_balance: Decimal
    calculated_balance: Decimal
    position_value: Decimal
    discrepancy: Decimal
    trades_counted: int
    is_suspicious: bool = False
    reason: Optional[str] = None

    @property
    def is_consistent(self) -> bool:
        return abs(self.discrepancy) <= ROUNDING_TOLERANCE


@dataclass
class BalanceAuditReport:
    """Audit of many challenges."""

    results: List[BalanceAuditResult] = field(default_factory=list)

    @property
    def alerts(self) -> List[BalanceAuditResult]:
        return [r for r in self.results if r.is_suspicious]


def _classify(discrepancy: Decimal) -> Optional[str]:
    size = abs(discrepancy)
    if size <= ROUNDING_TOLERANCE:
        return None
    if size > Decimal("5000"):
        return "Large discrepancy - investigate immediately"
    if size > Decimal("100"):
        return "Moderate discrepancy - review needed"
    return "Minor discrepancy - likely rounding"


class BalanceAuditor:
    """Reconciles stored balances against the trade ledger."""

    def __init__(self, state_manager: StateManager):
        self.state_manager = state_manager

    def audit(self, challenge_id: str) -> BalanceAuditResult:
        """
        Audit one challenge.

        Raises:
            ChallengeNotFoundError: If the challenge does not exist
        """
        challenge = self.state_manager.get_challenge(challenge_id)
        if challenge is None:
            raise ChallengeNotFoundError(f"Challenge not found: {challenge_id}")

        trades = self.state_manager.get_trades(challenge_id, since=challenge.phase_started_at)

        calculated = challenge.starting_balance
        for trade in trades:
            if trade.trade_type == "BUY":
                calculated -= trade.amount
            elif trade.trade_type == "SELL":
                calculated += trade.shares * trade.price
            calculated -= trade.fees

        position_value = ZERO
        for position in self.state_manager.get_open_positions(challenge_id):
            position_value += position.shares * (position.current_price or position.entry_price)

        calculated = quantize_money(calculated)
        discrepancy = quantize_money(challenge.current_balance - calculated)
        reason = _classify(discrepancy)

        result = BalanceAuditResult(
            challenge_id=challenge.id,
            user_id=challenge.user_id,
            status=challenge.status,
            starting_balance=challenge.starting_balance,
            stored_balance=challenge.current_balance,
            calculated_balance=calculated,
            position_value=quantize_money(position_value),
            discrepancy=discrepancy,
            trades_counted=len(trades),
            is_suspicious=abs(discrepancy) > SUSPICIOUS_THRESHOLD,
            reason=reason,
        )

        if result.is_suspicious:
            audit_log.error(
                f"Balance discrepancy on challenge {challenge.id}: {reason}",
                extra_data={
                    "challenge_id": challenge.id,
                    "stored": str(result.stored_balance),
                    "calculated": str(result.calculated_balance),
                    "discrepancy": str(discrepancy),
                },
            )
        elif reason is not None:
            logger.warning(f"Challenge {challenge.id} balance off by {discrepancy} ({reason})")

        return result

    def audit_all_active(self) -> BalanceAuditReport:
        """Audit every active challenge."""
        report = BalanceAuditReport()
        for challenge in self.state_manager.get_active_challenges():
            report.results.append(self.audit(challenge.id))

        logger.info(f"Balance audit: {len(report.results)} challenges, {len(report.alerts)} alerts")
        return report
