"""UTC day-boundary reset for active challenges.

For every active challenge not yet reset today:
1. A pending daily-loss failure still in breach is finalized as failed;
   one that recovered is cleared.
2. start_of_day_balance is snapshotted from current_balance.
3. last_daily_reset_at is stamped, making the job idempotent per UTC day.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from propdesk.execution.evaluation.evaluator import ChallengeEvaluator
from propdesk.execution.persistence.state_manager import STATUS_FAILED, StateManager, now_ms
from propdesk.utils.logger import get_evaluation_logger

logger = logging.getLogger(__name__)
eval_log = get_evaluation_logger()


@dataclass
class DailyResetSummary:
    """What one run of the daily reset did."""

    reset: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    recovered: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)


def utc_day(timestamp_ms: int) -> str:
    """UTC calendar day of a Unix-ms timestamp (YYYY-MM-DD)."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


class DailyResetJob:
    """Runs the day-boundary reset using the evaluator's equity model."""

    def __init__(self, state_manager: StateManager, evaluator: ChallengeEvaluator):
        self.state_manager = state_manager
        self.evaluator = evaluator

    def run(self, now: Optional[int] = None) -> DailyResetSummary:
        """
        Reset every active challenge not already reset on ``now``'s UTC day.

        Args:
            now: Reset time (Unix ms); defaults to the current time

        Returns:
            DailyResetSummary
        """
        now = now if now is not None else now_ms()
        today = utc_day(now)
        summary = DailyResetSummary()

        for challenge in self.state_manager.get_active_challenges():
            if challenge.last_daily_reset_at is not None and utc_day(challenge.last_daily_reset_at) == today:
                summary.skipped.append(challenge.id)
                continue
            try:
                self._reset_one(challenge.id, now, today, summary)
            except Exception as e:
                logger.error(f"Daily reset failed for challenge {challenge.id}: {e}", exc_info=True)
                summary.errors.append(challenge.id)

        logger.info(
            f"Daily reset {today}: {len(summary.reset)} reset, {len(summary.failed)} failed, "
            f"{len(summary.recovered)} recovered, {len(summary.skipped)} skipped"
        )
        return summary

    def _reset_one(self, challenge_id: str, now: int, today: str, summary: DailyResetSummary) -> None:
        prices = self.evaluator.prefetch_prices(challenge_id)

        with self.state_manager.challenge_transaction(challenge_id) as conn:
            challenge = self.state_manager.get_challenge(challenge_id, conn=conn)
            if challenge is None or not challenge.is_active:
                summary.skipped.append(challenge_id)
                return
            if challenge.last_daily_reset_at is not None and utc_day(challenge.last_daily_reset_at) == today:
                summary.skipped.append(challenge_id)
                return

            if challenge.pending_failure_at is not None:
                positions = self.state_manager.get_open_positions(challenge_id, conn=conn)
                equity = challenge.current_balance + self.evaluator.value_positions(positions, prices).total_value
                daily_loss = challenge.start_of_day_balance - equity
                limit = challenge.rules.max_daily_loss

                if daily_loss >= limit:
                    challenge.status = STATUS_FAILED
                    challenge.failure_reason = (
                        f"Daily loss limit not recovered by end of day: ${daily_loss:.2f} lost (limit ${limit:.2f})"
                    )
                    challenge.last_daily_reset_at = now
                    self.state_manager.update_challenge(challenge, conn=conn)
                    eval_log.info(
                        f"Challenge {challenge_id} -> failed: {challenge.failure_reason}",
                        extra_data={"challenge_id": challenge_id, "equity": str(equity)},
                    )
                    summary.failed.append(challenge_id)
                    return

                challenge.pending_failure_at = None
                summary.recovered.append(challenge_id)

            challenge.start_of_day_balance = challenge.current_balance
            challenge.last_daily_reset_at = now
            self.state_manager.update_challenge(challenge, conn=conn)
            summary.reset.append(challenge_id)

        logger.debug(f"Reset start-of-day balance for challenge {challenge_id}")
