"""Challenge provisioning from tier presets."""

import logging
from typing import Optional

from propdesk.config.rules import ChallengeRules, TierConfig
from propdesk.execution.persistence.state_manager import Challenge, StateManager, now_ms

logger = logging.getLogger(__name__)

MS_PER_DAY = 86_400_000


def open_challenge(
    state_manager: StateManager,
    user_id: str,
    tier: str | TierConfig = "10k",
    platform: str = "polymarket",
    rules: Optional[ChallengeRules] = None,
    now: Optional[int] = None,
) -> Challenge:
    """
    Create an active challenge in the challenge phase.

    The rules are frozen onto the record; every balance starts at the
    tier's starting balance and the deadline is ``duration_days`` out.

    Args:
        state_manager: Persistence
        user_id: Owner
        tier: Tier name or TierConfig (ignored when ``rules`` is given)
        platform: Venue used to resolve market events
        rules: Explicit rules overriding the tier preset
        now: Creation time (Unix ms)

    Returns:
        The stored challenge

    Raises:
        ValueError: If the tier is unknown
    """
    now = now if now is not None else now_ms()
    rules = rules or ChallengeRules.from_tier(tier)
    balance = rules.starting_balance

    challenge = Challenge(
        id=None,
        user_id=user_id,
        starting_balance=balance,
        current_balance=balance,
        start_of_day_balance=balance,
        high_water_mark=balance,
        rules_config=rules.to_json(),
        started_at=now,
        phase_started_at=now,
        platform=platform,
        ends_at=now + rules.duration_days * MS_PER_DAY,
        last_daily_reset_at=now,
    )
    state_manager.create_challenge(challenge)
    logger.info(f"Opened {rules.tier} challenge {challenge.id} for {user_id}")
    return challenge
