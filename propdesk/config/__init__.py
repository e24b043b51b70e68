"""Configuration: tier rules and engine settings."""

from propdesk.config.base import BaseConfig
from propdesk.config.rules import TIERS, ChallengeRules, TierConfig, tier_for_balance
from propdesk.config.settings import EngineSettings, get_settings

__all__ = [
    "BaseConfig",
    "ChallengeRules",
    "EngineSettings",
    "TIERS",
    "TierConfig",
    "get_settings",
    "tier_for_balance",
]
