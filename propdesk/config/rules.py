"""Challenge rules and tier presets.

A challenge's rules are frozen onto the challenge record at creation time
(``rules_config``) and never change afterwards. Percentages drive the
pre-trade risk chain; the derived absolute thresholds (profit target,
max drawdown, max daily loss) drive the evaluator.
"""

import json
import re
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import Field, model_validator

from propdesk.config.base import BaseConfig
from propdesk.utils.safe_parse import quantize_money, safe_decimal

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")


class TierConfig(BaseConfig):
    """Preset parameters for one challenge tier."""

    name: str = Field(description="Tier identifier (5k, 10k, 25k)")
    starting_balance: Decimal = Field(description="Account size in USD", gt=0)
    max_daily_drawdown_percent: Decimal = Field(gt=0, le=1)
    max_total_drawdown_percent: Decimal = Field(gt=0, le=1)
    profit_target_percent: Decimal = Field(gt=0, le=10)
    max_open_positions: int = Field(ge=1, le=1000)

    # Shared across tiers
    max_position_size_percent: Decimal = Field(default=Decimal("0.05"), gt=0, le=1)
    max_category_exposure_percent: Decimal = Field(default=Decimal("0.10"), gt=0, le=1)
    low_volume_threshold: Decimal = Field(default=Decimal("10000000"), ge=0)
    low_volume_max_position_percent: Decimal = Field(default=Decimal("0.025"), gt=0, le=1)
    max_volume_impact_percent: Optional[Decimal] = Field(default=Decimal("0.10"), gt=0, le=1)
    min_market_volume: Decimal = Field(default=Decimal("100000"), ge=0)
    duration_days: int = Field(default=60, ge=1)


TIERS: Dict[str, TierConfig] = {
    "5k": TierConfig(
        name="5k",
        starting_balance=Decimal("5000"),
        max_daily_drawdown_percent=Decimal("0.04"),
        max_total_drawdown_percent=Decimal("0.08"),
        profit_target_percent=Decimal("0.10"),
        max_open_positions=10,
    ),
    "10k": TierConfig(
        name="10k",
        starting_balance=Decimal("10000"),
        max_daily_drawdown_percent=Decimal("0.05"),
        max_total_drawdown_percent=Decimal("0.10"),
        profit_target_percent=Decimal("0.10"),
        max_open_positions=15,
    ),
    "25k": TierConfig(
        name="25k",
        starting_balance=Decimal("25000"),
        max_daily_drawdown_percent=Decimal("0.05"),
        max_total_drawdown_percent=Decimal("0.10"),
        profit_target_percent=Decimal("0.12"),
        max_open_positions=20,
    ),
}


def tier_for_balance(starting_balance: Decimal) -> str:
    """Map a starting balance to the closest tier at or below it."""
    if starting_balance >= 25000:
        return "25k"
    if starting_balance >= 10000:
        return "10k"
    return "5k"


def default_max_open_positions(starting_balance: Decimal) -> int:
    """Position-count ceiling for challenges whose rules predate the field."""
    return TIERS[tier_for_balance(starting_balance)].max_open_positions


class ChallengeRules(BaseConfig):
    """
    Immutable per-challenge risk parameters.

    Absolute thresholds are derived from the percentages and the starting
    balance when not given explicitly.

    Example:
        >>> rules = ChallengeRules.from_tier("10k")
        >>> rules.max_drawdown
        Decimal('1000.000000')
    """

    tier: str = Field(default="custom", description="Tier the rules were built from")
    starting_balance: Decimal = Field(description="Account size in USD", gt=0)

    profit_target_percent: Decimal = Field(default=Decimal("0.10"), gt=0, le=10)
    max_total_drawdown_percent: Decimal = Field(default=Decimal("0.10"), gt=0, le=1)
    max_daily_drawdown_percent: Decimal = Field(default=Decimal("0.05"), gt=0, le=1)

    profit_target: Decimal = Field(description="Absolute profit required to pass", gt=0)
    max_drawdown: Decimal = Field(description="Absolute drawdown from high-water mark that fails", gt=0)
    max_daily_loss: Decimal = Field(description="Absolute loss from start-of-day balance", gt=0)

    max_position_size_percent: Decimal = Field(default=Decimal("0.05"), gt=0, le=1)
    max_category_exposure_percent: Decimal = Field(default=Decimal("0.10"), gt=0, le=1)
    low_volume_threshold: Decimal = Field(default=Decimal("10000000"), ge=0)
    low_volume_max_position_percent: Decimal = Field(default=Decimal("0.025"), gt=0, le=1)
    max_volume_impact_percent: Optional[Decimal] = Field(default=Decimal("0.10"), gt=0, le=1)
    min_market_volume: Decimal = Field(default=Decimal("100000"), ge=0)
    max_open_positions: Optional[int] = Field(default=None, ge=1)
    duration_days: int = Field(default=60, ge=1)

    @model_validator(mode="before")
    @classmethod
    def derive_absolute_thresholds(cls, data: Any) -> Any:
        """Fill profit_target / max_drawdown / max_daily_loss from percentages."""
        if not isinstance(data, dict):
            return data

        data = dict(data)
        balance = safe_decimal(data.get("starting_balance"))
        if balance <= 0:
            return data

        derived = {
            "profit_target": "profit_target_percent",
            "max_drawdown": "max_total_drawdown_percent",
            "max_daily_loss": "max_daily_drawdown_percent",
        }
        for absolute, percent in derived.items():
            if data.get(absolute) is None:
                pct = safe_decimal(data.get(percent), default=None)
                if pct is None:
                    pct = cls.model_fields[percent].default
                data[absolute] = quantize_money(balance * pct)

        return data

    @property
    def position_ceiling(self) -> int:
        """Maximum concurrent OPEN positions."""
        if self.max_open_positions is not None:
            return self.max_open_positions
        return default_max_open_positions(self.starting_balance)

    @classmethod
    def from_tier(cls, tier: str | TierConfig) -> "ChallengeRules":
        """
        Build rules from a tier preset.

        Args:
            tier: Tier name or TierConfig

        Returns:
            ChallengeRules with derived absolute thresholds

        Raises:
            ValueError: If the tier name is unknown
        """
        if isinstance(tier, str):
            if tier not in TIERS:
                raise ValueError(f"Unknown tier: {tier} (expected one of {', '.join(TIERS)})")
            tier = TIERS[tier]

        data = tier.model_dump()
        data["tier"] = data.pop("name")
        return cls(**data)

    @classmethod
    def from_stored(cls, raw: Any, starting_balance: Decimal) -> "ChallengeRules":
        """
        Parse a stored rules_config blob.

        Accepts a dict or a JSON string, with snake_case or camelCase keys.
        Unknown keys are dropped and unparsable numbers fall back to the
        field default, so a damaged blob degrades to tier defaults rather
        than failing every trade on the challenge.

        Args:
            raw: Stored rules (dict, JSON string, or None)
            starting_balance: The challenge's starting balance (fallback)

        Returns:
            ChallengeRules
        """
        if isinstance(raw, (str, bytes)):
            try:
                raw = json.loads(raw)
            except ValueError:
                raw = {}
        if not isinstance(raw, dict):
            raw = {}

        data: Dict[str, Any] = {}
        for key, value in raw.items():
            name = _CAMEL_RE.sub("_", str(key)).lower()
            if name not in cls.model_fields or value is None:
                continue
            if name == "tier":
                data[name] = str(value)
            elif name in ("max_open_positions", "duration_days"):
                parsed = safe_decimal(value, default=None)
                if parsed is not None and parsed >= 1:
                    data[name] = int(parsed)
            else:
                parsed = safe_decimal(value, default=None)
                floor_ok = parsed is not None and (
                    parsed >= 0 if name in ("low_volume_threshold", "min_market_volume") else parsed > 0
                )
                if floor_ok:
                    data[name] = parsed

        if "starting_balance" not in data:
            data["starting_balance"] = starting_balance

        return cls(**data)

    def to_json(self) -> str:
        """Serialize for the rules_config column."""
        return json.dumps(self.to_dict())
