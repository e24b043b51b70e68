"""Pre-trade risk validation for challenge accounts.

The engine runs an ordered chain of pure rules over a ``TradeContext``;
the first rule that returns a reason rejects the trade. The same chain
is re-run by the executor on state re-read under the challenge lock.

Rules, in order:
1. Challenge exists and is active
2. Total drawdown floor (starting balance)
3. Daily loss floor (start-of-day balance)
4. Minimum market volume
5. Per-event exposure (tightened on low-volume markets)
6. Open position ceiling
7. Per-category exposure
8. Volume impact
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from propdesk.config.rules import ChallengeRules
from propdesk.execution.market.interfaces import EventInfo, MarketDataProvider, MarketInfo
from propdesk.execution.persistence.state_manager import Challenge, Position, StateManager
from propdesk.utils.logger import get_risk_logger
from propdesk.utils.safe_parse import ONE, ZERO, safe_decimal

logger = logging.getLogger(__name__)
risk_log = get_risk_logger()


@dataclass
class RiskCheckResult:
    """Outcome of a pre-trade risk check."""

    allowed: bool
    reason: Optional[str] = None
    rule: Optional[str] = None


@dataclass
class TradeContext:
    """
    Everything the risk rules look at.

    Built once per check; rules never perform I/O.
    """

    challenge: Optional[Challenge]
    market_id: str
    amount: Decimal
    estimated_loss: Decimal = ZERO
    direction: str = "YES"
    open_positions: List[Position] = field(default_factory=list)
    market: Optional[MarketInfo] = None
    event: Optional[EventInfo] = None
    position_markets: Dict[str, MarketInfo] = field(default_factory=dict)

    @property
    def rules(self) -> ChallengeRules:
        return self.challenge.rules

    @property
    def market_volume(self) -> Decimal:
        if self.market is None:
            return ZERO
        return safe_decimal(self.market.volume)

    @property
    def correlated_market_ids(self) -> List[str]:
        """The target market's event siblings, or just the market itself."""
        if self.event is not None and self.event.market_ids:
            ids = list(self.event.market_ids)
            if self.market_id not in ids:
                ids.append(self.market_id)
            return ids
        return [self.market_id]

    @property
    def adds_to_existing(self) -> bool:
        return any(p.market_id == self.market_id for p in self.open_positions)


def _pct(value: Decimal) -> str:
    return f"{(value * 100).normalize():f}%"


def check_challenge_active(ctx: TradeContext) -> Optional[str]:
    if ctx.challenge is None or not ctx.challenge.is_active:
        return "Challenge not active"
    return None


def check_total_drawdown(ctx: TradeContext) -> Optional[str]:
    rules = ctx.rules
    floor = ctx.challenge.starting_balance * (ONE - rules.max_total_drawdown_percent)
    if ctx.challenge.current_balance - ctx.estimated_loss < floor:
        return f"Max Total Drawdown ({_pct(rules.max_total_drawdown_percent)}) Reached. Floor: ${floor:.2f}"
    return None


def check_daily_loss(ctx: TradeContext) -> Optional[str]:
    rules = ctx.rules
    sod = ctx.challenge.start_of_day_balance
    floor = sod * (ONE - rules.max_daily_drawdown_percent)
    if ctx.challenge.current_balance - ctx.estimated_loss < floor:
        return f"Max Daily Loss ({_pct(rules.max_daily_drawdown_percent)}) Reached. Daily Floor: ${floor:.2f}"
    return None


def check_min_volume(ctx: TradeContext) -> Optional[str]:
    rules = ctx.rules
    if ctx.market is None:
        return "Market data unavailable. Trading blocked for safety."
    if ctx.market_volume < rules.min_market_volume:
        return (
            f"Market volume too low (<${rules.min_market_volume:,.0f}). "
            f"Too little trading activity; trading blocked for safety."
        )
    return None


def check_event_exposure(ctx: TradeContext) -> Optional[str]:
    rules = ctx.rules
    correlated = set(ctx.correlated_market_ids)
    current = sum((p.size_amount for p in ctx.open_positions if p.market_id in correlated), ZERO)
    exposure = current + ctx.amount

    starting = ctx.challenge.starting_balance
    if ctx.market_volume < rules.low_volume_threshold:
        cap = starting * min(rules.max_position_size_percent, rules.low_volume_max_position_percent)
        if exposure > cap:
            return (
                f"Low-volume market (<${rules.low_volume_threshold:,.0f}). "
                f"Max position: ${cap:.2f}. Current: ${current:.2f}"
            )
        return None

    cap = starting * rules.max_position_size_percent
    if exposure > cap:
        return (
            f"Max per-market exposure ({_pct(rules.max_position_size_percent)}) exceeded. "
            f"Current: ${current:.2f}, Limit: ${cap:.2f}"
        )
    return None


def check_position_count(ctx: TradeContext) -> Optional[str]:
    if ctx.adds_to_existing:
        return None
    ceiling = ctx.rules.position_ceiling
    if len(ctx.open_positions) >= ceiling:
        return f"Max open positions ({ceiling}) reached. Close a position before opening a new one."
    return None


def check_category_exposure(ctx: TradeContext) -> Optional[str]:
    if ctx.market is None or not ctx.market.categories:
        return None

    rules = ctx.rules
    cap = ctx.challenge.starting_balance * rules.max_category_exposure_percent

    for category in ctx.market.categories:
        current = ZERO
        for position in ctx.open_positions:
            info = ctx.position_markets.get(position.market_id)
            if info is not None and category in info.categories:
                current += position.size_amount
        if current + ctx.amount > cap:
            return (
                f"Max {category} exposure ({_pct(rules.max_category_exposure_percent)}) exceeded. "
                f"Current: ${current:.2f}, Limit: ${cap:.2f}"
            )
    return None


def check_volume_impact(ctx: TradeContext) -> Optional[str]:
    pct = ctx.rules.max_volume_impact_percent
    volume = ctx.market_volume
    if pct is None or volume <= 0:
        return None
    max_impact = volume * pct
    if ctx.amount > max_impact:
        return (
            f"Trade too large for market liquidity. Max: ${max_impact:.2f} "
            f"({_pct(pct)} of ${volume:,.0f} volume)"
        )
    return None


RiskRule = Callable[[TradeContext], Optional[str]]

RISK_RULES: List[Tuple[str, RiskRule]] = [
    ("challenge_active", check_challenge_active),
    ("total_drawdown", check_total_drawdown),
    ("daily_loss", check_daily_loss),
    ("min_volume", check_min_volume),
    ("event_exposure", check_event_exposure),
    ("position_count", check_position_count),
    ("category_exposure", check_category_exposure),
    ("volume_impact", check_volume_impact),
]


class RiskEngine:
    """
    Pre-trade risk validation.

    Loads the challenge, its open positions and market metadata, then
    runs the rule chain.

    Example:
        engine = RiskEngine(state_manager, market_data)
        result = engine.validate_trade(challenge_id, "btc-100k", Decimal("150"))
        if not result.allowed:
            print(result.reason)
    """

    def __init__(
        self,
        state_manager: StateManager,
        market_data: MarketDataProvider,
        rules: Optional[List[Tuple[str, RiskRule]]] = None,
    ):
        self.state_manager = state_manager
        self.market_data = market_data
        self.rules = rules if rules is not None else RISK_RULES

    def validate_trade(
        self,
        challenge_id: str,
        market_id: str,
        amount: Decimal,
        estimated_loss: Decimal = ZERO,
        direction: str = "YES",
    ) -> RiskCheckResult:
        """
        Check whether a BUY is allowed under the challenge's rules.

        Args:
            challenge_id: Challenge ID
            market_id: Target market
            amount: Notional to add (USD)
            estimated_loss: Worst-case loss to assume against the floors
            direction: 'YES' or 'NO'

        Returns:
            RiskCheckResult
        """
        challenge = self.state_manager.get_challenge(challenge_id)
        positions = self.state_manager.get_open_positions(challenge_id) if challenge else []
        ctx = self.build_context(
            challenge,
            positions,
            market_id,
            safe_decimal(amount),
            estimated_loss=safe_decimal(estimated_loss),
            direction=direction,
        )
        return self.check_context(ctx)

    def build_context(
        self,
        challenge: Optional[Challenge],
        positions: List[Position],
        market_id: str,
        amount: Decimal,
        estimated_loss: Decimal = ZERO,
        direction: str = "YES",
        market: Optional[MarketInfo] = None,
        event: Optional[EventInfo] = None,
        position_markets: Optional[Dict[str, MarketInfo]] = None,
    ) -> TradeContext:
        """
        Assemble a TradeContext, fetching market metadata not supplied.

        Callers holding a lock pass pre-fetched metadata so no I/O to
        the market data provider happens inside the critical section.
        """
        platform = challenge.platform if challenge else None
        if market is None:
            market = self.market_data.get_market_by_id(market_id)
        if event is None:
            event = self.market_data.get_event_info_for_market(market_id, platform)
        if position_markets is None:
            position_markets = self.fetch_position_markets(positions)

        return TradeContext(
            challenge=challenge,
            market_id=market_id,
            amount=amount,
            estimated_loss=estimated_loss,
            direction=direction,
            open_positions=positions,
            market=market,
            event=event,
            position_markets=position_markets,
        )

    def fetch_position_markets(self, positions: List[Position]) -> Dict[str, MarketInfo]:
        """Market metadata for every market the positions sit on."""
        markets: Dict[str, MarketInfo] = {}
        for market_id in {p.market_id for p in positions}:
            info = self.market_data.get_market_by_id(market_id)
            if info is not None:
                markets[market_id] = info
        return markets

    def check_context(self, ctx: TradeContext) -> RiskCheckResult:
        """
        Run the rule chain; first rejection wins.

        Args:
            ctx: Trade context

        Returns:
            RiskCheckResult
        """
        for name, rule in self.rules:
            reason = rule(ctx)
            if reason is not None:
                risk_log.info(
                    f"Trade rejected by {name}: {reason}",
                    extra_data={
                        "challenge_id": ctx.challenge.id if ctx.challenge else None,
                        "market_id": ctx.market_id,
                        "amount": str(ctx.amount),
                        "rule": name,
                    },
                )
                return RiskCheckResult(allowed=False, reason=reason, rule=name)

        logger.debug(f"Risk checks passed for {ctx.market_id} amount={ctx.amount}")
        return RiskCheckResult(allowed=True)
