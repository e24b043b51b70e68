"""Trade execution for challenge accounts.

Orchestrates one market order end to end:

1. Validate the request (before any I/O)
2. Ownership / activity check and idempotency lookup
3. Tradeability guard (resolved or settling markets)
4. Fill-price discovery against the order book
5. Pre-lock BUY checks: funds, risk chain, arbitrage
6. Critical section: re-read state, re-check, apply the fill
7. Post-commit challenge evaluation

Every external call (oracle, order book, market metadata) completes
before the challenge lock is taken.

Example usage:
    executor = TradeExecutor(state_manager, market_data, oracle)
    trade = executor.execute_trade(
        user_id="u1",
        challenge_id=challenge.id,
        market_id="btc-100k",
        side="BUY",
        amount=Decimal("50"),
        direction="NO",
        idempotency_key="order-123",
    )
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional

from propdesk.config.settings import EngineSettings, get_settings
from propdesk.execution.errors import (
    ArbitrageRejectedError,
    ChallengeInactiveError,
    ChallengeNotFoundError,
    InsufficientFundsError,
    InsufficientSharesError,
    LiquidityError,
    MarketResolvedError,
    PositionNotFoundError,
    RiskRejectedError,
    ValidationError,
)
from propdesk.execution.evaluation.evaluator import ChallengeEvaluator
from propdesk.execution.market.interfaces import EventInfo, MarketDataProvider, MarketInfo, ResolutionOracle
from propdesk.execution.persistence.state_manager import Challenge, Position, StateManager, Trade, now_ms
from propdesk.execution.risk.arbitrage import check_positions
from propdesk.execution.risk.risk_engine import RiskEngine, TradeContext
from propdesk.execution.simulator.order_book import FillQuote, quote_fill
from propdesk.execution.tracking.position_ledger import DUST_SHARES, PositionLedger
from propdesk.utils.logger import get_execution_logger
from propdesk.utils.safe_parse import ONE, quantize_money, safe_decimal

logger = logging.getLogger(__name__)
exec_log = get_execution_logger()

SIDES = ("BUY", "SELL")
DIRECTIONS = ("YES", "NO")


@dataclass
class TradeRequest:
    """A validated market order."""

    user_id: str
    challenge_id: str
    market_id: str
    side: str
    direction: str
    amount: Optional[Decimal] = None  # BUY notional
    shares: Optional[Decimal] = None  # SELL size; None sells the whole position
    idempotency_key: Optional[str] = None
    max_slippage: Optional[Decimal] = None


@dataclass
class _MarketSnapshot:
    """External data gathered before entering the critical section."""

    market: Optional[MarketInfo]
    event: Optional[EventInfo]
    position_markets: Dict[str, MarketInfo]


class TradeExecutor:
    """
    Executes market orders against simulated challenge balances.

    Attributes:
        state_manager: Persistence and per-challenge locking
        market_data: Prices, order books and market metadata
        oracle: Market resolution status
        risk_engine: Pre-trade rule chain
        evaluator: Post-trade challenge evaluation
    """

    def __init__(
        self,
        state_manager: StateManager,
        market_data: MarketDataProvider,
        oracle: ResolutionOracle,
        settings: Optional[EngineSettings] = None,
        risk_engine: Optional[RiskEngine] = None,
        evaluator: Optional[ChallengeEvaluator] = None,
    ):
        """
        Initialize trade executor.

        Args:
            state_manager: StateManager instance
            market_data: MarketDataProvider implementation
            oracle: ResolutionOracle implementation
            settings: Engine settings (fees, slippage, resolution threshold)
            risk_engine: RiskEngine (built from state_manager/market_data if omitted)
            evaluator: ChallengeEvaluator (built likewise if omitted)
        """
        self.settings = settings or get_settings()
        self.state_manager = state_manager
        self.market_data = market_data
        self.oracle = oracle
        self.risk_engine = risk_engine or RiskEngine(state_manager, market_data)
        self.evaluator = evaluator or ChallengeEvaluator(state_manager, market_data, self.settings)
        self.ledger = PositionLedger(state_manager)

        self.fee_rate = safe_decimal(self.settings.fee_rate)
        self.resolution_threshold = safe_decimal(self.settings.resolution_price_threshold)

    # ========================================================================
    # Public API
    # ========================================================================

    def execute_trade(
        self,
        user_id: str,
        challenge_id: str,
        market_id: str,
        side: str,
        amount=None,
        direction: str = "YES",
        shares=None,
        idempotency_key: Optional[str] = None,
        max_slippage=None,
    ) -> Trade:
        """
        Execute a market order.

        Args:
            user_id: Caller; must own the challenge
            challenge_id: Challenge to trade on
            market_id: Target market
            side: 'BUY' or 'SELL'
            amount: USD to spend (BUY)
            direction: 'YES' or 'NO'
            shares: Shares to sell (SELL); omit to close the whole position
            idempotency_key: At-most-once key; a replay returns the original trade
            max_slippage: Max slippage vs top of book (fraction)

        Returns:
            The executed (or replayed) Trade

        Raises:
            ValidationError: Malformed request
            DomainRejection: Any business rejection (see execution.errors)
            StorageError: Database failure; safe to retry with the same key
        """
        request = self._validate_request(
            user_id, challenge_id, market_id, side, amount, direction, shares, idempotency_key, max_slippage
        )

        challenge = self._load_owned_challenge(request)

        if request.idempotency_key:
            existing = self.state_manager.get_trade_by_idempotency_key(challenge_id, request.idempotency_key)
            if existing is not None:
                self._check_replay(request, existing)
                logger.info(f"Idempotent replay of {request.idempotency_key} -> trade {existing.id}")
                return existing

        if not challenge.is_active:
            raise ChallengeInactiveError(f"Challenge is {challenge.status}")

        positions = self.state_manager.get_open_positions(challenge_id)
        if request.side == "SELL":
            self._check_sell(request, self._find_position(positions, market_id))

        self._check_tradeable(market_id)
        fill = self._discover_fill(request, positions)
        fees = quantize_money(fill.amount * self.fee_rate)

        snapshot = None
        if request.side == "BUY":
            snapshot = self._gather_market_snapshot(challenge, market_id, positions)
            self._check_buy(request, challenge, positions, fill, fees, snapshot)

        trade, replayed = self._settle(request, fill, fees, snapshot)

        if not replayed:
            exec_log.info(
                f"Trade executed: {trade.trade_type} {trade.direction} {trade.shares} @ {trade.price} "
                f"on {trade.market_id}",
                extra_data={
                    "trade_id": trade.id,
                    "challenge_id": challenge_id,
                    "amount": str(trade.amount),
                    "fees": str(trade.fees),
                    "slippage": str(fill.slippage),
                },
            )
            self._evaluate_after_trade(challenge_id)

        return trade

    # ========================================================================
    # Steps
    # ========================================================================

    def _validate_request(
        self, user_id, challenge_id, market_id, side, amount, direction, shares, idempotency_key, max_slippage
    ) -> TradeRequest:
        side = str(side or "").upper()
        direction = str(direction or "").upper()

        if side not in SIDES:
            raise ValidationError(f"Invalid side: {side!r} (expected BUY or SELL)")
        if direction not in DIRECTIONS:
            raise ValidationError(f"Invalid direction: {direction!r} (expected YES or NO)")
        if not challenge_id or not market_id:
            raise ValidationError("challenge_id and market_id are required")

        parsed_amount = safe_decimal(amount, default=None)
        parsed_shares = safe_decimal(shares, default=None)

        if side == "BUY":
            if parsed_amount is None or parsed_amount <= 0:
                raise ValidationError("Amount must be a positive, finite number")
        else:
            if shares is not None and (parsed_shares is None or parsed_shares <= 0):
                raise ValidationError("Shares must be a positive, finite number")

        slippage = None
        if max_slippage is not None:
            slippage = safe_decimal(max_slippage, default=None)
            if slippage is None or slippage <= 0:
                raise ValidationError("max_slippage must be a positive, finite number")
        elif self.settings.max_slippage is not None:
            slippage = safe_decimal(self.settings.max_slippage)

        return TradeRequest(
            user_id=user_id,
            challenge_id=challenge_id,
            market_id=market_id,
            side=side,
            direction=direction,
            amount=parsed_amount if side == "BUY" else None,
            shares=parsed_shares if side == "SELL" else None,
            idempotency_key=idempotency_key or None,
            max_slippage=slippage,
        )

    @staticmethod
    def _check_replay(request: TradeRequest, existing: Trade) -> None:
        """A reused idempotency key must describe the same order."""
        if (existing.market_id, existing.trade_type, existing.direction) != (
            request.market_id,
            request.side,
            request.direction,
        ):
            raise ValidationError(
                f"Idempotency key {request.idempotency_key!r} was already used for "
                f"{existing.trade_type} {existing.direction} on {existing.market_id}"
            )

    def _load_owned_challenge(self, request: TradeRequest) -> Challenge:
        challenge = self.state_manager.get_challenge(request.challenge_id)
        if challenge is None or challenge.user_id != request.user_id:
            raise ChallengeNotFoundError(f"Challenge not found: {request.challenge_id}")
        return challenge

    @staticmethod
    def _find_position(positions: List[Position], market_id: str) -> Optional[Position]:
        return next((p for p in positions if p.market_id == market_id), None)

    def _check_sell(self, request: TradeRequest, position: Optional[Position]) -> None:
        if position is None or position.direction != request.direction:
            raise PositionNotFoundError(f"No open {request.direction} position on {request.market_id}")
        if request.shares is not None and request.shares > position.shares + DUST_SHARES:
            raise InsufficientSharesError(
                f"Insufficient shares: position holds {position.shares}, requested {request.shares}"
            )

    def _check_tradeable(self, market_id: str) -> None:
        """Reject resolved markets and settling markets that stopped accepting orders."""
        status = self.oracle.get_resolution_status(market_id)
        if status.is_resolved:
            raise MarketResolvedError(
                f"Market has resolved ({status.winning_outcome or 'unknown outcome'}). Trading is closed."
            )

        quote = self.market_data.get_latest_price(market_id)
        price = safe_decimal(quote.price, default=None) if quote is not None else None
        if price is None:
            return

        settling = price >= self.resolution_threshold or price <= ONE - self.resolution_threshold
        if settling:
            market = self.market_data.get_market_by_id(market_id)
            if market is None or market.closed or not market.accepting_orders:
                raise MarketResolvedError(
                    f"Market is settling (price {price}) and no longer accepts orders"
                )

    def _discover_fill(self, request: TradeRequest, positions: List[Position]) -> FillQuote:
        book = self.market_data.get_order_book(request.market_id)
        if book is None:
            raise LiquidityError("Trade Rejected: No order book available")

        shares = request.shares
        if request.side == "SELL" and shares is None:
            shares = self._find_position(positions, request.market_id).shares

        return quote_fill(
            book,
            side=request.side,
            direction=request.direction,
            amount=request.amount,
            shares=shares,
            max_slippage=request.max_slippage,
        )

    def _gather_market_snapshot(
        self, challenge: Challenge, market_id: str, positions: List[Position]
    ) -> _MarketSnapshot:
        return _MarketSnapshot(
            market=self.market_data.get_market_by_id(market_id),
            event=self.market_data.get_event_info_for_market(market_id, challenge.platform),
            position_markets=self.risk_engine.fetch_position_markets(positions),
        )

    def _check_buy(
        self,
        request: TradeRequest,
        challenge: Challenge,
        positions: List[Position],
        fill: FillQuote,
        fees: Decimal,
        snapshot: _MarketSnapshot,
    ) -> None:
        """Funds, risk and arbitrage checks; raise on the first failure."""
        required = fill.amount + fees
        if required > challenge.current_balance:
            raise InsufficientFundsError(
                f"Insufficient funds: balance ${challenge.current_balance:.2f}, required ${required:.2f}"
            )

        ctx = TradeContext(
            challenge=challenge,
            market_id=request.market_id,
            amount=fill.amount,
            direction=request.direction,
            open_positions=positions,
            market=snapshot.market,
            event=snapshot.event,
            position_markets=snapshot.position_markets,
        )
        risk = self.risk_engine.check_context(ctx)
        if not risk.allowed:
            raise RiskRejectedError(risk.reason)

        arb = check_positions(positions, request.market_id, request.direction, snapshot.event)
        if arb.is_arb:
            raise ArbitrageRejectedError(arb.reason)

    def _settle(
        self,
        request: TradeRequest,
        fill: FillQuote,
        fees: Decimal,
        snapshot: Optional[_MarketSnapshot],
    ):
        """Apply the fill inside the challenge critical section."""
        with self.state_manager.challenge_transaction(request.challenge_id) as conn:
            if request.idempotency_key:
                existing = self.state_manager.get_trade_by_idempotency_key(
                    request.challenge_id, request.idempotency_key, conn=conn
                )
                if existing is not None:
                    self._check_replay(request, existing)
                    return existing, True

            challenge = self.state_manager.get_challenge(request.challenge_id, conn=conn)
            if challenge is None or not challenge.is_active:
                raise ChallengeInactiveError(
                    f"Challenge is {challenge.status if challenge else 'missing'}"
                )

            positions = self.state_manager.get_open_positions(request.challenge_id, conn=conn)
            position = self._find_position(positions, request.market_id)
            now = now_ms()

            if request.side == "BUY":
                self._check_buy(request, challenge, positions, fill, fees, snapshot)
                trade = self.ledger.buy(
                    conn,
                    challenge,
                    position,
                    request.market_id,
                    request.direction,
                    shares=fill.shares,
                    amount=fill.amount,
                    price=fill.price,
                    now=now,
                    fees=fees,
                    slippage=fill.slippage,
                    idempotency_key=request.idempotency_key,
                )
            else:
                self._check_sell(request, position)
                trade = self.ledger.sell(
                    conn,
                    challenge,
                    position,
                    request.direction,
                    shares=fill.shares,
                    price=fill.price,
                    now=now,
                    fees=fees,
                    slippage=fill.slippage,
                    idempotency_key=request.idempotency_key,
                )

        return trade, False

    def _evaluate_after_trade(self, challenge_id: str) -> None:
        try:
            result = self.evaluator.evaluate(challenge_id)
            if result.status != "active":
                logger.info(f"Post-trade evaluation of {challenge_id}: {result.status} ({result.reason})")
        except Exception as e:
            logger.error(f"Post-trade evaluation failed for {challenge_id}: {e}", exc_info=True)
