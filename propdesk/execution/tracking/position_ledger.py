"""Balance, position and trade-ledger mutations.

Every fill goes through ``PositionLedger`` inside a challenge
transaction. One call updates the challenge balance, the position, and
appends exactly one trade row, so the ledger identity holds after every
commit:

    current_balance = starting_balance
                      - sum(BUY.amount)
                      + sum(SELL.shares * SELL.price)
                      - sum(fees)

Example usage:
    with state_manager.challenge_transaction(challenge.id) as conn:
        trade = ledger.buy(conn, challenge, position, "m1", "YES",
                           shares=Decimal("71.4"), amount=Decimal("50"),
                           price=Decimal("0.70"), now=now_ms())
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy.engine import Connection

from propdesk.execution.errors import InsufficientFundsError, InsufficientSharesError, PositionNotFoundError
from propdesk.execution.persistence.state_manager import (
    POSITION_CLOSED,
    Challenge,
    Position,
    StateManager,
    Trade,
)
from propdesk.utils.logger import get_execution_logger
from propdesk.utils.safe_parse import ZERO, quantize_money, quantize_price, quantize_shares

audit_log = get_execution_logger()

# Remaining shares at or below this close the position
DUST_SHARES = Decimal("0.0001")
# Balances may not be pushed below this by a debit
BALANCE_FLOOR = Decimal("-0.01")


class PositionLedger:
    """Applies fills to challenge state. Callers hold the challenge lock."""

    def __init__(self, state_manager: StateManager):
        self.state_manager = state_manager

    def _debit(self, challenge: Challenge, amount: Decimal, source: str) -> None:
        before = challenge.current_balance
        after = quantize_money(before - amount)
        if after < BALANCE_FLOOR:
            raise InsufficientFundsError(
                f"Insufficient funds: balance ${before:.2f}, required ${amount:.2f}"
            )
        challenge.current_balance = after
        self._log_balance(challenge, before, after, source)

    def _credit(self, challenge: Challenge, amount: Decimal, source: str) -> None:
        before = challenge.current_balance
        after = quantize_money(before + amount)
        challenge.current_balance = after
        self._log_balance(challenge, before, after, source)

    def _log_balance(self, challenge: Challenge, before: Decimal, after: Decimal, source: str) -> None:
        audit_log.info(
            f"Balance {source}: challenge {challenge.id} ${before:.2f} -> ${after:.2f}",
            extra_data={
                "challenge_id": challenge.id,
                "before": str(before),
                "after": str(after),
                "source": source,
            },
        )

    def buy(
        self,
        conn: Connection,
        challenge: Challenge,
        position: Optional[Position],
        market_id: str,
        direction: str,
        shares: Decimal,
        amount: Decimal,
        price: Decimal,
        now: int,
        fees: Decimal = ZERO,
        slippage: Optional[Decimal] = None,
        idempotency_key: Optional[str] = None,
    ) -> Trade:
        """
        Open or add to a position.

        Adding uses the share-weighted average entry price.

        Args:
            conn: Connection of the open challenge transaction
            challenge: Locked challenge (mutated and persisted)
            position: Existing OPEN position on the market, or None
            market_id: Market ID
            direction: 'YES' or 'NO'
            shares: Shares filled
            amount: Notional filled (USD)
            price: Direction-adjusted average fill price
            now: Execution timestamp (ms)
            fees: Fees charged on top of the notional

        Returns:
            The BUY trade

        Raises:
            InsufficientFundsError: If the debit would overdraw the balance
        """
        amount = quantize_money(amount)
        fees = quantize_money(fees)
        shares = quantize_shares(shares)

        self._debit(challenge, amount + fees, "trade_buy")

        if position is None:
            position = Position(
                id=None,
                challenge_id=challenge.id,
                market_id=market_id,
                direction=direction,
                size_amount=amount,
                shares=shares,
                entry_price=quantize_price(price),
                current_price=quantize_price(price),
                opened_at=now,
                fees_paid=fees,
            )
        else:
            total_shares = position.shares + shares
            position.entry_price = quantize_price(
                (position.shares * position.entry_price + shares * price) / total_shares
            )
            position.shares = total_shares
            position.size_amount = quantize_money(position.size_amount + amount)
            position.current_price = quantize_price(price)
            position.fees_paid = quantize_money(position.fees_paid + fees)

        self.state_manager.save_position(position, conn=conn)
        self.state_manager.update_challenge(challenge, conn=conn)

        trade = Trade(
            id=None,
            position_id=position.id,
            challenge_id=challenge.id,
            market_id=market_id,
            trade_type="BUY",
            direction=direction,
            price=quantize_price(price),
            amount=amount,
            shares=shares,
            fees=fees,
            slippage=slippage,
            idempotency_key=idempotency_key,
            executed_at=now,
        )
        self.state_manager.insert_trade(trade, conn=conn)
        return trade

    def sell(
        self,
        conn: Connection,
        challenge: Challenge,
        position: Optional[Position],
        direction: str,
        shares: Decimal,
        price: Decimal,
        now: int,
        fees: Decimal = ZERO,
        slippage: Optional[Decimal] = None,
        idempotency_key: Optional[str] = None,
    ) -> Trade:
        """
        Reduce or close a position.

        A sell leaving no more than dust closes the position; a partial
        sell reduces the cost basis in proportion to the shares sold.

        Args:
            conn: Connection of the open challenge transaction
            challenge: Locked challenge (mutated and persisted)
            position: OPEN position being sold
            direction: Direction the caller believes it holds
            shares: Shares to sell
            price: Direction-adjusted average fill price
            now: Execution timestamp (ms)
            fees: Fees deducted from the proceeds

        Returns:
            The SELL trade

        Raises:
            PositionNotFoundError: If there is no OPEN position in ``direction``
            InsufficientSharesError: If the position holds fewer shares
        """
        if position is None or position.direction != direction or position.status != "OPEN":
            raise PositionNotFoundError(f"No open {direction} position to sell")

        shares = quantize_shares(shares)
        if shares > position.shares + DUST_SHARES:
            raise InsufficientSharesError(
                f"Insufficient shares: position holds {position.shares}, requested {shares}"
            )
        shares = min(shares, position.shares)

        price = quantize_price(price)
        fees = quantize_money(fees)
        proceeds = quantize_money(shares * price)
        realized = quantize_money(shares * (price - position.entry_price) - fees)

        remaining = position.shares - shares
        if remaining <= DUST_SHARES:
            position.shares = ZERO
            position.size_amount = ZERO
            position.status = POSITION_CLOSED
            position.closed_at = now
            position.closed_price = price
        else:
            position.size_amount = quantize_money(position.size_amount * remaining / position.shares)
            position.shares = quantize_shares(remaining)

        position.current_price = price
        position.pnl = quantize_money(position.pnl + realized)
        position.fees_paid = quantize_money(position.fees_paid + fees)

        self._credit(challenge, proceeds - fees, "trade_sell")

        self.state_manager.save_position(position, conn=conn)
        self.state_manager.update_challenge(challenge, conn=conn)

        trade = Trade(
            id=None,
            position_id=position.id,
            challenge_id=challenge.id,
            market_id=position.market_id,
            trade_type="SELL",
            direction=direction,
            price=price,
            amount=proceeds,
            shares=shares,
            fees=fees,
            realized_pnl=realized,
            slippage=slippage,
            idempotency_key=idempotency_key,
            executed_at=now,
        )
        self.state_manager.insert_trade(trade, conn=conn)
        return trade
