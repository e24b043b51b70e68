"""Error taxonomy for trade execution.

Three families:
- ValidationError: malformed input, raised before any I/O.
- DomainRejection: a business outcome (insufficient funds, risk rule,
  arbitrage, liquidity, ...). Carries a stable ``code`` and a
  human-readable ``reason``; logged at INFO, never as a fault.
- StorageError: infrastructure failure wrapped at the transaction
  boundary. Retrying is safe when the caller supplied an idempotency key.
"""

from typing import Optional


class PropDeskError(Exception):
    """Base class for all engine errors."""

    code = "PROPDESK_ERROR"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ValidationError(PropDeskError):
    """Malformed trade request (bad enum, non-positive amount)."""

    code = "INVALID_REQUEST"


class DomainRejection(PropDeskError):
    """A trade the rules do not allow."""

    code = "REJECTED"


class ChallengeNotFoundError(DomainRejection):
    """Unknown challenge, or one not owned by the caller."""

    code = "CHALLENGE_NOT_FOUND"


class ChallengeInactiveError(DomainRejection):
    """Challenge is passed, failed or cancelled."""

    code = "CHALLENGE_INACTIVE"


class InsufficientFundsError(DomainRejection):
    """BUY notional exceeds the current balance."""

    code = "INSUFFICIENT_FUNDS"


class PositionNotFoundError(DomainRejection):
    """SELL without an OPEN position in the requested direction."""

    code = "POSITION_NOT_FOUND"


class InsufficientSharesError(PositionNotFoundError):
    """SELL for more shares than the position holds."""

    code = "INSUFFICIENT_SHARES"


class MarketResolvedError(DomainRejection):
    """Market is resolved or settling and no longer tradeable."""

    code = "MARKET_RESOLVED"


class RiskRejectedError(DomainRejection):
    """A pre-trade risk rule rejected the trade."""

    code = "RISK_REJECTED"


class ArbitrageRejectedError(DomainRejection):
    """The trade would build a guaranteed-payoff position set."""

    code = "ARBITRAGE_BLOCKED"


class LiquidityError(DomainRejection):
    """Order book cannot fill the order, or slippage exceeds tolerance."""

    code = "INSUFFICIENT_LIQUIDITY"


class StorageError(PropDeskError):
    """Database failure during a trade or state transition."""

    code = "STORAGE_ERROR"

    def __init__(self, reason: str, original: Optional[BaseException] = None):
        super().__init__(reason)
        self.original = original
