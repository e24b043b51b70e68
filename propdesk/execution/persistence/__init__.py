"""Persistence layer: challenges, positions and the trade ledger."""

from propdesk.execution.persistence.state_manager import Challenge, Position, StateManager, Trade

__all__ = [
    "Challenge",
    "Position",
    "StateManager",
    "Trade",
]
