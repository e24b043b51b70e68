"""
PropDesk - Prediction-market prop-trading challenge engine

Evaluates traders on simulated challenge accounts: pre-trade risk
validation, arbitrage prevention, order-book execution, and the
challenge pass/fail/fund state machine.
"""

__version__ = "0.1.0"
__author__ = "PropDesk Team"
