"""HTTP surface for the PropDesk engine.

Provides REST endpoints for trade execution, challenge state and the
periodic jobs (daily reset, evaluation, settlement, balance audit).
"""
