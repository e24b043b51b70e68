"""Shared utilities: structured logging and the numeric parse boundary."""

from propdesk.utils.logger import (
    get_evaluation_logger,
    get_execution_logger,
    get_logger,
    get_risk_logger,
    setup_logger,
)
from propdesk.utils.safe_parse import safe_decimal, safe_float

__all__ = [
    "get_evaluation_logger",
    "get_execution_logger",
    "get_logger",
    "get_risk_logger",
    "setup_logger",
    "safe_decimal",
    "safe_float",
]
