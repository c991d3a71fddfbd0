"""Typed errors for the arbitrage pipeline.

Configuration and validation errors are deterministic and never retried.
Transient network errors are retried by the caller that raised them.
Execution errors are retried by the executor up to its attempt budget.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ArbitrageError(Exception):
    """Base exception carrying optional diagnostic details."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {'error': type(self).__name__, 'message': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class ConfigurationError(ArbitrageError):
    """Unmapped symbol or exchange, malformed configured address, unknown family."""


class ValidationError(ArbitrageError):
    """Malformed amount, address or swap path."""


class TransientNetworkError(ArbitrageError):
    """Provider timeout, rate limit or RPC disconnect."""


class ExecutionError(ArbitrageError):
    """Submission failure, on-chain revert or malformed provider response."""


class TransactionTimeoutError(ExecutionError):
    """No receipt arrived before the confirmation timeout."""

    def __init__(self, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__('Transaction timeout', details)
