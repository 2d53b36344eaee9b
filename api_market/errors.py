"""Marketplace error taxonomy.

Pre-condition failures (`NotFound`, `NoListingsAvailable`, `InsufficientFunds`)
are raised before any state is touched. `PaymentFailed` means no funds moved.
`ExecutionFailed` means the call failed after payment went through.
"""

from __future__ import annotations


class MarketError(Exception):
    """Base exception for all marketplace errors."""


class NotFound(MarketError):
    """Unknown agent, listing or provider reference."""


class NoListingsAvailable(MarketError):
    """No active listing satisfies the request filters."""


class InsufficientFunds(MarketError):
    def __init__(self, agent_id: str, *, balance: int, price: int) -> None:
        super().__init__(f"agent {agent_id} has {balance}, needs {price}")
        self.agent_id = agent_id
        self.balance = balance
        self.price = price


class PaymentFailed(MarketError):
    def __init__(self, message: str, *, settlement_id: str | None = None) -> None:
        super().__init__(message)
        self.settlement_id = settlement_id


class ExecutionFailed(MarketError):
    """Raised for a paid call whose execution failed. Not retried."""

    def __init__(self, message: str, *, outcome: object | None = None) -> None:
        super().__init__(message)
        self.outcome = outcome


class InvalidStrategy(MarketError, ValueError):
    pass
