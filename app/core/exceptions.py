"""
Settlement error taxonomy.

Services raise these; ``app.main`` translates them into HTTP responses.
None of them is retried automatically and none is fatal to the process.
"""

from decimal import Decimal


class SettlementError(Exception):
    """Base exception for all settlement-domain errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SettlementError):
    """A required field is missing or malformed. Raised before any mutation."""


class NotFoundError(SettlementError):
    """A referenced transaction or payment does not exist (for this tenant)."""


class PolicyViolation(SettlementError):
    """
    The operation is well-formed but breaks a settlement rule, e.g. a
    partial payment on a transaction that requires a single full payment.

    Carries the balance the transaction *would* have had so the caller
    can correct the amount and retry.
    """

    def __init__(
        self,
        message: str,
        remaining_balance: Decimal | None = None,
        currency: str | None = None,
    ):
        super().__init__(message)
        self.remaining_balance = remaining_balance
        self.currency = currency


class PersistenceError(SettlementError):
    """Storage failed during the read-modify-write; nothing was applied."""
