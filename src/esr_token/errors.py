"""Error taxonomy for ledger and sale operations.

Two families share the same rollback behaviour but mean different things:

* ``PreconditionViolation`` - an anticipated rejection (wrong caller, wrong
  state, bad input). The caller may retry with corrected input.
* ``InvariantViolation`` - an accounting fault such as draining a reserved
  pool below zero. It signals a bug or misconfiguration, not bad input.
"""

from __future__ import annotations


class LedgerError(Exception):
    """Base exception for every rejected ledger or sale operation."""

    kind = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    @property
    def code(self) -> str:
        return self.__class__.__name__


class PreconditionViolation(LedgerError):
    kind = "precondition"


class Unauthorized(PreconditionViolation):
    """Raised when the caller lacks the required role."""


class Locked(PreconditionViolation):
    """Raised for transfer/approve while the token is locked."""


class UnsafeApproval(PreconditionViolation):
    """Raised when overwriting a non-zero allowance with another non-zero value."""


class InsufficientBalance(PreconditionViolation):
    pass


class InsufficientAllowance(PreconditionViolation):
    pass


class InsufficientFunds(PreconditionViolation):
    """Raised when an account cannot cover the native value it sends."""


class NotYetAllowed(PreconditionViolation):
    """Raised when a time-gated action is attempted too early."""


class ReserveLocked(PreconditionViolation):
    pass


class InvalidState(PreconditionViolation):
    pass


class InvalidParameter(PreconditionViolation):
    pass


class NotWhitelisted(PreconditionViolation):
    pass


class BelowMinimum(PreconditionViolation):
    pass


class AboveMaximum(PreconditionViolation):
    pass


class HardCapExceeded(PreconditionViolation):
    """Raised when an investment would overshoot the sale hard cap."""


class NotPayable(PreconditionViolation):
    pass


class InvariantViolation(LedgerError):
    kind = "invariant"


class SupplyExhausted(InvariantViolation):
    """Raised when available supply would become negative."""


class ReserveExhausted(InvariantViolation):
    """Raised when a reserved pool would be distributed beyond its cap."""
