# Overview: Domain error hierarchy shared by all services.

"""
Error kinds raised by the order and cashback services.

Every DomainError is a recoverable business outcome: the unit of work that
raised it has been rolled back and the caller may report it unchanged.
`http_status` is the status a transport adapter should map the error to.

InternalInvariantViolation is deliberately NOT a DomainError. It means the
ledger or an order is in a state the invariants forbid (corruption, a bug),
so it must surface as a 5xx-equivalent and never as a user mistake.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for recoverable business errors."""

    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": self.message, "type": type(self).__name__, "details": self.details}


class ValidationError(DomainError):
    """400-level input problem (non-positive amount, empty item list, missing address)."""

    http_status = 400


class NotFound(DomainError):
    """Unknown order, customer, product, seller, discount or discount reason."""

    http_status = 404


class InvalidTransition(DomainError):
    """Order state-machine precondition violated; caller should re-read status."""

    http_status = 409


class InsufficientStock(DomainError):
    http_status = 409


class InsufficientBalance(DomainError):
    http_status = 409


class InternalInvariantViolation(RuntimeError):
    """Fatal: persisted state contradicts an invariant that prior checks guaranteed."""

    http_status = 500

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
