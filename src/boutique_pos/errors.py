"""Exception hierarchy shared by the store, the engines and the CLI."""

from __future__ import annotations


class PosError(Exception):
    """Base class for every error raised deliberately by Boutique POS."""


class ValidationError(PosError, ValueError):
    """Raised when caller input is missing or malformed."""


class NotFoundError(PosError, LookupError):
    """Raised when a referenced sale, product, customer or sheet is absent."""


class RemoteOperationError(PosError):
    """Raised when a call into the backing store fails."""


class ConcurrencyConflict(RemoteOperationError):
    """Raised when a row changed between the read and the guarded write."""


class BusinessRuleViolation(PosError):
    """Raised when a requested operation violates a domain constraint."""


class SaleAlreadyReturned(BusinessRuleViolation):
    """Raised when amending or returning a sale that was already returned."""


__all__ = [
    "PosError",
    "ValidationError",
    "NotFoundError",
    "RemoteOperationError",
    "ConcurrencyConflict",
    "BusinessRuleViolation",
    "SaleAlreadyReturned",
]
