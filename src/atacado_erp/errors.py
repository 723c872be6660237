"""Exception taxonomy shared by the data access and business logic layers."""

from __future__ import annotations


class AtacadoError(Exception):
    """Base class for every domain error raised by the package."""


class ValidationError(AtacadoError, ValueError):
    """Raised when caller input is malformed (empty reason, bad amount...)."""


class InvalidTransition(AtacadoError):
    """Raised when an order cannot move to the requested status."""


class NotFoundError(AtacadoError, KeyError):
    """Raised when a referenced document id does not exist."""

    def __str__(self) -> str:
        # KeyError quotes its argument; keep messages readable.
        return str(self.args[0]) if self.args else ""


class PermissionDeniedError(AtacadoError):
    """Raised when the session lacks the capability for an operation."""


class ReauthenticationRequired(PermissionDeniedError):
    """Raised when an operation needs a recently authenticated session."""


class InvalidCredentialError(AtacadoError):
    """Raised when sign-in or re-authentication fails."""


class PersistenceError(AtacadoError):
    """Raised when the workbook cannot be read or written as requested."""


class ConcurrentModificationError(PersistenceError):
    """Raised when a compare-and-swap guard no longer matches the stored row."""


class BatchLimitExceeded(PersistenceError):
    """Raised when a batch write exceeds the configured operation ceiling."""


class MalformedDocumentError(PersistenceError):
    """Raised when a stored row cannot be converted into a typed record."""


class AdvisorResponseError(AtacadoError):
    """Raised when generative AI output fails validation."""


__all__ = [
    "AtacadoError",
    "ValidationError",
    "InvalidTransition",
    "NotFoundError",
    "PermissionDeniedError",
    "ReauthenticationRequired",
    "InvalidCredentialError",
    "PersistenceError",
    "ConcurrentModificationError",
    "BatchLimitExceeded",
    "MalformedDocumentError",
    "AdvisorResponseError",
]
