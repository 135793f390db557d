"""Exception hierarchy shared by the storage and account services."""

from __future__ import annotations


class StorageError(RuntimeError):
    """Base class for failures raised by the storage layer."""


class InvalidCategory(StorageError):
    """Raised when a category is not one of the supported material kinds."""


class MissingUnit(StorageError):
    """Raised when notes are addressed without a unit."""


class InvalidRequest(StorageError):
    """Raised when a client request is incomplete or otherwise rejected."""


class NotFound(StorageError):
    """Raised when a file cannot be located at its canonical or fallback paths."""


class PersistenceFailure(StorageError):
    """Raised when one of the metadata documents cannot be written."""


class AccountError(RuntimeError):
    """Base class for failures raised by the account flows."""

    status_code = 400

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class InvalidToken(AccountError):
    """Raised when a signed link token cannot be trusted for the requested purpose."""


class AccountNotFound(AccountError):
    """Raised when no identity provider account matches an email address."""

    status_code = 404


class AccountNotVerified(AccountError):
    """Raised when an account signs in before confirming its email address."""

    status_code = 403


class UpstreamFailure(AccountError):
    """Raised when the identity provider or mail server cannot complete a request."""

    status_code = 502


__all__ = [
    "AccountError",
    "AccountNotFound",
    "AccountNotVerified",
    "InvalidCategory",
    "InvalidRequest",
    "InvalidToken",
    "MissingUnit",
    "NotFound",
    "PersistenceFailure",
    "StorageError",
    "UpstreamFailure",
]
