"""Exception hierarchy shared by every SheetDB module."""
from __future__ import annotations

from typing import Optional


class SheetDBError(RuntimeError):
    """Base error raised when the record store cannot complete an action."""


class ConfigurationError(SheetDBError):
    """Raised when a required setting (passphrase, spreadsheet id) is missing."""


class NotFoundError(SheetDBError):
    """Raised when a sheet, record or title cannot be located."""


class AuthenticationRequiredError(SheetDBError):
    """Raised when no usable credentials exist and none can be refreshed."""


class RemoteApiError(SheetDBError):
    """Raised when the Google API returns a non-2xx response."""

    def __init__(self, message: str, *, status: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status is None:
            return base
        return f"{base}: {self.status} {self.body}".rstrip()


class DecryptionError(SheetDBError):
    """Raised when an encrypted envelope cannot be opened."""


class ValidationError(SheetDBError):
    """Raised when a spreadsheet does not match the required structure."""

    def __init__(self, errors) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "Sheet structure is invalid")


__all__ = [
    "AuthenticationRequiredError",
    "ConfigurationError",
    "DecryptionError",
    "NotFoundError",
    "RemoteApiError",
    "SheetDBError",
    "ValidationError",
]
