"""Error taxonomy shared by the core services, the API and the CLI."""

from dataclasses import dataclass
from typing import Iterable, List, Optional


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class LibraryError(Exception):
    """Base class for every error the core reports to its callers."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationError(LibraryError):
    """Missing, malformed or unknown credential."""

    def __init__(self, message: str = "Not authorized") -> None:
        super().__init__(message)


class ValidationError(LibraryError):
    """Malformed input. Carries every offending field, not just the first."""

    def __init__(self, errors: Iterable[FieldError], message: str = "Validation failed") -> None:
        super().__init__(message)
        self.errors: List[FieldError] = list(errors)

    @property
    def fields(self) -> List[str]:
        return [e.field for e in self.errors]

    @classmethod
    def single(cls, field: str, message: str) -> "ValidationError":
        return cls([FieldError(field, message)])


class NotFoundError(LibraryError):
    """No record visible to the calling owner.

    Raised identically whether the record is absent or belongs to someone else.
    """

    def __init__(self, message: str = "Book not found") -> None:
        super().__init__(message)


class ConflictError(LibraryError):
    """A lending transition was requested from the wrong state."""


class StorageError(LibraryError):
    """The store itself failed. The message is never shown to API callers."""

    def __init__(self, message: str = "Storage failure", operation: Optional[str] = None) -> None:
        super().__init__(message)
        self.operation = operation
