"""Error handling module for contact operations."""

from .handlers import (
    ErrorKind,
    ErrorContext,
    ContactsError,
    NotFoundError,
    AlreadyExistsError,
    AccessDeniedError,
    InvalidInputError,
    ContactSourceError,
)

__all__ = [
    "ErrorKind",
    "ErrorContext",
    "ContactsError",
    "NotFoundError",
    "AlreadyExistsError",
    "AccessDeniedError",
    "InvalidInputError",
    "ContactSourceError",
]
