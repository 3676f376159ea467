"""Error kinds with context preservation for contact operations."""

from typing import Any, Dict, Optional
from datetime import datetime
from dataclasses import dataclass, field
from enum import Enum


class ErrorKind(Enum):
    """Closed set of error kinds surfaced to callers."""
    NOT_FOUND = "not_found"
    ALREADY_EXISTS = "already_exists"
    ACCESS_DENIED = "access_denied"
    INVALID_INPUT = "invalid_input"
    EXTERNAL_SERVICE = "external_service"


@dataclass
class ErrorContext:
    """Context information for an error."""
    operation: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    account_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.utcnow)
    # must stay below every field() default: the name shadows dataclasses.field
    field: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert context to dictionary."""
        return {
            "operation": self.operation,
            "resource_type": self.resource_type,
            "resource_id": self.resource_id,
            "account_id": self.account_id,
            "field": self.field,
            "metadata": self.metadata,
            "timestamp": self.timestamp.isoformat(),
        }


class ContactsError(Exception):
    """Base exception for all contact-domain errors."""

    kind: ErrorKind = ErrorKind.INVALID_INPUT

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or self.kind.name
        self.context = context
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for logging and API responses."""
        return {
            "error_type": self.__class__.__name__,
            "kind": self.kind.value,
            "code": self.code,
            "error_message": self.message,
            "context": self.context.to_dict() if self.context else None,
            "cause": str(self.cause) if self.cause else None,
        }


class NotFoundError(ContactsError):
    """A contact, tag, group or inbox does not exist in the account."""
    kind = ErrorKind.NOT_FOUND


class AlreadyExistsError(ContactsError):
    """A unique name or phone is already taken in the account."""
    kind = ErrorKind.ALREADY_EXISTS


class AccessDeniedError(ContactsError):
    """The resource exists but belongs to another account."""
    kind = ErrorKind.ACCESS_DENIED


class InvalidInputError(ContactsError):
    """Request data failed validation."""
    kind = ErrorKind.INVALID_INPUT

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: Optional[str] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message, code=code, context=context)
        self.field = field
        self.value = value


class ContactSourceError(ContactsError):
    """The external contact source failed or rejected the request."""
    kind = ErrorKind.EXTERNAL_SERVICE

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        context: Optional[ErrorContext] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, code="CONTACT_SOURCE_ERROR", context=context, cause=cause)
        self.status_code = status_code
