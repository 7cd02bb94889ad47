"""
Error taxonomy for reststores.

Every failure a store pipeline can report to a client is one of the
StoreError subclasses below. Anything else (a collaborator fault, a bug)
is wrapped in ServiceUnavailableError before being transmitted.

Two further exceptions sit outside the client-facing taxonomy:
- StoreConfigurationError: the store itself is declared wrongly
- InternalConsistencyError: the backend contradicted itself mid-request
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable


class ErrorKind(str, Enum):
    """Classification of client-facing failures."""

    BAD_REQUEST = "bad_request"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    PRECONDITION_FAILED = "precondition_failed"
    UNPROCESSABLE_ENTITY = "unprocessable_entity"
    NOT_IMPLEMENTED = "not_implemented"
    SERVICE_UNAVAILABLE = "service_unavailable"


@dataclass(frozen=True, slots=True)
class FieldError:
    """A single field-level problem."""

    field: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"field": self.field, "message": self.message}


class StoreError(Exception):
    """
    Base class for all client-facing store failures.

    Attributes:
        kind: Classification used by transports to pick a status code
        message: Human-readable description
        errors: Field-level errors (may be empty)
    """

    kind: ErrorKind = ErrorKind.SERVICE_UNAVAILABLE
    default_message: str = "Store error"

    def __init__(
        self,
        message: str | None = None,
        errors: Iterable[FieldError] | None = None,
    ):
        self.message = message or self.default_message
        self.errors: list[FieldError] = list(errors or [])
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Render as {message, errors?}."""
        if self.errors:
            return {
                "message": self.message,
                "errors": [e.to_dict() for e in self.errors],
            }
        return {"message": self.message}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, errors={len(self.errors)})"


class BadRequestError(StoreError):
    kind = ErrorKind.BAD_REQUEST
    default_message = "Bad request"


class ForbiddenError(StoreError):
    kind = ErrorKind.FORBIDDEN
    default_message = "Forbidden"


class NotFoundError(StoreError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Not found"


class PreconditionFailedError(StoreError):
    kind = ErrorKind.PRECONDITION_FAILED
    default_message = "Precondition failed"


class UnprocessableEntityError(StoreError):
    """Validation or uniqueness failure. Always carries field errors."""

    kind = ErrorKind.UNPROCESSABLE_ENTITY
    default_message = "Unprocessable entity"


class MethodNotImplementedError(StoreError):
    kind = ErrorKind.NOT_IMPLEMENTED
    default_message = "Not implemented"


class ServiceUnavailableError(StoreError):
    """Wraps a failure that is not part of the taxonomy."""

    kind = ErrorKind.SERVICE_UNAVAILABLE
    default_message = "Service unavailable"

    def __init__(
        self,
        message: str | None = None,
        errors: Iterable[FieldError] | None = None,
        original_error: BaseException | None = None,
    ):
        super().__init__(message, errors)
        self.original_error = original_error

    @classmethod
    def wrap(cls, error: BaseException) -> ServiceUnavailableError:
        wrapped = cls(original_error=error)
        wrapped.__cause__ = error
        return wrapped


class StoreConfigurationError(ValueError):
    """Raised when a store is declared or wired incorrectly."""

    def __init__(self, message: str, store_name: str | None = None):
        self.store_name = store_name
        prefix = f"[{store_name}] " if store_name else ""
        super().__init__(f"{prefix}{message}")


class InternalConsistencyError(RuntimeError):
    """
    Raised when the persistence backend contradicts an earlier answer
    within the same request (e.g. a record confirmed present is gone
    by the time it is deleted). Never a normal client outcome.
    """


def is_taxonomy_error(error: BaseException) -> bool:
    """True for the client-facing kinds handled by the store itself."""
    return isinstance(error, StoreError)
