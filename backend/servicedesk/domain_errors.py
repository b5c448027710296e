"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping.

    ``predicate`` names the internal check that failed. It is only shown to
    admins (see ``problem_details``).
    """

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None
    predicate: str | None = None

    def __str__(self) -> str:
        return self.message

    @property
    def kind(self) -> str:
        return type(self).__name__


@dataclass(eq=False)
class ValidationError(DomainError):
    """Malformed or out-of-range input. Never retried."""

    code: str = "VALIDATION_ERROR"
    http_status: int = 400
    message: str = "Validation failed"


@dataclass(eq=False)
class InvalidCategorizationValue(ValidationError):
    code: str = "INVALID_CATEGORIZATION_VALUE"
    message: str = "Invalid categorization value"


@dataclass(eq=False)
class MissingOverrideReason(ValidationError):
    code: str = "OVERRIDE_REASON_REQUIRED"
    message: str = "Override reason is required when changing the requester classification"


@dataclass(eq=False)
class Unauthorized(DomainError):
    code: str = "UNAUTHORIZED"
    http_status: int = 403
    message: str = "You are not authorized to perform this action"


@dataclass(eq=False)
class NotFound(DomainError):
    code: str = "NOT_FOUND"
    http_status: int = 404
    message: str = "Not found"


@dataclass(eq=False)
class InvalidTransition(DomainError):
    code: str = "INVALID_TRANSITION"
    http_status: int = 409
    message: str = "Status transition is not allowed"


@dataclass(eq=False)
class AlreadyProcessed(DomainError):
    code: str = "ALREADY_PROCESSED"
    http_status: int = 409
    message: str = "Request has already been processed"


@dataclass(eq=False)
class AlreadyAssigned(DomainError):
    code: str = "ALREADY_ASSIGNED"
    http_status: int = 409
    message: str = "Ticket is already assigned to another technician"


@dataclass(eq=False)
class ClassificationLocked(DomainError):
    code: str = "CLASSIFICATION_LOCKED"
    http_status: int = 423
    message: str = "Ticket classification is locked and cannot be modified"
