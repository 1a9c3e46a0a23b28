"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Every exception carries a
``details`` dict so the API layer can render a structured response.
"""

from typing import Any, Iterable, List, Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Exception for validation errors."""


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    def __init__(
        self,
        resource_type: str,
        resource_id: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.resource_type = resource_type
        self.resource_id = resource_id
        message = f"{resource_type}"
        if resource_id:
            message += f" with id '{resource_id}'"
        message += " not found"
        super().__init__(message, details)


class ConfigurationException(ApplicationException):
    """Exception for configuration errors. Fatal at startup."""


class InvalidInputError(ValidationException):
    """A value lies outside its closed domain. Never coerced."""

    def __init__(self, field: str, value: Any, allowed: Iterable[str]):
        self.field = field
        self.value = value
        self.allowed = sorted(allowed)
        super().__init__(
            f"Invalid {field} {value!r}; expected one of {self.allowed}",
            {"field": field, "value": str(value), "allowed": self.allowed}
        )


class MissingFieldsError(ValidationException):
    """Ticket creation is missing one or more required fields."""

    def __init__(self, category: str, missing_fields: List[str]):
        self.category = category
        self.missing_fields = list(missing_fields)
        super().__init__(
            f"Missing required fields for {category}: {', '.join(self.missing_fields)}",
            {"category": category, "missing_fields": self.missing_fields}
        )


class IllegalTransitionError(DomainException):
    """Requested status change is not an edge of the category workflow."""

    def __init__(
        self,
        category: str,
        current_status: str,
        requested_status: str,
        legal_statuses: Iterable[str]
    ):
        self.category = category
        self.current_status = current_status
        self.requested_status = requested_status
        self.legal_statuses = sorted(legal_statuses)
        super().__init__(
            f"Cannot transition {category} from {current_status!r} to {requested_status!r}",
            {
                "category": category,
                "current_status": current_status,
                "requested_status": requested_status,
                "legal_statuses": self.legal_statuses,
            }
        )


class ConcurrentModificationError(DomainException):
    """Optimistic version check failed. Reload the ticket and retry."""

    def __init__(
        self,
        ticket_id: str,
        expected_version: int,
        actual_version: Optional[int] = None
    ):
        self.ticket_id = ticket_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Ticket {ticket_id} was modified concurrently (expected version {expected_version})",
            {
                "ticket_id": ticket_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
                "retryable": True,
            }
        )
