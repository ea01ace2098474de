"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries.
"""

from typing import Optional


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

    def __init__(self, message: str, errors: Optional[list] = None):
        self.errors = errors or []
        super().__init__(message, {"errors": self.errors})


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
    """Exception for configuration errors."""


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class InvalidTransitionException(DomainException):
    """Raised when acting on a non-pending step or a terminal request."""

    def __init__(
        self,
        entity: str,
        entity_id: str,
        current_status: str,
        attempted: str
    ):
        self.entity = entity
        self.entity_id = entity_id
        self.current_status = current_status
        self.attempted = attempted
        super().__init__(
            f"Cannot {attempted} {entity} {entity_id} in status '{current_status}'",
            {
                "entity": entity,
                "entity_id": entity_id,
                "current_status": current_status,
                "attempted": attempted,
            }
        )


class StepNotReadyException(DomainException):
    """Raised in strict sequential mode when earlier required steps are open."""

    def __init__(self, step_order: int, blocking_steps: list):
        self.step_order = step_order
        self.blocking_steps = blocking_steps
        super().__init__(
            f"Step {step_order} is not ready; waiting on steps {blocking_steps}",
            {"step_order": step_order, "blocking_steps": blocking_steps}
        )


class ConcurrentModificationException(RepositoryException):
    """Optimistic version check failed while committing a change."""

    def __init__(self, entity: str, entity_id: str, expected_version: int):
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"{entity} {entity_id} was modified concurrently (expected version {expected_version})",
            {"entity": entity, "entity_id": entity_id, "expected_version": expected_version}
        )


class NotificationDispatchException(ExternalServiceException):
    """Exception for notification delivery failures."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__("Notification Dispatcher", message, details)
