"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Each carries a stable ``code``
and the HTTP status the API layer maps it to.
"""

from typing import Optional, Dict, List


class ApplicationException(Exception):
    """Base exception for all application errors."""

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_envelope(self) -> dict:
        """Render the standard error envelope."""
        envelope = {"error": self.message, "code": self.code}
        fields = self.details.get("fields")
        if fields:
            envelope["fields"] = fields
        return envelope


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""

    code = "domain_error"
    status_code = 400


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""


class ValidationException(ApplicationException):
    """Malformed or missing input. Recoverable by the caller."""

    code = "validation_error"
    status_code = 422

    def __init__(
        self,
        message: str,
        fields: Optional[Dict[str, str]] = None,
        details: Optional[dict] = None
    ):
        details = dict(details or {})
        if fields:
            details["fields"] = fields
        self.fields = fields or {}
        super().__init__(message, details)


class InvalidTransitionException(DomainException):
    """State-machine or rule violation."""

    code = "invalid_transition"
    status_code = 400

    def __init__(
        self,
        message: str,
        from_status: Optional[str] = None,
        to_status: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.from_status = from_status
        self.to_status = to_status
        details = dict(details or {})
        if from_status is not None:
            details["from_status"] = from_status
        if to_status is not None:
            details["to_status"] = to_status
        super().__init__(message, details)


class PermissionDeniedException(DomainException):
    """Actor lacks the role or ownership the operation needs."""

    code = "forbidden"
    status_code = 403


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    code = "not_found"
    status_code = 404

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


class AlreadySubmittedException(DomainException):
    """Duplicate one-time write."""

    code = "already_submitted"
    status_code = 409


class ConflictException(RepositoryException):
    """A concurrent mutation won the race. Refetch and retry."""

    code = "conflict"
    status_code = 409

    def __init__(self, resource_type: str, resource_id: str, details: Optional[dict] = None):
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(
            f"{resource_type} '{resource_id}' was modified concurrently",
            details
        )


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


class DependencyFailureException(ExternalServiceException):
    """Notification or analytics collaborator unreachable."""

    code = "dependency_failure"
    status_code = 500


def field_errors(errors: List[dict]) -> Dict[str, str]:
    """Flatten pydantic ``errors()`` output into a field -> message map."""
    fields = {}
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        fields[location or "__root__"] = error.get("msg", "invalid value")
    return fields
