"""
Core Exceptions
================

Custom exceptions for the application following clean architecture principles.

These exceptions define domain-specific errors that can be caught and handled
appropriately at the application boundaries. Each carries the HTTP status the
API layer answers with when it escapes a request.
"""

from typing import Optional


class ApplicationException(Exception):
    """Base exception for all application errors."""

    status_code: int = 500
    error_code: str = "APPLICATION_ERROR"

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class DomainException(ApplicationException):
    """Base exception for domain logic violations."""

    status_code = 400
    error_code = "DOMAIN_ERROR"


class RepositoryException(ApplicationException):
    """Base exception for repository/data access errors."""

    error_code = "REPOSITORY_ERROR"


class ValidationException(ApplicationException):
    """Exception for validation errors."""

    status_code = 400
    error_code = "VALIDATION_ERROR"


class ResourceNotFoundException(ApplicationException):
    """Exception when a requested resource is not found."""

    status_code = 404
    error_code = "NOT_FOUND"

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
    """
    Malformed automation configuration.

    Raised when a workflow rule, assignment rule or SLA policy is created or
    updated with content the engine cannot run, so it never reaches the
    dispatcher.
    """

    status_code = 400
    error_code = "CONFIGURATION_ERROR"


class AuthenticationException(ApplicationException):
    """Caller identity missing."""

    status_code = 401
    error_code = "AUTHENTICATION_ERROR"


class AuthorizationException(ApplicationException):
    """Caller lacks the role required for the operation."""

    status_code = 403
    error_code = "AUTHORIZATION_ERROR"


class ExternalServiceException(ApplicationException):
    """Base exception for external service failures."""

    status_code = 502
    error_code = "EXTERNAL_SERVICE_ERROR"

    def __init__(
        self,
        service_name: str,
        message: str,
        details: Optional[dict] = None
    ):
        self.service_name = service_name
        super().__init__(f"{service_name}: {message}", details)


class EvaluationException(DomainException):
    """A condition could not be evaluated (e.g. non-numeric comparison)."""

    error_code = "EVALUATION_ERROR"

    def __init__(self, field: str, operator: str, message: str):
        self.field = field
        self.operator = operator
        super().__init__(
            f"Cannot evaluate '{field}' {operator}: {message}",
            {"field": field, "operator": operator}
        )


class ActionException(DomainException):
    """A single workflow action failed."""

    INVALID_PARAMS = "invalid_params"
    TIMEOUT = "timeout"
    COLLABORATOR_ERROR = "collaborator_error"
    UNSUPPORTED = "unsupported"

    error_code = "ACTION_ERROR"

    def __init__(
        self,
        reason: str,
        message: str,
        action_type: Optional[str] = None,
        details: Optional[dict] = None
    ):
        self.reason = reason
        self.action_type = action_type
        super().__init__(message, {"reason": reason, "action_type": action_type, **(details or {})})


class RecursionLimitException(DomainException):
    """Cascading workflow dispatch went deeper than the configured cap."""

    status_code = 500
    error_code = "RECURSION_LIMIT"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        trigger: str,
        max_depth: int
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.trigger = trigger
        self.max_depth = max_depth
        # Partial ExecutionReport, attached by the dispatcher
        self.report = None
        super().__init__(
            f"Workflow cascade for {entity_type} {entity_id} exceeded depth {max_depth} "
            f"on trigger '{trigger}'; check rules that re-trigger each other",
            {
                "entity_type": entity_type,
                "entity_id": entity_id,
                "trigger": trigger,
                "max_depth": max_depth,
            }
        )
