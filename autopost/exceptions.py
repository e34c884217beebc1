"""
Custom exception classes for the autopost scheduling/publication service.

Errors are raised where they are detected and surfaced to the caller with
enough context to act on them.  The only place that converts an exception
into state instead of propagating it is the publication executor, which
records remote failures on the item.

Hierarchy:
    Exception
    +-- PublisherBaseError (base for all service-specific errors)
    |   +-- ConflictError
    |   +-- NotFoundError
    |   +-- ExternalPublishError
    |       +-- ContentEndpointAuthError
    +-- ValidationError (ValueError)
    |   +-- RecurrenceSyntaxError
    |   +-- InvalidTransitionError
    |   +-- MonthlyLimitExceededError
    +-- DatabaseError
    +-- ConfigurationError
    +-- RetryExhaustedError
"""

from datetime import datetime
from typing import Optional


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class PublisherBaseError(Exception):
    """Base exception for all service-specific errors."""

    pass


# =============================================================================
# CORE EXCEPTIONS
# =============================================================================


class ValidationError(ValueError):
    """Raised when input validation fails.  No state is mutated."""

    pass


class DatabaseError(Exception):
    """Raised when database operations fail unexpectedly."""

    pass


class ConfigurationError(Exception):
    """Raised when system configuration is invalid."""

    pass


class RetryExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        operation: Name of the operation that was retried.
        attempts: Total number of attempts made.
        last_error: The last exception raised before giving up.
    """

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts. "
            f"Last error: {last_error}"
        )


# =============================================================================
# RESOURCE EXCEPTIONS
# =============================================================================


class ConflictError(PublisherBaseError):
    """Raised when a write would violate a uniqueness rule.

    The only such rule today is "one active schedule per site".
    """

    pass


class NotFoundError(PublisherBaseError):
    """Raised for unknown sites, schedules, or items.

    Cross-site access raises this as well, so callers cannot probe for
    the existence of records that belong to another site.
    """

    def __init__(self, resource: str, resource_id: Optional[str] = None):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found")


# =============================================================================
# EXTERNAL CONTENT ENDPOINT EXCEPTIONS
# =============================================================================


class ExternalPublishError(PublisherBaseError):
    """Raised when the remote content endpoint rejects or fails a request.

    Attributes:
        status_code: HTTP status returned by the endpoint, if any.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ContentEndpointAuthError(ExternalPublishError):
    """Raised when the endpoint refuses the site's credentials (401/403)."""

    pass


# =============================================================================
# VALIDATION EXCEPTIONS
# =============================================================================


class RecurrenceSyntaxError(ValidationError):
    """Raised when a recurrence expression is malformed.

    Attributes:
        expression: The rejected expression.
        reason: Which field failed and why.
    """

    def __init__(self, expression: str, reason: str):
        self.expression = expression
        self.reason = reason
        super().__init__(f"Invalid recurrence expression {expression!r}: {reason}")


class InvalidTransitionError(ValidationError):
    """Raised when an item lifecycle transition is not permitted.

    Attributes:
        current: Status the item is in.
        target: Status that was requested.
    """

    def __init__(self, current: str, target: str, message: Optional[str] = None):
        self.current = current
        self.target = target
        super().__init__(
            message or f"Cannot move item from '{current}' to '{target}'"
        )


class MonthlyLimitExceededError(ValidationError):
    """Raised when a site has used up its monthly publish cap.

    Attributes:
        current_count: Items already published this month.
        limit: The site's monthly cap.
        resets_at: Start of the next calendar month in the site timezone.
    """

    def __init__(self, current_count: int, limit: int, resets_at: datetime):
        self.current_count = current_count
        self.limit = limit
        self.resets_at = resets_at
        super().__init__(
            f"Monthly publish limit reached ({current_count}/{limit}); "
            f"resets at {resets_at.isoformat()}"
        )


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Base
    "PublisherBaseError",
    # Core
    "ValidationError",
    "DatabaseError",
    "ConfigurationError",
    "RetryExhaustedError",
    # Resources
    "ConflictError",
    "NotFoundError",
    # External
    "ExternalPublishError",
    "ContentEndpointAuthError",
    # Validation
    "RecurrenceSyntaxError",
    "InvalidTransitionError",
    "MonthlyLimitExceededError",
]
