"""
Custom domain exceptions for the application.

These exceptions are raised by the service layer and converted to HTTP exceptions
by centralized exception handlers in main.py, maintaining proper separation of concerns.

The authentication module (auth.py) also uses these domain exceptions to remain
HTTP-agnostic, allowing reuse in non-HTTP contexts (CLI tools, background jobs,
the bulk decision processor).

Each exception carries a short ``error_code`` used in bulk results and API bodies,
plus a correlation ID for Sentry integration and user error reporting.
"""

from core.correlation import generate_correlation_id, get_correlation_id


class DomainException(Exception):
    """
    Base class for all domain exceptions.

    Attributes:
        message: Human-readable error message.
        correlation_id: Unique ID for error tracking (auto-generated if not provided).
        error_code: Stable taxonomy code exposed to API clients.
        retryable: Whether the caller may safely retry after re-reading state.
    """

    error_code = "InternalError"
    retryable = False

    def __init__(self, message: str, correlation_id: str | None = None):
        self.message = message
        # Use request correlation ID if available, otherwise generate new one
        self.correlation_id = (
            correlation_id or get_correlation_id() or generate_correlation_id()
        )
        super().__init__(self.message)


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    error_code = "NotFound"


class PermissionDeniedException(DomainException):
    """Raised when user lacks required permissions."""

    error_code = "Forbidden"


class ValidationException(DomainException):
    """Raised when input validation fails."""

    error_code = "ValidationError"


class ConflictException(DomainException):
    """Raised when operation conflicts with existing data."""

    error_code = "Conflict"
    retryable = True


class AuthenticationException(DomainException):
    """Raised when authentication fails."""

    error_code = "Unauthorized"


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    error_code = "BusinessRule"


class InternalErrorException(DomainException):
    """Raised when the backing store fails mid-operation."""

    error_code = "InternalError"
    retryable = True

    def __init__(self, message: str = "Storage failure. Please retry."):
        super().__init__(message)


# Specific exceptions for domain entities


class UserNotFoundException(NotFoundException):
    """User not found."""

    pass


class InactiveUserException(PermissionDeniedException):
    """User account is inactive."""

    pass


class InsufficientPermissionsException(PermissionDeniedException):
    """User doesn't have sufficient permissions."""

    pass


# ============================================================================
# Queue Store Exceptions
# ============================================================================


class QueueItemNotFoundException(NotFoundException):
    """Raised when a queue item is not found."""

    def __init__(self, queue_item_id: int):
        super().__init__(f"Queue item with ID {queue_item_id} not found")
        self.queue_item_id = queue_item_id


class DuplicateActiveItemException(ConflictException):
    """Raised when content already has an active queue item."""

    error_code = "DuplicateActiveItem"
    retryable = False

    def __init__(self, content_type: str, content_id: str):
        super().__init__(
            f"Content {content_type}:{content_id} already has an active queue item"
        )
        self.content_type = content_type
        self.content_id = content_id


class StaleQueueItemException(ConflictException):
    """Raised when a queue item changed since the caller last read it."""

    def __init__(
        self,
        message: str = "Queue item was modified by another moderator. Reload and retry.",
    ):
        super().__init__(message)


# ============================================================================
# Decision Engine Exceptions
# ============================================================================


class ForbiddenActionException(PermissionDeniedException):
    """Raised when the actor lacks a role allowed to perform the action."""

    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(message)


class InvalidActionException(ValidationException):
    """Raised when the requested moderation action is unknown."""

    error_code = "InvalidAction"

    def __init__(self, action: str):
        super().__init__(f"Unknown moderation action '{action}'")
        self.action = action


class MissingMuteDaysException(ValidationException):
    """Raised when a mute is requested without a positive duration."""

    def __init__(self, message: str = "Mute action requires metadata.mute_days >= 1"):
        super().__init__(message)


class BulkRequestValidationException(ValidationException):
    """Raised when a bulk request is structurally invalid."""

    pass


# ============================================================================
# Revision Workflow Exceptions
# ============================================================================


class FlaggedRevisionNotFoundException(NotFoundException):
    """Raised when a flagged revision is not found."""

    def __init__(self, flagged_revision_id: int):
        super().__init__(f"Flagged revision with ID {flagged_revision_id} not found")
        self.flagged_revision_id = flagged_revision_id


class ArticleNotFoundException(NotFoundException):
    """Article not found."""

    pass


class RevisionNotFoundException(NotFoundException):
    """Revision not found."""

    pass


class InvalidExpertException(NotFoundException):
    """Raised when the assignee is not a currently verified expert."""

    error_code = "InvalidExpert"

    def __init__(self, expert_id: int):
        super().__init__(f"User {expert_id} is not a verified expert")
        self.expert_id = expert_id


class StaleRevisionStateException(ConflictException):
    """Raised when a flagged revision changed since the caller last read it."""

    def __init__(
        self,
        message: str = "Flagged revision was modified concurrently. Reload and retry.",
    ):
        super().__init__(message)


class NoStableRevisionException(BusinessRuleException):
    """Raised when an article has no stable revision to roll back to."""

    error_code = "NoStableRevision"

    def __init__(self, article_id: int):
        super().__init__(f"Article {article_id} has no stable revision to roll back to")
        self.article_id = article_id


# ============================================================================
# Rate Limiting Exceptions
# ============================================================================


class RateLimitExceededException(DomainException):
    """Raised when rate limit is exceeded."""

    error_code = "RateLimited"
    retryable = True

    def __init__(
        self,
        message: str = "Rate limit exceeded. Please try again later.",
        retry_after: int | None = None,
    ):
        super().__init__(message)
        self.retry_after = retry_after
