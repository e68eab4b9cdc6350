"""
Domain-specific exceptions for the authorization-rule compiler.

Administrative errors (DefinitionError, OrderingError, DependencyError) are
raised synchronously from define/drop calls and never reach end users.
Access errors (AuthorizationDenied, NotFoundOrUnauthorized) are the only
kinds visible on request paths that go through generated artifacts.
"""

from typing import Any


class AuthRulesError(Exception):
    """Base exception for all authorization-rule domain errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class DefinitionError(AuthRulesError):
    """
    Raised when a rule or claim definition cannot be compiled.

    Examples:
    - Malformed filter predicate or unknown node kind
    - Reference to an undefined claim
    - Claim query the backing store rejects
    - Base relation or column that does not exist

    Nothing is persisted when this is raised.

    HTTP Status: 422 Unprocessable Entity
    """

    pass


class OrderingError(AuthRulesError):
    """
    Raised when a create/update/delete rule is defined before the read rule
    of the same relation.

    HTTP Status: 409 Conflict
    """

    pass


class DependencyError(AuthRulesError):
    """
    Raised when a drop would leave dangling references.

    Examples:
    - Dropping a claim that rules still reference

    HTTP Status: 409 Conflict
    """

    pass


class ArtifactApplyError(AuthRulesError):
    """
    Raised by an object store when the backing store rejects a generated object.

    The lifecycle manager turns this into a degradation for optional
    artifacts (the strict accessor) and into a DefinitionError otherwise.

    HTTP Status: 422 Unprocessable Entity
    """

    pass


class AuthorizationDenied(AuthRulesError):
    """
    Raised at access time by the strict accessor or the create guard.

    The message is intentionally generic and never names the condition
    that failed.

    HTTP Status: 403 Forbidden
    """

    def __init__(self, message: str = "Not authorized", details: dict[str, Any] | None = None):
        super().__init__(message, details)


class NotFoundOrUnauthorized(AuthRulesError):
    """
    Raised by update/delete guards when zero rows were affected.

    "Row does not exist" and "row exists but is not accessible" are
    indistinguishable.

    HTTP Status: 404 Not Found
    """

    def __init__(
        self, message: str = "Not found or not authorized", details: dict[str, Any] | None = None
    ):
        super().__init__(message, details)


class NotFoundError(AuthRulesError):
    """
    Raised when an administrative lookup names a claim or rule that does
    not exist.

    HTTP Status: 404 Not Found
    """

    pass


class UnauthorizedError(AuthRulesError):
    """
    Raised when an admin API caller presents no valid admin token.

    HTTP Status: 401 Unauthorized
    """

    pass


# HTTP Status Code Mapping
ERROR_STATUS_MAP = {
    DefinitionError: 422,
    OrderingError: 409,
    DependencyError: 409,
    ArtifactApplyError: 422,
    AuthorizationDenied: 403,
    NotFoundOrUnauthorized: 404,
    NotFoundError: 404,
    UnauthorizedError: 401,
}


def get_status_code(error: Exception) -> int:
    """
    Get the HTTP status code for a given exception.

    Args:
        error: The exception instance

    Returns:
        HTTP status code (defaults to 500 for unknown errors)
    """
    return ERROR_STATUS_MAP.get(type(error), 500)
