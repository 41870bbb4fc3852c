"""
Exception hierarchy for the adminkit runtime.

Records, the schema cache and the query builder raise these errors unchanged;
the API run loop is the single place that maps them onto HTTP status codes and
the structured ``{"code", "message"}`` response body.
"""

from __future__ import annotations

# =============================================================================
# Base Errors
# =============================================================================


class AdminKitError(Exception):
    """Base exception for all adminkit runtime errors."""

    pass


class WebError(AdminKitError):
    """An error that carries its own HTTP response code.

    Attributes:
        response_code: HTTP status the transport should emit
        code: Application error code placed in the response body
    """

    default_response_code = 400

    def __init__(self, message: str, code: int | None = None, response_code: int | None = None):
        self.response_code = response_code or self.default_response_code
        self.code = code if code is not None else 0
        super().__init__(message)

    @property
    def message(self) -> str:
        return str(self)

    def to_body(self) -> dict[str, object]:
        """Structured response body for this error."""
        return {"code": self.code, "message": self.message}


# =============================================================================
# Web Errors
# =============================================================================


class NotFoundError(WebError):
    """A table, column, row, route action or view does not exist."""

    default_response_code = 404


class UnauthorizedError(WebError):
    """No valid user is attached to the request."""

    default_response_code = 401


class ForbiddenError(WebError):
    """The user is known but may not perform the operation."""

    default_response_code = 403


class MethodNotAllowedError(WebError):
    """The HTTP method is unknown or not permitted for the user."""

    default_response_code = 405


class ConflictError(WebError):
    """An attempt to change the identity of an already created record."""

    default_response_code = 409


class TransportError(WebError):
    """The storage layer failed to execute an operation."""

    default_response_code = 502


# =============================================================================
# Local Errors
# =============================================================================


class OutOfBoundsError(AdminKitError, IndexError):
    """Raised when seeking a record collection to a position it does not hold."""

    def __init__(self, position: object):
        self.position = position
        super().__init__(f"Invalid seek position ({position})")


class HookCascadeError(AdminKitError):
    """Raised when view preparation keeps switching the current action."""

    def __init__(self, actions: list[str], limit: int):
        self.actions = actions
        self.limit = limit
        chain = " -> ".join(actions)
        super().__init__(f"View preparation exceeded {limit} action changes: {chain}")
