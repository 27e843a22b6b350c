"""Domain error taxonomy shared by the service and HTTP layers.

Every error raised by the feature domain derives from ``DomainError`` and
carries the HTTP status it maps to plus an optional ``details`` payload.
The FastAPI application registers a single handler for ``DomainError``
that serialises ``to_dict()`` as the response body.

Taxonomy:
    - ``ValidationError``     (422) client input fault, details always set
      with enough structure to highlight the offending fields.
    - ``NotFoundError``       (404) the addressed resource does not exist.
    - ``InternalServerError`` (500) server or stored-data integrity fault;
      details are diagnostic only.

Example:
    >>> from app.core.errors import NotFoundError
    >>> err = NotFoundError("Feature", "abc")
    >>> err.status, err.to_dict()
    (404, {'message': 'Feature not found: abc'})
"""

from __future__ import annotations

from typing import Any


class DomainError(Exception):
    """Base exception for all feature-domain errors.

    Attributes:
        message: Human-readable error description.
        status: HTTP status code the error maps to.
        details: Optional structured payload describing the failure.
    """

    default_status: int = 500

    def __init__(
        self,
        message: str,
        details: Any = None,
        *,
        status: int | None = None,
    ) -> None:
        self.message = message
        self.status = status or self.default_status
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Return the error as a response body ``{message, details?}``."""
        body: dict[str, Any] = {"message": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(DomainError):
    """Raised when client input violates a domain rule."""

    default_status = 422


class NotFoundError(DomainError):
    """Raised when an addressed resource does not exist."""

    default_status = 404

    def __init__(self, resource: str, identifier: str | None = None) -> None:
        message = (
            f"{resource} not found: {identifier}"
            if identifier
            else f"{resource} not found"
        )
        super().__init__(message)


class InternalServerError(DomainError):
    """Raised on persistence bugs or malformed stored data."""

    default_status = 500
