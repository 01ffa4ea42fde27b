"""Domain errors raised by the service layer.

Every service classifies its failures into one of these before they reach the
API. ``src.api.errors`` turns them into JSON responses.
"""

from typing import Any

from pydantic import ValidationError


class FeedError(Exception):
    """Base class for classified service failures."""

    status_code = 500
    code = "internal"
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_response(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code}


class ValidationFailed(FeedError):
    """Malformed or missing input, reported with per-field detail."""

    status_code = 422
    code = "validation_failed"
    default_message = "Validation failed, entered data is incorrect"

    def __init__(self, message: str | None = None, errors: list[dict] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_pydantic(cls, exc: ValidationError) -> "ValidationFailed":
        return cls(errors=field_errors(exc.errors()))

    def to_response(self) -> dict[str, Any]:
        return {**super().to_response(), "errors": self.errors}


class Unauthenticated(FeedError):
    """Missing, invalid or expired credentials."""

    status_code = 401
    code = "unauthenticated"
    default_message = "Not authenticated"


class Unauthorized(FeedError):
    """Valid identity without ownership of the target resource."""

    status_code = 403
    code = "unauthorized"
    default_message = "Not authorized"


class NotFound(FeedError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found"


class Conflict(FeedError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists"


class Internal(FeedError):
    pass


def field_errors(errors: list[dict]) -> list[dict]:
    """Flatten pydantic error dicts to ``{field, message, type}``."""
    result = []
    for error in errors:
        # Drop the "body"/"query" prefix FastAPI adds to request errors
        loc = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        result.append(
            {
                "field": ".".join(loc),
                "message": error.get("msg", ""),
                "type": error.get("type", ""),
            }
        )
    return result
