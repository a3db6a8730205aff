"""Uniform API response envelope."""

from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ApiResponse(BaseModel, Generic[T]):
    """Envelope returned by every endpoint.

    Attributes:
        success: False for any error response
        data: Payload, or None on error
        message: Human-readable summary
        errors: Optional list of field-level problems
    """

    success: bool = True
    data: Optional[T] = None
    message: str = "Success"
    errors: Optional[list[Any]] = None


def error_body(message: str, errors: Optional[list[Any]] = None, **extra: Any) -> dict:
    """Build the error envelope as a plain dict for a JSONResponse."""
    body: dict[str, Any] = {"success": False, "data": None, "message": message}
    if errors:
        body["errors"] = errors
    body.update(extra)
    return body
