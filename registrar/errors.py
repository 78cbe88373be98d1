"""
registrar/errors.py
Error envelope of the section admin API

Every non-2xx response has the shape:
{
    "success": false,
    "error": "Not Found",                  # label of the HTTP status
    "message": "Allocation run with id '7' not found",
    "code": "NOT_FOUND",                   # stable, machine-readable
    "details": {...}                       # only when there is something to add
}

Status codes:
- 400: the request cannot be served (missing bucket selector, no active school year)
- 403: admin API switched off
- 404: unknown course, student or run
- 409: a concurrent writer created the same section or enrollment first
- 422: body or query failed validation
- 500: database failure; the message is masked and a log_id is returned
"""

import logging
import uuid
from typing import Optional, Dict, Any

from fastapi import status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from registrar.exceptions import AllocationError

logger = logging.getLogger(__name__)


class ErrorCode:
    """Codes raised by the API layer itself; engine codes come from registrar.exceptions"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    NOT_FOUND = "NOT_FOUND"
    FEATURE_DISABLED = "FEATURE_DISABLED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_TYPES = {
    400: "Bad Request",
    403: "Forbidden",
    404: "Not Found",
    409: "Conflict",
    422: "Validation Error",
    500: "Internal Error",
}


class ErrorResponse(BaseModel):
    success: bool = False
    error: str
    message: str
    code: str
    details: Optional[Dict[str, Any]] = None


class APIError(Exception):
    """Raised by routes; rendered by the app-level handler."""

    def __init__(
        self,
        status_code: int,
        message: str,
        code: str,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None
    ):
        self.status_code = status_code
        self.error = error or ERROR_TYPES.get(status_code, "Error")
        self.message = message
        self.code = code
        self.details = details or None
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        body = ErrorResponse(error=self.error, message=self.message, code=self.code, details=self.details)
        return body.model_dump(exclude_none=True)

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


class BadRequestError(APIError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(status.HTTP_400_BAD_REQUEST, message, ErrorCode.INVALID_INPUT, details)


class NotFoundError(APIError):
    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found" if identifier is None else f"{resource} with id '{identifier}' not found"
        super().__init__(status.HTTP_404_NOT_FOUND, message, ErrorCode.NOT_FOUND)


class FeatureDisabledError(APIError):
    """The admin router is behind FEATURE_SECTION_ADMIN_API."""

    def __init__(self, flag: str):
        super().__init__(
            status.HTTP_403_FORBIDDEN,
            f"Feature {flag} is disabled",
            ErrorCode.FEATURE_DISABLED,
            details={"flag": flag}
        )


def from_allocation_error(exc: AllocationError) -> APIError:
    """Map an engine exception onto the envelope. 5xx messages never leave the server."""
    if exc.status_code >= 500:
        log_id = str(uuid.uuid4())[:8]
        logger.error(f"[{log_id}] {type(exc).__name__} [{exc.code}]: {exc.message} {exc.details or ''}")
        return APIError(
            exc.status_code,
            "An internal error occurred. Please try again later.",
            exc.code,
            details={"log_id": log_id}
        )
    return APIError(exc.status_code, exc.message, exc.code, details=exc.details)
