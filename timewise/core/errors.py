"""Typed application errors and the single place they become HTTP responses.

Services, the tenant accessor and dependencies raise ``TimeWiseError``
subclasses; nothing below the route layer builds a response. The handlers
registered here render every failure as::

    {"error": "...", "code": "...", "statusCode": 403, "details": {...}}
"""

import logging
from enum import StrEnum
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)


class ErrorCode(StrEnum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_TOKEN = "INVALID_TOKEN"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    CROSS_TENANT_ACCESS = "CROSS_TENANT_ACCESS"
    FEATURE_LOCKED = "FEATURE_LOCKED"
    STAFF_LIMIT_REACHED = "STAFF_LIMIT_REACHED"
    EMAIL_NOT_VERIFIED = "EMAIL_NOT_VERIFIED"
    ORGANIZATION_SUSPENDED = "ORGANIZATION_SUSPENDED"
    NOT_FOUND = "NOT_FOUND"
    CONFLICT = "CONFLICT"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    UPSTREAM_ERROR = "UPSTREAM_ERROR"
    DATABASE_ERROR = "DATABASE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class TimeWiseError(Exception):
    """Base error carrying a stable code and a suggested HTTP status."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    default_message: str = "Internal server error"

    def __init__(
        self,
        message: str | None = None,
        *,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.details = details
        self.headers = headers
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "error": self.message,
            "code": self.code.value,
            "statusCode": self.status_code,
        }
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(TimeWiseError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = ErrorCode.VALIDATION_ERROR
    default_message = "Invalid request"


class UnauthenticatedError(TimeWiseError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = ErrorCode.UNAUTHORIZED
    default_message = "Authentication required"


class TokenExpiredError(TimeWiseError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = ErrorCode.TOKEN_EXPIRED
    default_message = "Token has expired"


class InvalidTokenError(TimeWiseError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = ErrorCode.INVALID_TOKEN
    default_message = "Invalid token"


class InsufficientPermissionsError(TimeWiseError):
    status_code = status.HTTP_403_FORBIDDEN
    code = ErrorCode.INSUFFICIENT_PERMISSIONS
    default_message = "Insufficient permissions"


class CrossTenantAccessError(TimeWiseError):
    status_code = status.HTTP_403_FORBIDDEN
    code = ErrorCode.CROSS_TENANT_ACCESS
    default_message = "Cross-tenant access denied"


class FeatureLockedError(TimeWiseError):
    status_code = status.HTTP_403_FORBIDDEN
    code = ErrorCode.FEATURE_LOCKED
    default_message = "This feature is not available on your current plan"


class StaffLimitError(TimeWiseError):
    status_code = status.HTTP_403_FORBIDDEN
    code = ErrorCode.STAFF_LIMIT_REACHED
    default_message = "Staff limit reached for your current plan"


class EmailNotVerifiedError(TimeWiseError):
    status_code = status.HTTP_403_FORBIDDEN
    code = ErrorCode.EMAIL_NOT_VERIFIED
    default_message = "Please verify your email before logging in"


class OrganizationSuspendedError(TimeWiseError):
    status_code = status.HTTP_403_FORBIDDEN
    code = ErrorCode.ORGANIZATION_SUSPENDED
    default_message = "Organization is suspended"


class NotFoundError(TimeWiseError):
    status_code = status.HTTP_404_NOT_FOUND
    code = ErrorCode.NOT_FOUND
    default_message = "Resource not found"


class ConflictError(TimeWiseError):
    status_code = status.HTTP_409_CONFLICT
    code = ErrorCode.CONFLICT
    default_message = "Resource already exists"


class RateLimitExceededError(TimeWiseError):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    code = ErrorCode.RATE_LIMIT_EXCEEDED
    default_message = "Too many requests. Please try again later."


class UpstreamError(TimeWiseError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = ErrorCode.UPSTREAM_ERROR
    default_message = "Upstream service failed"


class DatabaseError(TimeWiseError):
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    code = ErrorCode.DATABASE_ERROR
    default_message = "Database operation failed"


# ── FastAPI wiring ────────────────────────────────────────────

async def _handle_timewise_error(request: Request, exc: TimeWiseError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(exc.to_dict()),
        headers=exc.headers,
    )


async def _handle_request_validation(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    err = ValidationError(details={"errors": exc.errors()})
    return JSONResponse(
        status_code=err.status_code,
        content=jsonable_encoder(err.to_dict()),
    )


async def _handle_sqlalchemy_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("Database error on %s %s", request.method, request.url.path)
    err = DatabaseError()
    return JSONResponse(status_code=err.status_code, content=err.to_dict())


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TimeWiseError, _handle_timewise_error)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _handle_request_validation)  # type: ignore[arg-type]
    app.add_exception_handler(SQLAlchemyError, _handle_sqlalchemy_error)  # type: ignore[arg-type]
