"""
Application exceptions and the handlers that render them.

Every error leaves the API as ``{"error": <message>, "error_code": <code>, "details": ...}``
so clients can show the message string as-is.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from pymongo.errors import DuplicateKeyError, PyMongoError

logger = logging.getLogger(__name__)


class AppException(HTTPException):
    """Base class for errors raised by route handlers."""

    def __init__(
        self,
        status_code: int,
        error_code: str,
        message: str,
        details: Any = None,
        headers: Optional[dict] = None,
    ):
        self.error_code = error_code
        self.message = message
        self.details = details if details is not None else {}
        super().__init__(status_code=status_code, detail=message, headers=headers)


class ValidationException(AppException):
    def __init__(self, message: str = "Validation failed", details: Any = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            error_code="validation_error",
            message=message,
            details=details,
        )


# Authentication


class AuthenticationException(AppException):
    def __init__(self, error_code: str = "authentication_failed", message: str = "Authentication required"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_code=error_code,
            message=message,
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidCredentialsException(AuthenticationException):
    def __init__(self, message: str = "Invalid email or password"):
        super().__init__(error_code="invalid_credentials", message=message)


class TokenExpiredException(AuthenticationException):
    def __init__(self):
        super().__init__(error_code="token_expired", message="Token has expired")


class InvalidTokenException(AuthenticationException):
    def __init__(self, message: str = "Invalid or expired token"):
        super().__init__(error_code="invalid_token", message=message)


# Authorization


class PermissionDeniedException(AppException):
    def __init__(self, message: str = "You do not have permission to perform this action"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="permission_denied",
            message=message,
        )


class AccountSuspendedException(AppException):
    def __init__(self):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            error_code="account_suspended",
            message="This account has been deactivated",
        )


# Resources


class ResourceNotFoundException(AppException):
    def __init__(self, resource: str, identifier: Optional[Any] = None):
        details = {"identifier": str(identifier)} if identifier is not None else {}
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            error_code="resource_not_found",
            message=f"{resource} not found",
            details=details,
        )


def error_response(status_code: int, error_code: str, message: str, details: Any = None, headers=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": message, "error_code": error_code, "details": details if details is not None else {}},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppException)
    async def app_exception_handler(request: Request, exc: AppException):
        log = logger.warning if exc.status_code < 500 else logger.error
        log("%s %s -> %s %s", request.method, request.url.path, exc.status_code, exc.error_code)
        return error_response(exc.status_code, exc.error_code, exc.message, exc.details, exc.headers)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return error_response(exc.status_code, "http_error", message, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"] if loc not in ("body", "query", "path"))
            errors.append({"field": field, "message": error["msg"], "type": error["type"]})
        logger.warning("Validation error on %s: %s", request.url.path, errors)
        return error_response(status.HTTP_400_BAD_REQUEST, "validation_error", "Validation failed", errors)

    @app.exception_handler(DuplicateKeyError)
    async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
        key_pattern = (exc.details or {}).get("keyPattern") or {}
        fields = sorted(key_pattern.keys())
        logger.warning("Duplicate key on %s: %s", request.url.path, fields)
        return error_response(
            status.HTTP_400_BAD_REQUEST,
            "duplicate_key",
            "Resource already exists",
            {"fields": fields},
        )

    @app.exception_handler(PyMongoError)
    async def database_exception_handler(request: Request, exc: PyMongoError):
        logger.error("Database error on %s: %s", request.url.path, exc, exc_info=True)
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "database_error",
            "A database error occurred. Please try again later.",
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s: %s", request.url.path, exc, exc_info=True)
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "internal_error",
            "An unexpected error occurred. Please try again later.",
        )
