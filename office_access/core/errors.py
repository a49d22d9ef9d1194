"""
Error taxonomy and the FastAPI handlers that turn it into the JSON envelope.
"""
from typing import List, Optional
import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from office_access.schemas.common import error_body

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for errors raised by stores and services."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class ValidationError(ServiceError):
    """Missing or malformed input fields."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND


class ConflictError(ServiceError):
    # Duplicate unique keys are reported as bad requests, not 409.
    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDeniedError(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN


class PersistenceError(ServiceError):
    """Storage failure; the driver exception is chained as __cause__."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if isinstance(exc, PersistenceError):
        logger.error(f"Persistence failure on {request.method} {request.url.path}: {exc.message} ({exc.__cause__!r})")
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(exc.message, errors=exc.errors),
        headers=headers,
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Malformed request fields are client errors like any other ValidationError.
    errors = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err.get("loc", ()) if part != "body")
        errors.append(f"{location}: {err.get('msg')}" if location else str(err.get("msg")))
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=error_body("Request validation failed", errors=errors),
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(message),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_body("Internal server error"),
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)
