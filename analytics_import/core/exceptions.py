"""Custom exceptions and exception handlers."""

from typing import Any

import structlog
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

logger = structlog.get_logger(__name__)


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class NotFoundException(AppException):
    """Resource not found exception."""

    def __init__(self, resource: str, identifier: str | None = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} {identifier} not found"
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND)


class ValidationException(AppException):
    """Bad or missing input."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(
            message,
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details,
        )


class UnauthorizedException(AppException):
    """Request carries no authenticated user."""

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, status_code=status.HTTP_401_UNAUTHORIZED)


class ForbiddenException(AppException):
    """Requester does not own the resource."""

    def __init__(self, message: str = "Access denied"):
        super().__init__(message, status_code=status.HTTP_403_FORBIDDEN)


class ConflictException(AppException):
    """Resource conflict exception."""

    def __init__(self, message: str):
        super().__init__(message, status_code=status.HTTP_409_CONFLICT)


class InvalidStateException(ConflictException):
    """Illegal import job state transition."""

    def __init__(self, message: str, current_status: str | None = None):
        super().__init__(message)
        if current_status is not None:
            self.details = {"status": current_status}


class RetryLimitExceededException(AppException):
    """A failed job has used up its retry budget."""

    def __init__(self, message: str = "Maximum retry attempts exceeded"):
        super().__init__(message, status_code=status.HTTP_429_TOO_MANY_REQUESTS)


class ExternalServiceException(AppException):
    """External service error exception."""

    def __init__(self, service: str, message: str | None = None):
        msg = f"External service '{service}' unavailable"
        if message:
            msg = f"{msg}: {message}"
        self.service = service
        super().__init__(msg, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)


class RateLimitException(ExternalServiceException):
    """Provider kept answering 429 after all retries."""

    def __init__(self, message: str = "Rate limit exceeded"):
        super().__init__("Google Analytics")
        self.message = message
        self.args = (message,)


class RequestTimeoutException(ExternalServiceException):
    """Outbound request exceeded its deadline."""

    def __init__(self, message: str = "Request timeout"):
        super().__init__("Google Analytics")
        self.message = message
        self.args = (message,)
        self.status_code = status.HTTP_504_GATEWAY_TIMEOUT


class ReportApiException(AppException):
    """Non-retryable error status returned by the reporting API."""

    def __init__(self, status_code: int, message: str):
        self.provider_status = status_code
        super().__init__(
            f"API Error {status_code}: {message}",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details={"provider_status": status_code},
        )


class OAuthException(AppException):
    """Identity provider rejected an OAuth request."""

    def __init__(self, message: str):
        super().__init__(message, status_code=status.HTTP_400_BAD_REQUEST)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.message,
                "details": exc.details,
            }
        },
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.detail,
            }
        },
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.exception("unhandled_exception", path=request.url.path, error=str(exc))

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": "An unexpected error occurred",
            }
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the app."""
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
