from typing import Any

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse


class AppError(Exception):
    """Base application error with consistent schema."""

    def __init__(
        self,
        message: str,
        code: str = "ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class UnauthorizedError(AppError):
    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message, code="UNAUTHORIZED", status_code=status.HTTP_401_UNAUTHORIZED)


class NotFoundError(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, code="NOT_FOUND", status_code=status.HTTP_404_NOT_FOUND)


class ConflictError(AppError):
    def __init__(self, message: str = "Conflict", details: dict[str, Any] | None = None):
        super().__init__(message, code="CONFLICT", status_code=status.HTTP_409_CONFLICT, details=details)


class BadRequestError(AppError):
    def __init__(self, message: str = "Bad request", details: dict[str, Any] | None = None):
        super().__init__(message, code="BAD_REQUEST", status_code=status.HTTP_400_BAD_REQUEST, details=details)


class PaymentRequiredError(AppError):
    """Out of credits; the client should offer a purchase."""

    def __init__(self, message: str = "Insufficient credits", details: dict[str, Any] | None = None):
        super().__init__(message, code="INSUFFICIENT_CREDITS", status_code=status.HTTP_402_PAYMENT_REQUIRED, details=details)


class ServiceUnavailableError(AppError):
    """Payment provider or database unreachable, or payments not configured."""

    def __init__(self, message: str = "Service unavailable", code: str = "SERVICE_UNAVAILABLE", details: dict[str, Any] | None = None):
        super().__init__(message, code=code, status_code=status.HTTP_503_SERVICE_UNAVAILABLE, details=details)


def _error_response(request: Request, status_code: int, message: str, code: str, details: dict[str, Any]) -> ORJSONResponse:
    body: dict[str, Any] = {"error": {"message": message, "code": code, "details": details}}
    if hasattr(request.state, "request_id"):
        body["request_id"] = request.state.request_id
    return ORJSONResponse(status_code=status_code, content=body)


async def app_exception_handler(request: Request, exc: AppError) -> ORJSONResponse:
    return _error_response(request, exc.status_code, exc.message, exc.code, exc.details)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> ORJSONResponse:
    # ctx may carry the raw ValueError, which orjson cannot serialise
    errors = [{k: v for k, v in e.items() if k != "ctx"} for e in exc.errors()]
    return _error_response(
        request, status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error", "VALIDATION_ERROR", {"errors": errors}
    )


async def generic_exception_handler(request: Request, exc: Exception) -> ORJSONResponse:
    from zazzles.core.logging import get_logger
    get_logger(__name__).exception("unhandled_exception", exc_info=exc)
    return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error", "INTERNAL_ERROR", {})
