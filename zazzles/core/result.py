"""Result type shared by the credit services: one shape for every outcome."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, TypeVar

from zazzles.core.exceptions import (
    AppError,
    BadRequestError,
    ConflictError,
    NotFoundError,
    PaymentRequiredError,
    ServiceUnavailableError,
)

T = TypeVar("T")


class ErrorKind(str, Enum):
    INSUFFICIENT_CREDITS = "insufficient_credits"
    CONFIGURATION_ERROR = "configuration_error"
    INVALID_PACK = "invalid_pack"
    PAYMENT_DECLINED = "payment_declined"
    PAYMENT_FAILED = "payment_failed"
    STORE_UNAVAILABLE = "store_unavailable"
    BUSINESS_NOT_FOUND = "business_not_found"
    INVALID_AMOUNT = "invalid_amount"


@dataclass(frozen=True)
class Result(Generic[T]):
    ok: bool
    value: T | None = None
    error: ErrorKind | None = None
    detail: str | None = None
    balance: int | None = None  # balance observed when the operation finished

    @classmethod
    def success(cls, value: T, balance: int | None = None) -> "Result[T]":
        return cls(ok=True, value=value, balance=balance)

    @classmethod
    def failure(cls, error: ErrorKind, detail: str | None = None, balance: int | None = None) -> "Result[T]":
        return cls(ok=False, error=error, detail=detail or error.value, balance=balance)

    def unwrap(self) -> T:
        """Return value or raise the AppError matching the error kind."""
        if self.ok:
            return self.value  # type: ignore[return-value]
        raise to_app_error(self)


def to_app_error(result: Result[Any]) -> AppError:
    details: dict[str, Any] = {"error": result.error.value if result.error else None}
    if result.balance is not None:
        details["credits_remaining"] = result.balance
    message = result.detail or "Request failed"
    kind = result.error
    if kind == ErrorKind.INSUFFICIENT_CREDITS:
        return PaymentRequiredError(message, details=details)
    if kind == ErrorKind.PAYMENT_DECLINED:
        return AppError(message, code="PAYMENT_DECLINED", status_code=402, details=details)
    if kind in (ErrorKind.INVALID_PACK, ErrorKind.INVALID_AMOUNT):
        return BadRequestError(message, details=details)
    if kind == ErrorKind.BUSINESS_NOT_FOUND:
        return NotFoundError(message)
    if kind == ErrorKind.CONFIGURATION_ERROR:
        return ConflictError(message, details=details)
    return ServiceUnavailableError(message, code=(kind.name if kind else "SERVICE_UNAVAILABLE"), details=details)
