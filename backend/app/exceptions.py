from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response schema."""

    error: str
    detail: str | None = None
    status_code: int


class AppError(Exception):
    """Base application exception."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        self.message = message
        self.status_code = status_code
        super().__init__(self.message)


class UnitMismatchError(TypeError):
    """Arithmetic or comparison attempted between amounts of different units.

    This is a programming error, not a recoverable condition, so it is not an AppError.
    """


# ---------------------------------------------------------------------------
# Ledger invariant violations
# ---------------------------------------------------------------------------


class LedgerError(AppError):
    """A write rejected because it would break a ledger invariant."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=status.HTTP_409_CONFLICT)


class DuplicateIdempotencyKeyError(LedgerError):
    """A transaction with this idempotency key already exists."""

    def __init__(self, idempotency_key: str) -> None:
        self.idempotency_key = idempotency_key
        super().__init__(f"Duplicate idempotency key: {idempotency_key}")


class DuplicateDayError(LedgerError):
    """The entity already has active consumption for this resource on this day."""

    def __init__(self, entity_id: str, resource_type: str, day: object) -> None:
        self.entity_id = entity_id
        self.resource_type = resource_type
        self.day = day
        super().__init__(f"Entity {entity_id} already has {resource_type} consumption on {day}")


class AlreadyReversedError(LedgerError):
    """The referenced transaction has already been reversed."""

    def __init__(self, transaction_id: str) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction {transaction_id} has already been reversed")


# ---------------------------------------------------------------------------
# Configuration / lookup / state errors
# ---------------------------------------------------------------------------


class PolicyConfigurationError(AppError):
    """Malformed policy configuration, detected at parse time."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


class InsufficientBalanceError(AppError):
    """Requested amount cannot be distributed and negative balances are not allowed."""

    def __init__(self, message: str, shortfall: object = None) -> None:
        self.shortfall = shortfall
        super().__init__(message, status_code=status.HTTP_422_UNPROCESSABLE_ENTITY)


class NotFoundError(AppError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=status.HTTP_404_NOT_FOUND)


class InvalidStateError(AppError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=status.HTTP_409_CONFLICT)


async def _app_exception_handler(request: Request, exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=type(exc).__name__,
            detail=exc.message,
            status_code=exc.status_code,
        ).model_dump(),
    )


async def _validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=ErrorResponse(
            error="ValidationError",
            detail=str(exc.errors()),
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        ).model_dump(),
    )


def setup_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on the application."""
    app.add_exception_handler(AppError, _app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)  # type: ignore[arg-type]
