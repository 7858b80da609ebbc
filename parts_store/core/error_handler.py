"""
Error handling and sanitization

- Domain errors (Busy, NoCarrierAvailable, storage) -> stable JSON payloads
- Database errors -> generic message
- Stack traces -> logged only, not returned to client
"""
import logging
import traceback
from typing import Union

from fastapi import FastAPI, Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from parts_store.core.config import settings
from parts_store.core.exceptions import (
    NoCarrierAvailableError,
    ProductNotFoundError,
    ReservationBusyError,
    StockError,
    TransientStorageError,
    UnsupportedStorageError,
)

logger = logging.getLogger(__name__)

# Patterns that indicate internal/sensitive error information
SENSITIVE_PATTERNS = [
    "password",
    "secret",
    "token",
    "credential",
    "sqlalchemy",
    "asyncpg",
    "aiosqlite",
    "postgresql",
    "sqlite",
    "traceback",
    "file \"",
    "line ",
]


def is_sensitive_error(message: str) -> bool:
    """Check if error message contains sensitive information."""
    message_lower = message.lower()
    return any(pattern in message_lower for pattern in SENSITIVE_PATTERNS)


def sanitize_error_message(error: Union[str, Exception]) -> str:
    """
    Sanitize an error message for safe client exposure.

    Args:
        error: The error string or exception

    Returns:
        Sanitized error message safe for client
    """
    message = error if isinstance(error, str) else str(error)

    if settings.DEBUG:
        return message

    if is_sensitive_error(message):
        return "An internal error occurred. Please try again later."

    if len(message) > 200:
        return message[:200] + "..."

    return message


async def reservation_busy_handler(request: Request, exc: ReservationBusyError):
    # Contention is expected traffic, not an error
    logger.info(f"Reservation busy for item {exc.item_id} on {request.url.path}")
    return JSONResponse(
        status_code=409,
        content={
            "error": "item_temporarily_unavailable",
            "message": exc.message,
            "item_id": exc.item_id,
        },
    )


async def stock_error_handler(request: Request, exc: StockError):
    return JSONResponse(
        status_code=400,
        content={"error": "insufficient_stock", "message": exc.message, **exc.details},
    )


async def product_not_found_handler(request: Request, exc: ProductNotFoundError):
    return JSONResponse(
        status_code=404,
        content={"error": "product_not_found", "message": exc.message, "item_id": exc.item_id},
    )


async def no_carrier_handler(request: Request, exc: NoCarrierAvailableError):
    logger.warning(f"No carrier available on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=422,
        content={
            "error": "no_carrier_available",
            "message": exc.message,
            "item_id": exc.item_id,
        },
    )


async def transient_storage_handler(request: Request, exc: TransientStorageError):
    logger.error(f"Transient storage failure during {exc.operation}: {exc.message}")
    return JSONResponse(
        status_code=503,
        headers={"Retry-After": "1"},
        content={
            "error": "storage_unavailable",
            "message": sanitize_error_message(exc.message),
        },
    )


async def unsupported_storage_handler(request: Request, exc: UnsupportedStorageError):
    logger.critical(f"Unsupported storage on {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "storage_unsupported",
            "message": sanitize_error_message(exc.message),
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain exceptions onto HTTP responses."""
    app.add_exception_handler(ReservationBusyError, reservation_busy_handler)
    app.add_exception_handler(StockError, stock_error_handler)
    app.add_exception_handler(ProductNotFoundError, product_not_found_handler)
    app.add_exception_handler(NoCarrierAvailableError, no_carrier_handler)
    app.add_exception_handler(TransientStorageError, transient_storage_handler)
    app.add_exception_handler(UnsupportedStorageError, unsupported_storage_handler)


class ErrorSanitizationMiddleware(BaseHTTPMiddleware):
    """
    Catch unhandled exceptions and sanitize error responses.

    - In production: Returns generic error, logs full details
    - In development: Returns full error for debugging
    """

    async def dispatch(self, request: Request, call_next):
        try:
            response = await call_next(request)
            return response
        except HTTPException:
            raise
        except Exception as e:
            error_id = f"{request.client.host if request.client else 'unknown'}-{id(e)}"
            logger.error(
                f"Unhandled exception [{error_id}]: {type(e).__name__}: {str(e)}\n"
                f"Path: {request.url.path}\n"
                f"Method: {request.method}\n"
                f"Traceback:\n{traceback.format_exc()}"
            )

            if settings.DEBUG:
                return JSONResponse(
                    status_code=500,
                    content={
                        "error": "internal_error",
                        "message": str(e),
                        "type": type(e).__name__,
                        "error_id": error_id,
                    }
                )
            return JSONResponse(
                status_code=500,
                content={
                    "error": "internal_error",
                    "message": "An unexpected error occurred. Please try again later.",
                    "error_id": error_id,
                }
            )
