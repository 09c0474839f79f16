"""
Error Envelope

Base service error and the FastAPI exception handlers that render every
failure as ``{"success": false, "message": ..., "error": ...}``.
"""

import logging
from typing import Any

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base exception for service-layer errors."""

    def __init__(
        self,
        message: str,
        error_code: str,
        status_code: int = 400,
        headers: dict[str, str] | None = None,
    ):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.headers = headers
        super().__init__(message)


class NotFoundError(ServiceError):
    """Raised when a referenced record does not exist."""

    def __init__(self, message: str, error_code: str = "NOT_FOUND"):
        super().__init__(message=message, error_code=error_code, status_code=404)


class ConflictError(ServiceError):
    """Raised when a uniqueness rule would be violated."""

    def __init__(self, message: str, error_code: str = "CONFLICT"):
        super().__init__(message=message, error_code=error_code, status_code=409)


def _envelope(message: str, error_code: str, **extra: Any) -> dict[str, Any]:
    body: dict[str, Any] = {"success": False, "message": message, "error": error_code}
    body.update(extra)
    return body


async def service_error_handler(_request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_envelope(exc.message, exc.error_code),
        headers=exc.headers,
    )


async def http_exception_handler(_request: Request, exc: HTTPException) -> JSONResponse:
    # Auth dependencies raise HTTPException with {"error", "message"} details
    if isinstance(exc.detail, dict):
        message = str(exc.detail.get("message", "Request failed."))
        error_code = str(exc.detail.get("error", "HTTP_ERROR"))
    else:
        message = str(exc.detail)
        error_code = "HTTP_ERROR"
    return JSONResponse(
        status_code=exc.status_code,
        content=_envelope(message, error_code),
        headers=exc.headers,
    )


async def validation_exception_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request.") if errors else "Invalid request."
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_envelope(
            message,
            "VALIDATION_ERROR",
            details=[{"loc": list(err.get("loc", [])), "msg": err.get("msg")} for err in errors],
        ),
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_envelope(
            "An unexpected error occurred. Please try again later.",
            "INTERNAL_ERROR",
        ),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the envelope handlers to an application."""
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)


__all__ = [
    "ServiceError",
    "NotFoundError",
    "ConflictError",
    "register_exception_handlers",
]
