from __future__ import annotations

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from authkernel.api.schemas import Envelope, ErrorBody
from authkernel.logging import get_logger
from authkernel.service.errors import ServiceError
from authkernel.storage.errors import ConstraintViolation, StoreUnavailable

logger = get_logger(__name__)

_STATUS_TO_CODE = {
    400: "validation_error",
    401: "unauthorized",
    403: "forbidden",
    409: "conflict",
    503: "service_unavailable",
}


def _error_code_for_status(status_code: int) -> str:
    return _STATUS_TO_CODE.get(status_code, "server_error")


def _error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str | None = None,
    headers: dict | None = None,
) -> JSONResponse:
    error_code = code or _error_code_for_status(status_code)
    error_body = ErrorBody(code=error_code, message=message, details=details)
    envelope = Envelope(status="error", error=error_body)
    return JSONResponse(
        status_code=status_code, content=envelope.model_dump(), headers=headers
    )


def service_error_response(request: Request, exc: ServiceError) -> JSONResponse:
    """Log ``exc`` and render it as an error envelope.

    Shared with routes that must adjust the error response, e.g. clear cookies.
    """
    log_fn = logger.error if exc.status_code >= 500 else logger.warning
    log_fn(
        "service_error",
        path=request.url.path,
        method=request.method,
        status_code=exc.status_code,
        error_code=exc.error_code,
        message=exc.message,
        detail=exc.detail,
    )
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
    return _error_response(
        exc.status_code, exc.message, exc.detail or None, code=exc.error_code, headers=headers
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install consistent exception handlers for domain and storage errors."""

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(409, exc.message, exc.detail, code="conflict")

    @app.exception_handler(StoreUnavailable)
    async def handle_store_unavailable(request: Request, exc: StoreUnavailable):
        logger.error(
            "store_unavailable",
            path=request.url.path,
            method=request.method,
            message=exc.message,
        )
        return _error_response(
            503, "service temporarily unavailable", code="service_unavailable"
        )

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        return service_error_response(request, exc)

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        details = exc.detail if isinstance(exc.detail, (dict, list)) else None
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "http_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            message=message,
        )
        return _error_response(exc.status_code, message, details)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
            error_type=type(exc).__name__,
            error=str(exc),
        )
        return _error_response(500, "internal server error", code="server_error")
