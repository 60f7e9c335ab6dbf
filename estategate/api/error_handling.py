from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from estategate.api.schemas import Envelope, ErrorBody
from estategate.logging import get_correlation_id, get_logger
from estategate.service.errors import ServiceError
from estategate.storage.errors import ConstraintViolation

logger = get_logger(__name__)

_CODES_BY_STATUS = {
    400: "validation_error",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "validation_error",
    409: "conflict",
    422: "validation_error",
}


def error_response(
    status_code: int,
    message: str,
    details: dict | list | None = None,
    code: str | None = None,
) -> JSONResponse:
    """Render the error envelope shared by handlers and the security filters."""
    body = ErrorBody(
        code=code or _CODES_BY_STATUS.get(status_code, "server_error"),
        message=message,
        details=details or None,
    )
    envelope = Envelope(status="error", error=body)
    request_id = get_correlation_id()
    if request_id:
        envelope.request_id = request_id
    return JSONResponse(status_code=status_code, content=envelope.model_dump())


def _log_failure(event: str, status_code: int, **fields) -> None:
    # method and path are already bound by the request middleware
    log_fn = logger.error if status_code >= 500 else logger.warning
    log_fn(event, status_code=status_code, **fields)


def register_exception_handlers(app: FastAPI) -> None:
    """Render domain, storage, validation and unexpected errors as envelopes."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        _log_failure(
            "service_error",
            exc.status_code,
            error_code=exc.error_code,
            message=exc.message,
        )
        return error_response(exc.status_code, exc.message, exc.detail, code=exc.error_code)

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        _log_failure(
            "constraint_violation",
            exc.status_code,
            error_type=type(exc).__name__,
            message=exc.message,
        )
        return error_response(exc.status_code, exc.message, exc.detail)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        return error_response(422, "request validation failed", errors)

    @app.exception_handler(HTTPException)
    async def handle_http_exception(request: Request, exc: HTTPException):
        message = exc.detail if isinstance(exc.detail, str) else "http error"
        if exc.status_code >= 500:
            _log_failure("http_error", exc.status_code, message=message)
        return error_response(exc.status_code, message)

    @app.exception_handler(Exception)
    async def handle_uncaught(request: Request, exc: Exception):
        logger.exception(
            "unhandled_exception",
            exc_info=exc,
            error_type=type(exc).__name__,
        )
        return error_response(500, "internal server error")
