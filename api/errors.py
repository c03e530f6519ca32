"""Global exception handlers for FastAPI."""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

from api.base import error_response, ErrorCodes
from core.exceptions import (
    ConflictError, InvalidArgumentError, InvalidStateError, NotFoundError,
)

logger = logging.getLogger(__name__)

# Billing error -> (HTTP status, error code). Checked in order.
_BILLING_ERRORS = [
    (NotFoundError, 404, ErrorCodes.NOT_FOUND),
    (InvalidStateError, 409, ErrorCodes.INVALID_STATUS_TRANSITION),
    (ConflictError, 409, ErrorCodes.CONFLICT),
    (InvalidArgumentError, 400, ErrorCodes.INVALID_REQUEST),
]


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _json(request: Request, status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=error_response(code, message, _request_id(request)).model_dump(mode="json"),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the app."""

    async def billing_error_handler(request: Request, exc: Exception):
        for error_type, status_code, code in _BILLING_ERRORS:
            if isinstance(exc, error_type):
                return _json(request, status_code, code, str(exc))
        return _json(request, 400, ErrorCodes.INVALID_REQUEST, str(exc))

    for error_type, _, _ in _BILLING_ERRORS:
        app.add_exception_handler(error_type, billing_error_handler)

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _json(request, 400, ErrorCodes.INVALID_REQUEST, str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return _json(request, 422, ErrorCodes.VALIDATION_ERROR, str(exc.errors()))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _json(request, 500, ErrorCodes.INTERNAL_ERROR, "An internal error occurred")
