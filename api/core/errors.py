"""
Error taxonomy and the HTTP mapping for it.

Handlers never build error responses themselves: they raise one of the
classes below (or let `core.db` raise it) and the handlers registered by
`register_exception_handlers` turn it into a JSON body. Store faults are
logged with their detail; the response only carries a generic message.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    pass


# Client sent something unusable; raised before any store contact.
class ValidationError(RuntimeError):
    pass


class StoreError(RuntimeError):
    pass


class ConflictError(StoreError):
    pass


class StoreConnectionError(StoreError):
    pass


class PoolExhausted(StoreConnectionError):
    pass


class ConnectionFailed(StoreConnectionError):
    pass


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _validation_error_handler(_: Request, exc: ValidationError) -> JSONResponse:
    return _error_response(status.HTTP_400_BAD_REQUEST, str(exc) or "Invalid request.")


async def _request_validation_error_handler(
    request: Request,
    exc: RequestValidationError,
) -> JSONResponse:
    fields = []
    for err in exc.errors():
        loc = [part for part in err.get("loc", ()) if isinstance(part, str) and part != "body"]
        if loc:
            fields.append(".".join(loc))
    logger.info("invalid_request method=%s path=%s fields=%s", request.method, request.url.path, fields)
    message = "Invalid request body."
    if fields:
        message = f"Invalid or missing fields: {', '.join(sorted(set(fields)))}."
    return _error_response(status.HTTP_400_BAD_REQUEST, message)


async def _conflict_error_handler(request: Request, exc: ConflictError) -> JSONResponse:
    logger.warning("store_conflict method=%s path=%s detail=%s", request.method, request.url.path, exc)
    return _error_response(status.HTTP_409_CONFLICT, "Resource already exists.")


async def _store_error_handler(request: Request, exc: StoreError) -> JSONResponse:
    logger.error(
        "store_error method=%s path=%s kind=%s",
        request.method,
        request.url.path,
        type(exc).__name__,
        exc_info=exc,
    )
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Database error")


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("unhandled_error method=%s path=%s", request.method, request.url.path, exc_info=exc)
    return _error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error")


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ValidationError, _validation_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_error_handler)
    app.add_exception_handler(ConflictError, _conflict_error_handler)
    app.add_exception_handler(StoreError, _store_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
