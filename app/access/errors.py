"""
Exception handlers rendering the error envelope.

Every error leaves the service as ``{"code", "message", "attributes",
"debug_id"}`` with the HTTP status of its class.
"""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from identity_core.runtime.errors import InternalError, InvalidArgumentError, ServiceError


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    request_id = getattr(request.state, "request_id", "-")
    if exc.http_status >= 500:
        logger.error(f"[{request_id}] [{exc.debug_id}] {exc.code}: {exc.message_safe} {exc.message_debug or ''}")
    else:
        logger.debug(f"[{request_id}] {exc.code}: {exc.message_safe}")
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    error = InvalidArgumentError(
        "Invalid request",
        fields=[".".join(str(p) for p in err.get("loc", ())) for err in exc.errors()],
    )
    return JSONResponse(status_code=error.http_status, content=error.to_dict())


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = InternalError(cause=exc)
    logger.opt(exception=exc).error(f"[{error.debug_id}] Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=error.http_status, content=error.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
