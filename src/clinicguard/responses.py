"""
Response Mapper

The single place where results and errors become HTTP responses.

Success: ``{...data, "requestId": ...}``
Error:   ``{"error": ..., "requestId": ...}``
"""

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from clinicguard.errors import GuardError, InternalError, ValidationError
from clinicguard.models import RequestContext

logger = structlog.get_logger(__name__)


def _request_id(ctx: RequestContext | None) -> str | None:
    return ctx.request_id if ctx else None


def success_response(
    data: Any,
    ctx: RequestContext | None,
    status_code: int = 200,
) -> JSONResponse:
    """Wrap handler output. Non-dict payloads go under ``data``."""
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json")
    body = dict(data) if isinstance(data, dict) else {"data": data}
    body["requestId"] = _request_id(ctx)
    return JSONResponse(status_code=status_code, content=body)


def error_response(exc: BaseException, ctx: RequestContext | None) -> JSONResponse:
    """
    Map an exception to its status and a safe message.

    Anything that is not a GuardError is reported as a generic 500; the
    detail stays in the server log under the request id.
    """
    request_id = _request_id(ctx)

    if isinstance(exc, GuardError):
        error = exc
    else:
        error = InternalError()
        logger.error(
            "Unhandled error",
            request_id=request_id,
            error_type=type(exc).__name__,
            error=str(exc),
            exc_info=exc,
        )

    if error.status_code >= 500 and error is exc:
        logger.error(
            "Internal error",
            request_id=request_id,
            code=error.code,
            error=error.message,
        )

    return JSONResponse(
        status_code=error.status_code,
        content={"error": error.client_message, "requestId": request_id},
    )


def _context_of(request: Request) -> RequestContext | None:
    return getattr(request.state, "context", None)


def install_exception_handlers(app: FastAPI) -> None:
    """Register handlers so every error leaves through ``error_response``."""

    @app.exception_handler(GuardError)
    async def guard_error_handler(request: Request, exc: GuardError):
        return error_response(exc, _context_of(request))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        message = errors[0].get("msg", ValidationError.public_message) if errors else None
        return error_response(ValidationError(message), _context_of(request))

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        return error_response(exc, _context_of(request))
