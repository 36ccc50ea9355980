"""
Request Context Middleware

Builds the RequestContext once per request and stores it on
``request.state``. The correlation id is taken from ``X-Request-ID`` when the
caller sent one and echoed back in the response header.
"""

import time
from uuid import uuid4

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from clinicguard.models import RequestContext

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"
_MAX_REQUEST_ID_LENGTH = 128


def client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For, then X-Real-IP, then the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    real_ip = request.headers.get("x-real-ip") or request.headers.get("cf-connecting-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def request_context_from(request: Request) -> RequestContext:
    incoming = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    if not incoming or len(incoming) > _MAX_REQUEST_ID_LENGTH:
        incoming = str(uuid4())
    return RequestContext(
        request_id=incoming,
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent") or "unknown",
        path=request.url.path,
        method=request.method,
    )


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach a RequestContext and log request start and completion."""

    async def dispatch(self, request: Request, call_next):
        ctx = request_context_from(request)
        request.state.context = ctx
        request.state.request_id = ctx.request_id

        start_time = time.time()
        logger.info(
            "Request started",
            request_id=ctx.request_id,
            method=ctx.method,
            path=ctx.path,
        )

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "Request completed",
            request_id=ctx.request_id,
            method=ctx.method,
            path=ctx.path,
            status=response.status_code,
            duration_ms=round(duration_ms, 2),
        )

        response.headers[REQUEST_ID_HEADER] = ctx.request_id
        return response
