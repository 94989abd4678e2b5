"""
Request context middleware.

WHAT: Middleware that captures the request id and client IP of every request
and attaches them to ``request.state.context``.

WHY: Audit entries need the source IP of the actor. The context is read
explicitly by the ``get_audit_context`` dependency and handed to services
as an ``AuditContext`` argument; services never look up request state on
their own.
"""

import uuid
from dataclasses import dataclass
from typing import Optional, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response


@dataclass(frozen=True)
class RequestContext:
    """
    Container for request-scoped context data.

    Fields:
    - request_id: Unique identifier for the request (for log correlation)
    - ip_address: Client's real IP (considering proxies)
    - user_agent: Client's browser/application identifier
    """

    request_id: str
    ip_address: str
    user_agent: Optional[str]


def get_client_ip(request: Request) -> str:
    """
    Extract the real client IP address from a request.

    HOW: Checks headers in order of trust:
    1. X-Real-IP (set by some proxies like nginx)
    2. X-Forwarded-For (comma-separated list, first is original client)
    3. request.client.host (direct connection IP)

    Security Note:
        These headers can be spoofed by clients if not behind a trusted proxy.
    """
    x_real_ip = request.headers.get("X-Real-IP")
    if x_real_ip:
        return x_real_ip.strip()

    x_forwarded_for = request.headers.get("X-Forwarded-For")
    if x_forwarded_for:
        return x_forwarded_for.split(",")[0].strip()

    if request.client and request.client.host:
        return request.client.host

    return "unknown"


def build_request_context(request: Request) -> RequestContext:
    """Build a RequestContext for a request that bypassed the middleware."""
    return RequestContext(
        request_id=str(uuid.uuid4()),
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )


def context_from_request(request: Request) -> RequestContext:
    """
    Return the context captured by the middleware for this request.

    Falls back to building one on the spot so handlers also work when the
    middleware is not installed (e.g. a bare router under test).
    """
    context = getattr(request.state, "context", None)
    if context is None:
        context = build_request_context(request)
        request.state.context = context
    return context


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that captures and stores request context.

    Adds an ``X-Request-ID`` response header so clients and support can
    correlate a response with server logs.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        context = build_request_context(request)
        request.state.context = context

        response = await call_next(request)
        response.headers["X-Request-ID"] = context.request_id
        return response
