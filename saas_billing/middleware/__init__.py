"""
Middleware package.

WHY: Middleware provides cross-cutting concerns that apply to all requests.
"""

from saas_billing.middleware.request_context import (
    RequestContextMiddleware,
    RequestContext,
    context_from_request,
    get_client_ip,
)

__all__ = [
    "RequestContextMiddleware",
    "RequestContext",
    "context_from_request",
    "get_client_ip",
]
