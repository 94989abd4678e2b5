"""
Main FastAPI application.

WHY: This is the entry point for the application. It configures logging,
middleware, routes and exception handlers.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from saas_billing.core.config import settings
from saas_billing.core.exceptions import AppException
from saas_billing.core.exception_handlers import (
    app_exception_handler,
    validation_exception_handler,
    http_exception_handler,
    generic_exception_handler,
)
from saas_billing.middleware import RequestContextMiddleware
from saas_billing.api import admin, stripe, subscription


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    WHY: Factory pattern allows easier testing with different configurations
    and makes it possible to create multiple app instances if needed.

    Returns:
        Configured FastAPI application instance
    """
    logging.basicConfig(
        level=settings.LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    app = FastAPI(
        title=settings.PROJECT_NAME,
        description="Subscription billing API",
        version=settings.VERSION,
        docs_url=f"{settings.API_V1_PREFIX}/docs",
        redoc_url=f"{settings.API_V1_PREFIX}/redoc",
        openapi_url=f"{settings.API_V1_PREFIX}/openapi.json",
    )

    # Register exception handlers
    # WHY: Business-rule rejections map to 4xx, payment processor failures
    # to 502, so clients can tell the two apart
    app.add_exception_handler(AppException, app_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    # Configure Request Context Middleware
    # WHY: Captures client IP and request ID for audit entries
    app.add_middleware(RequestContextMiddleware)

    # Configure CORS
    # WHY: The frontend runs on a different origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check endpoint
    # WHY: Load balancers and monitoring tools need a simple endpoint
    # to verify the service is running.
    @app.get("/health", tags=["health"])
    async def health_check() -> dict:
        """Liveness only; does not touch the database or Stripe."""
        return {"status": "healthy", "version": settings.VERSION}

    @app.get("/", tags=["root"])
    async def root() -> dict:
        """Root endpoint with API information."""
        return {
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": f"{settings.API_V1_PREFIX}/docs",
        }

    # Register API routers
    app.include_router(subscription.router, prefix=settings.API_V1_PREFIX)
    app.include_router(stripe.router, prefix=settings.API_V1_PREFIX)
    app.include_router(stripe.webhooks_router, prefix=settings.API_V1_PREFIX)
    app.include_router(admin.router, prefix=settings.API_V1_PREFIX)

    return app


# Create app instance
# WHY: Allows `uvicorn saas_billing.main:app`
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "saas_billing.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level="info" if settings.DEBUG else "warning",
    )
