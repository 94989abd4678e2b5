"""
Error responses for the billing API.

Every failure response, including framework errors and crashes, has the
{error, message, status_code, details} shape of ``AppException.to_dict``.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from saas_billing.core.exceptions import AppException, ExternalServiceError

logger = logging.getLogger(__name__)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """
    Render a billing exception with its own status.

    Gateway failures are logged at error level; business-rule rejections
    are expected traffic and only logged at info.
    """
    if isinstance(exc, ExternalServiceError):
        logger.error(
            f"{exc.__class__.__name__} on {request.method} {request.url.path}: {exc.message}",
            extra={"path": request.url.path, "status_code": exc.status_code},
        )
    else:
        logger.info(
            f"{exc.__class__.__name__} on {request.method} {request.url.path}",
            extra={"path": request.url.path, "status_code": exc.status_code},
        )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_dict(),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Request bodies that fail schema validation become a 400 listing each bad field."""
    fields = [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]

    return JSONResponse(
        status_code=400,
        content={
            "error": "ValidationError",
            "message": "Request validation failed",
            "status_code": 400,
            "details": {"errors": fields},
        },
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Routing misses (404, 405) raised before a billing route runs."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTPException",
            "message": exc.detail,
            "status_code": exc.status_code,
            "details": None,
        },
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything else is a 500; the traceback goes to the log, not the client."""
    logger.exception(
        f"Unhandled error on {request.method} {request.url.path}",
        extra={"path": request.url.path},
    )

    return JSONResponse(
        status_code=500,
        content={
            "error": "InternalServerError",
            "message": "Internal billing error",
            "status_code": 500,
            "details": None,
        },
    )
