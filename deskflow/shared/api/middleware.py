"""
Shared API Middleware
======================

Common middleware and exception handlers for the FastAPI application.
"""

import time
import uuid
from typing import Callable

from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from deskflow.core import ApplicationException
from deskflow.shared.infrastructure.logging import correlation_id_var, get_logger

logger = get_logger(__name__)


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", None) or correlation_id_var.get() or "unknown"


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Adds correlation ID to requests for tracing.

    The id is stored on the request state, published to the logging
    context variable and echoed in the response header.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Get existing correlation ID or generate new one
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))

        request.state.correlation_id = correlation_id
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)

        response.headers["X-Correlation-ID"] = correlation_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """
    Tracks request metrics for monitoring.

    Records response times and status codes for observability.
    """

    def __init__(self, app: ASGIApp):
        super().__init__(app)
        self.request_count = 0
        self.total_response_time = 0.0

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        self.request_count += 1

        response = await call_next(request)

        response_time = time.perf_counter() - start_time
        self.total_response_time += response_time

        # Add metrics as headers (for debugging)
        response.headers["X-Response-Time"] = f"{response_time:.3f}s"
        response.headers["X-Request-Count"] = str(self.request_count)

        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs all requests and responses.

    Provides audit trail and debugging information.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = _correlation_id(request)
        start_time = time.perf_counter()

        logger.info(
            "Request started",
            extra={
                "correlation_id": correlation_id,
                "method": request.method,
                "url": str(request.url),
                "client": request.client.host if request.client else None
            }
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={
                    "correlation_id": correlation_id,
                    "method": request.method,
                    "url": str(request.url),
                    "error": str(e),
                    "response_time_ms": int((time.perf_counter() - start_time) * 1000)
                }
            )
            raise

        logger.info(
            "Request completed",
            extra={
                "correlation_id": correlation_id,
                "method": request.method,
                "url": str(request.url),
                "status_code": response.status_code,
                "response_time_ms": int((time.perf_counter() - start_time) * 1000)
            }
        )
        return response


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """
    Map application exceptions to their HTTP status.

    Client errors are expected during normal operation (bad rule payloads,
    unknown ids, missing roles) and log at WARNING.
    """
    correlation_id = _correlation_id(request)
    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "Application error",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "error_code": exc.error_code,
            "error_message": exc.message,
            "details": exc.details
        }
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "detail": exc.message,
            "error_code": exc.error_code,
            "correlation_id": correlation_id
        },
        headers={"X-Correlation-ID": correlation_id}
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Request payloads that fail schema validation answer 400."""
    correlation_id = _correlation_id(request)
    logger.warning(
        "Request validation failed",
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
            "errors": str(exc.errors())
        }
    )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": "Request validation failed",
            "error_code": "VALIDATION_ERROR",
            "correlation_id": correlation_id,
            "errors": jsonable_errors(exc)
        },
        headers={"X-Correlation-ID": correlation_id}
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors reduced to JSON-safe location/message pairs."""
    return [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": str(error.get("msg", ""))}
        for error in exc.errors()
    ]


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    Returns consistent error responses for all exceptions.
    """
    correlation_id = _correlation_id(request)

    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={
            "correlation_id": correlation_id,
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__,
            "error_message": str(exc)
        }
    )

    # Don't expose internal details in production
    is_dev = getattr(getattr(request.app.state, "settings", None), "environment", None) == "development"

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "detail": "Internal server error",
            "error_code": "INTERNAL_ERROR",
            "correlation_id": correlation_id,
            "debug_info": str(exc) if is_dev else None
        }
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""
    app.add_exception_handler(ApplicationException, application_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)
