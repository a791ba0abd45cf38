"""
FastAPI application entry point for the client services.
"""

from __future__ import annotations

import logging

import requests
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from google.api_core import exceptions as google_exceptions

from taskflow.config import get_settings
from taskflow.errors import (
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    TaskFlowError,
)
from taskflow.routes import router

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    NotFoundError: 404,
    ConflictError: 409,
    AuthorizationError: 403,
    AuthenticationError: 401,
    InvalidArgumentError: 400,
}


def error_status_code(error: TaskFlowError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES.items():
        if isinstance(error, error_type):
            return status_code
    return 400


async def _taskflow_error_handler(request: Request, exc: TaskFlowError):
    return JSONResponse(
        status_code=error_status_code(exc), content={"detail": exc.message}
    )


async def _platform_error_handler(request: Request, exc: Exception):
    logger.error("Platform call failed on %s: %s", request.url.path, exc)
    return JSONResponse(status_code=502, content={"detail": str(exc)})


def create_app() -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=settings.log_level)
    app = FastAPI(title="TaskFlow Client Services", version="0.1.0")
    app.add_exception_handler(TaskFlowError, _taskflow_error_handler)
    app.add_exception_handler(google_exceptions.GoogleAPIError, _platform_error_handler)
    app.add_exception_handler(requests.RequestException, _platform_error_handler)
    app.include_router(router, prefix=settings.api_prefix)
    return app


app = create_app()
