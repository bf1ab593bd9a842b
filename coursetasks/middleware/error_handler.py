"""
Render every failure in the response envelope:

    {"success": false, "error": <message>, "message": <message>, "statusCode": <int>}

``AppError`` subclasses carry their own status and may add ``details``.
Anything else is logged with its traceback and reported as a bare 500 so no
internals leak to the client.
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..errors import AppError

logger = logging.getLogger(__name__)

GENERIC_MESSAGE = "Something went wrong"


def envelope(status_code: int, message: str, details: Dict[str, Any] | None = None) -> JSONResponse:
    body: Dict[str, Any] = {
        "success": False,
        "error": message,
        "message": message,
        "statusCode": status_code,
    }
    if details:
        body["details"] = details
    return JSONResponse(status_code=status_code, content=body)


def error_handler(request: Request, exc: Exception) -> JSONResponse:
    if isinstance(exc, AppError):
        if exc.status_code >= 500:
            logger.error(f"{type(exc).__name__}: {exc.message}", exc_info=exc)
        return envelope(exc.status_code, exc.message, exc.details)

    if isinstance(exc, StarletteHTTPException):
        return envelope(exc.status_code, str(exc.detail or GENERIC_MESSAGE))

    status_code = getattr(exc, "status_code", None) or getattr(exc, "status", None) or 500
    if status_code >= 500:
        path = getattr(getattr(request, "url", None), "path", "?")
        logger.error(f"Unhandled error on {path}: {type(exc).__name__}: {exc}", exc_info=exc)
        return envelope(500, GENERIC_MESSAGE)
    return envelope(status_code, str(exc) or GENERIC_MESSAGE)


async def _app_error_handler(request: Request, exc: Exception) -> JSONResponse:
    return error_handler(request, exc)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body") or "body"
    return envelope(400, f"Invalid {field}: {first.get('msg', 'invalid value')}")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, _app_error_handler)
    app.add_exception_handler(StarletteHTTPException, _app_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _app_error_handler)
