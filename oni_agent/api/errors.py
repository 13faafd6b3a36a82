from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


logger = logging.getLogger(__name__)


@dataclass
class APIError(Exception):
    status_code: int
    code: str
    message: str
    details: dict[str, Any] | None = None


def invalid_argument(message: str, **details: Any) -> APIError:
    return APIError(status_code=400, code="invalid_argument", message=message, details=details or None)


def not_found(message: str, **details: Any) -> APIError:
    return APIError(status_code=404, code="not_found", message=message, details=details or None)


def unavailable(message: str) -> APIError:
    return APIError(status_code=503, code="unavailable", message=message)


def error_response(*, status_code: int, code: str, message: str, details: dict[str, Any] | None = None) -> JSONResponse:
    body: dict[str, Any] = {"code": code, "message": message}
    if details:
        body["details"] = details
    return JSONResponse(status_code=int(status_code), content={"error": body})


async def api_error_handler(_req: Request, exc: APIError) -> JSONResponse:
    return error_response(status_code=exc.status_code, code=exc.code, message=exc.message, details=exc.details)


async def validation_error_handler(_req: Request, exc: RequestValidationError) -> JSONResponse:
    # Bad request bodies share the invalid_argument code with our own checks.
    return error_response(
        status_code=400,
        code="invalid_argument",
        message="Request validation failed.",
        details={"errors": exc.errors()},
    )


async def unhandled_error_handler(req: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error for %s %s", req.method, req.url.path, exc_info=exc)
    return error_response(status_code=500, code="internal", message="Internal server error.")
