"""Domain exceptions and the JSON error envelope returned for every failure."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from . import schemas

logger = logging.getLogger(__name__)


class ElmifyError(Exception):
    """Base class for errors that map to a specific HTTP response."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    error_code: str = "BUSINESS_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def headers(self) -> dict[str, str] | None:
        return None


class ResourceNotFoundError(ElmifyError):
    status_code = status.HTTP_404_NOT_FOUND
    error_code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource: str, identifier: Any):
        super().__init__(f"{resource} not found with identifier: {identifier}")
        self.resource = resource
        self.identifier = identifier


class BusinessError(ElmifyError):
    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_400_BAD_REQUEST,
        error_code: str = "BUSINESS_ERROR",
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class InvalidRangeError(ElmifyError):
    status_code = status.HTTP_416_REQUESTED_RANGE_NOT_SATISFIABLE
    error_code = "RANGE_NOT_SATISFIABLE"

    def __init__(self, message: str, size: int | None = None):
        super().__init__(message)
        self.size = size

    def headers(self) -> dict[str, str] | None:
        if self.size is None:
            return None
        return {"Content-Range": f"bytes */{self.size}"}


class StorageError(ElmifyError):
    status_code = status.HTTP_502_BAD_GATEWAY
    error_code = "STORAGE_ERROR"


class AuthenticationError(ElmifyError):
    status_code = status.HTTP_401_UNAUTHORIZED
    error_code = "JWT_INVALID"


# Error codes for plain HTTPExceptions raised by routers and dependencies
_HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "AUTHENTICATION_REQUIRED",
    403: "ACCESS_DENIED",
    404: "RESOURCE_NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    429: "RATE_LIMITED",
    502: "UPSTREAM_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def new_trace_id() -> str:
    return uuid.uuid4().hex[:8]


def error_response(
    request: Request,
    status_code: int,
    error: str,
    message: str,
    validation_errors: list[schemas.ValidationErrorItem] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = schemas.ErrorResponse(
        status=status_code,
        error=error,
        message=message,
        path=request.url.path,
        timestamp=datetime.now(timezone.utc),
        trace_id=new_trace_id(),
        validation_errors=validation_errors,
    )
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(body.model_dump(by_alias=True, exclude_none=True)),
        headers=headers,
    )


async def _elmify_error_handler(request: Request, exc: ElmifyError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.error_code} on {request.url.path}: {exc.message}")
    else:
        logger.debug(f"{exc.error_code} on {request.url.path}: {exc.message}")
    return error_response(
        request, exc.status_code, exc.error_code, exc.message, headers=exc.headers()
    )


async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    code = _HTTP_ERROR_CODES.get(exc.status_code, f"HTTP_{exc.status_code}")
    message = exc.detail if isinstance(exc.detail, str) else "Request failed"
    return error_response(request, exc.status_code, code, message, headers=exc.headers)


async def _validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    items = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        items.append(
            schemas.ValidationErrorItem(
                field=".".join(loc) or "request",
                rejected_value=err.get("input"),
                message=err.get("msg", "Invalid value"),
            )
        )
    return error_response(
        request,
        status.HTTP_400_BAD_REQUEST,
        "VALIDATION_FAILED",
        "Request validation failed",
        validation_errors=items,
    )


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}", exc_info=exc)
    return error_response(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_ERROR",
        "An unexpected error occurred",
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ElmifyError, _elmify_error_handler)
    app.add_exception_handler(HTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)
