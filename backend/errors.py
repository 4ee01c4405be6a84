# backend/errors.py
"""Error taxonomy and the JSON response envelope.

Every response leaving the API is one of two shapes::

    {"statusCode": 200, "data": ..., "message": "...", "success": true}
    {"statusCode": 401, "message": "...", "errors": [], "success": false}

Errors additionally carry ``stack`` when the app runs in development.
"""
import logging
import traceback
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from config import get_settings

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """An error with an HTTP status, reported to the client as-is."""

    status_code = 500
    default_message = "Something went wrong"

    def __init__(self, message: Optional[str] = None, errors: Optional[list] = None):
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class ValidationError(ApiError):
    status_code = 400
    default_message = "Invalid request"


class Unauthorized(ApiError):
    status_code = 401
    default_message = "Unauthorized request"


class NotFound(ApiError):
    status_code = 404
    default_message = "Resource not found"


class Conflict(ApiError):
    status_code = 409
    default_message = "Resource already exists"


class InternalError(ApiError):
    status_code = 500


class TokenError(Exception):
    """Token could not be verified. Never reaches the client directly."""


class MalformedToken(TokenError):
    """Not a structurally valid signed token."""


class InvalidToken(TokenError):
    """Well-formed token with a bad signature, expired, or of the wrong class."""


# Non-taxonomy exceptions are resolved against this table by walking the
# exception's MRO; anything unmatched is a 500.
EXCEPTION_STATUS_CODES: dict[type[BaseException], int] = {
    SQLAlchemyError: 400,
}


def status_for_exception(exc: BaseException) -> int:
    for klass in type(exc).__mro__:
        if klass in EXCEPTION_STATUS_CODES:
            return EXCEPTION_STATUS_CODES[klass]
    return 500


def api_response(data: Any, message: str = "Success", status_code: int = 200) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "statusCode": status_code,
            "data": jsonable_encoder(data, by_alias=True),
            "message": message,
            "success": status_code < 400,
        },
    )


def error_response(exc: BaseException, status_code: int, message: str, errors: Optional[list] = None) -> JSONResponse:
    content: dict[str, Any] = {
        "statusCode": status_code,
        "message": message,
        "errors": jsonable_encoder(errors or []),
        "success": False,
    }
    if get_settings().is_development:
        content["stack"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return JSONResponse(status_code=status_code, content=content)


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return error_response(exc, exc.status_code, exc.message, exc.errors)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(exc, 400, "Invalid request", list(exc.errors()))


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc, exc.status_code, str(exc.detail))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    status_code = status_for_exception(exc)
    logger.error("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
    message = str(exc) if get_settings().is_development and str(exc) else "Something went wrong"
    return error_response(exc, status_code, message)


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Answers unhandled errors from inside the middleware stack.

    Must sit inside ``CORSMiddleware`` so 500s still carry CORS headers.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            return await unhandled_exception_handler(request, exc)


def register_exception_handlers(app: FastAPI) -> None:
    """Install the handlers and the error middleware; call before adding CORS."""
    app.add_exception_handler(ApiError, api_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, request_validation_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)  # type: ignore[arg-type]
    for klass in EXCEPTION_STATUS_CODES:
        app.add_exception_handler(klass, unhandled_exception_handler)
    app.add_middleware(ErrorHandlingMiddleware)
