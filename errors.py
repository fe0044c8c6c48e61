"""
Error taxonomy and the handlers that turn it into JSON envelopes.
"""
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, PyMongoError
from starlette.exceptions import HTTPException

logger = logging.getLogger(__name__)


class ShopError(Exception):
    status_code = 500
    error = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ShopError):
    status_code = 400
    error = "validation_error"


class ConflictError(ShopError):
    status_code = 409
    error = "conflict"


class UnauthorizedError(ShopError):
    status_code = 401
    error = "unauthorized"


class ForbiddenError(ShopError):
    status_code = 403
    error = "forbidden"


class NotFoundError(ShopError):
    status_code = 404
    error = "not_found"


class StateError(ShopError):
    status_code = 400
    error = "state_error"


class InsufficientStockError(StateError):
    error = "insufficient_stock"


class InvalidTransitionError(StateError):
    error = "invalid_transition"


class InternalError(ShopError):
    pass


def error_response(status_code: int, message: str, error: Optional[str] = None) -> JSONResponse:
    body: Dict[str, Any] = {"success": False, "message": message}
    if error:
        body["error"] = error
    return JSONResponse(status_code=status_code, content=body)


def _field_name(loc) -> str:
    # drop the "body"/"query"/"path" prefix
    parts = [str(p) for p in loc[1:]] if len(loc) > 1 else [str(p) for p in loc]
    return ".".join(parts)


def describe_validation_errors(errors: List[dict]) -> str:
    missing = []
    for err in errors:
        blank = err.get("type") == "string_too_short" and not str(err.get("input") or "").strip()
        if err.get("type") == "missing" or blank:
            name = _field_name(err.get("loc", ()))
            if name not in missing:
                missing.append(name)
    if missing:
        return f"Missing required fields: {', '.join(missing)}"
    first = errors[0] if errors else {}
    return f"Invalid value for {_field_name(first.get('loc', ()))}: {first.get('msg', 'invalid input')}"


async def shop_error_handler(request: Request, exc: ShopError):
    return error_response(exc.status_code, exc.message, exc.error)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return error_response(400, describe_validation_errors(exc.errors()), ValidationError.error)


async def http_exception_handler(request: Request, exc: HTTPException):
    return error_response(exc.status_code, str(exc.detail))


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    logger.warning("Duplicate key on %s %s: %s", request.method, request.url.path, exc)
    return error_response(409, "Resource already exists", ConflictError.error)


async def database_error_handler(request: Request, exc: PyMongoError):
    logger.exception("Database failure on %s %s", request.method, request.url.path)
    return error_response(500, "Database error", InternalError.error)


async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response(500, "Internal server error", InternalError.error)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(ShopError, shop_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(PyMongoError, database_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)
