from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from lessonhub.api.schemas import ErrorBody
from lessonhub.logging import get_logger
from lessonhub.service.errors import ServiceError
from lessonhub.storage.errors import ConstraintViolation, StoreError

logger = get_logger(__name__)

GENERIC_SERVER_ERROR = "Server Error"
INVALID_DATA_MESSAGE = "The given data was invalid."

_HTTP_MESSAGES = {
    404: "The requested resource was not found.",
    405: "Method not allowed.",
}


def _error_response(
    status_code: int,
    message: str,
    *,
    errors: Optional[Dict[str, Any]] = None,
    include_status: bool = True,
    headers: Optional[Dict[str, str]] = None,
) -> JSONResponse:
    body = ErrorBody(
        message=message,
        errors=errors or None,
        status=status_code if include_status else None,
    )
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(exclude_none=True),
        headers=headers,
    )


def server_error_response() -> JSONResponse:
    """The opaque 500 every unexpected failure is reduced to."""
    return _error_response(500, GENERIC_SERVER_ERROR)


def _field_errors(exc: RequestValidationError) -> Dict[str, List[str]]:
    """Group pydantic errors by field name, dropping the ``body``/``query`` prefix."""
    grouped: Dict[str, List[str]] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ())]
        if len(loc) > 1 and loc[0] in {"body", "query", "path", "header"}:
            loc = loc[1:]
        field = ".".join(loc) or "request"
        message = str(err.get("msg", "invalid value"))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        grouped.setdefault(field, []).append(message)
    return grouped


def register_exception_handlers(app: FastAPI) -> None:
    """Render domain, storage and framework errors as ``{message, status}`` bodies."""

    @app.exception_handler(ServiceError)
    async def handle_service_error(request: Request, exc: ServiceError):
        log_fn = logger.error if exc.status_code >= 500 else logger.warning
        log_fn(
            "service_error",
            path=request.url.path,
            method=request.method,
            status_code=exc.status_code,
            error_type=type(exc).__name__,
            message=exc.message,
        )
        return _error_response(
            exc.status_code,
            exc.message,
            errors=exc.errors,
            include_status=exc.include_status,
        )

    @app.exception_handler(ConstraintViolation)
    async def handle_constraint_violation(request: Request, exc: ConstraintViolation):
        logger.warning(
            "constraint_violation",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return _error_response(409, exc.message)

    @app.exception_handler(StoreError)
    async def handle_store_error(request: Request, exc: StoreError):
        # Store internals stay in the log; clients get the opaque 500
        logger.error(
            "store_error",
            path=request.url.path,
            method=request.method,
            message=exc.message,
            detail=exc.detail,
        )
        return server_error_response()

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        errors = _field_errors(exc)
        logger.info(
            "request_validation_failed",
            path=request.url.path,
            method=request.method,
            fields=sorted(errors),
        )
        return _error_response(422, INVALID_DATA_MESSAGE, errors=errors)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        message = _HTTP_MESSAGES.get(exc.status_code)
        if message is None:
            message = exc.detail if isinstance(exc.detail, str) else "HTTP error"
        if exc.status_code >= 500:
            logger.error(
                "http_error",
                path=request.url.path,
                method=request.method,
                status_code=exc.status_code,
                message=message,
            )
        return _error_response(
            exc.status_code, message, headers=getattr(exc, "headers", None)
        )
