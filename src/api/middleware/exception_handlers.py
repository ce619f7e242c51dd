"""
Global exception handlers for the agnt-core API.

REST errors share one ``{"error": {...}}`` envelope. Errors inside a chat run
never reach these handlers; they are reported as ``error`` stream events.
"""

from __future__ import annotations

import traceback

from typing import Any

import anthropic
import asyncpg
import openai

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from api.middleware.request_context import get_request_context, get_request_id
from core.constants import get_settings
from models.error_models import (
    ErrorCode,
    ErrorDetail,
    ErrorResponse,
    get_status_code,
)
from utils.logger import logger


class AppException(Exception):
    """Base application exception with error code support.

    Example:
        raise AppException(
            code=ErrorCode.CONVERSATION_NOT_FOUND,
            message="Conversation not found",
            details={"conversation_id": conversation_id}
        )
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        self.code = code
        self.message = message
        self.details = details
        self.cause = cause
        super().__init__(message)


class ResourceNotFoundError(AppException):
    """Resource not found errors."""

    def __init__(
        self,
        resource: str,
        resource_id: str | None = None,
        code: ErrorCode = ErrorCode.RESOURCE_NOT_FOUND,
    ):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} '{resource_id}' not found"
        super().__init__(code=code, message=message, details={"resource": resource, "id": resource_id})


class ConversationNotFoundError(ResourceNotFoundError):
    def __init__(self, conversation_id: str):
        super().__init__(resource="Conversation", resource_id=conversation_id, code=ErrorCode.CONVERSATION_NOT_FOUND)


class DatabaseError(AppException):
    """Database-related errors (pool missing or query failure)."""

    def __init__(
        self,
        message: str = "Database error",
        code: ErrorCode = ErrorCode.DATABASE_ERROR,
        cause: Exception | None = None,
    ):
        super().__init__(code=code, message=message, cause=cause)


def _create_error_response(
    code: ErrorCode,
    message: str,
    request: Request | None = None,
    details: list[ErrorDetail] | None = None,
    debug_info: dict[str, Any] | None = None,
) -> ErrorResponse:
    return ErrorResponse(
        code=code,
        message=message,
        request_id=get_request_id(),
        path=request.url.path if request else None,
        details=details,
        debug=debug_info,
    )


def _log_error(error: Exception, code: ErrorCode, status_code: int) -> None:
    """Log error with a level chosen from the status code."""
    ctx = get_request_context()
    log_context = ctx.to_log_context() if ctx else {}
    log_context["error_code"] = code.value
    log_context["status_code"] = status_code

    if status_code >= 500:
        logger.error(f"Server error: {code.value} - {error}", exc_info=True, **log_context)
    elif status_code >= 400:
        logger.warning(f"Client error: {code.value} - {error}", **log_context)


def _json_error(status_code: int, response: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=response.to_dict(include_debug=get_settings().debug))


def _field_details(errors: list[Any]) -> list[ErrorDetail]:
    return [
        ErrorDetail(field=".".join(str(loc) for loc in error["loc"]), message=error["msg"], code=error["type"])
        for error in errors
    ]


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application-specific exceptions."""
    status_code = get_status_code(exc.code)

    debug_info = None
    if get_settings().debug:
        debug_info = {"exception_type": type(exc).__name__, "cause": str(exc.cause) if exc.cause else None}

    details = None
    if exc.details:
        details = [ErrorDetail(message=str(v), field=k) for k, v in exc.details.items()]

    _log_error(exc, exc.code, status_code)
    return _json_error(status_code, _create_error_response(exc.code, exc.message, request, details, debug_info))


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle FastAPI HTTPException with consistent formatting."""
    status_to_code = {
        400: ErrorCode.VALIDATION_ERROR,
        401: ErrorCode.AUTH_REQUIRED,
        404: ErrorCode.RESOURCE_NOT_FOUND,
        422: ErrorCode.VALIDATION_ERROR,
        429: ErrorCode.EXTERNAL_RATE_LIMITED,
        502: ErrorCode.EXTERNAL_SERVICE_ERROR,
        503: ErrorCode.EXTERNAL_TIMEOUT,
    }
    code = status_to_code.get(exc.status_code, ErrorCode.INTERNAL_ERROR)
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)

    _log_error(exc, code, exc.status_code)
    return _json_error(
        exc.status_code,
        _create_error_response(code, message, request, debug_info={"original_status": exc.status_code}),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request body/query validation errors."""
    _log_error(exc, ErrorCode.VALIDATION_ERROR, 422)
    return _json_error(
        422,
        _create_error_response(ErrorCode.VALIDATION_ERROR, "Request validation failed", request, _field_details(exc.errors())),
    )


async def pydantic_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle pydantic ValidationError raised while building models in handlers."""
    _log_error(exc, ErrorCode.VALIDATION_ERROR, 422)
    return _json_error(
        422,
        _create_error_response(ErrorCode.VALIDATION_ERROR, "Data validation failed", request, _field_details(exc.errors())),
    )


async def provider_exception_handler(request: Request, exc: openai.APIError | anthropic.APIError) -> JSONResponse:
    """Handle provider SDK errors that escape outside a chat run (OpenAI and Anthropic)."""
    provider = "Anthropic" if isinstance(exc, anthropic.APIError) else "OpenAI"
    if isinstance(exc, openai.AuthenticationError | anthropic.AuthenticationError):
        code, status_code, message = ErrorCode.PROVIDER_ERROR, 502, f"{provider} authentication failed"
    elif isinstance(exc, openai.RateLimitError | anthropic.RateLimitError):
        code, status_code, message = ErrorCode.EXTERNAL_RATE_LIMITED, 429, f"{provider} rate limit exceeded"
    else:
        code, status_code, message = ErrorCode.PROVIDER_ERROR, 502, f"{provider} API error: {exc}"

    debug_info = {"provider_error_type": type(exc).__name__, "status_code": getattr(exc, "status_code", None)}

    _log_error(exc, code, status_code)
    return _json_error(status_code, _create_error_response(code, message, request, debug_info=debug_info))


async def asyncpg_exception_handler(request: Request, exc: asyncpg.PostgresError) -> JSONResponse:
    """Handle PostgreSQL database errors."""
    debug_info = {"pg_error_code": getattr(exc, "sqlstate", None), "pg_error_class": type(exc).__name__}

    _log_error(exc, ErrorCode.DATABASE_ERROR, 500)
    return _json_error(
        500, _create_error_response(ErrorCode.DATABASE_ERROR, "Database operation failed", request, debug_info=debug_info)
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions."""
    logger.error(
        f"Unhandled exception: {type(exc).__name__}: {exc}",
        exc_info=True,
        request_id=get_request_id(),
        path=request.url.path,
    )

    debug_info = {
        "exception_type": type(exc).__name__,
        "exception_message": str(exc),
        "traceback": traceback.format_exc(),
    }
    return _json_error(
        500,
        _create_error_response(ErrorCode.INTERNAL_UNEXPECTED, "An unexpected error occurred", request, debug_info=debug_info),
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI application."""
    # Starlette's signature expects Exception; covariant handler types are fine at runtime
    app.add_exception_handler(AppException, app_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(HTTPException, http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ValidationError, pydantic_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(openai.APIError, provider_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(anthropic.APIError, provider_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(asyncpg.PostgresError, asyncpg_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)


__all__ = [
    "AppException",
    "ConversationNotFoundError",
    "DatabaseError",
    "ResourceNotFoundError",
    "app_exception_handler",
    "asyncpg_exception_handler",
    "generic_exception_handler",
    "http_exception_handler",
    "provider_exception_handler",
    "pydantic_exception_handler",
    "register_exception_handlers",
    "validation_exception_handler",
]
