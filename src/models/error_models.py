"""
Standardized error response models for the agnt-core API.

Provides consistent error formatting across REST, SSE and WebSocket endpoints
with support for request tracking and error categorization.
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ErrorCode(str, Enum):
    """Application-specific error codes for categorization."""

    # Authentication errors (1xxx)
    AUTH_REQUIRED = "AUTH_1001"
    AUTH_TOKEN_MISSING = "AUTH_1002"

    # Validation errors (2xxx)
    VALIDATION_ERROR = "VAL_2001"
    VALIDATION_MISSING_FIELD = "VAL_2002"
    VALIDATION_INVALID_FORMAT = "VAL_2003"

    # Resource errors (3xxx)
    RESOURCE_NOT_FOUND = "RES_3001"
    CONVERSATION_NOT_FOUND = "RES_3002"
    TOOL_NOT_FOUND = "RES_3003"

    # Orchestration errors (4xxx)
    RUN_CANCELLED = "RUN_4001"
    RUN_ROUND_LIMIT = "RUN_4002"

    # WebSocket errors (6xxx)
    WS_MESSAGE_INVALID = "WS_6001"
    WS_CONNECTION_REJECTED = "WS_6002"

    # External service errors (7xxx)
    EXTERNAL_SERVICE_ERROR = "EXT_7001"
    EXTERNAL_TIMEOUT = "EXT_7002"
    EXTERNAL_RATE_LIMITED = "EXT_7003"
    PROVIDER_ERROR = "EXT_7010"
    PROVIDER_UNSUPPORTED = "EXT_7011"

    # Database errors (8xxx)
    DATABASE_ERROR = "DB_8001"
    DATABASE_UNAVAILABLE = "DB_8002"

    # Internal errors (9xxx)
    INTERNAL_ERROR = "INT_9001"
    INTERNAL_CONFIGURATION_ERROR = "INT_9002"
    INTERNAL_UNEXPECTED = "INT_9999"


class ErrorDetail(BaseModel):
    """Detailed information about a specific validation or sub-error."""

    field: str | None = None
    message: str
    code: str | None = None


class ErrorResponse(BaseModel):
    """Standardized error response model for REST endpoints.

    Example response:
    {
        "error": {
            "code": "RES_3002",
            "message": "Conversation 'conv-1' not found",
            "request_id": "req_abc123",
            "timestamp": "2025-01-15T10:30:00Z",
            "path": "/api/conversations/conv-1"
        }
    }
    """

    code: ErrorCode
    message: str
    request_id: str | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    details: list[ErrorDetail] | None = None
    path: str | None = None
    debug: dict[str, Any] | None = Field(default=None, exclude=True)

    def to_dict(self, include_debug: bool = False) -> dict[str, Any]:
        """Convert to dictionary for JSON response.

        Args:
            include_debug: Include debug information (only in development)
        """
        data = self.model_dump(mode="json", exclude_none=True)
        if include_debug and self.debug:
            data["debug"] = self.debug
        return {"error": data}


class WebSocketError(BaseModel):
    """Error frame sent over WebSocket connections outside of a run.

    Errors inside a run travel as regular ``error`` stream events instead.
    """

    type: str = "error"
    code: ErrorCode
    message: str
    request_id: str | None = None
    conversation_id: str | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    recoverable: bool = True

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for WebSocket JSON message."""
        return self.model_dump(mode="json", exclude_none=True)


# HTTP status code mappings for error codes
ERROR_CODE_TO_STATUS: dict[ErrorCode, int] = {
    ErrorCode.AUTH_REQUIRED: 401,
    ErrorCode.AUTH_TOKEN_MISSING: 401,
    ErrorCode.RESOURCE_NOT_FOUND: 404,
    ErrorCode.CONVERSATION_NOT_FOUND: 404,
    ErrorCode.TOOL_NOT_FOUND: 404,
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.VALIDATION_MISSING_FIELD: 422,
    ErrorCode.VALIDATION_INVALID_FORMAT: 422,
    ErrorCode.PROVIDER_UNSUPPORTED: 422,
    ErrorCode.EXTERNAL_RATE_LIMITED: 429,
    ErrorCode.EXTERNAL_SERVICE_ERROR: 502,
    ErrorCode.PROVIDER_ERROR: 502,
    ErrorCode.EXTERNAL_TIMEOUT: 503,
    ErrorCode.DATABASE_UNAVAILABLE: 503,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.INTERNAL_ERROR: 500,
    ErrorCode.INTERNAL_CONFIGURATION_ERROR: 500,
    ErrorCode.INTERNAL_UNEXPECTED: 500,
}


def get_status_code(error_code: ErrorCode) -> int:
    """Get HTTP status code for an error code."""
    return ERROR_CODE_TO_STATUS.get(error_code, 500)


__all__ = [
    "ERROR_CODE_TO_STATUS",
    "ErrorCode",
    "ErrorDetail",
    "ErrorResponse",
    "WebSocketError",
    "get_status_code",
]
