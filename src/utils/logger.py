"""
Logging setup for agnt-core using Python's standard logging
with JSON formatting for structured logs.

Log destinations:
- Console (stderr): Human-readable format for debugging
- logs/conversations.jsonl: JSON format for conversation turns and tool calls
- logs/errors.jsonl: JSON format for error tracking
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
import sys
import uuid

from typing import Any, cast

from pythonjsonlogger import json as jsonlogger

from api.middleware.request_context import get_request_context
from core.constants import (
    LOGGER_INSTANCE_ID_LENGTH,
    LOG_BACKUP_COUNT_CONVERSATIONS,
    LOG_BACKUP_COUNT_ERRORS,
    LOG_MAX_SIZE,
    LOG_PREVIEW_LENGTH,
    PROJECT_ROOT,
    get_settings,
)

# PII Redaction patterns
REDACTION_PATTERNS = [
    (r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Z|a-z]{2,}\b", "[EMAIL]"),
    (r"\b(?:\d{4}[- ]?){3}\d{4}\b", "[CARD]"),
    (r"\b(sk-|pk-|api[-_]?key[-_]?)[A-Za-z0-9]{20,}\b", "[API_KEY]"),
    (r"\b(password|secret|token)\s*[:=]\s*\S+", "[REDACTED]"),
]


class ConversationFilter(logging.Filter):
    """Allow INFO and above into the conversation log"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.INFO


class ErrorFilter(logging.Filter):
    """Only allow ERROR and CRITICAL logs"""

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


class ColoredConsoleFormatter(logging.Formatter):
    """
    Formatter that colors the level and standardizes format.
    Format: HH:MM:SS [LEVEL] logger_name - message
    """

    GREY = "\x1b[38;20m"
    GREEN = "\x1b[32;20m"
    YELLOW = "\x1b[33;20m"
    RED = "\x1b[31;20m"
    BOLD_RED = "\x1b[31;1m"
    RESET = "\x1b[0m"

    LEVEL_COLORS = {
        logging.DEBUG: GREY,
        logging.INFO: GREEN,
        logging.WARNING: YELLOW,
        logging.ERROR: RED,
        logging.CRITICAL: BOLD_RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        level_fmt = f"{color}[{record.levelname}]{self.RESET}" if color else f"[{record.levelname}]"
        record.asctime = self.formatTime(record, "%H:%M:%S")

        # uvicorn access args: (client_addr, method, full_path, http_version, status_code)
        if record.name == "uvicorn.access" and record.args and len(record.args) == 5:
            client_addr, method, full_path, http_version, status_code = record.args
            status_code_num = int(cast(Any, status_code))
            if status_code_num < 400:
                status_code_fmt = f"{self.GREEN}{status_code}{self.RESET}"
            elif status_code_num < 500:
                status_code_fmt = f"{self.YELLOW}{status_code}{self.RESET}"
            else:
                status_code_fmt = f"{self.RED}{status_code}{self.RESET}"
            message = f'{client_addr} - "\x1b[1m{method}\x1b[0m {full_path} HTTP/{http_version}" {status_code_fmt}'
            return f"{record.asctime} {level_fmt} {record.name} - {message}"

        formatted = f"{record.asctime} {level_fmt} {record.name} - {record.getMessage()}"
        if record.exc_info:
            formatted = f"{formatted}\n{self.formatException(record.exc_info)}"
        return formatted


def configure_uvicorn_logging() -> None:
    """
    Configure uvicorn loggers to use our standard colored formatting.
    """
    formatter = ColoredConsoleFormatter()

    main_logger = logging.getLogger("uvicorn")
    main_logger.handlers = []
    main_logger.setLevel(logging.INFO)

    for name in ("uvicorn.access", "uvicorn.error"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers = []
        uv_logger.setLevel(logging.INFO)
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        uv_logger.addHandler(handler)
        uv_logger.propagate = False


def setup_logging(name: str = "agnt-core", debug: bool | None = None) -> logging.Logger:
    """
    Set up logging with console and rotating JSON file handlers.

    Args:
        name: Logger name
        debug: Enable debug logging (overrides DEBUG env var)

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)  # Capture all, filter at handler level
    logger.handlers = []

    if debug is None:
        debug = os.getenv("DEBUG", "false").lower() in ("true", "1", "yes")

    # --- Console Handler (Human-readable) ---
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())
    logger.addHandler(console_handler)

    log_dir = PROJECT_ROOT / "logs"
    log_dir.mkdir(exist_ok=True)

    # --- Conversation Log Handler (JSON) ---
    conv_handler = logging.handlers.RotatingFileHandler(
        log_dir / "conversations.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT_CONVERSATIONS,
        encoding="utf-8",
    )
    conv_handler.setLevel(logging.INFO)
    conv_handler.addFilter(ConversationFilter())
    conv_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(message)s %(conversation_id)s %(tokens)s %(func)s",
            timestamp=True,
        )
    )
    logger.addHandler(conv_handler)

    # --- Error Log Handler (JSON) ---
    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / "errors.jsonl",
        maxBytes=LOG_MAX_SIZE,
        backupCount=LOG_BACKUP_COUNT_ERRORS,
        encoding="utf-8",
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.addFilter(ErrorFilter())
    error_handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(timestamp)s %(levelname)s %(name)s %(message)s",
            timestamp=True,
        )
    )
    logger.addHandler(error_handler)

    return logger


class ChatLogger:
    """
    High-level logging interface for agnt-core.
    Wraps standard Python logging with convenience methods.
    """

    def __init__(self, name: str = "agnt-core"):
        self.logger = setup_logging(name)
        self.instance_id = str(uuid.uuid4())[:LOGGER_INSTANCE_ID_LENGTH]

    def _enrich_context(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        """Enrich log arguments with request context and instance ID."""
        kwargs.setdefault("conversation_id", self.instance_id)

        if ctx := get_request_context():
            kwargs.update(ctx.to_log_context())
            if ctx.conversation_id:
                kwargs["conversation_id"] = ctx.conversation_id

        return kwargs

    def debug(self, message: str, **kwargs: Any) -> None:
        """Debug level logging"""
        kwargs = self._enrich_context(kwargs)
        self.logger.debug(message, extra=kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        """Info level logging"""
        kwargs = self._enrich_context(kwargs)
        self.logger.info(message, extra=kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        """Warning level logging"""
        kwargs = self._enrich_context(kwargs)
        self.logger.warning(message, extra=kwargs)

    def error(self, message: str, exc_info: bool = False, **kwargs: Any) -> None:
        """Error level logging with optional exception info"""
        kwargs = self._enrich_context(kwargs)
        self.logger.error(message, extra=kwargs, exc_info=exc_info)

    def _should_log_content(self) -> bool:
        try:
            return bool(get_settings().enable_content_logging)
        except ValueError:
            # Settings failed validation; never leak content
            return False

    def _redact_content(self, text: str) -> str:
        """Redact PII from text using defined patterns."""
        if not text:
            return text

        redacted = text
        for pattern, replacement in REDACTION_PATTERNS:
            redacted = re.sub(pattern, replacement, redacted)
        return redacted

    def _preview(self, text: str) -> str:
        preview = self._redact_content(text[:LOG_PREVIEW_LENGTH].replace("\n", " "))
        if len(text) > LOG_PREVIEW_LENGTH:
            preview += "..."
        return preview

    def log_conversation_turn(
        self,
        conversation_id: str,
        user_input: str,
        response: str,
        tool_names: list[str] | None = None,
        rounds: int = 0,
        duration_ms: float | None = None,
        tokens_used: int | None = None,
    ) -> None:
        """
        Log a completed orchestration run securely.
        """
        should_log_content = self._should_log_content()
        if should_log_content:
            user_preview = self._preview(user_input)
            response_preview = self._preview(response)
        else:
            user_preview = "[HIDDEN]"
            response_preview = "[HIDDEN]"

        msg_parts = [f"User: {user_preview} → AI: {response_preview}"]
        if tool_names:
            msg_parts.append(f"[{len(tool_names)} tools / {rounds} rounds]")
        if duration_ms:
            msg_parts.append(f"[{duration_ms:.0f}ms]")
        if tokens_used:
            msg_parts.append(f"[{tokens_used} tokens]")

        extra_data: dict[str, Any] = {
            "conversation_turn": True,
            "conversation_id": conversation_id,
            "chars_input": len(user_input),
            "chars_response": len(response),
            "rounds": rounds,
            "content_logging": should_log_content,
        }
        if tool_names:
            extra_data["tool_names"] = tool_names
        if duration_ms is not None:
            extra_data["ms"] = int(duration_ms)
        if tokens_used is not None:
            extra_data["tokens"] = tokens_used

        extra_data = self._enrich_context(extra_data)
        self.logger.info(" ".join(msg_parts), extra=extra_data)

    def log_function_call(self, function_name: str, args: dict[str, Any], result: Any) -> None:
        """
        Log a tool call - secure version.
        """
        should_log_content = self._should_log_content()

        if should_log_content:
            redacted_args = self._redact_content(str(args))
            console_msg = f"Tool call: {function_name}({redacted_args[:200]}) → {str(result)[:50]}..."
        else:
            console_msg = f"Tool call: {function_name}(...) -> [HIDDEN]"

        extra_data = {"func": function_name, "content_logging": should_log_content}
        extra_data = self._enrich_context(extra_data)

        self.logger.info(console_msg, extra=extra_data)


# Global logger instance
logger = ChatLogger()
