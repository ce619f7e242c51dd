"""
Provider-agnostic streaming adapter.

``BaseAdapter.stream`` owns everything that is the same for every vendor:
image injection, retries with exponential backoff, token-limit recovery
through the context manager, corrective guidance for bad tool calls, the
422 "no function calling" fallback and the final apology result. Subclasses
implement one streaming attempt (``_stream_once``) plus the message shapes
their vendor expects.
"""

from __future__ import annotations

import asyncio
import random
import re
import time

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import anthropic
import httpx
import openai

from api.services.context_manager import ContextManager
from core.constants import DEFAULT_CONTEXT_BUDGET_RATIO, is_vision_capable
from core.run_context import RunContext
from models.message_models import AdapterResult, AssistantContent, InvalidToolCall, ToolCall
from utils.json_utils import json_compact, parse_json_object
from utils.logger import logger
from utils.metrics import llm_call_duration_seconds, llm_calls_total

#: Async callback receiving (delta, accumulated) for every streamed text chunk
ChunkCallback = Callable[[str, str], Awaitable[None]]

# ============================================================================
# Retry policy
# ============================================================================

#: HTTP statuses worth retrying (529 = Anthropic overloaded)
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504, 529})

#: Phrases in a 400 that mean the model produced a bad tool call
TOOL_ERROR_MARKERS = ("function", "tool", "failed to call")

#: Phrases in a 400 that mean the request exceeded the context window
TOKEN_LIMIT_MARKERS = ("reduce the length", "too long", "token limit", "context length")

#: Context reductions allowed per call; they do not consume retry attempts
MAX_CONTEXT_REDUCTIONS = 2

#: Each reduction tightens the budget ratio by this factor
CONTEXT_REDUCTION_FACTOR = 0.75

NETWORK_ERRORS: tuple[type[BaseException], ...] = (
    openai.APIConnectionError,
    anthropic.APIConnectionError,
    httpx.TransportError,
    asyncio.TimeoutError,
    ConnectionError,
)

RECOVERY_FALLBACK_TEXT = "I encountered an unexpected error, but I'm still here to help. Please try your request again."


# ============================================================================
# Error inspection helpers
# ============================================================================


def status_of(error: BaseException) -> int | None:
    """HTTP status carried by an SDK error, if any."""
    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    return status if isinstance(status, int) else None


def error_message(error: BaseException) -> str:
    """Best human-readable message of an SDK error (``body.error.message`` first)."""
    body = getattr(error, "body", None)
    if isinstance(body, dict):
        nested = body.get("error")
        if isinstance(nested, dict) and isinstance(nested.get("message"), str):
            return nested["message"]
        if isinstance(body.get("message"), str):
            return body["message"]
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error)


def is_token_limit_error(error: BaseException) -> bool:
    if status_of(error) != 400:
        return False
    text = f"{error} {error_message(error)}".lower()
    return any(marker in text for marker in TOKEN_LIMIT_MARKERS)


def is_retryable_error(error: BaseException) -> bool:
    """Retry transient HTTP statuses, network failures and tool-related 400s."""
    status = status_of(error)
    if status in RETRYABLE_STATUS_CODES:
        return True
    if isinstance(error, NETWORK_ERRORS):
        return True
    if status == 400:
        text = f"{error} {error_message(error)}".lower()
        return any(marker in text for marker in TOOL_ERROR_MARKERS)
    return False


_EMBEDDED_JSON_RE = re.compile(r"\{[\s\S]*\}")
_INVALID_ARGUMENT_RE = re.compile(r"not supported[^\"]*|INVALID_ARGUMENT[^\"]*", re.IGNORECASE)

_FRIENDLY_ERRORS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("credit balance is too low",), "Your API credit balance is too low. Please add credits to your account."),
    (("invalid_api_key", "Invalid API Key"), "Invalid API key. Please check your API key configuration."),
    (("rate_limit", "Rate limit"), "Rate limit exceeded. Please wait a moment and try again."),
    (("overloaded", "capacity"), "The AI service is currently overloaded. Please try again in a few moments."),
    (
        ("RESOURCE_EXHAUSTED", "quota"),
        "API quota exceeded. Please check your plan and billing details, or wait for your quota to reset.",
    ),
)


def _message_from_json(text: str) -> str | None:
    match = _EMBEDDED_JSON_RE.search(text)
    if not match:
        return None
    parsed = parse_json_object(match.group(0))
    if parsed is None:
        return None

    nested = parsed.get("error")
    if isinstance(nested, dict) and isinstance(nested.get("message"), str):
        inner = nested["message"]
        # Some gateways wrap the vendor's JSON error inside their own message
        return _message_from_json(inner) or inner
    if isinstance(parsed.get("message"), str):
        return parsed["message"]
    return None


def parse_api_error_message(error: BaseException | str) -> str:
    """Turn a provider error into a short message a user can act on."""
    raw = error if isinstance(error, str) else error_message(error)
    if not raw:
        return "Unknown error occurred"

    message = _message_from_json(raw) or raw

    for markers, friendly in _FRIENDLY_ERRORS:
        if any(marker in message for marker in markers):
            return friendly

    if "INVALID_ARGUMENT" in message or "not supported" in message:
        match = _INVALID_ARGUMENT_RE.search(message)
        if match:
            return f"Invalid request: {match.group(0)}"
        return "Invalid request. The model may not support this operation."

    return message


# ============================================================================
# Tool call validation
# ============================================================================


def validate_tool_calls(
    tool_calls: list[ToolCall], tool_names: set[str], keep_malformed_arguments: bool = False
) -> tuple[list[ToolCall], list[InvalidToolCall]]:
    """Split streamed tool calls into structurally valid and invalid ones.

    Checks the id, that the name is an offered tool and that the arguments
    decode to a JSON object. Schema-level validation happens in the executor.

    With ``keep_malformed_arguments`` a call whose only problem is its
    arguments stays valid, so the loop can answer it with a tool message
    describing the parse error.
    """
    valid: list[ToolCall] = []
    invalid: list[InvalidToolCall] = []
    for call in tool_calls:
        issues = []
        if not call.id:
            issues.append("Tool call is missing an id")
        if not call.name:
            issues.append("Tool call is missing a function name")
        elif call.name not in tool_names:
            issues.append(f"Unknown tool '{call.name}'")
        if not keep_malformed_arguments:
            try:
                call.parsed_arguments()
            except ValueError as e:
                issues.append(f"Arguments are not a valid JSON object: {e}")

        if issues:
            invalid.append(InvalidToolCall(tool_name=call.name or "unknown", issues=issues, attempted_args=call.arguments))
        else:
            valid.append(call)
    return valid, invalid


def tool_schema_name(schema: dict[str, Any]) -> str:
    return (schema.get("function") or schema).get("name", "")


def describe_tools(tool_schemas: list[dict[str, Any]]) -> str:
    lines = []
    for schema in tool_schemas:
        function = schema.get("function") or schema
        lines.append(f"- {function.get('name')}: {json_compact(function.get('parameters') or {})}")
    return "\n".join(lines)


def invalid_tool_call_guidance(invalid: list[InvalidToolCall], tool_schemas: list[dict[str, Any]]) -> str:
    problems = "\n".join(f"- {call.tool_name}: {'; '.join(call.issues)}" for call in invalid)
    return (
        "Some of your tool calls were invalid and were not executed:\n"
        f"{problems}\n\n"
        "Please retry using only the available tools, with arguments given as a JSON object "
        "matching the tool's parameters.\n\n"
        f"Available tools and their schemas:\n{describe_tools(tool_schemas)}"
    )


def stream_error_guidance(message: str, tool_schemas: list[dict[str, Any]]) -> str:
    return (
        f'Your previous tool call failed with error: "{message}"\n\n'
        "Please retry with corrections. Common issues:\n"
        "1. Using invalid action values - check the tool schema for exact allowed values\n"
        "2. Missing required parameters\n"
        "3. Incorrect parameter types\n"
        "4. Malformed JSON in arguments\n\n"
        f"Available tools and their schemas:\n{describe_tools(tool_schemas)}"
    )


# ============================================================================
# Adapter base class
# ============================================================================


@dataclass
class StreamOutcome:
    """Everything accumulated by one streaming attempt."""

    text: str = ""
    blocks: list[dict[str, Any]] = field(default_factory=list)
    tool_calls: list[ToolCall] = field(default_factory=list)
    stream_error: BaseException | None = None

    @property
    def is_empty(self) -> bool:
        return not self.text and not self.tool_calls


class BaseAdapter(ABC):
    """Uniform streaming interface over one provider/model pair."""

    def __init__(
        self,
        client: Any,
        model: str,
        provider: str,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        context_manager: ContextManager | None = None,
        owns_client: bool = False,
    ):
        self.client = client
        self.owns_client = owns_client
        self.model = model
        self.provider = provider
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.context_manager = context_manager or ContextManager()

    # ------------------------------------------------------------------
    # Vendor hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def _stream_once(
        self,
        messages: list[dict[str, Any]],
        tool_schemas: list[dict[str, Any]] | None,
        on_chunk: ChunkCallback | None,
        run_context: RunContext,
    ) -> StreamOutcome:
        """Run one streaming request; exceptions before any output propagate."""

    @abstractmethod
    def guidance_message(self, text: str) -> dict[str, Any]:
        """Message appended to steer the model on a retry."""

    @abstractmethod
    def build_response_message(self, outcome: StreamOutcome, valid_calls: list[ToolCall]) -> dict[str, Any]:
        """Assistant message to append to history for a successful attempt."""

    @abstractmethod
    def build_content(self, outcome: StreamOutcome, valid_calls: list[ToolCall]) -> AssistantContent:
        pass

    @abstractmethod
    def text_message(self, text: str) -> tuple[dict[str, Any], AssistantContent]:
        """Assistant message and content for a plain-text (recovery) reply."""

    @abstractmethod
    def format_tool_results(self, results: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Convert ``[{tool_call_id, content}]`` into history messages."""

    @abstractmethod
    def image_blocks(self, images: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Vendor content parts for ``[{name, mime_type, data}]`` images."""

    @abstractmethod
    def extract_text(self, response_message: dict[str, Any]) -> str:
        pass

    # ------------------------------------------------------------------
    # Shared behaviour
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Close the SDK client when this adapter created its connection pool."""
        if self.owns_client and self.client is not None:
            await self.client.close()

    def retry_delay(self, attempt: int) -> float:
        """Exponential backoff with up to 10% jitter, capped."""
        delay = self.base_delay * (2**attempt)
        return min(delay + random.random() * 0.1 * delay, self.max_delay)

    def inject_images(self, messages: list[dict[str, Any]], images: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Attach images to the last user message (copy), when the model can see them."""
        if not images:
            return messages
        if not is_vision_capable(self.model):
            logger.warning(f"Model '{self.model}' does not support vision. {len(images)} image(s) will be ignored.")
            return messages

        injected = [dict(m) for m in messages]
        for message in reversed(injected):
            if message.get("role") != "user":
                continue
            content = message.get("content")
            if isinstance(content, list):
                message["content"] = [*content, *self.image_blocks(images)]
            else:
                message["content"] = [{"type": "text", "text": content or ""}, *self.image_blocks(images)]
            logger.info(f"Added {len(images)} image(s) to last user message for {self.model}")
            break
        return injected

    def _recovered_result(self, error: BaseException) -> AdapterResult:
        friendly = parse_api_error_message(error)
        response_message, content = self.text_message(
            f"⚠️ **API Error:** {friendly}\n\nPlease check your API configuration or try a different provider."
        )
        return AdapterResult(
            response_message=response_message,
            content=content,
            recovered_from_error=True,
            recovered_error=str(error) or "Unknown error",
        )

    async def stream(
        self,
        messages: list[dict[str, Any]],
        tool_schemas: list[dict[str, Any]] | None,
        on_chunk: ChunkCallback | None,
        run_context: RunContext,
    ) -> AdapterResult:
        """Stream one assistant turn, retrying and recovering as needed.

        Args:
            messages: Provider-shaped history (not mutated)
            tool_schemas: OpenAI-format function schemas offered to the model
            on_chunk: Awaited with (delta, accumulated) for each text chunk
            run_context: Current run (images, cancellation)

        Returns:
            AdapterResult; provider failures come back as recovered results

        Raises:
            asyncio.CancelledError: If the run is cancelled
        """
        current = messages
        tools = list(tool_schemas) if tool_schemas else None
        tool_names = {tool_schema_name(s) for s in tool_schemas or []}
        attempts = self.max_retries + 1

        tool_call_error: str | None = None
        tools_skipped_reason: str | None = None
        reductions = 0
        attempt = 0

        while attempt < attempts:
            run_context.cancellation_token.check()
            has_more = attempt < attempts - 1
            start = time.perf_counter()
            try:
                outcome = await self._stream_once(current, tools, on_chunk, run_context)
                if outcome.stream_error is not None and outcome.is_empty:
                    raise outcome.stream_error
            except asyncio.CancelledError:
                raise
            except Exception as error:
                llm_call_duration_seconds.labels(provider=self.provider).observe(time.perf_counter() - start)

                if tools and status_of(error) == 422 and tools_skipped_reason is None:
                    tools_skipped_reason = (
                        f"Model '{self.model}' does not support function calling. Responding without tools."
                    )
                    logger.warning(f"{self.provider} rejected tool definitions (422), retrying without tools")
                    tools = None
                    continue

                if is_token_limit_error(error) and reductions < MAX_CONTEXT_REDUCTIONS:
                    reductions += 1
                    ratio = self.context_manager.budget_ratio or DEFAULT_CONTEXT_BUDGET_RATIO
                    managed = self.context_manager.manage(
                        current, self.model, tools, budget_ratio=ratio * CONTEXT_REDUCTION_FACTOR**reductions
                    )
                    if managed.was_managed and managed.managed_tokens < managed.original_tokens:
                        logger.warning(
                            f"Token limit exceeded for {self.model}; context reduced "
                            f"{managed.original_tokens:,} -> {managed.managed_tokens:,} tokens, retrying"
                        )
                        current = managed.messages
                        continue

                if not has_more or not is_retryable_error(error):
                    logger.error(
                        f"{self.provider} streaming call failed after {attempt + 1} attempt(s): {error}",
                        exc_info=True,
                    )
                    llm_calls_total.labels(provider=self.provider, status="error").inc()
                    return self._recovered_result(error)

                if status_of(error) == 400:
                    tool_call_error = error_message(error)
                    current = [
                        *current,
                        self.guidance_message(
                            f'Your previous tool call failed with error: "{tool_call_error}". '
                            "Please retry with corrected formatting."
                        ),
                    ]

                delay = self.retry_delay(attempt)
                logger.warning(
                    f"{self.provider} streaming call failed (attempt {attempt + 1}/{attempts}), "
                    f"retrying in {delay:.1f}s: {error}"
                )
                llm_calls_total.labels(provider=self.provider, status="retry").inc()
                await asyncio.sleep(delay)
                attempt += 1
                continue

            llm_call_duration_seconds.labels(provider=self.provider).observe(time.perf_counter() - start)

            stream_error = outcome.stream_error
            if stream_error is not None:
                message = error_message(stream_error)
                logger.warning(f"{self.provider} stream interrupted after partial output: {message}")
                if has_more and "tool" in message.lower() and tool_schemas:
                    tool_call_error = message
                    current = [*current, self.guidance_message(stream_error_guidance(message, tool_schemas))]
                    llm_calls_total.labels(provider=self.provider, status="retry").inc()
                    await asyncio.sleep(self.retry_delay(attempt))
                    attempt += 1
                    continue

            valid, invalid = validate_tool_calls(outcome.tool_calls, tool_names)
            if invalid and has_more and stream_error is None:
                logger.warning(f"{len(invalid)} invalid tool call(s) (attempt {attempt + 1}), retrying with guidance")
                tool_call_error = "; ".join(issue for call in invalid for issue in call.issues)
                current = [*current, self.guidance_message(invalid_tool_call_guidance(invalid, tool_schemas or []))]
                llm_calls_total.labels(provider=self.provider, status="retry").inc()
                await asyncio.sleep(self.retry_delay(attempt))
                attempt += 1
                continue

            if invalid:
                valid, invalid = validate_tool_calls(outcome.tool_calls, tool_names, keep_malformed_arguments=True)
            if invalid:
                logger.error(f"Invalid tool calls on final attempt, continuing without them: {len(invalid)}")
            if attempt > 0:
                logger.info(f"{self.provider} streaming call succeeded on attempt {attempt + 1}/{attempts}")

            llm_calls_total.labels(provider=self.provider, status="success").inc()
            return AdapterResult(
                response_message=self.build_response_message(outcome, valid),
                content=self.build_content(outcome, valid),
                tool_calls=valid,
                invalid_tool_calls=invalid,
                tool_call_error=tool_call_error,
                tools_skipped=tools_skipped_reason is not None,
                tools_skipped_reason=tools_skipped_reason,
            )

        response_message, content = self.text_message(RECOVERY_FALLBACK_TEXT)
        return AdapterResult(response_message=response_message, content=content, recovered_from_error=True)


__all__ = [
    "BaseAdapter",
    "ChunkCallback",
    "StreamOutcome",
    "error_message",
    "is_retryable_error",
    "is_token_limit_error",
    "parse_api_error_message",
    "status_of",
    "validate_tool_calls",
]
