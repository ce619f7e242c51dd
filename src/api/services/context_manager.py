"""
Context window management for the orchestration loop.

Measures the token footprint of the message history plus tool schemas and,
when it exceeds the model's budget, reduces it without breaking tool-call
pairing: an assistant message that issues tool calls and all of its results
are kept or dropped together.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from core.constants import (
    DEFAULT_CONTEXT_BUDGET_RATIO,
    DEFAULT_TOKEN_LIMIT,
    MODEL_TOKEN_LIMITS,
    TRUNCATED_TOOL_RESULT_CHARS,
    TRUNCATION_MARKER,
)
from utils.logger import logger
from utils.metrics import context_managed_total
from utils.token_utils import count_message_tokens, count_schema_tokens


@dataclass
class ContextManagementResult:
    """Outcome of one ``manage`` call."""

    messages: list[dict[str, Any]]
    was_managed: bool
    original_tokens: int
    managed_tokens: int
    token_limit: int
    budget: int

    @property
    def utilization_percent(self) -> float:
        return round(self.managed_tokens / self.token_limit * 100, 1) if self.token_limit else 0.0


@dataclass
class _Unit:
    """Messages that must be kept or dropped together."""

    messages: list[dict[str, Any]] = field(default_factory=list)
    call_ids: set[str] = field(default_factory=set)
    has_latest_user: bool = False


def get_token_limit(model: str) -> int:
    """Context window for a model: exact match, then longest substring match, then a default."""
    if model in MODEL_TOKEN_LIMITS:
        return MODEL_TOKEN_LIMITS[model]

    lowered = model.lower()
    candidates = [(known, limit) for known, limit in MODEL_TOKEN_LIMITS.items() if known in lowered]
    if candidates:
        return max(candidates, key=lambda item: len(item[0]))[1]

    logger.warning(f"Unknown model '{model}', using conservative token limit {DEFAULT_TOKEN_LIMIT}")
    return DEFAULT_TOKEN_LIMIT


# =============================================================================
# Tool-call shape helpers (OpenAI and Anthropic histories)
# =============================================================================


def tool_call_ids(message: dict[str, Any]) -> set[str]:
    """Ids of the tool calls an assistant message issues (empty for other messages)."""
    if message.get("role") != "assistant":
        return set()
    ids = {tc.get("id") for tc in message.get("tool_calls") or [] if tc.get("id")}
    content = message.get("content")
    if isinstance(content, list):
        ids.update(b.get("id") for b in content if isinstance(b, dict) and b.get("type") == "tool_use" and b.get("id"))
    return ids


def tool_result_ids(message: dict[str, Any]) -> set[str] | None:
    """Ids answered by a tool-result message, or None when the message is not one."""
    if message.get("role") == "tool":
        return {message.get("tool_call_id", "")}
    content = message.get("content")
    if message.get("role") == "user" and isinstance(content, list) and content:
        if all(isinstance(b, dict) and b.get("type") == "tool_result" for b in content):
            return {b.get("tool_use_id", "") for b in content}
    return None


def _is_plain_user(message: dict[str, Any]) -> bool:
    return message.get("role") == "user" and tool_result_ids(message) is None


def group_units(messages: list[dict[str, Any]]) -> tuple[list[dict[str, Any]], list[_Unit], int]:
    """Split history into system messages and droppable units.

    Tool results that do not answer the immediately preceding tool-calling
    assistant message are orphans and are dropped.

    Returns:
        Tuple of (system messages, units, orphan count)
    """
    latest_user_index = max((i for i, m in enumerate(messages) if _is_plain_user(m)), default=-1)

    system: list[dict[str, Any]] = []
    units: list[_Unit] = []
    open_unit: _Unit | None = None
    orphans = 0

    for index, message in enumerate(messages):
        if message.get("role") == "system":
            system.append(message)
            continue

        answered = tool_result_ids(message)
        if answered is not None:
            if open_unit is not None and answered <= open_unit.call_ids:
                open_unit.messages.append(message)
            else:
                orphans += 1
            continue

        unit = _Unit(messages=[message], call_ids=tool_call_ids(message), has_latest_user=index == latest_user_index)
        units.append(unit)
        open_unit = unit if unit.call_ids else None

    return system, units, orphans


def _truncate_text(text: str) -> str:
    return text[:TRUNCATED_TOOL_RESULT_CHARS] + TRUNCATION_MARKER


def _truncate_oldest_tool_result(messages: list[dict[str, Any]]) -> bool:
    """Truncate the oldest untruncated tool result in place. Returns False when none is left."""
    for i, message in enumerate(messages):
        content = message.get("content")
        if message.get("role") == "tool" and isinstance(content, str):
            if len(content) > TRUNCATED_TOOL_RESULT_CHARS + len(TRUNCATION_MARKER):
                messages[i] = {**message, "content": _truncate_text(content)}
                return True
        elif tool_result_ids(message) is not None:
            for j, block in enumerate(content):
                block_content = block.get("content")
                if isinstance(block_content, str) and len(block_content) > TRUNCATED_TOOL_RESULT_CHARS + len(
                    TRUNCATION_MARKER
                ):
                    new_blocks = list(content)
                    new_blocks[j] = {**block, "content": _truncate_text(block_content)}
                    messages[i] = {**message, "content": new_blocks}
                    return True
    return False


# =============================================================================
# Context manager
# =============================================================================


class ContextManager:
    """Keeps a run's history inside the model's token budget."""

    def __init__(self, budget_ratio: float = DEFAULT_CONTEXT_BUDGET_RATIO):
        self.budget_ratio = budget_ratio

    def count(self, messages: list[dict[str, Any]], model: str, tool_schemas: list[dict[str, Any]] | None) -> int:
        return count_message_tokens(messages, model) + count_schema_tokens(tool_schemas or [], model)

    def manage(
        self,
        messages: list[dict[str, Any]],
        model: str,
        tool_schemas: list[dict[str, Any]] | None = None,
        budget_ratio: float | None = None,
    ) -> ContextManagementResult:
        """Return the history unchanged when it fits, otherwise a reduced copy.

        Reduction keeps system messages, the newest unit and the latest user
        message; it drops the oldest units first (and any assistant or tool
        units left leading the history) and then truncates the oldest tool
        results.
        """
        token_limit = get_token_limit(model)
        budget = int(token_limit * (budget_ratio or self.budget_ratio))
        original_tokens = self.count(messages, model, tool_schemas)

        if original_tokens <= budget:
            return ContextManagementResult(messages, False, original_tokens, original_tokens, token_limit, budget)

        system, units, orphans = group_units(messages)
        if orphans:
            logger.warning(f"Dropped {orphans} orphaned tool result(s) while managing context")

        def flatten() -> list[dict[str, Any]]:
            return [*system, *(m for unit in units for m in unit.messages)]

        reduced = flatten()
        tokens = self.count(reduced, model, tool_schemas)

        dropped = 0
        while tokens > budget:
            candidates = [i for i, unit in enumerate(units[:-1]) if not unit.has_latest_user]
            if not candidates:
                break
            units.pop(candidates[0])
            dropped += 1
            reduced = flatten()
            tokens = self.count(reduced, model, tool_schemas)

        # Providers require the first non-system message to be a user turn
        if dropped:
            while len(units) > 1 and not units[0].has_latest_user and not _is_plain_user(units[0].messages[0]):
                units.pop(0)
                dropped += 1
            reduced = flatten()
            tokens = self.count(reduced, model, tool_schemas)

        truncated = 0
        while tokens > budget and _truncate_oldest_tool_result(reduced):
            truncated += 1
            tokens = self.count(reduced, model, tool_schemas)

        if tokens > budget:
            logger.warning(f"Context still over budget after management: {tokens:,}/{budget:,} tokens for {model}")

        logger.info(
            f"Context managed for {model}: {original_tokens:,} -> {tokens:,} tokens "
            f"(dropped {dropped} unit(s), truncated {truncated} tool result(s))"
        )
        context_managed_total.labels(model=model).inc()
        return ContextManagementResult(reduced, True, original_tokens, tokens, token_limit, budget)


__all__ = ["ContextManagementResult", "ContextManager", "get_token_limit", "group_units"]
