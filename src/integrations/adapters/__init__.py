"""
Provider adapters.

Each adapter turns one vendor's streaming chat API into
``stream(messages, tool_schemas, on_chunk, run_context) -> AdapterResult``.
"""

from __future__ import annotations

from integrations.adapters.anthropic_adapter import AnthropicAdapter
from integrations.adapters.base import BaseAdapter, parse_api_error_message
from integrations.adapters.errors import (
    AdapterError,
    LoopSafetyError,
    ProviderNotConfiguredError,
    UnsupportedProviderError,
)
from integrations.adapters.factory import create_adapter
from integrations.adapters.openai_adapter import OpenAIAdapter

__all__ = [
    "AdapterError",
    "AnthropicAdapter",
    "BaseAdapter",
    "LoopSafetyError",
    "OpenAIAdapter",
    "ProviderNotConfiguredError",
    "UnsupportedProviderError",
    "create_adapter",
    "parse_api_error_message",
]
