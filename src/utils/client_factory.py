"""
LLM client factory utilities.
Centralizes AsyncOpenAI / AsyncAnthropic client creation with consistent configuration.
"""

from __future__ import annotations

from typing import Any

import httpx

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from utils.logger import logger

# Reasoning models can pause 30+ seconds before producing output,
# so streaming reads need generous timeouts
DEFAULT_CONNECT_TIMEOUT = 30.0
DEFAULT_READ_TIMEOUT = 600.0
DEFAULT_WRITE_TIMEOUT = 30.0
DEFAULT_POOL_TIMEOUT = 30.0


async def _log_request(request: httpx.Request) -> None:
    logger.debug(f"HTTP Request: {request.method} {request.url}")


async def _log_response(response: httpx.Response) -> None:
    logger.debug(f"HTTP Response: {response.status_code} {response.request.method} {response.request.url}")


def create_http_client(
    enable_logging: bool = False,
    read_timeout: float | None = None,
) -> httpx.AsyncClient:
    """Create HTTP client with proper timeouts for streaming.

    Args:
        enable_logging: Enable HTTP request/response logging
        read_timeout: Read timeout in seconds (default: 600s)

    Returns:
        Configured httpx.AsyncClient
    """
    effective_read_timeout = read_timeout if read_timeout is not None else DEFAULT_READ_TIMEOUT
    timeout = httpx.Timeout(
        connect=DEFAULT_CONNECT_TIMEOUT,
        read=effective_read_timeout,
        write=DEFAULT_WRITE_TIMEOUT,
        pool=DEFAULT_POOL_TIMEOUT,
    )

    if enable_logging:
        return httpx.AsyncClient(
            timeout=timeout,
            event_hooks={"request": [_log_request], "response": [_log_response]},
        )

    return httpx.AsyncClient(timeout=timeout)


def create_openai_client(
    api_key: str,
    base_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncOpenAI:
    """Create AsyncOpenAI client with consistent configuration.

    Retries are handled by the adapter layer, so SDK retries are disabled.

    Args:
        api_key: Provider API key
        base_url: Optional base URL for OpenAI-compatible vendors
        http_client: Optional httpx client for request logging

    Returns:
        Configured AsyncOpenAI client
    """
    kwargs: dict[str, Any] = {"api_key": api_key, "http_client": http_client, "max_retries": 0}
    if base_url:
        kwargs["base_url"] = base_url
    return AsyncOpenAI(**kwargs)


def create_anthropic_client(
    api_key: str,
    http_client: httpx.AsyncClient | None = None,
) -> AsyncAnthropic:
    """Create AsyncAnthropic client with consistent configuration.

    Args:
        api_key: Anthropic API key
        http_client: Optional httpx client for request logging

    Returns:
        Configured AsyncAnthropic client
    """
    kwargs: dict[str, Any] = {"api_key": api_key, "max_retries": 0}
    if http_client is not None:
        kwargs["http_client"] = http_client
    return AsyncAnthropic(**kwargs)
