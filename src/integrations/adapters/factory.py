"""
Adapter factory: provider name to a configured streaming adapter.
"""

from __future__ import annotations

import httpx

from api.services.context_manager import ContextManager
from core.constants import OPENAI_COMPATIBLE_PROVIDERS, Settings
from integrations.adapters.anthropic_adapter import AnthropicAdapter
from integrations.adapters.base import BaseAdapter
from integrations.adapters.errors import ProviderNotConfiguredError, UnsupportedProviderError
from integrations.adapters.openai_adapter import OpenAIAdapter
from utils.client_factory import create_anthropic_client, create_http_client, create_openai_client
from utils.logger import logger


def create_adapter(
    provider: str, model: str, settings: Settings, http_client: httpx.AsyncClient | None = None
) -> BaseAdapter:
    """Create the adapter for a provider/model pair.

    Args:
        provider: Provider key (``anthropic`` or an OpenAI-compatible vendor)
        model: Model identifier
        settings: Application settings (keys, base URLs, retry policy)
        http_client: Shared connection pool owned by the application; when
            omitted the adapter gets its own and closes it in ``aclose``

    Returns:
        Adapter wrapping a vendor SDK client

    Raises:
        UnsupportedProviderError: Unknown provider
        ProviderNotConfiguredError: Provider has no API key configured
    """
    provider = (provider or "").lower()
    if provider != "anthropic" and provider not in OPENAI_COMPATIBLE_PROVIDERS:
        raise UnsupportedProviderError(provider)

    api_key = settings.api_key_for(provider)
    if not api_key:
        raise ProviderNotConfiguredError(provider)

    owns_client = http_client is None
    if http_client is None:
        http_client = create_http_client(
            enable_logging=settings.http_request_logging,
            read_timeout=settings.http_read_timeout,
        )
    options = {
        "max_retries": settings.llm_max_retries,
        "base_delay": settings.llm_base_delay_seconds,
        "max_delay": settings.llm_max_delay_seconds,
        "context_manager": ContextManager(settings.context_budget_ratio),
        "owns_client": owns_client,
    }

    logger.debug(f"Creating {provider} adapter for {model}")
    if provider == "anthropic":
        client = create_anthropic_client(api_key, http_client=http_client)
        return AnthropicAdapter(client, model, provider, **options)

    client = create_openai_client(api_key, base_url=settings.base_url_for(provider), http_client=http_client)
    return OpenAIAdapter(client, model, provider, **options)


__all__ = ["create_adapter"]
