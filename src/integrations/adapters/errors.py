"""
Adapter and loop error taxonomy.

Provider failures are normally recovered inside the adapters and surfaced as
data on ``AdapterResult``; these exceptions cover the cases that cannot be.
"""

from __future__ import annotations


class AdapterError(Exception):
    """Base class for provider adapter failures."""


class UnsupportedProviderError(AdapterError):
    """No adapter exists for the requested provider name."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(f"Unsupported provider for LLM adapter: {provider}")


class ProviderNotConfiguredError(AdapterError):
    """The provider is known but no API key is configured for it."""

    def __init__(self, provider: str):
        self.provider = provider
        super().__init__(
            f"No API key configured for provider '{provider}'. Set {provider.upper()}_API_KEY in your environment."
        )


class LoopSafetyError(Exception):
    """The orchestration loop hit its round cap."""

    def __init__(self, max_rounds: int):
        self.max_rounds = max_rounds
        super().__init__(f"Maximum tool call rounds ({max_rounds}) reached. Stopping to prevent infinite loop.")


__all__ = ["AdapterError", "LoopSafetyError", "ProviderNotConfiguredError", "UnsupportedProviderError"]
