"""
Integrations Module - External Provider Integrations
====================================================

Connects the orchestration loop to model vendors.

Modules:
    adapters: Streaming adapters for OpenAI-compatible vendors and Anthropic

Key Components:

Adapters (adapters/):
    One uniform call per assistant turn:
    - ``stream(messages, tool_schemas, on_chunk, run_context)`` -> ``AdapterResult``
    - Retries with exponential backoff and jitter
    - Token-limit recovery through the context manager
    - Corrective guidance for malformed tool calls
    - Provider failures returned as apology results instead of raised

Example:
    Streaming one turn::

        from integrations.adapters import create_adapter

        adapter = create_adapter("anthropic", "claude-sonnet-4-5", get_settings())
        result = await adapter.stream(messages, tool_schemas, on_chunk, run_context)
        if result.tool_calls:
            ...

See Also:
    :mod:`api.services.chat_service`: The orchestration loop
    :mod:`models.message_models`: ``AdapterResult`` and ``ToolCall``
"""
