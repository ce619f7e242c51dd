"""
Utils Module - Shared Utilities
===============================

Cross-cutting helpers used by the API, the orchestration loop and the tools.

Modules:
    logger: Structured logging (console + rotating JSON files)
    metrics: Prometheus counters, gauges and histograms
    client_factory: AsyncOpenAI / AsyncAnthropic client creation
    db_utils: asyncpg pool lifecycle and health checks
    token_utils: tiktoken-based token counting with caching
    json_utils: Compact JSON, control-character stripping, JSON recovery
    file_utils: Workspace-confined async file I/O
    document_processor: markitdown conversion of uploads and web pages
    validation: Identifier validation for conversation ids

Design Principles:
    - Stateless helpers; state lives in ``RunContext`` or app state
    - One module per concern
    - Failures reported as values where callers must keep going

Example:
    Logging a tool call::

        from utils.logger import logger

        logger.log_function_call("web_search", {"query": "..."}, result)

See Also:
    :mod:`core.constants`: Settings consumed by these helpers
"""
