"""
Tools Module - Callable Tools for the Orchestration Loop
=========================================================

Every tool is a ``ToolDefinition``: a JSON-schema ``parameters`` object plus
an async handler ``(args, run_context) -> result``.

Modules:
    registry: ToolDefinition, ToolCatalog and the default catalog
    executor: Resolve, validate, authorize, invoke and recover (never raises)
    web_tools: web_search (Google Custom Search) and web_scrape
    code_interpreter: execute_python_code in an isolated subprocess
    file_operations: list_files, read_file, write_file in the conversation workspace
    state_tools: get/update tools for agent, workflow, goal and tool conversations
    plugins: Hot-reloadable plugin tools from ``plugin_dir``
    validation: Argument validation against the tool's JSON schema
    response_recovery: Recovery of malformed tool output
    errors: Tool error taxonomy rendered as result envelopes

Example:
    Running a tool::

        from tools.executor import ToolExecutor
        from tools.registry import build_default_catalog

        executor = ToolExecutor(build_default_catalog(), timeout_seconds=120)
        result_json = await executor.execute("web_search", {"query": "asyncio"}, run_context)

See Also:
    :mod:`api.services.chat_service`: Fans tool calls out through the executor
"""
