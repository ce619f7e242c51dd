"""
Tool executor: the single entry point the orchestration loop uses to run a tool.

``execute`` always returns JSON text. Every failure (unknown tool, invalid
arguments, missing OAuth connection, exceptions, timeouts, malformed output)
is converted into a ``{"success": false, ...}`` result the model can read.
Only cooperative cancellation propagates.
"""

from __future__ import annotations

import asyncio
import time

from typing import Any

from api.services.auth_service import AuthTokenProvider
from api.services.content_offload import resolve_data_references
from core.run_context import RunContext
from tools.errors import ToolAuthError, ToolError, ToolExecutionError, ToolNotFoundError
from tools.registry import ToolCatalog, ToolDefinition
from tools.response_recovery import serialize_tool_output
from tools.validation import validate_tool_arguments
from utils.json_utils import json_compact
from utils.logger import logger
from utils.metrics import tool_call_duration_seconds, tool_calls_total


class ToolExecutor:
    """Resolves, validates, authorizes and runs tools for one or more runs."""

    def __init__(
        self,
        catalog: ToolCatalog,
        timeout_seconds: float,
        token_provider: AuthTokenProvider | None = None,
    ):
        self.catalog = catalog
        self.timeout_seconds = timeout_seconds
        self.token_provider = token_provider

    async def execute(self, name: str, args: dict[str, Any], run_context: RunContext) -> str:
        """Run a tool and return its result as JSON text.

        Raises:
            asyncio.CancelledError: If the run is cancelled while the tool is running
        """
        start = time.perf_counter()
        status = "error"
        try:
            async with run_context.tool_semaphore:
                run_context.cancellation_token.check()
                result = await self._execute(name, args, run_context)
            status = "success"
            return result
        except ToolError as e:
            logger.warning(f"Tool {name} failed: {e.message}")
            return json_compact(e.to_result())
        except asyncio.CancelledError:
            status = "cancelled"
            raise
        except Exception as e:
            logger.error(f"Unexpected error in tool executor for '{name}': {e}", exc_info=True)
            return json_compact(
                {
                    "success": False,
                    "error": f"Unexpected error executing tool '{name}': {e}",
                    "tool": name,
                    "details": repr(e),
                }
            )
        finally:
            tool_calls_total.labels(tool_name=name, status=status).inc()
            tool_call_duration_seconds.labels(tool_name=name).observe(time.perf_counter() - start)

    async def _execute(self, name: str, args: dict[str, Any], run_context: RunContext) -> str:
        resolved = resolve_data_references(args, run_context.preserved_content)

        tool = self.catalog.resolve(name, run_context)
        if tool is None:
            raise ToolNotFoundError(name)

        validate_tool_arguments(tool.name, resolved, tool.parameters)

        params = dict(resolved)
        if tool.auth_required:
            params["accessToken"] = await self._access_token(tool, run_context)

        logger.info(f"Executing {tool.source} tool: {tool.name}")
        output = await self._invoke(tool, params, run_context)
        result = serialize_tool_output(tool.name, output)
        logger.log_function_call(tool.name, resolved, result)
        return result

    async def _access_token(self, tool: ToolDefinition, run_context: RunContext) -> str:
        if not run_context.user_id:
            raise ToolAuthError.user_unknown(tool.name)

        provider = tool.auth_provider or tool.name
        token = None
        if self.token_provider is not None:
            token = await self.token_provider.get_valid_access_token(run_context.user_id, provider)
        if not token:
            raise ToolAuthError.token_missing(tool.name, provider)
        return token

    async def _invoke(self, tool: ToolDefinition, params: dict[str, Any], run_context: RunContext) -> Any:
        try:
            async with run_context.cancellation_token.cancellation_scope():
                return await asyncio.wait_for(tool.handler(params, run_context), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            raise ToolExecutionError(tool.name, TimeoutError(f"timed out after {self.timeout_seconds:g}s")) from e
        except (asyncio.CancelledError, ToolError):
            raise
        except Exception as e:
            logger.error(f"Tool execution error for {tool.name}: {e}", exc_info=True)
            raise ToolExecutionError(tool.name, e) from e


__all__ = ["ToolExecutor"]
