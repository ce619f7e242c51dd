"""
Chat orchestration loop.

``ChatService.run_chat`` drives one request from the first model call through
any number of tool rounds to the final answer and reports every step as a
``StreamEvent``. Transports (SSE and WebSocket) only supply the event sink and
the cancellation token; the loop itself never touches the connection.
"""

from __future__ import annotations

import asyncio
import time
import uuid

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, TypeVar

import anthropic
import asyncpg
import httpx
import openai

from api.middleware.request_context import update_request_context
from api.services.content_offload import ContentOffloader
from api.services.context_manager import ContextManager
from api.services.conversation_log_service import ConversationLogService
from api.services.execution_service import ExecutionService, ExecutionStatus
from api.services.file_context import apply_file_context, process_uploaded_files
from api.websocket.task_manager import CancellationToken
from core.chat_types import AGENT_MANAGEMENT_ID, detect_chat_type, execution_agent_name, get_chat_config
from core.constants import Settings
from core.prompts import build_system_prompt
from core.run_context import RunContext
from integrations.adapters.base import BaseAdapter, parse_api_error_message, status_of
from integrations.adapters.errors import LoopSafetyError
from integrations.adapters.factory import create_adapter
from models.api_models import ChatRequest
from models.event_models import EventSink, EventType, StreamEvent
from models.message_models import AdapterResult, ToolCall
from tools.errors import ToolArgumentError
from tools.executor import ToolExecutor
from tools.registry import ToolCatalog
from utils.db_utils import TRANSIENT_DB_ERRORS
from utils.json_utils import json_compact, parse_json_object
from utils.logger import logger
from utils.metrics import runs_active, runs_total, tool_rounds

T = TypeVar("T")

#: ``(provider, model, settings, http_client=...)`` to an adapter
AdapterFactory = Callable[..., BaseAdapter]

#: Persistence failures are logged and never fail a run
PERSISTENCE_ERRORS: tuple[type[BaseException], ...] = (asyncpg.PostgresError, *TRANSIENT_DB_ERRORS, OSError)

INVALID_TOOL_CALLS_MESSAGE = (
    "Some tool calls were malformed and have been filtered out. The system will continue with valid tool calls only."
)

TOOL_CALL_ERROR_MESSAGE = "The LLM generated an invalid tool call, but I will continue processing."

TOOL_CALL_ERROR_REPLY = (
    "I encountered a tool call error, but I'm continuing to process your request. "
    "Please let me know if you'd like me to try a different approach."
)

GENERIC_ERROR_REPLY = (
    "I encountered some technical difficulties but I'm still here to help. "
    "Please feel free to continue our conversation or try rephrasing your request."
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _last_user_text(messages: list[dict[str, Any]]) -> str:
    for message in reversed(messages):
        if message.get("role") != "user":
            continue
        content = message.get("content")
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return " ".join(part.get("text", "") for part in content if isinstance(part, dict) and part.get("text"))
    return ""


def _insert_system_prompt(messages: list[dict[str, Any]], prompt: str) -> list[dict[str, Any]]:
    """Prepend the prompt to an existing leading system message, or insert one."""
    if messages and messages[0].get("role") == "system":
        existing = messages[0].get("content")
        existing_text = existing if isinstance(existing, str) else json_compact(existing)
        return [{**messages[0], "content": f"{prompt}\n\n{existing_text}"}, *messages[1:]]
    return [{"role": "system", "content": prompt}, *messages]


@dataclass
class RunOutcome:
    """Summary of a finished run, returned to the transport."""

    conversation_id: str
    status: ExecutionStatus
    final_content: str
    rounds: int
    tool_calls_count: int
    execution_id: str | None = None


@dataclass
class _RunState:
    messages: list[dict[str, Any]]
    tool_log: list[dict[str, Any]] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    final_content: str = ""
    execution_id: str | None = None
    tool_calls_count: int = 0
    rounds: int = 0
    provider_failed: bool = False


@dataclass
class _ToolCallRecord:
    call: ToolCall
    args: dict[str, Any]
    content: str = ""
    result: Any = None
    error: str | None = None
    runnable: bool = True
    execution_id: str | None = None

    def details(self) -> dict[str, Any]:
        return {
            "name": self.call.name,
            "arguments": self.args,
            "response": self.content,
            "result": self.result,
            "error": self.error,
        }


class ChatService:
    """Runs the model/tool loop for one chat request at a time per call.

    Instances are shared by all requests; everything a run mutates lives in
    its ``RunContext`` and ``_RunState``.
    """

    def __init__(
        self,
        catalog: ToolCatalog,
        executor: ToolExecutor,
        settings: Settings,
        log_service: ConversationLogService | None = None,
        execution_service: ExecutionService | None = None,
        adapter_factory: AdapterFactory = create_adapter,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.catalog = catalog
        self.executor = executor
        self.settings = settings
        self.log_service = log_service
        self.execution_service = execution_service
        self.adapter_factory = adapter_factory
        self.http_client = http_client
        self.context_manager = ContextManager(settings.context_budget_ratio)

    def build_run_context(
        self,
        request: ChatRequest,
        conversation_id: str,
        user_id: str | None = None,
        auth_token: str | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> RunContext:
        chat_type = detect_chat_type(
            request.chat_type, request.agent_id, request.workflow_id, request.goal_id, request.tool_id
        )
        return RunContext(
            conversation_id=conversation_id,
            provider=request.provider,
            model=request.model,
            chat_type=chat_type,
            user_id=user_id,
            auth_token=auth_token,
            agent_id=request.agent_id,
            workflow_id=request.workflow_id,
            goal_id=request.goal_id,
            tool_id=request.tool_id,
            agent_context=request.agent_context,
            workflow_context=request.workflow_context,
            goal_context=request.goal_context,
            tool_context=request.tool_context,
            agent_state=request.agent_state,
            workflow_state=request.workflow_state,
            goal_state=request.goal_state,
            tool_state=request.tool_state,
            cancellation_token=cancellation_token or CancellationToken(),
            tool_concurrency=self.settings.tool_concurrency,
        )

    async def run_chat(
        self,
        request: ChatRequest,
        emit: EventSink,
        user_id: str | None = None,
        auth_token: str | None = None,
        cancellation_token: CancellationToken | None = None,
    ) -> RunOutcome:
        """Run one chat request to completion, emitting events through ``emit``.

        Provider and tool failures never escape: they are reported as events
        and the run still ends with ``agent_execution_completed`` and ``done``.

        Args:
            request: Validated chat request
            emit: Async event sink of the transport
            user_id: Authenticated user (from ``X-User-Id``)
            auth_token: Delegated bearer credential for tools
            cancellation_token: Token the transport fires to stop the run

        Returns:
            RunOutcome with the final status and content

        Raises:
            asyncio.CancelledError: Only when the surrounding task itself was cancelled
        """
        conversation_id = request.conversation_id or str(uuid.uuid4())
        run_context = self.build_run_context(request, conversation_id, user_id, auth_token, cancellation_token)
        state = _RunState(messages=request.build_messages())
        initial_prompt = request.message or _last_user_text(state.messages)

        status: ExecutionStatus = "completed"
        started = time.perf_counter()
        runs_active.inc()
        update_request_context(conversation_id=conversation_id, user_id=user_id)
        logger.info(
            f"Starting {run_context.chat_type.value} run for conversation {conversation_id} "
            f"({run_context.provider}/{run_context.model})"
        )

        try:
            await self._run(request, run_context, state, emit, initial_prompt)
        except asyncio.CancelledError:
            status = "failed"
            reason = run_context.cancellation_token.cancel_reason or "cancelled"
            state.errors.append({"message": "cancelled", "details": reason})
            logger.info(f"Run for conversation {conversation_id} cancelled: {reason}")
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                await self._finish(run_context, state, emit, status, initial_prompt, started)
                raise
        except Exception as e:
            status = "failed"
            logger.error(f"Error in chat run ({run_context.chat_type.value}), recovering: {e}", exc_info=True)
            await self._recover(e, state, emit)

        if state.provider_failed:
            status = "failed"

        await self._finish(run_context, state, emit, status, initial_prompt, started)
        return RunOutcome(
            conversation_id=conversation_id,
            status=status,
            final_content=state.final_content,
            rounds=state.rounds,
            tool_calls_count=state.tool_calls_count,
            execution_id=state.execution_id,
        )

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run(
        self,
        request: ChatRequest,
        run_context: RunContext,
        state: _RunState,
        emit: EventSink,
        initial_prompt: str,
    ) -> None:
        await emit(StreamEvent(event=EventType.CONVERSATION_STARTED, data={"conversationId": run_context.conversation_id}))
        await self._start_execution(run_context, state, emit, initial_prompt)

        adapter = self.adapter_factory(
            run_context.provider, run_context.model, self.settings, http_client=self.http_client
        )
        try:
            await self._converse(adapter, request, run_context, state, emit)
        finally:
            await adapter.aclose()

    async def _converse(
        self,
        adapter: BaseAdapter,
        request: ChatRequest,
        run_context: RunContext,
        state: _RunState,
        emit: EventSink,
    ) -> None:
        tool_schemas = self.catalog.schemas_for(run_context)
        tool_names = [schema["function"]["name"] for schema in tool_schemas]

        config = get_chat_config(run_context.chat_type)
        prompt = build_system_prompt(
            run_context.chat_type,
            datetime.now().strftime("%A, %B %d, %Y %I:%M %p"),
            run_context.model,
            tool_names=tool_names,
            entity_context=run_context.context_for(config.subject) if config.subject else None,
            agent_management=run_context.agent_id == AGENT_MANAGEMENT_ID,
        )

        if request.files:
            processed = await process_uploaded_files(request.files)
            run_context.images = processed.images
            await emit(
                StreamEvent(
                    event=EventType.FILES_PROCESSED,
                    data={
                        "fileCount": len(request.files),
                        "hasImages": bool(processed.images),
                        "fileNames": processed.file_names,
                    },
                )
            )
            state.messages = apply_file_context(state.messages, processed.file_context)

        state.messages = _insert_system_prompt(state.messages, prompt)
        run_context.assistant_message_id = f"msg-asst-{_now_ms()}"

        offloader = ContentOffloader(run_context, emit, self.settings.offload_threshold_chars)
        state.messages = await offloader.sanitize_history(state.messages)
        state.messages = adapter.inject_images(state.messages, run_context.images)

        messages = await self._manage_context(state, run_context, tool_schemas, emit)
        await emit(
            StreamEvent(
                event=EventType.ASSISTANT_MESSAGE,
                data={
                    "id": run_context.assistant_message_id,
                    "assistantMessageId": run_context.assistant_message_id,
                    "role": "assistant",
                    "content": "",
                    "toolCalls": [],
                    "timestamp": _now_ms(),
                },
            )
        )
        result = await self._call_model(adapter, messages, tool_schemas, run_context, state, emit)

        max_rounds = self.settings.max_tool_rounds
        while result.tool_calls and state.rounds < max_rounds:
            run_context.cancellation_token.check()
            state.rounds += 1
            run_context.current_round = state.rounds
            logger.info(f"Tool round {state.rounds}: executing {len(result.tool_calls)} tool call(s)")

            await self._execute_round(result.tool_calls, adapter, offloader, run_context, state, emit)

            run_context.cancellation_token.check()
            messages = await self._manage_context(state, run_context, tool_schemas, emit, round_number=state.rounds)
            result = await self._call_model(adapter, messages, tool_schemas, run_context, state, emit)

        if result.tool_calls:
            cap = LoopSafetyError(max_rounds)
            logger.warning(f"Maximum tool rounds ({max_rounds}) reached, forcing completion")
            state.errors.append({"message": str(cap)})
            await emit(StreamEvent(event=EventType.ERROR, data={"error": str(cap)}))

        state.final_content = result.text
        final: dict[str, Any] = {"assistantMessageId": run_context.assistant_message_id, "content": state.final_content}
        if result.recovered_from_error:
            final["recovered_from_error"] = True
        await emit(StreamEvent(event=EventType.FINAL_CONTENT, data=final))

    async def _call_model(
        self,
        adapter: BaseAdapter,
        messages: list[dict[str, Any]],
        tool_schemas: list[dict[str, Any]],
        run_context: RunContext,
        state: _RunState,
        emit: EventSink,
    ) -> AdapterResult:
        assistant_message_id = run_context.assistant_message_id

        async def on_chunk(delta: str, accumulated: str) -> None:
            await emit(
                StreamEvent(
                    event=EventType.CONTENT_DELTA,
                    data={"assistantMessageId": assistant_message_id, "delta": delta, "accumulated": accumulated},
                )
            )

        result = await adapter.stream(messages, tool_schemas or None, on_chunk, run_context)

        if result.tools_skipped:
            await emit(
                StreamEvent(
                    event=EventType.TOOLS_SKIPPED,
                    data={
                        "assistantMessageId": assistant_message_id,
                        "reason": result.tools_skipped_reason,
                        "message": f"⚠️ {result.tools_skipped_reason}",
                    },
                )
            )

        if result.invalid_tool_calls:
            logger.warning(f"Invalid tool calls filtered out: {[c.to_event() for c in result.invalid_tool_calls]}")
            state.tool_log.append(
                {
                    "type": "invalid_tool_calls",
                    "count": len(result.invalid_tool_calls),
                    "details": [c.to_event() for c in result.invalid_tool_calls],
                }
            )
            await emit(
                StreamEvent(
                    event=EventType.INVALID_TOOL_CALLS,
                    data={
                        "assistantMessageId": assistant_message_id,
                        "invalidToolCalls": [c.to_event() for c in result.invalid_tool_calls],
                        "message": INVALID_TOOL_CALLS_MESSAGE,
                    },
                )
            )

        if result.tool_call_error:
            await emit(
                StreamEvent(
                    event=EventType.TOOL_ERROR,
                    data={
                        "error": f"Tool call error: {result.tool_call_error}",
                        "details": result.tool_call_error,
                        "continuing": True,
                        "retrying": True,
                    },
                )
            )

        if result.recovered_from_error:
            friendly = parse_api_error_message(result.recovered_error or "")
            state.provider_failed = True
            state.errors.append({"message": friendly, "details": result.recovered_error, "recovered": True})
            await emit(
                StreamEvent(
                    event=EventType.ERROR,
                    data={
                        "error": friendly,
                        "details": result.recovered_error,
                        "continuing": True,
                        "recovery": True,
                    },
                )
            )

        state.messages.append(result.response_message)
        return result

    async def _execute_round(
        self,
        tool_calls: list[ToolCall],
        adapter: BaseAdapter,
        offloader: ContentOffloader,
        run_context: RunContext,
        state: _RunState,
        emit: EventSink,
    ) -> None:
        """Run one round of tool calls and append their results in call order."""
        assistant_message_id = run_context.assistant_message_id
        records: list[_ToolCallRecord] = []
        for call in tool_calls:
            try:
                records.append(_ToolCallRecord(call, call.parsed_arguments()))
            except ValueError as e:
                error = ToolArgumentError(call.name, str(e))
                result = error.to_result()
                records.append(
                    _ToolCallRecord(
                        call, {}, content=json_compact(result), result=result, error=error.message, runnable=False
                    )
                )

        runnable = [record for record in records if record.runnable]
        if self.execution_service is not None and state.execution_id and runnable:
            ids = await self._persist(
                "record tool executions",
                self.execution_service.create_tool_executions(
                    state.execution_id, [(r.call.id, r.call.name, r.args) for r in runnable]
                ),
            )
            for record in runnable:
                record.execution_id = (ids or {}).get(record.call.id)

        for record in records:
            if record.runnable:
                await emit(
                    StreamEvent(
                        event=EventType.TOOL_START,
                        data={
                            "assistantMessageId": assistant_message_id,
                            "toolCall": {"id": record.call.id, "name": record.call.name, "args": record.args},
                        },
                    )
                )
            else:
                await self._emit_tool_end(record, assistant_message_id, emit)

        await asyncio.gather(*(self._run_tool(record, offloader, run_context, emit) for record in runnable))

        completed = [(r.execution_id, r.result, r.error) for r in runnable if r.execution_id]
        if self.execution_service is not None and completed:
            await self._persist("complete tool executions", self.execution_service.complete_tool_executions(completed))

        state.messages.extend(
            adapter.format_tool_results([{"tool_call_id": r.call.id, "content": r.content} for r in records])
        )
        state.tool_calls_count += len(records)
        state.tool_log.extend(
            {"name": r.call.name, "args": r.args, "result": r.result, "error": r.error} for r in records
        )
        await emit(
            StreamEvent(
                event=EventType.TOOL_EXECUTIONS,
                data={
                    "assistantMessageId": assistant_message_id,
                    "tool_executions": [r.details() for r in records],
                    "round": state.rounds,
                },
            )
        )

    async def _run_tool(
        self,
        record: _ToolCallRecord,
        offloader: ContentOffloader,
        run_context: RunContext,
        emit: EventSink,
    ) -> None:
        raw = await self.executor.execute(record.call.name, record.args, run_context)
        record.content = await offloader.process_tool_result(record.call.id, raw)

        parsed = parse_json_object(record.content)
        record.result = parsed if parsed is not None else record.content
        if parsed is not None and parsed.get("success") is False:
            record.error = str(parsed.get("error") or "Tool reported failure")

        for frontend_event in (parsed or {}).get("frontendEvents") or []:
            if not isinstance(frontend_event, dict):
                continue
            await emit(
                StreamEvent(
                    event=EventType.FRONTEND_EVENT,
                    data={
                        "assistantMessageId": run_context.assistant_message_id,
                        "eventType": frontend_event.get("type"),
                        "eventData": frontend_event.get("data"),
                    },
                )
            )

        await self._emit_tool_end(record, run_context.assistant_message_id, emit)

    async def _emit_tool_end(self, record: _ToolCallRecord, assistant_message_id: str | None, emit: EventSink) -> None:
        await emit(
            StreamEvent(
                event=EventType.TOOL_END,
                data={
                    "assistantMessageId": assistant_message_id,
                    "toolCall": {"id": record.call.id, "result": record.result, "error": record.error},
                },
            )
        )

    async def _manage_context(
        self,
        state: _RunState,
        run_context: RunContext,
        tool_schemas: list[dict[str, Any]],
        emit: EventSink,
        round_number: int | None = None,
    ) -> list[dict[str, Any]]:
        """Fit the history into the model budget; the full history stays in ``state``."""
        managed = self.context_manager.manage(state.messages, run_context.model, tool_schemas)

        if round_number is None:
            await emit(
                StreamEvent(
                    event=EventType.CONTEXT_STATUS,
                    data={
                        "currentTokens": managed.managed_tokens,
                        "tokenLimit": managed.token_limit,
                        "utilizationPercent": managed.utilization_percent,
                        "model": run_context.model,
                        "messagesCount": len(managed.messages),
                    },
                )
            )

        if managed.was_managed:
            data: dict[str, Any] = {
                "originalTokens": managed.original_tokens,
                "managedTokens": managed.managed_tokens,
                "tokenLimit": managed.token_limit,
                "reduction": managed.original_tokens - managed.managed_tokens,
                "strategy": "automatic_truncation",
            }
            if round_number is not None:
                data["round"] = round_number
            await emit(StreamEvent(event=EventType.CONTEXT_MANAGED, data=data))

        return managed.messages

    # ------------------------------------------------------------------
    # Execution records, recovery and finalization
    # ------------------------------------------------------------------

    async def _start_execution(
        self, run_context: RunContext, state: _RunState, emit: EventSink, initial_prompt: str
    ) -> None:
        agent_name = execution_agent_name(run_context.chat_type, run_context.agent_context)
        if self.execution_service is not None:
            state.execution_id = await self._persist(
                "create execution record",
                self.execution_service.create_execution(
                    user_id=run_context.user_id,
                    agent_id=run_context.agent_id,
                    agent_name=agent_name,
                    conversation_id=run_context.conversation_id,
                    initial_prompt=initial_prompt,
                    provider=run_context.provider,
                    model=run_context.model,
                ),
            )
            if state.execution_id:
                await self._persist(
                    "mark execution running", self.execution_service.update_status(state.execution_id, "running")
                )
                logger.info(f"Created execution {state.execution_id} for {run_context.chat_type.value} chat")

        run_context.execution_id = state.execution_id
        update_request_context(execution_id=state.execution_id)
        await emit(
            StreamEvent(
                event=EventType.AGENT_EXECUTION_STARTED,
                data={
                    "executionId": state.execution_id,
                    "agentName": agent_name,
                    "chatType": run_context.chat_type.value,
                },
            )
        )

    async def _recover(self, error: Exception, state: _RunState, emit: EventSink) -> None:
        """Report an unexpected failure and still give the user an answer."""
        state.errors.append({"message": str(error), "details": repr(error)})

        message = str(error) or "I encountered an error but will continue processing your request."
        if isinstance(error, (openai.BadRequestError, anthropic.BadRequestError)) or status_of(error) == 400:
            message = TOOL_CALL_ERROR_MESSAGE
            state.final_content = TOOL_CALL_ERROR_REPLY

        await emit(
            StreamEvent(
                event=EventType.ERROR,
                data={"error": message, "details": repr(error), "continuing": True, "recovery": True},
            )
        )

        state.final_content = state.final_content or GENERIC_ERROR_REPLY
        await emit(
            StreamEvent(
                event=EventType.FINAL_CONTENT,
                data={
                    "assistantMessageId": f"msg-asst-{_now_ms()}",
                    "content": state.final_content,
                    "recovered_from_error": True,
                },
            )
        )

    async def _finish(
        self,
        run_context: RunContext,
        state: _RunState,
        emit: EventSink,
        status: ExecutionStatus,
        initial_prompt: str,
        started: float,
    ) -> None:
        if self.log_service is not None:
            await self._persist(
                "write conversation log",
                self.log_service.upsert_conversation_log(
                    conversation_id=run_context.conversation_id,
                    user_id=run_context.user_id,
                    initial_prompt=initial_prompt,
                    full_history=state.messages,
                    final_response=state.final_content,
                    tool_calls=state.tool_log,
                    errors=state.errors,
                ),
            )

        if self.execution_service is not None and state.execution_id:
            error = state.errors[-1]["message"] if status == "failed" and state.errors else None
            await self._persist(
                "finalize execution",
                self.execution_service.finalize_execution(
                    state.execution_id, status, state.final_content, state.tool_calls_count, error
                ),
            )

        await emit(
            StreamEvent(
                event=EventType.AGENT_EXECUTION_COMPLETED,
                data={"executionId": state.execution_id, "status": status, "toolCallsCount": state.tool_calls_count},
            )
        )
        await emit(StreamEvent(event=EventType.DONE, data={"message": "Stream ended"}))

        duration_ms = (time.perf_counter() - started) * 1000
        runs_active.dec()
        runs_total.labels(status=status).inc()
        tool_rounds.observe(state.rounds)
        logger.log_conversation_turn(
            conversation_id=run_context.conversation_id,
            user_input=initial_prompt,
            response=state.final_content,
            tool_names=[entry["name"] for entry in state.tool_log if "name" in entry],
            rounds=state.rounds,
            duration_ms=duration_ms,
        )

    async def _persist(self, description: str, operation: Awaitable[T]) -> T | None:
        try:
            return await operation
        except PERSISTENCE_ERRORS as e:
            logger.error(f"Failed to {description}: {e}", exc_info=True)
            return None


__all__ = ["ChatService", "RunOutcome"]
