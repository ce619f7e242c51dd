"""
Models Module - Data Models and Type Definitions
=================================================

Pydantic v2 models for request validation, stream events, provider results
and API error responses.

Modules:
    api_models: Request/response bodies for the REST, SSE and WebSocket endpoints
    event_models: Named stream events emitted by an orchestration run
    message_models: Provider-normalized assistant results and tool calls
    error_models: Error codes and the standardized error envelope

Key Components:

Message Models (message_models.py):
    What an adapter hands back after one streaming call:
    - AdapterResult: response message, tool calls, invalid tool calls, recovery flags
    - ToolCall / InvalidToolCall: validated and filtered model tool calls
    - TextContent / BlockContent: tagged assistant content with ``extract_text()``

Event Models (event_models.py):
    - EventType: every event name a run can emit
    - StreamEvent: one event, framed as SSE or as a WebSocket JSON message

Example:
    Framing an event for SSE::

        from models.event_models import EventType, StreamEvent

        event = StreamEvent(event=EventType.CONTENT_DELTA, data={"delta": "Hi"})
        yield event.to_sse()

See Also:
    :mod:`api.services.chat_service`: Produces the stream events
    :mod:`integrations.adapters`: Produces ``AdapterResult``
"""
