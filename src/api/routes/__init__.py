"""Route modules for the agnt-core API.

``chat`` serves the SSE and WebSocket chat endpoints; the others are plain
JSON routes.
"""

from __future__ import annotations

from . import chat, conversations, health, tools

__all__ = ["chat", "conversations", "health", "tools"]
