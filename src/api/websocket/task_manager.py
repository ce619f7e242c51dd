"""
Cancellation token for cooperative cancellation of orchestration runs.

A run owns one token. The transport cancels it (client disconnect on SSE,
``interrupt`` message on WebSocket) and the loop checks it at every
suspension point: round boundaries, each streamed chunk, and each tool call.
"""

from __future__ import annotations

import asyncio
import contextlib

from collections.abc import AsyncIterator, Callable

from utils.logger import logger


class CancellationToken:
    """Cooperative cancellation token.

    Usage:
        token = CancellationToken()

        # In the transport:
        await token.cancel("client disconnected")

        # In the run:
        async for chunk in stream:
            token.check()  # Raises CancelledError if cancelled
            ...
    """

    __slots__ = ("_callbacks", "_cancel_reason", "_cancelled", "_lock")

    def __init__(self) -> None:
        self._cancelled = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._cancel_reason: str | None = None
        self._lock = asyncio.Lock()

    @property
    def is_cancelled(self) -> bool:
        """Check if cancellation has been requested."""
        return self._cancelled.is_set()

    @property
    def cancel_reason(self) -> str | None:
        """Get the reason for cancellation, if any."""
        return self._cancel_reason

    async def cancel(self, reason: str | None = None) -> None:
        """Request cancellation and notify all callbacks.

        Args:
            reason: Optional reason for cancellation (for logging/debugging)
        """
        async with self._lock:
            if self._cancelled.is_set():
                return

            self._cancel_reason = reason
            self._cancelled.set()
            logger.info(f"Cancellation requested: {reason or 'no reason given'}")

            for callback in self._callbacks:
                self._invoke_callback(callback)

    def _invoke_callback(self, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception as e:
            logger.warning(f"Cancellation callback error: {e}")

    async def wait_for_cancellation(self, timeout: float | None = None) -> bool:
        """Wait for cancellation to be requested.

        Returns:
            True if cancelled, False if timeout expired
        """
        try:
            await asyncio.wait_for(self._cancelled.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback to be called when cancelled (runs immediately if already cancelled)."""
        if self._cancelled.is_set():
            self._invoke_callback(callback)
            return callback

        self._callbacks.append(callback)
        return callback

    def remove_callback(self, callback: Callable[[], None]) -> None:
        """Remove a previously registered callback."""
        with contextlib.suppress(ValueError):
            self._callbacks.remove(callback)

    @contextlib.asynccontextmanager
    async def cancellation_scope(self) -> AsyncIterator[None]:
        """Cancel the current task if the token fires while inside the scope.

        Used around awaits that do not check the token themselves (tool
        implementations, subprocesses).

        Raises:
            asyncio.CancelledError: If token is cancelled before or during the scope
        """
        self.check()

        current_task = asyncio.current_task()

        def cancel_current() -> None:
            if current_task and not current_task.done():
                current_task.cancel(self._cancel_reason)

        self.on_cancel(cancel_current)
        try:
            yield
        finally:
            self.remove_callback(cancel_current)

        self.check()

    def check(self) -> None:
        """Raise if cancelled.

        Raises:
            asyncio.CancelledError: If token is cancelled
        """
        if self.is_cancelled:
            raise asyncio.CancelledError(self._cancel_reason or "Cancellation requested")


__all__ = ["CancellationToken"]
