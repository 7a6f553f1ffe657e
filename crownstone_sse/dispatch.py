"""Ordered delivery of stream events to the caller's callback."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Union

import structlog

logger = structlog.get_logger(__name__)

EventCallback = Callable[[Any], Union[None, Awaitable[None]]]

_STOP = object()


class EventDispatcher:
    """Queue between the stream handlers and the caller's callback.

    The stream handlers enqueue synchronously and never wait on the caller, so
    a slow callback cannot delay heartbeat bookkeeping. A single consumer task
    delivers events in arrival order; the callback may be a plain function or
    a coroutine function.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._task: asyncio.Task | None = None
        self._callback: EventCallback | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def set_callback(self, callback: EventCallback) -> None:
        self._callback = callback

    def ensure_running(self) -> None:
        """Start the consumer task if it is not already running."""
        if self.running:
            return
        self._task = asyncio.create_task(self._consume())

    def emit(self, event: Any) -> None:
        """Queue an event for delivery. Never blocks."""
        self._queue.put_nowait(event)

    async def flush(self) -> None:
        """Wait until every queued event has been delivered."""
        if not self.running:
            return
        await self._queue.join()

    async def close(self) -> None:
        """Deliver what is queued, then stop the consumer task."""
        if not self.running:
            return
        self._queue.put_nowait(_STOP)
        task = self._task
        self._task = None
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _consume(self) -> None:
        """Background task that hands queued events to the callback."""
        while True:
            event = await self._queue.get()
            try:
                if event is _STOP:
                    return
                callback = self._callback
                if callback is None:
                    logger.warning("Dropping event: no callback registered")
                    continue
                try:
                    result = callback(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception(
                        "Event callback failed",
                        event_type=event.get("type") if isinstance(event, dict) else None,
                    )
            finally:
                self._queue.task_done()
