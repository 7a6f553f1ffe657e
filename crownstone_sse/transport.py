"""aiohttp-backed EventSource: open/message/error listeners over text/event-stream."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Callable

import aiohttp
import structlog

from crownstone_sse.errors import StreamError

logger = structlog.get_logger(__name__)

CONNECTING = 0
OPEN = 1
CLOSED = 2

Listener = Callable[[Any], None]


@dataclass
class MessageEvent:
    """A dispatched server-sent event."""

    data: str
    type: str = "message"
    last_event_id: str = ""


class SseDecoder:
    """Incremental text/event-stream line decoder.

    Feed lines without their terminator; a blank line dispatches the event
    built so far. Comment lines (``:``) are skipped and ``retry`` is ignored.
    """

    def __init__(self) -> None:
        self._data: list[str] = []
        self._event_type = ""
        self.last_event_id = ""

    def feed_line(self, line: str) -> MessageEvent | None:
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None
        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]
        if field == "data":
            self._data.append(value)
        elif field == "event":
            self._event_type = value
        elif field == "id":
            if "\x00" not in value:
                self.last_event_id = value
        return None

    def _dispatch(self) -> MessageEvent | None:
        if not self._data:
            self._event_type = ""
            return None
        event = MessageEvent(
            data="\n".join(self._data),
            type=self._event_type or "message",
            last_event_id=self.last_event_id,
        )
        self._data = []
        self._event_type = ""
        return event


async def iter_events(lines: AsyncIterator[bytes]) -> AsyncIterator[MessageEvent]:
    """Decode an async iterator of raw stream lines into events."""
    decoder = SseDecoder()
    async for raw in lines:
        line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        event = decoder.feed_line(line)
        if event is not None:
            yield event


class EventSource:
    """Single streaming connection with browser-style listeners.

    Unlike a browser EventSource this never reconnects by itself: a failed
    request, a non-200 answer or the end of the stream moves it to ``CLOSED``
    and fires ``error`` once. Reconnect policy belongs to the caller.

    Must be constructed inside a running event loop; the request starts on
    the next loop iteration, so listeners added right after construction see
    every event.

    Args:
        url: Stream URL, including any query string.
        session: Shared aiohttp session. One is created (and closed) per
            connection when omitted.
        headers: Extra request headers.
    """

    def __init__(
        self,
        url: str,
        *,
        session: aiohttp.ClientSession | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.url = url
        self.ready_state = CONNECTING
        self._session = session
        self._headers = {"Accept": "text/event-stream", "Cache-Control": "no-cache"}
        if headers:
            self._headers.update(headers)
        self._listeners: dict[str, list[Listener]] = {}
        self._task = asyncio.create_task(self._run())

    def add_event_listener(self, event_type: str, listener: Listener) -> None:
        listeners = self._listeners.setdefault(event_type, [])
        if listener not in listeners:
            listeners.append(listener)

    def remove_event_listener(self, event_type: str, listener: Listener) -> None:
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def close(self) -> None:
        """Close the connection. No listener fires afterwards."""
        if self.ready_state == CLOSED and self._task.done():
            return
        self.ready_state = CLOSED
        if not self._task.done():
            self._task.cancel()

    def _fire(self, event_type: str, event: Any) -> None:
        for listener in list(self._listeners.get(event_type, [])):
            try:
                listener(event)
            except Exception:
                logger.exception("Event source listener failed", event_type=event_type)

    def _fail(self, error: StreamError) -> None:
        if self.ready_state == CLOSED:
            return
        self.ready_state = CLOSED
        self._fire("error", error)

    async def _run(self) -> None:
        """Background task: perform the request and pump events to listeners."""
        owns_session = self._session is None
        session = self._session or aiohttp.ClientSession()
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=30)
        try:
            async with session.get(self.url, headers=self._headers, timeout=timeout) as resp:
                if resp.status != 200:
                    text = await resp.text()
                    logger.error("Event stream request failed", status=resp.status, body=text[:200])
                    self._fail(
                        StreamError(f"Event stream returned {resp.status}", status=resp.status)
                    )
                    return
                if self.ready_state == CLOSED:
                    return
                self.ready_state = OPEN
                self._fire("open", None)
                async for event in iter_events(resp.content):
                    if self.ready_state == CLOSED:
                        return
                    self._fire(event.type, event)
            logger.info("Event stream closed by server")
            self._fail(StreamError("Event stream ended"))
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            logger.warning("Event stream connection failed", error=str(exc))
            self._fail(StreamError(f"Event stream connection failed: {exc}"))
        finally:
            if owns_session:
                await session.close()
