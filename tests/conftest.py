"""Shared pytest fixtures for crownstone_sse tests."""

from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Callable

import httpx
import pytest

from crownstone_sse.errors import StreamError
from crownstone_sse.session import CrownstoneSSE
from crownstone_sse.transport import CLOSED, CONNECTING, OPEN, MessageEvent

# Ensure host machine configuration does not affect test results.
for k in list(os.environ):
    if k.startswith("CROWNSTONE_SSE_"):
        os.environ.pop(k, None)


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    """Run async tests under asyncio; the client is asyncio-native."""
    return "asyncio"


class FakeTimer:
    """Timer recorded by ManualScheduler; fired explicitly by tests."""

    def __init__(self, delay: float, callback: Callable[[], None], repeating: bool) -> None:
        self.delay = delay
        self.callback = callback
        self.repeating = repeating
        self.cancelled = False
        self.fired = 0

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def pending(self) -> bool:
        if self.cancelled:
            return False
        return self.repeating or self.fired == 0


class ManualScheduler:
    """Scheduler whose timers only run when a test fires them."""

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(delay, callback, repeating=False)
        self.timers.append(timer)
        return timer

    def call_every(self, interval: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(interval, callback, repeating=True)
        self.timers.append(timer)
        return timer

    def pending(self, *, repeating: bool | None = None) -> list[FakeTimer]:
        return [
            t
            for t in self.timers
            if t.pending and (repeating is None or t.repeating is repeating)
        ]

    def fire(self, timer: FakeTimer) -> None:
        """Run a timer the way the event loop would, skipping cancelled ones."""
        if not timer.pending:
            return
        timer.fired += 1
        timer.callback()

    def fire_delay(self, delay: float) -> None:
        """Fire every pending timer with the given delay, oldest first."""
        for timer in [t for t in self.pending() if t.delay == delay]:
            self.fire(timer)


class FakeEventSource:
    """In-memory EventSource driven by tests."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.ready_state = CONNECTING
        self.closed = False
        self.listeners: dict[str, list[Callable[[Any], None]]] = {}

    def add_event_listener(self, event_type: str, listener: Callable[[Any], None]) -> None:
        self.listeners.setdefault(event_type, []).append(listener)

    def remove_event_listener(self, event_type: str, listener: Callable[[Any], None]) -> None:
        listeners = self.listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def close(self) -> None:
        self.closed = True
        self.ready_state = CLOSED

    def listener_count(self) -> int:
        return sum(len(v) for v in self.listeners.values())

    def _fire(self, event_type: str, event: Any) -> None:
        for listener in list(self.listeners.get(event_type, [])):
            listener(event)

    def open(self) -> None:
        self.ready_state = OPEN
        self._fire("open", None)

    def message(self, data: str) -> None:
        self._fire("message", MessageEvent(data=data))

    def send(self, payload: Any) -> None:
        self.message(json.dumps(payload))

    def fail(self, message: str = "connection reset") -> None:
        self.ready_state = CLOSED
        self._fire("error", StreamError(message))


class FakeEventSourceFactory:
    """Records every EventSource the session creates."""

    def __init__(self) -> None:
        self.created: list[FakeEventSource] = []

    def __call__(self, url: str) -> FakeEventSource:
        source = FakeEventSource(url)
        self.created.append(source)
        return source

    @property
    def latest(self) -> FakeEventSource:
        return self.created[-1]

    def live(self) -> list[FakeEventSource]:
        return [s for s in self.created if not s.closed]


class LoginEndpoint:
    """httpx MockTransport handler answering login requests."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: list[tuple[int, dict[str, Any]]] = []
        self.default: tuple[int, dict[str, Any]] = (200, {"json": {"id": "token-1"}})

    def queue(self, status_code: int = 200, **kwargs: Any) -> None:
        self.responses.append((status_code, kwargs))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status_code, kwargs = self.responses.pop(0) if self.responses else self.default
        return httpx.Response(status_code, **kwargs)

    def body(self, index: int = -1) -> Any:
        content = self.requests[index].content
        return json.loads(content) if content else None


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def sources() -> FakeEventSourceFactory:
    return FakeEventSourceFactory()


@pytest.fixture
def login_endpoint() -> LoginEndpoint:
    return LoginEndpoint()


@pytest.fixture
async def http_client(login_endpoint: LoginEndpoint):
    async with httpx.AsyncClient(transport=httpx.MockTransport(login_endpoint)) as client:
        yield client


@pytest.fixture
def make_session(scheduler, sources, http_client):
    """Factory for sessions wired to fake transport, timers and login endpoint."""

    def _make(**kwargs: Any) -> CrownstoneSSE:
        kwargs.setdefault("sse_url", "https://events.test/sse")
        kwargs.setdefault("login_url", "https://cloud.test/api/users/login")
        kwargs.setdefault("hub_login_base_url", "https://cloud.test/api/Hubs/")
        return CrownstoneSSE(
            event_source_factory=sources,
            scheduler=scheduler,
            http_client=http_client,
            **kwargs,
        )

    return _make


@pytest.fixture
def start_stream(sources: FakeEventSourceFactory):
    """Run ``start`` through its first open and return the live source."""

    async def _start(sse: CrownstoneSSE, callback: Callable[[Any], Any]) -> FakeEventSource:
        task = asyncio.create_task(sse.start(callback))
        await asyncio.sleep(0)
        source = sources.latest
        source.open()
        await task
        return source

    return _start
