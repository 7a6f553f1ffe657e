"""Long-lived SSE session: connection lifecycle, liveness and recovery.

Every restart, whether requested by the caller or triggered internally by a
transport error, a heartbeat stall, a closed transport or a token refresh,
goes through ``_restart``. It runs to completion without awaiting, so two
triggers cannot interleave and at most one connection exists at a time.

Each connection gets a new generation number. Listener closures, timers and
recovery steps capture the generation they belong to and do nothing once it
has been superseded.
"""

from __future__ import annotations

import asyncio
import json
import urllib.parse
from typing import Any, Callable, Protocol

import httpx
import structlog

from crownstone_sse.credentials import CredentialManager, sha1_hex
from crownstone_sse.dispatch import EventCallback, EventDispatcher
from crownstone_sse.errors import AuthRequiredError, TokenRefreshFailedError
from crownstone_sse.liveness import LivenessMonitor
from crownstone_sse.models import (
    CredentialRecord,
    SystemEvent,
    SystemSubType,
    is_auth_expired_event,
)
from crownstone_sse.settings import (
    DEFAULT_CHECK_INTERVAL_SECONDS,
    DEFAULT_HEARTBEAT_TIMEOUT_SECONDS,
    DEFAULT_HUB_LOGIN_BASE_URL,
    DEFAULT_LOGIN_URL,
    DEFAULT_PROJECT_NAME,
    DEFAULT_RECONNECT_DELAY_SECONDS,
    DEFAULT_SSE_URL,
    DEFAULT_TOKEN_REFRESH_DELAY_SECONDS,
    settings,
)
from crownstone_sse.timers import LoopScheduler, Scheduler, TimerHandle, cancel_timer
from crownstone_sse.transport import CLOSED, OPEN, EventSource
from crownstone_sse.version import __version__

logger = structlog.get_logger(__name__)

LIBRARY_NAME = "crownstone-lib-python-sse"


class EventSourceLike(Protocol):
    """What the session needs from a streaming transport."""

    ready_state: int

    def add_event_listener(self, event_type: str, listener: Callable[[Any], None]) -> None: ...

    def remove_event_listener(self, event_type: str, listener: Callable[[Any], None]) -> None: ...

    def close(self) -> None: ...


EventSourceFactory = Callable[[str], EventSourceLike]


def client_identifier(project_name: str | None) -> str:
    """Build the ``projectName`` value sent with the stream request."""
    return f"{LIBRARY_NAME}-{__version__}-{project_name or DEFAULT_PROJECT_NAME}"


class CrownstoneSSE:
    """Persistent, self-recovering SSE client.

    Args:
        sse_url: Event stream endpoint.
        login_url: User login endpoint.
        hub_login_base_url: Hub login base URL.
        project_name: Caller project name, embedded in the client identifier.
        autoreconnect: Re-login and reconnect when the server reports an
            expired or invalid token.
        require_authentication: Send ``accessToken`` and ``projectName`` with
            the stream request, and refuse to start without a token.
        heartbeat_timeout: Seconds of silence before the stream is restarted.
        check_interval: Period of the transport liveness poll.
        reconnect_delay: Delay before reconnecting after a transport error.
        token_refresh_delay: Delay between a successful re-login and the
            reconnect.
        event_source_factory: Builds a transport for a URL. Defaults to the
            aiohttp-backed ``EventSource``.
        http_client: httpx client for login requests.
        scheduler: Timer primitives. Defaults to the running event loop.
        hasher: Password hash function.
    """

    def __init__(
        self,
        *,
        sse_url: str = DEFAULT_SSE_URL,
        login_url: str = DEFAULT_LOGIN_URL,
        hub_login_base_url: str = DEFAULT_HUB_LOGIN_BASE_URL,
        project_name: str | None = None,
        autoreconnect: bool = True,
        require_authentication: bool = True,
        heartbeat_timeout: float = DEFAULT_HEARTBEAT_TIMEOUT_SECONDS,
        check_interval: float = DEFAULT_CHECK_INTERVAL_SECONDS,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY_SECONDS,
        token_refresh_delay: float = DEFAULT_TOKEN_REFRESH_DELAY_SECONDS,
        event_source_factory: EventSourceFactory | None = None,
        http_client: httpx.AsyncClient | None = None,
        scheduler: Scheduler | None = None,
        hasher: Callable[[str], str] = sha1_hex,
    ) -> None:
        self.sse_url = sse_url
        self.project_name = client_identifier(project_name)
        self.autoreconnect = autoreconnect
        self.require_authentication = require_authentication
        self.reconnect_delay = reconnect_delay
        self.token_refresh_delay = token_refresh_delay

        self._credentials = CredentialManager(
            login_url=login_url,
            hub_login_base_url=hub_login_base_url,
            http_client=http_client,
            hasher=hasher,
        )
        self._scheduler = scheduler or LoopScheduler()
        self._liveness = LivenessMonitor(
            self._scheduler,
            heartbeat_timeout=heartbeat_timeout,
            check_interval=check_interval,
        )
        self._event_source_factory = event_source_factory or EventSource
        self._dispatcher = EventDispatcher()

        self._event_source: EventSourceLike | None = None
        self._listeners: dict[str, Callable[[Any], None]] = {}
        self._event_callback: EventCallback | None = None
        self._reconnect_timer: TimerHandle | None = None
        self._recovery_task: asyncio.Task | None = None
        self._started: asyncio.Future | None = None
        self._generation = 0
        self._stopped = False

    @classmethod
    def from_settings(cls, **overrides: Any) -> CrownstoneSSE:
        """Build a session from ``CROWNSTONE_SSE_*`` environment settings."""
        options: dict[str, Any] = {
            "sse_url": settings.sse_url(),
            "login_url": settings.login_url(),
            "hub_login_base_url": settings.hub_login_base_url(),
            "project_name": settings.project_name(),
            "autoreconnect": settings.autoreconnect(),
            "require_authentication": settings.require_authentication(),
            "heartbeat_timeout": settings.heartbeat_timeout_seconds(),
            "check_interval": settings.check_interval_seconds(),
            "reconnect_delay": settings.reconnect_delay_seconds(),
            "token_refresh_delay": settings.token_refresh_delay_seconds(),
        }
        options.update(overrides)
        return cls(**options)

    async def __aenter__(self) -> CrownstoneSSE:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # -------------------------------------------------------------------------
    # Credentials
    # -------------------------------------------------------------------------

    @property
    def access_token(self) -> str | None:
        return self._credentials.access_token

    @property
    def credentials(self) -> CredentialRecord | None:
        return self._credentials.credentials

    @property
    def login_url(self) -> str:
        return self._credentials.login_url

    @property
    def hub_login_base_url(self) -> str:
        return self._credentials.hub_login_base_url

    async def login(self, email: str, password: str) -> None:
        await self._credentials.login(email, password)

    async def login_hashed(self, email: str, password_hash: str) -> None:
        await self._credentials.login_hashed(email, password_hash)

    async def hub_login(self, hub_id: str, hub_token: str) -> None:
        await self._credentials.hub_login(hub_id, hub_token)

    async def retry_login(self) -> None:
        await self._credentials.retry_login()

    def set_access_token(self, token: str | None) -> None:
        """Use a pre-issued token. Without a login, token expiry is terminal."""
        self._credentials.set_access_token(token)

    # -------------------------------------------------------------------------
    # Connection control
    # -------------------------------------------------------------------------

    @property
    def event_source(self) -> EventSourceLike | None:
        return self._event_source

    @property
    def connected(self) -> bool:
        return self._event_source is not None and self._event_source.ready_state == OPEN

    def stream_url(self) -> str:
        """URL for the next connection, with credentials when required."""
        if not self.require_authentication:
            return self.sse_url
        query = urllib.parse.urlencode(
            {"accessToken": self.access_token or "", "projectName": self.project_name}
        )
        separator = "&" if "?" in self.sse_url else "?"
        return f"{self.sse_url}{separator}{query}"

    async def start(self, event_callback: EventCallback) -> None:
        """Open the stream and deliver every event to ``event_callback``.

        Returns once the first connection after this call is open. Later
        reconnects happen in the background with the same callback.

        Raises:
            AuthRequiredError: Authentication is required and no token is set.
        """
        if self.require_authentication and self.access_token is None:
            raise AuthRequiredError()

        self._event_callback = event_callback
        self._dispatcher.set_callback(event_callback)
        self._dispatcher.ensure_running()
        self._stopped = False

        if self._started is None or self._started.done():
            self._started = asyncio.get_running_loop().create_future()
        started = self._started

        self._cancel_recovery()
        self._restart()
        await started

    def stop(self) -> None:
        """Stop streaming and all recovery. Queued events are still delivered."""
        self.autoreconnect = False
        self._stopped = True
        self._cancel_recovery()
        self.close_event_source()
        if self._started is not None and not self._started.done():
            self._started.set_result(None)
        logger.info("SSE session stopped")

    def close_event_source(self) -> None:
        """Cancel timers, detach listeners and close the connection. Idempotent."""
        self._clear_pending_actions()
        event_source = self._event_source
        if event_source is None:
            return
        for event_type, listener in self._listeners.items():
            event_source.remove_event_listener(event_type, listener)
        self._listeners = {}
        event_source.close()
        self._event_source = None

    async def flush(self) -> None:
        """Wait until every event received so far reached the callback."""
        await self._dispatcher.flush()

    async def aclose(self) -> None:
        """Stop, deliver queued events and release HTTP resources."""
        self.stop()
        await self._dispatcher.close()
        await self._credentials.aclose()

    def _clear_pending_actions(self) -> None:
        self._liveness.cancel()
        cancel_timer(self._reconnect_timer)
        self._reconnect_timer = None

    def _restart(self) -> None:
        """Replace the current connection with a fresh one."""
        self._clear_pending_actions()
        if self._event_source is not None:
            logger.info("Event source closed before starting again.")
            self.close_event_source()

        self._generation += 1
        generation = self._generation
        url = self.stream_url()
        event_source = self._event_source_factory(url)
        self._event_source = event_source
        self._listeners = {
            "open": lambda _event: self._on_open(generation),
            "message": lambda event: self._on_message(generation, event),
            "error": lambda error: self._on_error(generation, error),
        }
        for event_type, listener in self._listeners.items():
            event_source.add_event_listener(event_type, listener)
        logger.debug("Opening event source", sse_url=self.sse_url, generation=generation)

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and not self._stopped

    def _restart_if_current(self, generation: int) -> None:
        if self._is_current(generation):
            self._restart()

    # -------------------------------------------------------------------------
    # Listeners
    # -------------------------------------------------------------------------

    def _on_open(self, generation: int) -> None:
        if not self._is_current(generation):
            return
        logger.info("Event source connection established.")
        self._arm_heartbeat(generation)
        self._liveness.start_poll(
            is_closed=lambda: self._transport_closed(generation),
            on_closed=lambda: self._restart_if_current(generation),
        )
        if self._started is not None and not self._started.done():
            self._started.set_result(None)

    def _on_message(self, generation: int, event: Any) -> None:
        if not self._is_current(generation):
            return
        self._arm_heartbeat(generation)
        data = getattr(event, "data", None)
        if not data:
            return
        try:
            message = json.loads(data)
        except ValueError:
            logger.warning("Dropping unparseable event", payload=data[:200])
            return
        logger.debug("Event received", event_type=_event_type(message))
        self._dispatcher.emit(message)
        if is_auth_expired_event(message):
            self.retry_with_new_access_token()

    def _on_error(self, generation: int, error: Any) -> None:
        if not self._is_current(generation):
            return
        self._liveness.cancel_poll()
        cancel_timer(self._reconnect_timer)
        self._reconnect_timer = None
        logger.warning("Eventsource error", error=str(error))
        logger.info("Reconnecting after error.", delay_s=self.reconnect_delay)
        self.close_event_source()
        self._reconnect_timer = self._scheduler.call_later(
            self.reconnect_delay, lambda: self._reconnect_after_delay(generation)
        )

    def _arm_heartbeat(self, generation: int) -> None:
        self._liveness.message_received(lambda: self._restart_if_current(generation))

    def _transport_closed(self, generation: int) -> bool:
        event_source = self._event_source
        return (
            generation == self._generation
            and event_source is not None
            and event_source.ready_state == CLOSED
        )

    def _reconnect_after_delay(self, generation: int) -> None:
        if self._is_current(generation):
            self._reconnect_timer = None
            self._restart()

    # -------------------------------------------------------------------------
    # Token refresh
    # -------------------------------------------------------------------------

    def retry_with_new_access_token(self) -> None:
        """Drop the connection, log in again with the cached credentials and reconnect.

        Delivers a terminal ``COULD_NOT_REFRESH_TOKEN`` event instead when
        auto-reconnect is off, no credentials are cached or the login fails.
        """
        self.close_event_source()
        if self._recovery_task is not None and not self._recovery_task.done():
            logger.debug("Token refresh already in progress")
            return
        if not self.autoreconnect or self.credentials is None:
            self._give_up(
                "Token expired, autoreconnect is disabled or does not have login "
                "credentials. Connection closed."
            )
            return
        self._recovery_task = asyncio.create_task(self._refresh_token(self._generation))

    async def _refresh_token(self, generation: int) -> None:
        logger.debug("Attempting to login again since our token expired...")
        try:
            await self._credentials.retry_login()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Token refresh login failed", error=str(exc))
            if generation == self._generation and self.autoreconnect:
                self._give_up(
                    "Token expired, autoreconnect tried to get a new one. This was "
                    "not successful. Connection closed."
                )
            return
        if not self._is_current(generation) or not self.autoreconnect:
            logger.debug("Session changed during token refresh; not reconnecting")
            return
        logger.debug("Retry with new token...", delay_s=self.token_refresh_delay)
        cancel_timer(self._reconnect_timer)
        self._reconnect_timer = self._scheduler.call_later(
            self.token_refresh_delay, lambda: self._reconnect_after_delay(generation)
        )

    def _cancel_recovery(self) -> None:
        task = self._recovery_task
        self._recovery_task = None
        if task is not None and not task.done():
            task.cancel()

    def _give_up(self, message: str) -> None:
        error = TokenRefreshFailedError(message)
        event = SystemEvent(
            sub_type=SystemSubType.COULD_NOT_REFRESH_TOKEN,
            code=401,
            message=error.message,
        ).to_event()
        logger.error("Could not refresh access token", reason=error.message)
        self._dispatcher.emit(event)


def _event_type(message: Any) -> str | None:
    if isinstance(message, dict):
        return message.get("type")
    return None
