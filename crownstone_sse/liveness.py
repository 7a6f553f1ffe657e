"""Heartbeat deadline and transport liveness poll for the event stream.

Transports fail in two silent ways: the socket closes without an error
callback, or the connection stays open but goes quiet (proxy buffering).
The poll catches the first, the heartbeat deadline the second.
"""

from __future__ import annotations

from typing import Callable

import structlog

from crownstone_sse.timers import Scheduler, TimerHandle, cancel_timer

logger = structlog.get_logger(__name__)


class LivenessMonitor:
    """Two independent watchdogs driven by an injected scheduler."""

    def __init__(
        self,
        scheduler: Scheduler,
        *,
        heartbeat_timeout: float,
        check_interval: float,
    ) -> None:
        self._scheduler = scheduler
        self.heartbeat_timeout = heartbeat_timeout
        self.check_interval = check_interval
        self._heartbeat: TimerHandle | None = None
        self._poll: TimerHandle | None = None

    @property
    def heartbeat_pending(self) -> bool:
        return self._heartbeat is not None

    @property
    def polling(self) -> bool:
        return self._poll is not None

    def message_received(self, on_stall: Callable[[], None]) -> None:
        """Re-arm the heartbeat deadline; ``on_stall`` runs if it expires.

        Args:
            on_stall: Called once when no message arrives within the deadline.
        """
        cancel_timer(self._heartbeat)
        handle: TimerHandle | None = None

        def _expired() -> None:
            if self._heartbeat is handle:
                self._heartbeat = None
            logger.warning(
                "No message received within heartbeat deadline",
                timeout_s=self.heartbeat_timeout,
            )
            on_stall()

        handle = self._scheduler.call_later(self.heartbeat_timeout, _expired)
        self._heartbeat = handle

    def start_poll(self, is_closed: Callable[[], bool], on_closed: Callable[[], None]) -> None:
        """Start the repeating transport state check.

        Args:
            is_closed: Returns True when the transport reports itself closed.
            on_closed: Called when a closed transport is detected.
        """
        cancel_timer(self._poll)

        def _check() -> None:
            if is_closed():
                logger.warning("Event source reports closed; recovering connection")
                on_closed()

        self._poll = self._scheduler.call_every(self.check_interval, _check)

    def cancel_poll(self) -> None:
        cancel_timer(self._poll)
        self._poll = None

    def cancel_heartbeat(self) -> None:
        cancel_timer(self._heartbeat)
        self._heartbeat = None

    def cancel(self) -> None:
        """Stop both watchdogs."""
        self.cancel_heartbeat()
        self.cancel_poll()
