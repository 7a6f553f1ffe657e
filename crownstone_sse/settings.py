"""Centralized environment configuration for the Crownstone SSE client.

All environment variables are read through this module using the
CROWNSTONE_SSE_ prefix for consistency.

Usage:
    from crownstone_sse.settings import settings

    if settings.autoreconnect():
        ...
    timeout = settings.heartbeat_timeout_seconds()
"""

from __future__ import annotations

import os

ENV_PREFIX = "CROWNSTONE_SSE_"

DEFAULT_SSE_URL = "https://events.ownstone.org/sse"
DEFAULT_LOGIN_URL = "https://cloud.ownstone.org/api/users/login"
DEFAULT_HUB_LOGIN_BASE_URL = "https://cloud.ownstone.org/api/Hubs/"
DEFAULT_PROJECT_NAME = "no_project_name"

DEFAULT_HEARTBEAT_TIMEOUT_SECONDS = 40.0
DEFAULT_CHECK_INTERVAL_SECONDS = 1.0
DEFAULT_RECONNECT_DELAY_SECONDS = 2.0
DEFAULT_TOKEN_REFRESH_DELAY_SECONDS = 2.0


def _get(name: str, default: str = "") -> str:
    """Get an environment variable value."""
    return os.environ.get(name, "").strip() or default


def _get_bool(name: str, default: bool = False) -> bool:
    """Get a boolean environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    return value.lower() in ("1", "true", "yes")


def _get_float(name: str, default: float = 0.0) -> float:
    """Get a non-negative float environment variable."""
    value = os.environ.get(name, "").strip()
    if not value:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    if parsed < 0:
        return default
    return parsed


class Settings:
    """Centralized settings for the Crownstone SSE client.

    Environment variables use the CROWNSTONE_SSE_ prefix.
    """

    # -------------------------------------------------------------------------
    # Endpoints
    # -------------------------------------------------------------------------

    @staticmethod
    def sse_url() -> str:
        """Event stream endpoint.

        Env: CROWNSTONE_SSE_SSE_URL (default: https://events.ownstone.org/sse)
        """
        return _get("CROWNSTONE_SSE_SSE_URL", default=DEFAULT_SSE_URL)

    @staticmethod
    def login_url() -> str:
        """User login endpoint.

        Env: CROWNSTONE_SSE_LOGIN_URL
        """
        return _get("CROWNSTONE_SSE_LOGIN_URL", default=DEFAULT_LOGIN_URL)

    @staticmethod
    def hub_login_base_url() -> str:
        """Base URL for hub logins; ``{hubId}/login`` is appended.

        Env: CROWNSTONE_SSE_HUB_LOGIN_BASE_URL
        """
        return _get("CROWNSTONE_SSE_HUB_LOGIN_BASE_URL", default=DEFAULT_HUB_LOGIN_BASE_URL)

    @staticmethod
    def project_name() -> str:
        """Caller project name embedded in the client identifier.

        Env: CROWNSTONE_SSE_PROJECT_NAME (default: no_project_name)
        """
        return _get("CROWNSTONE_SSE_PROJECT_NAME", default=DEFAULT_PROJECT_NAME)

    # -------------------------------------------------------------------------
    # Connection behaviour
    # -------------------------------------------------------------------------

    @staticmethod
    def autoreconnect() -> bool:
        """Re-login and reconnect when the server reports an expired token.

        Env: CROWNSTONE_SSE_AUTORECONNECT (default: 1)
        """
        return _get_bool("CROWNSTONE_SSE_AUTORECONNECT", default=True)

    @staticmethod
    def require_authentication() -> bool:
        """Send an access token with the stream request.

        Env: CROWNSTONE_SSE_REQUIRE_AUTHENTICATION (default: 1)
        """
        return _get_bool("CROWNSTONE_SSE_REQUIRE_AUTHENTICATION", default=True)

    @staticmethod
    def heartbeat_timeout_seconds() -> float:
        """Seconds of silence before the stream is considered stalled.

        The cloud pings every 30 seconds, so the default tolerates one missed
        ping plus jitter.

        Env: CROWNSTONE_SSE_HEARTBEAT_TIMEOUT_SECONDS (default: 40)
        """
        return _get_float(
            "CROWNSTONE_SSE_HEARTBEAT_TIMEOUT_SECONDS",
            default=DEFAULT_HEARTBEAT_TIMEOUT_SECONDS,
        )

    @staticmethod
    def check_interval_seconds() -> float:
        """Period of the transport liveness poll.

        Env: CROWNSTONE_SSE_CHECK_INTERVAL_SECONDS (default: 1)
        """
        return _get_float(
            "CROWNSTONE_SSE_CHECK_INTERVAL_SECONDS",
            default=DEFAULT_CHECK_INTERVAL_SECONDS,
        )

    @staticmethod
    def reconnect_delay_seconds() -> float:
        """Delay before reconnecting after a transport error.

        Env: CROWNSTONE_SSE_RECONNECT_DELAY_SECONDS (default: 2)
        """
        return _get_float(
            "CROWNSTONE_SSE_RECONNECT_DELAY_SECONDS",
            default=DEFAULT_RECONNECT_DELAY_SECONDS,
        )

    @staticmethod
    def token_refresh_delay_seconds() -> float:
        """Delay between a successful re-login and the reconnect.

        Env: CROWNSTONE_SSE_TOKEN_REFRESH_DELAY_SECONDS (default: 2)
        """
        return _get_float(
            "CROWNSTONE_SSE_TOKEN_REFRESH_DELAY_SECONDS",
            default=DEFAULT_TOKEN_REFRESH_DELAY_SECONDS,
        )

    # -------------------------------------------------------------------------
    # Credentials (used by the CLI)
    # -------------------------------------------------------------------------

    @staticmethod
    def email() -> str:
        """Account email for user login.

        Env: CROWNSTONE_SSE_EMAIL
        """
        return _get("CROWNSTONE_SSE_EMAIL")

    @staticmethod
    def password() -> str:
        """Account password for user login. Hashed before it is sent.

        Env: CROWNSTONE_SSE_PASSWORD
        """
        return _get("CROWNSTONE_SSE_PASSWORD")

    @staticmethod
    def hub_id() -> str:
        """Hub identifier for hub login.

        Env: CROWNSTONE_SSE_HUB_ID
        """
        return _get("CROWNSTONE_SSE_HUB_ID")

    @staticmethod
    def hub_token() -> str:
        """Hub token for hub login.

        Env: CROWNSTONE_SSE_HUB_TOKEN
        """
        return _get("CROWNSTONE_SSE_HUB_TOKEN")

    @staticmethod
    def access_token() -> str:
        """Pre-issued access token; skips login entirely.

        Env: CROWNSTONE_SSE_ACCESS_TOKEN
        """
        return _get("CROWNSTONE_SSE_ACCESS_TOKEN")

    # -------------------------------------------------------------------------
    # Logging Settings
    # -------------------------------------------------------------------------

    @staticmethod
    def log_level() -> str:
        """Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).

        Env: CROWNSTONE_SSE_LOG_LEVEL (default: INFO)
        """
        return _get("CROWNSTONE_SSE_LOG_LEVEL", default="INFO").upper()

    @staticmethod
    def log_format() -> str:
        """Log format: "console" for dev-friendly, "json" for structured.

        Env: CROWNSTONE_SSE_LOG_FORMAT (default: console)
        """
        return _get("CROWNSTONE_SSE_LOG_FORMAT", default="console").lower()


# Singleton instance for convenient imports
settings = Settings()
